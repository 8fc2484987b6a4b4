"""Assembly of provider-agnostic requests from user input and the conversation log."""

import logging
from typing import List, Optional, Sequence

from .attachments import TEXT_MIME_TYPE, is_binary_type
from .errors import EmptyRequest
from .i18n import Translator
from .models import (
    AI_SENDER,
    MODEL_ROLE,
    USER_ROLE,
    USER_SENDER,
    AttachmentRef,
    InlineData,
    InlineDataPart,
    Message,
    Part,
    ProviderRequest,
    RequestMode,
    TextPart,
    Turn,
)

logger = logging.getLogger(__name__)


class PromptBuilder:
    """Builds the request for one turn and picks the guidance variant."""

    def __init__(self, translator: Translator):
        self.translator = translator

    def select_mode(self, turn_count: int, prior_messages: Sequence[Message] = ()) -> RequestMode:
        if turn_count > 0 or any(m.sender == USER_SENDER for m in prior_messages):
            return RequestMode.FOLLOW_UP
        return RequestMode.ANALYSIS

    def effective_query(self, user_text: str, attachments: Sequence[AttachmentRef]) -> str:
        """The query sent for this turn; attachments alone get a default question."""
        user_text = (user_text or "").strip()
        if not user_text and attachments:
            return self.translator.t("chat.defaultFileAnalysisPrompt")
        return user_text

    def build(
        self,
        user_text: str,
        attachments: Sequence[AttachmentRef],
        turn_count: int,
        prior_messages: Optional[Sequence[Message]] = None,
    ) -> ProviderRequest:
        """Assembles the request for the current turn.

        Raises
        ------
        EmptyRequest
            If neither text nor a usable attachment produced a part.
        """
        prior_messages = list(prior_messages or [])
        query = self.effective_query(user_text, attachments)
        parts = self.build_parts(query, attachments)
        if not parts:
            raise EmptyRequest(self.translator.t("chat.errorNoContentToSend"))

        mode = self.select_mode(turn_count, prior_messages)
        if mode == RequestMode.ANALYSIS:
            return ProviderRequest(
                mode=mode,
                system_guidance=self.analysis_guidance(query),
                current_turn_parts=parts,
            )
        return ProviderRequest(
            mode=mode,
            system_guidance=self.follow_up_guidance(query),
            history=self.build_history(prior_messages),
            current_turn_parts=parts,
        )

    def build_parts(self, query: str, attachments: Sequence[AttachmentRef]) -> List[Part]:
        t = self.translator
        parts: List[Part] = []
        if query:
            parts.append(TextPart(text=query))
        for attachment in attachments:
            if is_binary_type(attachment.mime_type) and attachment.inline_data:
                parts.append(
                    InlineDataPart(
                        inline_data=InlineData(
                            mime_type=attachment.mime_type, data=attachment.inline_data
                        )
                    )
                )
            elif attachment.mime_type == TEXT_MIME_TYPE and attachment.text_content:
                parts.append(
                    TextPart(text=f"\n\n--- {t.t('chat.fileContentTitle', fileName=attachment.name)} ---")
                )
                parts.append(TextPart(text=attachment.text_content))
                parts.append(
                    TextPart(text=f"--- {t.t('chat.fileContentEnd', fileName=attachment.name)} ---")
                )
            else:
                logger.debug("Skipping attachment %s without usable payload", attachment.name)
        return parts

    def build_history(self, messages: Sequence[Message]) -> List[Turn]:
        """Replays the log as role-tagged turns.

        The seed greeting, pending placeholders and messages without any
        renderable text are left out.
        """
        analysis_label = self.translator.t("chat.riskDisplay.detailedAnalysis")
        turns: List[Turn] = []
        for message in messages:
            if message.is_seed or message.is_pending:
                continue
            parts: List[Part] = []
            if message.text:
                parts.append(TextPart(text=message.text))
            analysis = message.analysis
            if (
                message.sender == AI_SENDER
                and analysis is not None
                and analysis.risk_level is not None
                and analysis.explanation
                and (not message.text or analysis.explanation not in message.text)
            ):
                parts.append(TextPart(text=f"[{analysis_label}]: {analysis.explanation}"))
            if not parts:
                continue
            role = USER_ROLE if message.sender == USER_SENDER else MODEL_ROLE
            turns.append(Turn(role=role, parts=parts))
        return turns

    def analysis_guidance(self, query: str) -> str:
        t = self.translator
        query = query or t.t("gemini.systemPromptAnalysis.userRequestFallback")
        return t.t("gemini.systemPromptAnalysis.base", query=query)

    def follow_up_guidance(self, query: str) -> str:
        return self.translator.t("gemini.systemPromptFollowUp.base", query=query)
