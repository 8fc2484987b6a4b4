"""
The conversation orchestrator.

One ``Orchestrator`` owns the live message log of a single conversation and
drives every turn through the pillars: prompt building, the provider call,
response parsing and history persistence.

Turn states::

    IDLE -> BUILDING -> AWAITING_RESPONSE -> APPLYING_RESULT -> IDLE
                                          -> FAILED          -> IDLE
"""

import logging
import threading
from contextlib import contextmanager
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeout
from enum import Enum
from typing import Iterable, List, Optional

from .attachments import AttachmentStager, RawFile, StagingOutcome
from .errors import (
    AuthMissing,
    BuildError,
    EmptyRequest,
    NetworkFailure,
    ProviderError,
    ProviderTimeout,
    SubmitInProgress,
)
from .history import ConversationHistory
from .i18n import Translator
from .llm import LLM
from .models import (
    AI_SENDER,
    USER_SENDER,
    AttachmentRef,
    Conversation,
    Message,
    ProviderRequest,
    ProviderResponse,
    RequestMode,
    SuggestedPrompt,
)
from .parsing import ResponseParser
from .prompts import PromptBuilder

logger = logging.getLogger(__name__)

GENERAL_PROMPT_KEYS = ("general1", "general2", "general3")
FILE_PROMPT_KEYS = ("file1", "file2", "file3", "file4")


class State(str, Enum):
    IDLE = "IDLE"
    BUILDING = "BUILDING"
    AWAITING_RESPONSE = "AWAITING_RESPONSE"
    APPLYING_RESULT = "APPLYING_RESULT"
    FAILED = "FAILED"


class Orchestrator:
    """Runs the turns of one conversation for one user.

    Parameters
    ----------
    user_id : str
        Opaque identity of the user owning the conversation.
    llm : LLM
        Provider capability, called exactly once per submit.
    history : ConversationHistory
        Persistence for finished turns.
    translator : Translator
        Source of every user-facing string.
    stager, prompt_builder, parser : optional
        Pillar overrides; defaults are built from ``translator``.
    request_timeout : float, optional
        Deadline in seconds for the provider call. On expiry the turn fails
        with ``ProviderTimeout``.
    """

    def __init__(
        self,
        user_id: str,
        llm: LLM,
        history: ConversationHistory,
        translator: Translator,
        stager: Optional[AttachmentStager] = None,
        prompt_builder: Optional[PromptBuilder] = None,
        parser: Optional[ResponseParser] = None,
        request_timeout: Optional[float] = None,
    ) -> None:
        self.user_id = user_id
        self.llm = llm
        self.history = history
        self.translator = translator
        self.stager = stager if stager is not None else AttachmentStager(translator)
        self.prompt_builder = prompt_builder if prompt_builder is not None else PromptBuilder(translator)
        self.parser = parser if parser is not None else ResponseParser(translator)
        self.request_timeout = request_timeout

        self._turn_lock = threading.Lock()
        self._state = State.IDLE
        self.staged: List[AttachmentRef] = []
        self.error: Optional[str] = None
        self.conversation = self._fresh_conversation()

    # --- Read-only views ---
    @property
    def state(self) -> State:
        return self._state

    @property
    def messages(self) -> List[Message]:
        return list(self.conversation.messages)

    @property
    def turn_count(self) -> int:
        return self.conversation.turn_count

    # --- Conversation switching ---
    def _fresh_conversation(self) -> Conversation:
        return Conversation(messages=[Message.seed(self.translator.t("chat.initialSystemMessage"))])

    @contextmanager
    def _idle(self):
        """Holds the turn lock for a conversation switch; fails while a turn runs."""
        if not self._turn_lock.acquire(blocking=False):
            raise SubmitInProgress(self.translator.t("chat.errorSubmitInProgress"))
        try:
            yield
        finally:
            self._turn_lock.release()

    def _reset(self, conversation: Conversation) -> None:
        self.stager.previews.release_all()
        self.staged = []
        self.error = None
        self.conversation = conversation

    def new_conversation(self) -> Conversation:
        """Discards the live state and starts a fresh conversation."""
        with self._idle():
            self._reset(self._fresh_conversation())
        logger.debug("Started conversation %s for user %s", self.conversation.id, self.user_id)
        return self.conversation

    def load_conversation(self, conversation_id: str) -> bool:
        """Switches to a persisted conversation; starts a new one if it is missing."""
        with self._idle():
            loaded = self.history.load(self.user_id, conversation_id)
            if loaded is None:
                logger.info("Conversation %s not found for user %s", conversation_id, self.user_id)
                self._reset(self._fresh_conversation())
                return False
            self._reset(loaded)
            return True

    def list_conversations(self) -> List[Conversation]:
        return self.history.list(self.user_id)

    def delete_conversation(self, conversation_id: str) -> None:
        with self._idle():
            self.history.delete(self.user_id, conversation_id)
            if conversation_id == self.conversation.id:
                self._reset(self._fresh_conversation())

    def close(self) -> None:
        """Releases session-local resources held for this conversation."""
        self.stager.previews.release_all()
        self.staged = []

    # --- Attachments ---
    def stage_files(self, raw_files: Iterable[RawFile]) -> List[StagingOutcome]:
        """Stages files for the next submit; failures are reported, not raised."""
        outcomes = self.stager.stage_all(raw_files)
        errors = []
        for outcome in outcomes:
            if outcome.ok:
                self.staged.append(outcome.attachment)
            else:
                errors.append(
                    self.translator.t(
                        "chat.errorProcessingFile",
                        fileName=outcome.error.file_name,
                        error=outcome.error.message,
                    )
                )
        self.error = "\n".join(errors) if errors else None
        return outcomes

    def remove_staged(self, attachment: AttachmentRef) -> None:
        self.stager.release(attachment)
        self.staged = [a for a in self.staged if a is not attachment]

    # --- Suggested prompts ---
    def suggested_prompts(self) -> List[SuggestedPrompt]:
        if self._state != State.IDLE:
            return []
        t = self.translator
        if self.turn_count == 0 and all(m.is_seed for m in self.conversation.messages):
            return []
        if self.staged:
            return [
                SuggestedPrompt(text=t.t(f"chat.suggestedPrompts.{key}"), is_for_file=True)
                for key in FILE_PROMPT_KEYS
            ]
        return [SuggestedPrompt(text=t.t(f"chat.suggestedPrompts.{key}")) for key in GENERAL_PROMPT_KEYS]

    def choose_prompt(self, prompt: SuggestedPrompt) -> Optional[str]:
        """Returns the text to put in the input box, or None if the prompt needs a file."""
        if prompt.is_for_file and not self.staged:
            self.error = self.translator.t("chat.suggestedPrompts.errorFilePrompt")
            return None
        return prompt.text

    # --- Turns ---
    def _transition(self, state: State) -> None:
        logger.debug("Conversation %s: %s -> %s", self.conversation.id, self._state.value, state.value)
        self._state = state

    def _replace_messages(self, messages: List[Message], **updates) -> None:
        self.conversation = self.conversation.model_copy(update={"messages": messages, **updates})

    def _settle(self, pending: Message, reply: Message) -> None:
        """Swaps the pending placeholder for the final reply."""
        remaining = [m for m in self.conversation.messages if m.id != pending.id]
        self._replace_messages(remaining + [reply])

    def submit(self, text: str = "", timeout: Optional[float] = None) -> Message:
        """Sends one user turn and returns the AI reply appended to the log.

        Raises
        ------
        SubmitInProgress
            If another turn is still in flight.
        EmptyRequest
            If there is nothing to send; the log is left untouched.
        ProviderError
            If the provider call failed. The log then ends with an AI
            message describing the failure.
        """
        if not self._turn_lock.acquire(blocking=False):
            raise SubmitInProgress(self.translator.t("chat.errorSubmitInProgress"))
        try:
            return self._run_turn((text or "").strip(), timeout)
        finally:
            if self._state != State.IDLE:
                self._transition(State.IDLE)
            self._turn_lock.release()

    def _run_turn(self, text: str, timeout: Optional[float]) -> Message:
        t = self.translator
        self.error = None
        attachments = list(self.staged)
        if not text and not attachments:
            self.error = t.t("chat.errorNoInput")
            raise EmptyRequest(self.error)

        self._transition(State.BUILDING)
        prior = list(self.conversation.messages)
        try:
            request = self.prompt_builder.build(text, attachments, self.turn_count, prior)
        except BuildError as exc:
            self.error = exc.message
            raise

        user_message = Message(
            sender=USER_SENDER,
            text=text or t.t("chat.stagedFiles", count=str(len(attachments))),
            attachments=attachments or None,
        )
        pending = Message(sender=AI_SENDER, text=t.t("chat.typing"), is_pending=True)
        self._replace_messages(prior + [user_message, pending], turn_count=self.turn_count + 1)
        self.staged = []

        self._transition(State.AWAITING_RESPONSE)
        try:
            response = self._call_provider(request, timeout)
        except ProviderError as exc:
            self._transition(State.FAILED)
            logger.error("Error during AI call (mode: %s): %s", request.mode.value, exc.message)
            detail = self._describe_failure(exc)
            self._settle(pending, Message(sender=AI_SENDER, text=f"{t.t('chat.errorPrefix')} {detail}"))
            self.error = detail
            self._persist()
            raise

        self._transition(State.APPLYING_RESULT)
        reply = self._to_message(request.mode, response)
        self._settle(pending, reply)
        self._persist()
        return reply

    def _call_provider(self, request: ProviderRequest, timeout: Optional[float]) -> ProviderResponse:
        timeout = timeout if timeout is not None else self.request_timeout
        try:
            if timeout is None:
                return self.llm.generate(request)
            pool = ThreadPoolExecutor(max_workers=1)
            future = pool.submit(self.llm.generate, request)
            try:
                return future.result(timeout=timeout)
            except FutureTimeout:
                future.cancel()
                raise ProviderTimeout(self.translator.t("chat.errorTimeout", seconds=timeout))
            finally:
                pool.shutdown(wait=False)
        except ProviderError:
            raise
        except Exception as exc:
            raise NetworkFailure(str(exc) or self.translator.t("chat.errorAIApi")) from exc

    def _describe_failure(self, exc: ProviderError) -> str:
        if isinstance(exc, AuthMissing):
            return self.translator.t("errors.configErrorApiKey")
        return exc.message or self.translator.t("errors.generalApiError")

    def _to_message(self, mode: RequestMode, response: ProviderResponse) -> Message:
        if mode == RequestMode.ANALYSIS:
            return Message(sender=AI_SENDER, analysis=self.parser.parse(response.text, response.citations))
        return Message(
            sender=AI_SENDER,
            text=response.text or self.translator.t("chat.emptyContent"),
            analysis=self.parser.conversational(response.citations),
        )

    def _persist(self) -> None:
        snapshot = self.history.save(self.user_id, self.conversation)
        if snapshot is None:
            logger.warning("Conversation %s was not persisted", self.conversation.id)
            return
        self.conversation = self.conversation.model_copy(
            update={"name": snapshot.name, "last_activity_at": snapshot.last_activity_at}
        )
