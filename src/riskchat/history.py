"""Durable, per-user conversation history.

All conversations of a user are kept as one JSON document under a single
store key. Storage failures are logged and absorbed: history is best-effort
and never breaks the live conversation.
"""

import json
import logging
from datetime import datetime, timezone
from typing import List, Optional, Sequence

from pydantic import ValidationError

from .attachments import is_volatile, to_data_url
from .errors import CorruptRecord, PersistenceError
from .i18n import Translator
from .models import AI_SENDER, USER_SENDER, Conversation, Message
from .store import Store

logger = logging.getLogger(__name__)

HISTORY_KEY_PREFIX = "chatHistoryList_"
DEFAULT_MAX_SAVED_CONVERSATIONS = 10
MAX_TITLE_WORDS = 5
MAX_TITLE_LENGTH = 35
ELLIPSIS = "..."


def sanitize_messages(messages: Sequence[Message]) -> List[Message]:
    """Prepares messages for serialization.

    Pending placeholders are dropped and volatile preview handles stripped;
    durable attachment fields are kept verbatim.
    """
    sanitized = []
    for message in messages:
        if message.is_pending:
            continue
        if message.attachments:
            attachments = [
                a.model_copy(update={"preview_ref": None}) if is_volatile(a.preview_ref) else a
                for a in message.attachments
            ]
            message = message.model_copy(update={"attachments": attachments})
        sanitized.append(message)
    return sanitized


def hydrate_messages(messages: Sequence[Message]) -> List[Message]:
    """Rebuilds display previews for loaded messages.

    Images with inline data get a data URL preview; leftover volatile handles
    from an earlier session are cleared.
    """
    hydrated = []
    for message in messages:
        if message.attachments:
            attachments = []
            for a in message.attachments:
                preview = a.preview_ref
                if a.is_image and a.inline_data and (not preview or is_volatile(preview)):
                    preview = to_data_url(a.mime_type, a.inline_data)
                elif is_volatile(preview):
                    preview = None
                attachments.append(a.model_copy(update={"preview_ref": preview}))
            message = message.model_copy(update={"attachments": attachments})
        hydrated.append(message)
    return hydrated


def _truncate_title(text: str) -> str:
    words = text.split()
    candidate = " ".join(words[:MAX_TITLE_WORDS])
    if len(candidate) > MAX_TITLE_LENGTH:
        return candidate[: MAX_TITLE_LENGTH - len(ELLIPSIS)] + ELLIPSIS
    if len(words) > MAX_TITLE_WORDS and len(candidate) + len(ELLIPSIS) <= MAX_TITLE_LENGTH:
        return candidate + ELLIPSIS
    return candidate


def conversation_name(messages: Sequence[Message], translator: Translator) -> str:
    """Derives a display name from the first meaningful user message."""
    t = translator
    first_user = next(
        (
            m
            for m in messages
            if m.sender == USER_SENDER and ((m.text or "").strip() or m.attachments)
        ),
        None,
    )

    if first_user is not None:
        text = (first_user.text or "").strip()
        files = first_user.attachments or []
        is_placeholder = bool(text and files) and text == t.t(
            "chat.stagedFiles", count=str(len(files))
        )
        if files and (not text or is_placeholder):
            return t.t("chatHistory.fileChatName", count=str(len(files)), fileName=files[0].name)
        if text:
            return _truncate_title(text)

    relevant = [m for m in messages if not m.is_seed]
    when = messages[-1].timestamp if messages else datetime.now(timezone.utc)
    time_label = when.astimezone().strftime(t.t("app.timeFormat"))
    if not relevant or (len(relevant) == 1 and relevant[0].sender == AI_SENDER):
        return t.t("chatHistory.newChatName", time=time_label)
    return t.t("chatHistory.untitledChatName", time=time_label)


class ConversationHistory:
    """Lists, loads, saves and deletes a user's conversations.

    Parameters
    ----------
    store : Store
        Durable key-value store; one key per user.
    translator : Translator
        Used by the naming heuristic.
    max_saved : int, default=10
        Retention cap; the least recently active conversations beyond it
        are dropped on save.
    """

    def __init__(
        self,
        store: Store,
        translator: Translator,
        max_saved: int = DEFAULT_MAX_SAVED_CONVERSATIONS,
    ):
        self.store = store
        self.translator = translator
        self.max_saved = max_saved

    @staticmethod
    def key_for(user_id: str) -> str:
        return f"{HISTORY_KEY_PREFIX}{user_id}"

    def _read(self, user_id: str) -> List[Conversation]:
        raw = self.store.get(self.key_for(user_id))
        if raw is None:
            return []
        try:
            data = json.loads(raw)
            if not isinstance(data, list):
                raise CorruptRecord(f"History for {user_id} is not a list")
            return [Conversation.model_validate(item) for item in data]
        except (ValueError, ValidationError) as exc:
            raise CorruptRecord(f"History for {user_id} could not be decoded") from exc

    def _write(self, user_id: str, conversations: List[Conversation]) -> None:
        payload = json.dumps(
            [c.model_dump(mode="json") for c in conversations], ensure_ascii=False
        )
        self.store.put(self.key_for(user_id), payload)

    def list(self, user_id: str) -> List[Conversation]:
        """Returns hydrated conversations, most recently active first."""
        if not user_id:
            return []
        try:
            conversations = self._read(user_id)
        except PersistenceError:
            logger.exception("Error loading conversation list for user %s", user_id)
            return []
        conversations = [
            c.model_copy(update={"messages": hydrate_messages(c.messages)}) for c in conversations
        ]
        conversations.sort(key=lambda c: c.last_activity_at, reverse=True)
        return conversations

    def load(self, user_id: str, conversation_id: str) -> Optional[Conversation]:
        if not user_id or not conversation_id:
            return None
        return next((c for c in self.list(user_id) if c.id == conversation_id), None)

    def save(self, user_id: str, conversation: Conversation) -> Optional[Conversation]:
        """Upserts a conversation, recomputing its name and activity time.

        Conversations without user interaction are not stored. Returns the
        stored snapshot, or None when nothing was written.
        """
        if not user_id or not conversation.id:
            return None
        messages = sanitize_messages(conversation.messages)
        if not messages or not conversation.has_user_interaction:
            logger.debug("Skipping save of conversation %s without user interaction", conversation.id)
            return None

        try:
            conversations = self._read(user_id)
        except CorruptRecord:
            logger.exception("Discarding unreadable history for user %s", user_id)
            conversations = []
        except PersistenceError:
            logger.exception("Error saving conversation %s", conversation.id)
            return None

        existing = next((c for c in conversations if c.id == conversation.id), None)
        now = datetime.now(timezone.utc)
        last_activity = max(
            now,
            conversation.last_activity_at,
            existing.last_activity_at if existing else now,
        )
        snapshot = conversation.model_copy(
            update={
                "messages": messages,
                "name": conversation_name(messages, self.translator),
                "last_activity_at": last_activity,
            }
        )

        conversations = [c for c in conversations if c.id != snapshot.id]
        conversations.append(snapshot)
        conversations.sort(key=lambda c: c.last_activity_at, reverse=True)
        evicted = conversations[self.max_saved:]
        if evicted:
            logger.info(
                "Evicting %d conversation(s) for user %s: %s",
                len(evicted),
                user_id,
                ", ".join(c.id for c in evicted),
            )
        conversations = conversations[: self.max_saved]

        try:
            self._write(user_id, conversations)
        except PersistenceError:
            logger.exception("Error saving conversation %s", conversation.id)
            return None
        return snapshot

    def delete(self, user_id: str, conversation_id: str) -> None:
        if not user_id or not conversation_id:
            return
        try:
            conversations = self._read(user_id)
            remaining = [c for c in conversations if c.id != conversation_id]
            if len(remaining) != len(conversations):
                self._write(user_id, remaining)
        except PersistenceError:
            logger.exception("Error deleting conversation %s", conversation_id)

    def clear_all(self, user_id: str) -> None:
        if not user_id:
            return
        try:
            self.store.delete(self.key_for(user_id))
        except PersistenceError:
            logger.exception("Error clearing chat history for user %s", user_id)
