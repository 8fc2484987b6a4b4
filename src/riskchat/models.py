"""
Defines the core Pydantic data models for the application.

These models serve as the formal, validated data contract between all other pillars:
the conversation log (messages, attachments, analysis verdicts) and the
provider-agnostic request/response shapes exchanged with the LLM pillar.
"""

import itertools
import threading
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator

# --- Constants ---
USER_SENDER = "user"
AI_SENDER = "ai"
Sender = Literal["user", "ai"]

USER_ROLE = "user"
MODEL_ROLE = "model"
Role = Literal["user", "model"]

MESSAGE_ID_PREFIX = "msg-"
SEED_ID_SUFFIX = "-seed"

_id_lock = threading.Lock()
_id_counter = itertools.count()
_last_id_ns = 0


def next_message_id(suffix: str = "") -> str:
    """Returns a unique id that sorts after every id issued before it."""
    global _last_id_ns
    with _id_lock:
        now = max(time.time_ns(), _last_id_ns + 1)
        _last_id_ns = now
        return f"{MESSAGE_ID_PREFIX}{now:020d}-{next(_id_counter)}{suffix}"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    # Records written without an offset are read as UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RiskLevel(str, Enum):
    VERY_HIGH = "VERY_HIGH"
    HIGH = "HIGH"
    MEDIUM = "MEDIUM"
    LOW = "LOW"
    SAFE = "SAFE"
    UNKNOWN = "UNKNOWN"


class RequestMode(str, Enum):
    ANALYSIS = "ANALYSIS"
    FOLLOW_UP = "FOLLOW_UP"


# --- Conversation models ---
class GroundingSource(BaseModel):
    """An external reference attached to an answer by the provider."""

    uri: str
    title: str


class AttachmentRef(BaseModel):
    """A file attached to a user message.

    Exactly one of ``inline_data`` (base64, binary types) or ``text_content``
    (plain text) carries the payload. ``preview_ref`` is session-local and is
    never trusted across a reload.
    """

    name: str
    mime_type: str
    inline_data: Optional[str] = None
    text_content: Optional[str] = None
    preview_ref: Optional[str] = None

    @property
    def is_image(self) -> bool:
        return self.mime_type.startswith("image/")


class AnalysisResult(BaseModel):
    """A structured risk verdict, or citations for a conversational turn.

    ``risk_level`` is None for conversational (non-analysis) turns.
    """

    risk_level: Optional[RiskLevel] = None
    explanation: str = ""
    suggestions: List[str] = Field(default_factory=list)
    grounding_sources: Optional[List[GroundingSource]] = None


class Message(BaseModel):
    """Represents a single entry of the conversation log."""

    sender: Sender
    text: Optional[str] = None
    attachments: Optional[List[AttachmentRef]] = None
    analysis: Optional[AnalysisResult] = None
    is_pending: bool = False
    id: str = Field(default_factory=next_message_id)
    timestamp: datetime = Field(default_factory=_utcnow)

    model_config = {"frozen": True}

    @field_validator("timestamp")
    @classmethod
    def timestamp_as_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def is_seed(self) -> bool:
        return self.sender == AI_SENDER and self.id.endswith(SEED_ID_SUFFIX)

    @classmethod
    def seed(cls, text: str) -> "Message":
        """Builds the greeting message every new conversation starts with."""
        return cls(sender=AI_SENDER, text=text, id=next_message_id(SEED_ID_SUFFIX))


class Conversation(BaseModel):
    """Represents a complete chat conversation session."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = ""
    last_activity_at: datetime = Field(default_factory=_utcnow)
    turn_count: int = 0
    messages: List[Message] = Field(default_factory=list)

    @field_validator("last_activity_at")
    @classmethod
    def activity_as_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @property
    def has_user_interaction(self) -> bool:
        return self.turn_count > 0 or any(
            m.sender == USER_SENDER for m in self.messages
        )


# --- Provider wire models ---
class InlineData(BaseModel):
    mime_type: str
    data: str


class TextPart(BaseModel):
    text: str


class InlineDataPart(BaseModel):
    inline_data: InlineData


Part = Union[TextPart, InlineDataPart]


class Turn(BaseModel):
    """One role-tagged entry of replayed history."""

    role: Role
    parts: List[Part]


class ProviderRequest(BaseModel):
    """Provider-agnostic request for a single generation call."""

    mode: RequestMode
    system_guidance: str
    history: Optional[List[Turn]] = None
    current_turn_parts: List[Part]


class ProviderResponse(BaseModel):
    text: str = ""
    citations: Optional[List[GroundingSource]] = None


class SuggestedPrompt(BaseModel):
    text: str
    is_for_file: bool = False
