"""Adapters feeding capture devices (speech-to-text, recorders, cameras) into a conversation.

Devices are modelled as producers of discrete events. The feed only needs
completed units: transcript text and finished files.
"""

import logging
from typing import Iterable, List, NamedTuple, Optional, Union

from .attachments import RawFile, StagingOutcome
from .engine import Orchestrator
from .errors import ProviderError
from .models import Message

logger = logging.getLogger(__name__)


class TextDelta(NamedTuple):
    """Interim transcript; replaces the previous interim text."""

    text: str


class FinalText(NamedTuple):
    """Committed transcript segment."""

    text: str


class FileReady(NamedTuple):
    """A recording or capture finished and is ready to stage."""

    file: RawFile


CaptureEvent = Union[TextDelta, FinalText, FileReady]


class CaptureFeed:
    """Accumulates capture events into a draft for one orchestrator."""

    def __init__(self, orchestrator: Orchestrator):
        self.orchestrator = orchestrator
        self._committed: List[str] = []
        self._interim = ""

    @property
    def draft(self) -> str:
        return " ".join(s for s in self._committed + [self._interim] if s).strip()

    def push(self, event: CaptureEvent) -> Optional[StagingOutcome]:
        if isinstance(event, TextDelta):
            self._interim = event.text.strip()
        elif isinstance(event, FinalText):
            self._interim = ""
            if event.text.strip():
                self._committed.append(event.text.strip())
        elif isinstance(event, FileReady):
            logger.debug("Staging captured file %s", event.file.filename)
            return self.orchestrator.stage_files([event.file])[0]
        else:
            raise TypeError(f"Unsupported capture event: {event!r}")
        return None

    def consume(self, events: Iterable[CaptureEvent]) -> List[StagingOutcome]:
        """Pushes every event; returns the staging outcomes of the files seen."""
        outcomes = []
        for event in events:
            outcome = self.push(event)
            if outcome is not None:
                outcomes.append(outcome)
        return outcomes

    def clear(self) -> None:
        self._committed = []
        self._interim = ""

    def submit(self, timeout: Optional[float] = None) -> Message:
        """Submits the draft (and any staged files) as one turn.

        The draft is kept when the submit is rejected (nothing to send, or a
        turn already in flight) and cleared once the turn was accepted.
        """
        try:
            reply = self.orchestrator.submit(self.draft, timeout=timeout)
        except ProviderError:
            self.clear()
            raise
        self.clear()
        return reply
