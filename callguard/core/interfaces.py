"""
CallGuard: Layer Interfaces

Protocol definitions for the external collaborators of a call session:
  1. Transcription  (streaming speech-to-text channel)
  2. Classification (single-turn text → verdict)
  3. Telephony      (SMS + conference announcement)

The session only talks to these protocols, so every backend can be
replaced by a deterministic stub in tests.
"""

from __future__ import annotations

from typing import AsyncIterator, List, Optional, Protocol, runtime_checkable

from .config import TranscriptionConfig
from .models import AlertOutcome, TranscriptEvent, Verdict


# ═══════════════════════════════════════════════════════════════════════════
# Transcription
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class TranscriptionChannel(Protocol):
    """One duplex streaming connection to the speech-to-text backend."""

    @property
    def closed(self) -> bool:
        ...

    async def send(self, audio: bytes) -> None:
        """Forward one audio frame. Raises ChannelClosed after close/error."""
        ...

    def events(self) -> AsyncIterator[TranscriptEvent]:
        """
        Transcript events until close. Upstream failure is raised as
        ChannelError instead of ending the iteration.
        """
        ...

    async def close(self) -> None:
        """Idempotent release of the streaming handle."""
        ...


@runtime_checkable
class Transcriber(Protocol):
    """Opens transcription channels. Raises ChannelUnavailable on rejection."""

    async def open(
        self, config: Optional[TranscriptionConfig] = None, label: str = "",
    ) -> TranscriptionChannel:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Classification
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class TextClassifier(Protocol):
    """External fraud classifier. Raises ClassifierError on backend failure."""

    async def classify(self, text: str) -> Verdict:
        ...


# ═══════════════════════════════════════════════════════════════════════════
# Telephony
# ═══════════════════════════════════════════════════════════════════════════

@runtime_checkable
class TelephonyBackend(Protocol):
    """Notification + conferencing actions used by the alert dispatcher."""

    async def send_message(self, body: str, from_: str, to: str) -> str:
        """Send an SMS. Returns the message id."""
        ...

    async def list_active_conferences(
        self, friendly_name: Optional[str] = None, limit: int = 5,
    ) -> List[str]:
        """Ids of in-progress conferences, optionally filtered by name."""
        ...

    async def announce(self, conference_sid: str, announce_url: str) -> str:
        """Play an announcement into a conference. Returns the conference id."""
        ...


@runtime_checkable
class AlertSink(Protocol):
    """What a session calls once its alert latch trips."""

    async def dispatch(self, call_key: str) -> AlertOutcome:
        ...
