"""
CallGuard: Data Models

Dataclasses for every piece of data flowing through the system.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, List, Optional


# ---------------------------------------------------------------------------
# Audio
# ---------------------------------------------------------------------------

@dataclass
class AudioFrame:
    """One chunk of encoded call audio, already base64-decoded."""
    payload: bytes = b""
    chunk: Optional[int] = None       # bridge sequence of the chunk
    timestamp_ms: Optional[int] = None
    track: str = "inbound"


# ---------------------------------------------------------------------------
# Transcription
# ---------------------------------------------------------------------------

@dataclass
class TranscriptEvent:
    """A (possibly partial) speech-to-text fragment for one session."""
    text: str = ""
    is_final: bool = False
    confidence: float = 0.0
    timestamp: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ---------------------------------------------------------------------------
# Classification
# ---------------------------------------------------------------------------

class Verdict(str, Enum):
    FRAUD_SUSPECTED = "fraud-suspected"
    NOT_SUSPECTED = "not-suspected"

    @property
    def is_fraud(self) -> bool:
        return self is Verdict.FRAUD_SUSPECTED


# ---------------------------------------------------------------------------
# Alerting
# ---------------------------------------------------------------------------

@dataclass
class AlertOutcome:
    """What the dispatcher managed to do for one alert."""
    call_key: str = ""
    notification_sid: Optional[str] = None
    conference_sid: Optional[str] = None
    errors: List[str] = field(default_factory=list)
    timestamp: float = field(default_factory=time.time)

    @property
    def notified(self) -> bool:
        return self.notification_sid is not None

    @property
    def announced(self) -> bool:
        return self.conference_sid is not None

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        d["notified"] = self.notified
        d["announced"] = self.announced
        return d


# ---------------------------------------------------------------------------
# Session telemetry
# ---------------------------------------------------------------------------

@dataclass
class SessionTelemetry:
    """Per-session counters. Never crashes the session."""
    session_id: str = ""
    stream_id: str = ""
    call_sid: str = ""
    call_key: str = ""
    state: str = "idle"
    frames_forwarded: int = 0
    frames_ignored: int = 0
    transcripts_received: int = 0
    transcripts_suppressed: int = 0
    classifications_requested: int = 0
    classifications_failed: int = 0
    verdicts_discarded: int = 0
    alert_latched: bool = False
    alerts_dispatched: int = 0
    malformed_signals: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)
