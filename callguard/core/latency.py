"""
CallGuard: Structured Latency Tracer

Records wall-clock timestamps for the milestones of one call:
  stream_started → first_transcript → first_trigger → first_verdict → alert_dispatched

Computes and logs latency deltas between them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

logger = logging.getLogger("callguard.latency")

_MILESTONES = (
    "stream_started", "first_transcript", "first_trigger",
    "first_verdict", "alert_dispatched",
)


@dataclass
class LatencyTrace:
    """Record of session latency milestones (wall-clock seconds)."""

    session_id: str = ""

    stream_started: float = 0.0
    first_transcript: float = 0.0
    first_trigger: float = 0.0
    first_verdict: float = 0.0
    alert_dispatched: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        d: Dict[str, Any] = {"session_id": self.session_id}
        # Only include milestones that have been recorded
        for name in _MILESTONES:
            ts = getattr(self, name)
            if ts > 0:
                d[name] = ts
        d["deltas"] = self.deltas()
        return d

    def deltas(self) -> Dict[str, Optional[float]]:
        """Latency deltas between milestones (milliseconds)."""
        def _delta(a: float, b: float) -> Optional[float]:
            if a > 0 and b > 0:
                return round((b - a) * 1000, 1)
            return None

        return {
            "start_to_first_transcript_ms": _delta(self.stream_started, self.first_transcript),
            "start_to_first_trigger_ms": _delta(self.stream_started, self.first_trigger),
            "trigger_to_verdict_ms": _delta(self.first_trigger, self.first_verdict),
            "trigger_to_alert_ms": _delta(self.first_trigger, self.alert_dispatched),
            "start_to_alert_ms": _delta(self.stream_started, self.alert_dispatched),
        }


class LatencyTracer:
    """
    Mutable tracer that records milestones once each and logs them.

    Usage:
        tracer = LatencyTracer("session-abc")
        tracer.mark("stream_started")
        tracer.mark("first_transcript")
    """

    def __init__(self, session_id: str) -> None:
        self._trace = LatencyTrace(session_id=session_id)

    @property
    def trace(self) -> LatencyTrace:
        return self._trace

    def mark(self, milestone: str) -> None:
        if milestone not in _MILESTONES:
            raise ValueError(f"Unknown latency milestone: {milestone}")
        if getattr(self._trace, milestone) > 0:
            return  # Already marked
        setattr(self._trace, milestone, time.time())
        logger.info(f"[{self._trace.session_id}] LATENCY {milestone}")

    def summary(self) -> Dict[str, Any]:
        return self._trace.to_dict()
