"""
CallGuard: Call State Machine

Enforces the lifecycle: IDLE → STREAMING → STOPPED.
All state transitions go through this module so illegitimate states
are impossible and every transition is logged.
"""

from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

logger = logging.getLogger("callguard.state")


class CallState(str, Enum):
    """Per-call lifecycle states."""
    IDLE = "idle"              # Connection open, no stream started
    STREAMING = "streaming"    # Transcription channel open
    STOPPED = "stopped"        # Terminal, channel released


# Legal state transitions
_TRANSITIONS: Dict[CallState, Set[CallState]] = {
    CallState.IDLE:      {CallState.STREAMING, CallState.STOPPED},
    CallState.STREAMING: {CallState.STOPPED},
    CallState.STOPPED:   set(),
}


class CallStateMachine:
    """
    Enforces legal state transitions and notifies a listener.

    Usage:
        sm = CallStateMachine(on_transition=my_callback)
        sm.transition(CallState.STREAMING)   # OK
        sm.transition(CallState.STOPPED)     # OK
        sm.transition(CallState.STREAMING)   # illegal from STOPPED → raises
    """

    def __init__(
        self,
        label: str = "",
        on_transition: Optional[Callable[[CallState, CallState, str], None]] = None,
    ) -> None:
        self._label = label
        self._state = CallState.IDLE
        self._on_transition = on_transition
        self._history: List[Dict] = []
        self._entered_at = time.time()

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def is_terminal(self) -> bool:
        return self._state == CallState.STOPPED

    @property
    def history(self) -> List[Dict]:
        return list(self._history)

    def can_transition(self, target: CallState) -> bool:
        return target in _TRANSITIONS.get(self._state, set())

    def transition(self, target: CallState, reason: str = "") -> None:
        """
        Attempt a state transition. Raises ValueError on illegal transitions.
        """
        if target == self._state:
            return  # Idempotent, no-op for same state

        allowed = _TRANSITIONS.get(self._state, set())
        if target not in allowed:
            raise ValueError(
                f"Illegal state transition: {self._state.value} → {target.value}. "
                f"Allowed from {self._state.value}: {[s.value for s in allowed]}. "
                f"Reason: {reason}"
            )

        prev = self._state
        now = time.time()
        self._history.append({
            "from": prev.value,
            "to": target.value,
            "reason": reason,
            "timestamp": now,
            "duration_in_prev_ms": round((now - self._entered_at) * 1000, 1),
        })
        self._state = target
        self._entered_at = now

        prefix = f"[{self._label}] " if self._label else ""
        logger.info(
            f"{prefix}STATE: {prev.value} → {target.value}"
            + (f" ({reason})" if reason else "")
        )

        if self._on_transition:
            try:
                self._on_transition(prev, target, reason)
            except Exception as e:
                logger.error(f"State transition callback error: {e}")
