"""
CallGuard: Error Taxonomy

Every backend-facing failure is raised as one of these and contained
at the component boundary that produced it.
"""

from __future__ import annotations


class CallGuardError(Exception):
    """Base class for all CallGuard errors."""


class ChannelUnavailable(CallGuardError):
    """Transcription backend rejected the session (auth, quota, bad config)."""


class ChannelClosed(CallGuardError):
    """Audio sent on a channel after it was closed or failed."""


class ChannelError(CallGuardError):
    """Upstream transcription failure mid-stream. Terminal for the channel."""


class ClassifierError(CallGuardError):
    """Classifier backend failed for one fragment."""


class DispatchError(CallGuardError):
    """Notification or announcement step failed."""

    def __init__(self, step: str, message: str) -> None:
        super().__init__(f"{step}: {message}")
        self.step = step


class MalformedSignal(CallGuardError):
    """Inbound bridge frame could not be decoded into a known signal."""
