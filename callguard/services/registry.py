"""
CallGuard: Session Registry

Maps session_id → CallSession. Single event loop, no locking needed.
Holds the shared collaborators (transcriber, gate, dispatcher) and
injects them into every session it creates.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from ..core.config import (
    SessionConfig,
    TranscriptionConfig,
    alert_cfg,
    classifier_cfg,
    session_cfg,
    transcription_cfg,
)
from ..core.interfaces import AlertSink, Transcriber
from ..processing.classifier import ClassifierGate, OpenAIClassifier
from .alerts import AlertDispatcher, TwilioTelephony
from .session import CallSession
from .transcription import GoogleSpeechTranscriber

logger = logging.getLogger("callguard.registry")


class SessionRegistry:
    """Maps session_id → CallSession."""

    def __init__(
        self,
        transcriber: Transcriber,
        gate: ClassifierGate,
        dispatcher: AlertSink,
        config: SessionConfig = session_cfg,
        transcription_config: Optional[TranscriptionConfig] = None,
        resources: Any = None,
    ) -> None:
        self._transcriber = transcriber
        self._gate = gate
        self._dispatcher = dispatcher
        self._config = config
        self._transcription_config = transcription_config
        # Backends that need an async shutdown (e.g. HTTP client sessions)
        self._resources = list(resources or [])
        self._sessions: Dict[str, CallSession] = {}

    def create(self, session_id: str) -> CallSession:
        session = CallSession(
            session_id=session_id,
            transcriber=self._transcriber,
            gate=self._gate,
            dispatcher=self._dispatcher,
            config=self._config,
            transcription_config=self._transcription_config,
        )
        self._sessions[session_id] = session
        logger.info(f"SessionRegistry: created {session_id} (total: {len(self._sessions)})")
        return session

    async def close_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        session = self._sessions.pop(session_id, None)
        if session is None:
            return None
        await session.close()
        logger.info(f"SessionRegistry: removed {session_id} (total: {len(self._sessions)})")
        return session.telemetry.to_dict()

    async def close_all(self) -> None:
        for sid in list(self._sessions.keys()):
            await self.close_session(sid)
        for resource in self._resources:
            try:
                await resource.aclose()
            except Exception as e:
                logger.warning(f"SessionRegistry: resource shutdown failed: {e}")

    def get(self, session_id: str) -> Optional[CallSession]:
        return self._sessions.get(session_id)

    @property
    def active_count(self) -> int:
        return len(self._sessions)

    @property
    def all_sessions(self) -> Dict[str, CallSession]:
        return dict(self._sessions)


def build_registry() -> SessionRegistry:
    """Wire the production backends from the environment configuration."""
    telephony = TwilioTelephony(config=alert_cfg)
    return SessionRegistry(
        transcriber=GoogleSpeechTranscriber(config=transcription_cfg),
        gate=ClassifierGate(OpenAIClassifier(config=classifier_cfg), config=session_cfg),
        dispatcher=AlertDispatcher(telephony, config=alert_cfg),
        config=session_cfg,
        transcription_config=transcription_cfg,
        resources=[telephony],
    )
