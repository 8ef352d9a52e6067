"""Shared fakes for the transcription, classification and telephony boundaries."""

from __future__ import annotations

import asyncio
from typing import Dict, Iterable, List, Optional

import pytest

from callguard.core.config import AlertConfig, SessionConfig
from callguard.core.errors import ChannelClosed, ChannelUnavailable, ClassifierError
from callguard.core.models import AlertOutcome, TranscriptEvent, Verdict
from callguard.processing.classifier import ClassifierGate
from callguard.services.session import CallSession


class FakeChannel:
    """In-memory transcription channel. Tests push events with emit()."""

    def __init__(self) -> None:
        self.sent: List[bytes] = []
        self.close_calls = 0
        self.closed = False
        self._events: asyncio.Queue = asyncio.Queue()

    async def send(self, audio: bytes) -> None:
        if self.closed:
            raise ChannelClosed("closed")
        self.sent.append(audio)

    async def events(self):
        while True:
            item = await self._events.get()
            try:
                if item is None:
                    return
                if isinstance(item, Exception):
                    raise item
                yield item
            finally:
                self._events.task_done()

    async def emit(self, text: str, is_final: bool = True) -> None:
        """Deliver one event and wait until the session has consumed it."""
        await self._events.put(TranscriptEvent(text=text, is_final=is_final, confidence=0.9))
        await self._events.join()

    async def fail(self, error: Exception) -> None:
        await self._events.put(error)
        await self._events.join()
        await asyncio.sleep(0)

    async def close(self) -> None:
        self.close_calls += 1
        self.closed = True


class FakeTranscriber:
    def __init__(self, reject: bool = False) -> None:
        self.reject = reject
        self.channels: List[FakeChannel] = []
        # When set, open() waits for this event before handing out a channel
        self.hold: Optional[asyncio.Event] = None

    async def open(self, config=None, label: str = "") -> FakeChannel:
        if self.hold is not None:
            await self.hold.wait()
        if self.reject:
            raise ChannelUnavailable("quota exceeded")
        channel = FakeChannel()
        self.channels.append(channel)
        return channel


class StubClassifier:
    """Fixed verdict per input text; optionally holds every answer until released."""

    def __init__(
        self,
        positives: Iterable[str] = (),
        errors: Iterable[str] = (),
        hold: bool = False,
    ) -> None:
        self.positives = set(positives)
        self.errors = set(errors)
        self.calls: List[str] = []
        self.release = asyncio.Event()
        if not hold:
            self.release.set()

    async def classify(self, text: str) -> Verdict:
        self.calls.append(text)
        await self.release.wait()
        if text in self.errors:
            raise ClassifierError("backend down")
        if text in self.positives:
            return Verdict.FRAUD_SUSPECTED
        return Verdict.NOT_SUSPECTED


class RecordingDispatcher:
    def __init__(self) -> None:
        self.calls: List[str] = []

    async def dispatch(self, call_key: str) -> AlertOutcome:
        self.calls.append(call_key)
        return AlertOutcome(call_key=call_key, notification_sid="SM1", conference_sid="CF1")


class FakeTelephony:
    """TelephonyBackend double with switchable failures."""

    def __init__(self, conferences: Optional[Dict[str, str]] = None) -> None:
        self.conferences = dict(conferences or {})
        self.messages: List[Dict[str, str]] = []
        self.announcements: List[Dict[str, str]] = []
        self.message_error: Optional[Exception] = None
        self.conference_error: Optional[Exception] = None

    async def send_message(self, body: str, from_: str, to: str) -> str:
        if self.message_error:
            raise self.message_error
        self.messages.append({"body": body, "from": from_, "to": to})
        return f"SM{len(self.messages)}"

    async def list_active_conferences(self, friendly_name=None, limit: int = 5) -> List[str]:
        if self.conference_error:
            raise self.conference_error
        if friendly_name is None:
            return list(self.conferences.values())[:limit]
        sid = self.conferences.get(friendly_name)
        return [sid] if sid else []

    async def announce(self, conference_sid: str, announce_url: str) -> str:
        self.announcements.append({"sid": conference_sid, "url": announce_url})
        return conference_sid


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture
def session_config() -> SessionConfig:
    return SessionConfig(
        trigger_phrase="banque",
        classify_interim_results=True,
        call_key_parameter="conferenceName",
    )


@pytest.fixture
def alert_config() -> AlertConfig:
    return AlertConfig(
        twilio_account_sid="AC123",
        twilio_auth_token="secret",
        from_number="+15550001111",
        recipient="+33600000000",
        fallback_first_conference=False,
    )


@pytest.fixture
def transcriber() -> FakeTranscriber:
    return FakeTranscriber()


@pytest.fixture
def classifier() -> StubClassifier:
    return StubClassifier()


@pytest.fixture
def dispatcher() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def make_session(transcriber, dispatcher, session_config):
    def _make(classifier: StubClassifier, config: Optional[SessionConfig] = None) -> CallSession:
        cfg = config or session_config
        return CallSession(
            session_id="test-session",
            transcriber=transcriber,
            gate=ClassifierGate(classifier, config=cfg),
            dispatcher=dispatcher,
            config=cfg,
        )
    return _make
