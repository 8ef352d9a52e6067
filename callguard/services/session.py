"""
CallGuard: Call Session

================================================================================
ONE SESSION PER MEDIA-STREAM CONNECTION
================================================================================

  connected → log only
  start     → open the transcription channel, reset the alert latch,
              launch the transcript consumer           (IDLE → STREAMING)
  media     → forward the frame to the channel, in arrival order, whatever
              the alert state is (alerting silences analysis, not audio)
  stop      → release the channel                      (→ STOPPED, terminal)

Concurrency inside a session:
  • signal handling is awaited in arrival order by the connection handler
  • one consumer task drains channel.events()
  • one task per in-flight classification

The alert latch is one-way. _trip_alert_latch() has no suspension point,
so its check-and-set is atomic with respect to every other task on the
loop and two near-simultaneous positive verdicts cannot both dispatch.
================================================================================
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Optional, Set

from ..core.config import SessionConfig, TranscriptionConfig, session_cfg
from ..core.errors import ChannelClosed, ChannelError, ChannelUnavailable, ClassifierError
from ..core.interfaces import AlertSink, Transcriber, TranscriptionChannel
from ..core.latency import LatencyTracer
from ..core.models import AudioFrame, SessionTelemetry, TranscriptEvent, Verdict
from ..core.signals import SignalType, StreamSignal
from ..core.state_machine import CallState, CallStateMachine
from ..processing.classifier import ClassifierGate

logger = logging.getLogger("callguard.session")


class CallSession:
    """
    Owns one call's lifecycle and its transcription channel.

    Lifecycle:
        session = CallSession("ab12", transcriber, gate, dispatcher)
        await session.handle_signal(parse_signal(raw))   # per bridge frame
        await session.close()                            # on disconnect
    """

    def __init__(
        self,
        session_id: str,
        transcriber: Transcriber,
        gate: ClassifierGate,
        dispatcher: AlertSink,
        config: SessionConfig = session_cfg,
        transcription_config: Optional[TranscriptionConfig] = None,
    ) -> None:
        self.session_id = session_id
        self.telemetry = SessionTelemetry(session_id=session_id)

        self._transcriber = transcriber
        self._gate = gate
        self._dispatcher = dispatcher
        self._config = config
        self._transcription_config = transcription_config

        self._machine = CallStateMachine(
            label=session_id, on_transition=self._on_state_transition,
        )
        self._latency = LatencyTracer(session_id)

        # Non-null iff STREAMING
        self._channel: Optional[TranscriptionChannel] = None
        self._alert_latch = False
        self._call_key = ""
        self._last_classified_text = ""

        self._consumer_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

    # ── Introspection ───────────────────────────────────────────────────

    @property
    def state(self) -> CallState:
        return self._machine.state

    @property
    def alert_latched(self) -> bool:
        return self._alert_latch

    @property
    def call_key(self) -> str:
        return self._call_key

    @property
    def has_channel(self) -> bool:
        return self._channel is not None

    @property
    def pending_tasks(self) -> Set[asyncio.Task]:
        return set(self._pending)

    @property
    def history(self) -> List[Dict[str, Any]]:
        return self._machine.history

    def latency(self) -> Dict[str, Any]:
        return self._latency.summary()

    def _on_state_transition(self, prev: CallState, new: CallState, reason: str) -> None:
        self.telemetry.state = new.value

    # ── Signal entry point ──────────────────────────────────────────────

    async def handle_signal(self, signal: StreamSignal) -> None:
        """Route one decoded bridge signal. Never raises for backend failures."""
        if self._machine.is_terminal:
            if signal.type is not SignalType.MEDIA:
                logger.info(f"[{self.session_id}] Ignoring {signal.type.value} in stopped session")
            else:
                self.telemetry.frames_ignored += 1
            return

        if signal.type is SignalType.CONNECTED:
            logger.info(f"[{self.session_id}] ✅ Call connected")
        elif signal.type is SignalType.START:
            await self.start(
                signal.stream_id,
                call_key=self.derive_call_key(signal),
                call_sid=signal.call_sid,
            )
        elif signal.type is SignalType.MEDIA:
            if signal.frame is not None:
                await self.feed(signal.frame)
        elif signal.type is SignalType.STOP:
            logger.info(f"[{self.session_id}] 🛑 Call ended, stopping stream")
            await self.stop(reason="stop_signal")

    def derive_call_key(self, signal: StreamSignal) -> str:
        key = signal.custom_parameters.get(self._config.call_key_parameter, "").strip()
        return key or f"{self._config.call_key_prefix}{signal.stream_id}"

    # ── IDLE → STREAMING ────────────────────────────────────────────────

    async def start(self, stream_id: str, call_key: str = "", call_sid: str = "") -> None:
        if not self._machine.can_transition(CallState.STREAMING):
            logger.info(
                f"[{self.session_id}] Ignoring start for {stream_id} "
                f"in {self.state.value} state"
            )
            return

        logger.info(f"[{self.session_id}] 🚀 Starting stream {stream_id}")
        self.telemetry.stream_id = stream_id
        self.telemetry.call_sid = call_sid
        self._call_key = call_key or f"{self._config.call_key_prefix}{stream_id}"
        self.telemetry.call_key = self._call_key

        try:
            channel = await self._transcriber.open(
                self._transcription_config, label=self.session_id,
            )
        except ChannelUnavailable as e:
            logger.error(f"[{self.session_id}] ❌ Transcription unavailable: {e}")
            self._machine.transition(CallState.STOPPED, reason="channel_unavailable")
            return

        # stop() may have run while the channel was opening
        if self.state is not CallState.IDLE:
            await channel.close()
            return

        self._alert_latch = False
        self.telemetry.alert_latched = False
        self._last_classified_text = ""
        self._channel = channel
        self._machine.transition(CallState.STREAMING, reason=f"start:{stream_id}")
        self._latency.mark("stream_started")

        self._consumer_task = asyncio.create_task(
            self._consume_transcripts(channel), name=f"transcripts-{self.session_id}",
        )

    # ── STREAMING: audio relay ──────────────────────────────────────────

    async def feed(self, frame: AudioFrame) -> None:
        channel = self._channel
        if self.state is not CallState.STREAMING or channel is None:
            self.telemetry.frames_ignored += 1
            return
        try:
            await channel.send(frame.payload)
            self.telemetry.frames_forwarded += 1
        except ChannelClosed as e:
            logger.warning(f"[{self.session_id}] Channel closed under send: {e}")
            await self.stop(reason="channel_closed")

    # ── STREAMING: transcript consumption ───────────────────────────────

    async def _consume_transcripts(self, channel: TranscriptionChannel) -> None:
        try:
            async for event in channel.events():
                self._on_transcript(event)
        except asyncio.CancelledError:
            raise
        except (ChannelError, ChannelClosed) as e:
            logger.error(f"[{self.session_id}] ❌ Speech-to-Text error: {e}")
            await self.stop(reason="channel_error")
            return
        except Exception as e:
            logger.error(f"[{self.session_id}] Transcript consumer failed: {e}", exc_info=True)
            await self.stop(reason="consumer_error")
            return

        if self.state is CallState.STREAMING:
            logger.info(f"[{self.session_id}] Transcript stream ended upstream")
            await self.stop(reason="channel_ended")

    def _on_transcript(self, event: TranscriptEvent) -> None:
        if self.state is not CallState.STREAMING:
            return
        self.telemetry.transcripts_received += 1
        self._latency.mark("first_transcript")

        if self._alert_latch:
            # Alert already fired; analysis is over for this call
            self.telemetry.transcripts_suppressed += 1
            return

        logger.info(f"[{self.session_id}] 📝 Transcription: {event.text}")

        if not self._gate.should_classify(event.text):
            return
        if not event.is_final and not self._config.classify_interim_results:
            return
        if event.text == self._last_classified_text:
            return

        self._last_classified_text = event.text
        self._latency.mark("first_trigger")
        logger.info(
            f"[{self.session_id}] ⚠️ Trigger phrase "
            f"'{self._gate.trigger_phrase}' found, classifying"
        )
        self.telemetry.classifications_requested += 1
        task = asyncio.create_task(
            self._classify(event), name=f"classify-{self.session_id}",
        )
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _classify(self, event: TranscriptEvent) -> None:
        try:
            verdict = await self._gate.classify(event.text)
        except ClassifierError as e:
            self.telemetry.classifications_failed += 1
            logger.error(f"[{self.session_id}] ❌ Error with AI analysis: {e}")
            verdict = Verdict.NOT_SUSPECTED

        self._latency.mark("first_verdict")
        logger.info(f"[{self.session_id}] Verdict {verdict.value} for {event.text!r}")

        if not verdict.is_fraud:
            return
        if not self._trip_alert_latch():
            self.telemetry.verdicts_discarded += 1
            logger.info(f"[{self.session_id}] Positive verdict discarded (latched or stopped)")
            return

        await self._dispatch_alert()

    def _trip_alert_latch(self) -> bool:
        """Compare-and-set. True only for the single caller that flips the latch."""
        if self._alert_latch or self.state is not CallState.STREAMING:
            return False
        self._alert_latch = True
        self.telemetry.alert_latched = True
        return True

    async def _dispatch_alert(self) -> None:
        logger.warning(f"[{self.session_id}] 🚨 Fraud suspected, alerting {self._call_key}")
        try:
            outcome = await self._dispatcher.dispatch(self._call_key)
        except Exception as e:
            # Dispatchers report failures in the outcome; this is a last resort
            logger.error(f"[{self.session_id}] Alert dispatch raised: {e}", exc_info=True)
            return
        self.telemetry.alerts_dispatched += 1
        self._latency.mark("alert_dispatched")
        if outcome.errors:
            logger.warning(f"[{self.session_id}] Alert partially failed: {outcome.errors}")

    # ── → STOPPED ───────────────────────────────────────────────────────

    async def stop(self, reason: str = "stop") -> None:
        """Idempotent. Releases the channel exactly once."""
        if self._machine.is_terminal:
            return

        channel, self._channel = self._channel, None
        self._machine.transition(CallState.STOPPED, reason=reason)

        consumer, self._consumer_task = self._consumer_task, None
        if consumer is not None and consumer is not asyncio.current_task() and not consumer.done():
            consumer.cancel()

        if channel is not None:
            try:
                await channel.close()
                logger.info(f"[{self.session_id}] ✅ Recognize stream stopped")
            except Exception as e:
                logger.error(f"[{self.session_id}] Channel close failed: {e}")

        if consumer is not None and consumer is not asyncio.current_task():
            await asyncio.gather(consumer, return_exceptions=True)

    async def close(self) -> None:
        """Connection closed: stop whatever state the session is in."""
        await self.stop(reason="connection_closed")

    async def wait_pending(self) -> None:
        """Wait for in-flight classifications (and any alert they trigger)."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def note_malformed(self) -> None:
        self.telemetry.malformed_signals += 1
