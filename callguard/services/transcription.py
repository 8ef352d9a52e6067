"""
CallGuard: Transcription Channel Adapter

Wraps one bidirectional Google Cloud Speech `streaming_recognize` call:

  send(audio)  → queued as StreamingRecognizeRequest(audio_content=...)
  events()     → StreamingRecognizeResponse mapped to TranscriptEvent
  close()      → half-closes the request stream and cancels the RPC

The first request on the stream always carries the recognition config.
Upstream failures surface as ChannelError from events(); nothing is
silently truncated.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, AsyncIterator, Optional

from google.api_core.exceptions import GoogleAPICallError
from google.auth.exceptions import GoogleAuthError
from google.cloud import speech

from ..core.config import TranscriptionConfig, transcription_cfg
from ..core.errors import ChannelClosed, ChannelError, ChannelUnavailable
from ..core.models import TranscriptEvent

logger = logging.getLogger("callguard.transcription")

# Sentinel that ends the request generator
_END = None


def build_streaming_config(config: TranscriptionConfig) -> speech.StreamingRecognitionConfig:
    """Translate our config section into the backend's streaming config."""
    try:
        encoding = speech.RecognitionConfig.AudioEncoding[config.encoding.upper()]
    except KeyError:
        raise ChannelUnavailable(f"Unsupported audio encoding: {config.encoding}") from None

    recognition = speech.RecognitionConfig(
        encoding=encoding,
        sample_rate_hertz=config.sample_rate_hertz,
        language_code=config.language_code,
        use_enhanced=config.use_enhanced,
    )
    if config.model:
        recognition.model = config.model

    return speech.StreamingRecognitionConfig(
        config=recognition,
        interim_results=config.interim_results,
    )


def response_to_event(response: Any) -> Optional[TranscriptEvent]:
    """Best-first mapping: first alternative of the first result, or None."""
    results = getattr(response, "results", None)
    if not results:
        return None
    result = results[0]
    if not result.alternatives:
        return None
    best = result.alternatives[0]
    text = (best.transcript or "").strip()
    if not text:
        return None
    return TranscriptEvent(
        text=text,
        is_final=bool(result.is_final),
        confidence=float(best.confidence or 0.0),
    )


# ═══════════════════════════════════════════════════════════════════════════
# Channel: one streaming RPC per call
# ═══════════════════════════════════════════════════════════════════════════

class GoogleSpeechChannel:
    """
    One duplex streaming connection for the life of a call.

    Lifecycle:
        channel = await transcriber.open()
        await channel.send(frame_bytes)
        async for event in channel.events(): ...
        await channel.close()
    """

    def __init__(self, label: str = "", max_buffered: int = 250) -> None:
        self._label = label
        # Room for the end sentinel next to a sender woken by close()
        self._audio: asyncio.Queue[Optional[bytes]] = asyncio.Queue(maxsize=max(max_buffered, 2))
        self._call: Any = None
        self._closed = False
        self._frames_sent = 0

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def frames_sent(self) -> int:
        return self._frames_sent

    async def _requests(
        self, streaming_config: speech.StreamingRecognitionConfig,
    ) -> AsyncIterator[speech.StreamingRecognizeRequest]:
        yield speech.StreamingRecognizeRequest(streaming_config=streaming_config)
        while True:
            chunk = await self._audio.get()
            if chunk is _END:
                return
            yield speech.StreamingRecognizeRequest(audio_content=chunk)

    async def _connect(self, client: Any, streaming_config: speech.StreamingRecognitionConfig) -> None:
        try:
            self._call = await client.streaming_recognize(
                requests=self._requests(streaming_config),
            )
        except (GoogleAPICallError, GoogleAuthError) as e:
            self._closed = True
            raise ChannelUnavailable(f"Speech backend rejected stream: {e}") from e

    async def send(self, audio: bytes) -> None:
        if self._closed:
            raise ChannelClosed("send on closed transcription channel")
        # Blocks while the request stream is stalled; the caller stops reading the socket
        await self._audio.put(audio)
        self._frames_sent += 1

    async def events(self) -> AsyncIterator[TranscriptEvent]:
        if self._call is None:
            raise ChannelClosed("transcription channel was never opened")
        try:
            async for response in self._call:
                event = response_to_event(response)
                if event is not None:
                    yield event
        except (GoogleAPICallError, GoogleAuthError) as e:
            if self._closed:
                return  # RPC torn down by close()
            self._closed = True
            raise ChannelError(f"Speech stream failed: {e}") from e

    def _end_requests(self) -> None:
        """Drop unsent audio and queue the sentinel. Never blocks."""
        while not self._audio.empty():
            self._audio.get_nowait()
        self._audio.put_nowait(_END)

    async def close(self) -> None:
        if self._closed and self._call is None:
            return
        already = self._closed
        self._closed = True
        if not already:
            self._end_requests()
        call, self._call = self._call, None
        if call is not None:
            call.cancel()
            logger.info(
                f"[{self._label}] Transcription channel closed "
                f"({self._frames_sent} frames sent)"
            )


# ═══════════════════════════════════════════════════════════════════════════
# Transcriber: opens channels against one shared async client
# ═══════════════════════════════════════════════════════════════════════════

class GoogleSpeechTranscriber:
    """Opens GoogleSpeechChannel instances. Client is created on first use."""

    def __init__(
        self,
        client: Any = None,
        config: TranscriptionConfig = transcription_cfg,
    ) -> None:
        self._client = client
        self._config = config

    def _get_client(self) -> Any:
        if self._client is None:
            try:
                self._client = speech.SpeechAsyncClient()
            except GoogleAuthError as e:
                raise ChannelUnavailable(f"Speech credentials unavailable: {e}") from e
        return self._client

    async def open(
        self,
        config: Optional[TranscriptionConfig] = None,
        label: str = "",
    ) -> GoogleSpeechChannel:
        cfg = config or self._config
        streaming_config = build_streaming_config(cfg)
        channel = GoogleSpeechChannel(label=label, max_buffered=cfg.send_queue_frames)
        await channel._connect(self._get_client(), streaming_config)
        logger.info(
            f"[{label}] Transcription channel open "
            f"({cfg.encoding}/{cfg.sample_rate_hertz}Hz/{cfg.language_code}, "
            f"interim={cfg.interim_results})"
        )
        return channel
