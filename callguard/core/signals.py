"""
CallGuard: Bridge Signal Codec

Decodes Twilio Media Streams frames into typed signals.

Bridge → Server messages:
  { event: "connected", protocol: "Call", version: "1.0.0" }
  { event: "start", streamSid, start: { streamSid, callSid, customParameters } }
  { event: "media", streamSid, media: { payload: <base64>, chunk, timestamp, track } }
  { event: "stop", streamSid, stop: { callSid } }
"""

from __future__ import annotations

import base64
import binascii
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional

from .errors import MalformedSignal
from .models import AudioFrame


class SignalType(str, Enum):
    CONNECTED = "connected"
    START = "start"
    MEDIA = "media"
    STOP = "stop"


@dataclass
class StreamSignal:
    type: SignalType
    stream_id: str = ""
    call_sid: str = ""
    custom_parameters: Dict[str, str] = field(default_factory=dict)
    frame: Optional[AudioFrame] = None
    sequence: Optional[int] = None


def _int_or_none(value: Any) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def parse_signal(raw: str | bytes | None) -> StreamSignal:
    """Decode one bridge frame. Raises MalformedSignal on anything unusable."""
    if not raw:
        raise MalformedSignal("empty frame")
    try:
        msg = json.loads(raw)
    except ValueError as e:  # JSONDecodeError, UnicodeDecodeError
        raise MalformedSignal(f"invalid JSON: {e}") from e

    if not isinstance(msg, dict):
        raise MalformedSignal(f"expected an object, got {type(msg).__name__}")

    event = msg.get("event")
    try:
        kind = SignalType(event)
    except ValueError:
        raise MalformedSignal(f"unknown event {event!r}") from None

    sequence = _int_or_none(msg.get("sequenceNumber"))
    stream_id = msg.get("streamSid") or ""

    if kind is SignalType.CONNECTED:
        return StreamSignal(type=kind, sequence=sequence)

    if kind is SignalType.START:
        start = msg.get("start")
        if not isinstance(start, dict):
            raise MalformedSignal("start event without start block")
        stream_id = start.get("streamSid") or stream_id
        if not stream_id:
            raise MalformedSignal("start event without streamSid")
        params = start.get("customParameters") or {}
        if not isinstance(params, dict):
            raise MalformedSignal("customParameters is not an object")
        return StreamSignal(
            type=kind,
            stream_id=stream_id,
            call_sid=start.get("callSid") or "",
            custom_parameters={str(k): str(v) for k, v in params.items()},
            sequence=sequence,
        )

    if kind is SignalType.MEDIA:
        media = msg.get("media")
        if not isinstance(media, dict) or "payload" not in media:
            raise MalformedSignal("media event without payload")
        try:
            payload = base64.b64decode(media["payload"], validate=True)
        except (binascii.Error, TypeError, ValueError) as e:
            raise MalformedSignal(f"payload is not base64: {e}") from e
        frame = AudioFrame(
            payload=payload,
            chunk=_int_or_none(media.get("chunk")),
            timestamp_ms=_int_or_none(media.get("timestamp")),
            track=media.get("track") or "inbound",
        )
        return StreamSignal(type=kind, stream_id=stream_id, frame=frame, sequence=sequence)

    stop = msg.get("stop") if isinstance(msg.get("stop"), dict) else {}
    return StreamSignal(
        type=kind,
        stream_id=stream_id,
        call_sid=stop.get("callSid") or "",
        sequence=sequence,
    )
