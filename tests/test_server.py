"""HTTP and WebSocket surface with fake backends injected."""

from __future__ import annotations

import base64
import json

import pytest
from fastapi.testclient import TestClient

from callguard.core.config import server_cfg
from callguard.processing.classifier import ClassifierGate
from callguard.server import create_app
from callguard.services.registry import SessionRegistry

from conftest import RecordingDispatcher, StubClassifier


@pytest.fixture
def registry(session_config, transcriber):
    return SessionRegistry(
        transcriber=transcriber,
        gate=ClassifierGate(StubClassifier(), config=session_config),
        dispatcher=RecordingDispatcher(),
        config=session_config,
    )


def test_health(registry):
    with TestClient(create_app(registry)) as client:
        body = client.get("/health").json()

    assert body["status"] == "ok"
    assert body["active_sessions"] == 0


def test_unknown_session_is_404(registry):
    with TestClient(create_app(registry)) as client:
        assert client.get("/sessions").json() == {}
        response = client.get("/session/nope")

    assert response.status_code == 404


def test_media_stream_forwards_audio_and_releases_channel(registry, transcriber):
    frames = [
        {"event": "connected", "protocol": "Call", "version": "1.0.0"},
        {"event": "start", "streamSid": "MZ1", "start": {
            "streamSid": "MZ1", "callSid": "CA1", "customParameters": {"conferenceName": "Conf-1"},
        }},
        {"event": "media", "streamSid": "MZ1", "media": {
            "payload": base64.b64encode(b"\x00\x01").decode(), "chunk": "1", "timestamp": "20",
        }},
        {"event": "stop", "streamSid": "MZ1"},
    ]

    with TestClient(create_app(registry)) as client:
        with client.websocket_connect(server_cfg.media_stream_path) as ws:
            ws.send_text(json.dumps(frames[0]))
            ws.send_text("not json")
            for frame in frames[1:]:
                ws.send_text(json.dumps(frame))

    assert len(transcriber.channels) == 1
    channel = transcriber.channels[0]
    assert channel.sent == [b"\x00\x01"]
    assert channel.close_calls == 1
    assert registry.active_count == 0


def test_binary_frame_is_skipped_and_call_continues(registry, transcriber):
    start = {"event": "start", "streamSid": "MZ1", "start": {"streamSid": "MZ1", "callSid": "CA1"}}
    media = {"event": "media", "streamSid": "MZ1", "media": {"payload": base64.b64encode(b"ab").decode()}}

    with TestClient(create_app(registry)) as client:
        with client.websocket_connect(server_cfg.media_stream_path) as ws:
            ws.send_text(json.dumps(start))
            ws.send_bytes(b"\x00garbage")
            ws.send_text(json.dumps(media))

    channel = transcriber.channels[0]
    assert channel.sent == [b"ab"]
    assert channel.close_calls == 1


def test_session_detail_includes_transitions(registry):
    registry.create("abc123")

    with TestClient(create_app(registry)) as client:
        body = client.get("/session/abc123").json()

    assert body["state"] == "idle"
    assert body["transitions"] == []
    assert body["telemetry"]["session_id"] == "abc123"
