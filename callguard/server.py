"""
CallGuard: FastAPI Server

================================================================================
Architecture:
  • Twilio Media Streams connect over WebSocket, one CallSession per
    connection, registered in a SessionRegistry
  • Audio frames are forwarded to Google Cloud Speech streaming recognition
  • Transcript fragments containing the trigger phrase are classified by an
    OpenAI chat model, off the audio path
  • A positive verdict trips the session's one-way alert latch and sends a
    Twilio SMS + conference announcement, at most once per call
  • Backend clients are built once in the lifespan and injected
================================================================================

Endpoints:
  WS  {MEDIA_STREAM_PATH}     media stream from the telephony bridge (default /)
  GET /health                 server health
  GET /sessions               live sessions with telemetry
  GET /session/{session_id}   single session detail + latency trace

Bridge → Server messages:
  { event: "connected" }                       → log
  { event: "start", start: { streamSid } }     → open transcription channel
  { event: "media", media: { payload } }       → forward audio
  { event: "stop" }                            → release channel
"""

from __future__ import annotations

import logging
import uuid
from contextlib import asynccontextmanager
from typing import Any, Dict, Optional

from fastapi import FastAPI, WebSocket, WebSocketDisconnect
from fastapi.responses import JSONResponse

from .core.config import alert_cfg, classifier_cfg, server_cfg, session_cfg
from .core.errors import MalformedSignal
from .core.signals import parse_signal
from .services.registry import SessionRegistry, build_registry

VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logger = logging.getLogger("callguard")
logging.basicConfig(
    level=logging.DEBUG if server_cfg.debug else logging.INFO,
    format="%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
)


def create_app(registry: Optional[SessionRegistry] = None) -> FastAPI:
    """Build the app. Pass a registry to inject backends (tests do)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 CallGuard starting...")
        if app.state.registry is None:
            app.state.registry = build_registry()
        logger.info(f"   Trigger phrase: '{session_cfg.trigger_phrase}'")
        logger.info(f"   Twilio configured: {alert_cfg.has_twilio_credentials}")
        logger.info(f"🎧 Listening for media streams on {server_cfg.media_stream_path}")
        yield
        logger.info("🛑 Shutting down, closing all sessions...")
        await app.state.registry.close_all()
        logger.info("🛑 CallGuard stopped")

    app = FastAPI(
        title="CallGuard: Real-Time Call Fraud Detection",
        version=VERSION,
        description=(
            "Listens to live call audio, transcribes it, classifies suspicious "
            "fragments and alerts the callee once per call."
        ),
        lifespan=lifespan,
    )
    app.state.registry = registry

    # -----------------------------------------------------------------------
    # REST Endpoints
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health():
        reg: Optional[SessionRegistry] = app.state.registry
        return {
            "status": "ok",
            "version": VERSION,
            "active_sessions": reg.active_count if reg else 0,
            "trigger_phrase": session_cfg.trigger_phrase,
            "classifier_model": classifier_cfg.model,
            "twilio_configured": alert_cfg.has_twilio_credentials,
        }

    @app.get("/sessions")
    async def list_sessions():
        reg: Optional[SessionRegistry] = app.state.registry
        result: Dict[str, Any] = {}
        if reg is None:
            return result
        for sid, session in reg.all_sessions.items():
            result[sid] = {
                "state": session.state.value,
                "telemetry": session.telemetry.to_dict(),
            }
        return result

    @app.get("/session/{session_id}")
    async def session_detail(session_id: str):
        reg: Optional[SessionRegistry] = app.state.registry
        session = reg.get(session_id) if reg else None
        if session is None:
            return JSONResponse(status_code=404, content={"error": "session not found"})
        return {
            "session_id": session_id,
            "state": session.state.value,
            "alert_latched": session.alert_latched,
            "telemetry": session.telemetry.to_dict(),
            "latency": session.latency(),
            "transitions": session.history,
        }

    # -----------------------------------------------------------------------
    # WebSocket: per-call media stream
    # -----------------------------------------------------------------------

    @app.websocket(server_cfg.media_stream_path)
    async def media_stream(ws: WebSocket):
        """
        One CallSession per connection. Malformed frames and per-message
        failures are logged and the connection keeps going.
        """
        await ws.accept()

        reg: SessionRegistry = app.state.registry
        session_id = uuid.uuid4().hex[:12]
        session = reg.create(session_id)
        logger.info(f"[{session_id}] 🔵 New WebSocket connection established")

        try:
            while True:
                message = await ws.receive()
                if message["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(message.get("code", 1000))
                # Twilio sends text frames; binary ones go through the same codec
                raw = message.get("text")
                if raw is None:
                    raw = message.get("bytes")

                try:
                    signal = parse_signal(raw)
                except MalformedSignal as e:
                    session.note_malformed()
                    logger.warning(f"[{session_id}] Malformed signal ignored: {e}")
                    continue

                try:
                    await session.handle_signal(signal)
                except Exception as e:
                    logger.error(f"[{session_id}] ❌ Error processing message: {e}", exc_info=True)

        except WebSocketDisconnect:
            logger.info(f"[{session_id}] 🔴 WebSocket connection closed")
        except Exception as e:
            logger.error(f"[{session_id}] WebSocket error: {e}", exc_info=True)
        finally:
            await reg.close_session(session_id)

    return app


app = create_app()


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main() -> None:
    import uvicorn
    uvicorn.run(
        "callguard.server:app",
        host=server_cfg.host,
        port=server_cfg.port,
        log_level="debug" if server_cfg.debug else "info",
    )


if __name__ == "__main__":
    main()
