"""Main FastAPI application entry point."""

from __future__ import annotations

import asyncio
import base64
import binascii
import contextlib
import logging
from typing import Any, Awaitable

from fastapi import FastAPI, HTTPException, WebSocket, WebSocketDisconnect

from .analysis.client import GeminiVisionClient
from .analysis.collaborators import LatestFrameSource, QueueVoiceSink
from .analysis.orchestrator import AnalysisOrchestrator
from .analysis.protocol import (
    CLIENT_ANALYZE,
    CLIENT_REPORT,
    CLIENT_STOP,
    CLIENT_VIDEO,
    SERVER_ERROR,
    SERVER_STATUS,
    SERVER_SUMMARY,
    OperatingMode,
)
from .auth import init_firebase, resolve_identity
from .db import init_db
from .events import SqlEventStore, router as events_router
from .settings import settings


logger = logging.getLogger("omnitech")

app = FastAPI(title="OmniTech Field Backend", version="0.3.0")
app.include_router(events_router)
app.state.persistence_ready = False


@app.on_event("startup")
async def startup_event() -> None:
    """Initialise Firebase and create the events table if possible."""
    init_firebase()
    try:
        await init_db()
        app.state.persistence_ready = True
    except Exception as exc:
        app.state.persistence_ready = False
        logger.warning("Database unavailable, safety events will not be persisted: %s", exc)
    logger.info(
        "Startup complete; inference configured=%s; model=%s; persistence=%s",
        settings.inference_configured,
        settings.model_id,
        app.state.persistence_ready,
    )


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health endpoint to confirm the service is up."""
    return {"status": "ok"}


@app.get("/api/config")
async def client_config() -> dict[str, object]:
    """Expose the non-secret limits the client needs to render its controls."""
    return {
        "modes": [mode.value for mode in OperatingMode],
        "model_id": settings.model_id,
        "inference_configured": settings.inference_configured,
        "cooldown_seconds": settings.cooldown_seconds,
        "max_calls_per_minute": settings.max_calls_per_minute,
        "allow_anonymous": settings.allow_anonymous,
    }


def _decode_b64_payload(message: dict, field_name: str = "data_b64") -> bytes:
    data_b64 = message.get(field_name)
    if not isinstance(data_b64, str) or not data_b64:
        raise ValueError(f"Missing {field_name}")
    try:
        return base64.b64decode(data_b64, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValueError(f"Invalid base64 payload in {field_name}") from exc


def _parse_mode(message: dict) -> OperatingMode:
    raw_mode = str(message.get("mode", "")).strip().lower()
    try:
        return OperatingMode(raw_mode)
    except ValueError as exc:
        raise ValueError(f"Unsupported operating mode: {raw_mode or '<empty>'}") from exc


async def _pump_outbound(ws: WebSocket, outbound: asyncio.Queue[dict[str, Any] | None]) -> None:
    while True:
        event = await outbound.get()
        if event is None:
            return
        try:
            await ws.send_json(event)
        except (WebSocketDisconnect, RuntimeError) as exc:
            logger.info("Field websocket closed while sending %s: %s", event.get("type"), exc)
            return


def _log_task_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Field session task failed", exc_info=exc)


@app.websocket("/ws/field")
async def websocket_endpoint(ws: WebSocket) -> None:
    """Handle one field session: frames in, safety-gated guidance out."""
    await ws.accept()

    token = ws.query_params.get("token", "").strip()
    try:
        user_id = await resolve_identity(token, allow_anonymous=settings.allow_anonymous)
    except HTTPException as exc:
        await ws.send_json({"type": SERVER_ERROR, "message": exc.detail})
        await ws.close(code=1008)
        return
    except Exception as exc:
        logger.exception("Failed to validate field session identity: %s", exc)
        await ws.send_json({"type": SERVER_ERROR, "message": "Unable to validate the field session"})
        await ws.close(code=1011)
        return

    outbound: asyncio.Queue[dict[str, Any] | None] = asyncio.Queue()
    frames = LatestFrameSource(max_age_seconds=settings.frame_max_age_seconds)
    persistence_ready = bool(getattr(ws.app.state, "persistence_ready", False))
    orchestrator = AnalysisOrchestrator(
        service=GeminiVisionClient.from_settings(settings),
        frame_source=frames,
        voice=QueueVoiceSink(outbound),
        event_store=SqlEventStore() if user_id and persistence_ready else None,
        user_id=user_id,
        config=settings,
        notify=outbound.put_nowait,
    )
    sender_task = asyncio.create_task(_pump_outbound(ws, outbound))
    work: set[asyncio.Task] = set()

    def spawn(coro: Awaitable[Any]) -> None:
        task = asyncio.ensure_future(coro)
        work.add(task)
        task.add_done_callback(work.discard)
        task.add_done_callback(_log_task_failure)

    outbound.put_nowait({"type": SERVER_STATUS, "connected": True, "anonymous": user_id is None, **orchestrator.snapshot()})
    logger.info("Field session started for %s", orchestrator.session_label)

    try:
        while True:
            try:
                message = await ws.receive_json()
            except WebSocketDisconnect:
                break
            except (ValueError, TypeError):
                outbound.put_nowait({"type": SERVER_ERROR, "message": "Malformed JSON message"})
                continue

            if not isinstance(message, dict):
                outbound.put_nowait({"type": SERVER_ERROR, "message": "Messages must be JSON objects"})
                continue

            message_type = str(message.get("type", "")).strip()
            try:
                if message_type == CLIENT_VIDEO:
                    frames.push(_decode_b64_payload(message))
                elif message_type == CLIENT_ANALYZE:
                    text = message.get("text")
                    spawn(orchestrator.trigger_analysis(_parse_mode(message), text if isinstance(text, str) else None))
                elif message_type == CLIENT_REPORT:
                    spawn(orchestrator.generate_report())
                elif message_type == CLIENT_STOP:
                    break
                else:
                    outbound.put_nowait({"type": SERVER_ERROR, "message": f"Unsupported message type: {message_type}"})
            except ValueError as exc:
                outbound.put_nowait({"type": SERVER_ERROR, "message": str(exc)})
    except Exception as exc:
        logger.exception("Unexpected error in /ws/field: %s", exc)
        outbound.put_nowait({"type": SERVER_ERROR, "message": f"Field session error: {exc}"})
    finally:
        if work:
            await asyncio.gather(*tuple(work), return_exceptions=True)
        await orchestrator.drain()
        outbound.put_nowait({"type": SERVER_SUMMARY, **orchestrator.snapshot()})
        outbound.put_nowait(None)
        await sender_task
        with contextlib.suppress(RuntimeError):
            await ws.close()
        logger.info("Field session ended for %s", orchestrator.session_label)
