"""
Route registration for the voice session API.

Responsibilities:
- Define HTTP control endpoints and the observer WebSocket
- Translate requests into VoiceSession operations
- Pull dependencies from app.state
"""

from __future__ import annotations

import asyncio
from typing import Any

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect

from constants import OBSERVER_QUEUE_MAX_ITEMS
from errors import SessionAlreadyActiveError
from observability.logger import log_event
from orchestrator.enums.state import ConnectionState
from orchestrator.notifications import (
    AssistantResponseUpdated,
    ConnectionStateChanged,
    ErrorReported,
    ListeningChanged,
    Notification,
    SpeakingChanged,
    TranscriptReceived,
    notification_to_json,
)
from session.camera import LatestFrameCamera
from session.gateway import SessionGateway
from session.observers import SessionObserver


class QueueObserver(SessionObserver):
    """
    Buffers notifications as JSON for one display client.

    Bounded; a client that falls behind loses the oldest notifications.
    """

    def __init__(self, maxsize: int = OBSERVER_QUEUE_MAX_ITEMS) -> None:
        self.queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def _put(self, notification: Notification) -> None:
        if self.queue.full():
            self.queue.get_nowait()
            self.dropped += 1
        self.queue.put_nowait(notification_to_json(notification))

    def on_connection_state_changed(self, state: ConnectionState) -> None:
        self._put(ConnectionStateChanged(state))

    def on_transcript(self, text: str) -> None:
        self._put(TranscriptReceived(text))

    def on_assistant_response(self, text: str) -> None:
        self._put(AssistantResponseUpdated(text))

    def on_error(self, message: str) -> None:
        self._put(ErrorReported(message))

    def on_speaking_changed(self, speaking: bool) -> None:
        self._put(SpeakingChanged(speaking))

    def on_listening_changed(self, listening: bool) -> None:
        self._put(ListeningChanged(listening))


def register_routes(app: FastAPI) -> None:
    """Register all routes on the FastAPI app."""

    def _gateway() -> SessionGateway:
        return app.state.gateway

    @app.get("/health")
    async def health() -> dict[str, str]: # pyright: ignore[reportUnusedFunction]
        return {"status": "ok"}

    @app.get("/session")
    async def get_session() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = _gateway().session
        return {"session": session.snapshot() if session else None}

    @app.post("/session")
    async def new_session() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        try:
            session = await _gateway().create_session()
        except SessionAlreadyActiveError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        return {"session": session.snapshot()}

    @app.post("/session/connect")
    async def connect() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = await _gateway().get_or_create_session()
        await session.connect()
        return {"session": session.snapshot()}

    @app.post("/session/disconnect")
    async def disconnect() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = _gateway().session
        if session is None:
            return {"session": None}
        await session.disconnect()
        return {"session": session.snapshot()}

    @app.post("/session/listen/start")
    async def start_listening() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = await _gateway().get_or_create_session()
        await session.start_listening()
        return {"session": session.snapshot()}

    @app.post("/session/listen/stop")
    async def stop_listening() -> dict[str, Any]: # pyright: ignore[reportUnusedFunction]
        session = _gateway().session
        if session is None:
            return {"session": None}
        await session.stop_listening()
        return {"session": session.snapshot()}

    @app.post("/session/camera-frame")
    async def camera_frame(request: Request) -> dict[str, int]: # pyright: ignore[reportUnusedFunction]
        """Store the latest camera JPEG (raw request body)."""
        jpeg_bytes = await request.body()
        camera: LatestFrameCamera = app.state.camera
        camera.set_frame(jpeg_bytes)
        return {"bytes": len(jpeg_bytes)}

    @app.websocket("/ws/observe")
    async def observe(ws: WebSocket) -> None: # pyright: ignore[reportUnusedFunction]
        """
        Stream session notifications to a display client.

        The first message is a snapshot; every following message is one
        notification as JSON. Client messages are ignored.
        """
        await ws.accept()

        gateway = _gateway()
        session = await gateway.get_or_create_session()
        observer = QueueObserver()
        # Follows sessions created later through POST /session
        unsubscribe = gateway.subscribe(observer)

        async def _pump() -> None:
            while True:
                await ws.send_json(await observer.queue.get())

        sender: asyncio.Task[None] | None = None
        try:
            await ws.send_json({"type": "snapshot", "session": session.snapshot()})
            sender = asyncio.create_task(_pump())

            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    break

        except WebSocketDisconnect:
            pass

        except Exception as exc:  # pylint: disable=broad-exception-caught
            log_event({
                "event_type": "OBSERVER_WS_ERROR",
                "session_id": session.session_id,
                "exception": type(exc).__name__,
                "message": str(exc),
            })

        finally:
            unsubscribe()
            if sender is not None:
                sender.cancel()
                (result,) = await asyncio.gather(sender, return_exceptions=True)
                if isinstance(result, Exception):
                    log_event({
                        "event_type": "OBSERVER_WS_SEND_FAILED",
                        "session_id": session.session_id,
                        "exception": type(result).__name__,
                        "message": str(result),
                        "dropped": observer.dropped,
                    })
