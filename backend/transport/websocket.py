"""
Websocket implementation of DuplexTransport (websockets asyncio client).
"""

from __future__ import annotations

import asyncio
from typing import AsyncIterator

from websockets.asyncio.client import ClientConnection, connect as ws_connect
from websockets.exceptions import ConnectionClosed, WebSocketException

from constants import TRANSPORT_CLOSE_TIMEOUT_S
from errors import TransportClosedError, TransportError
from observability.logger import log_event
from transport.base import DuplexTransport


class WebSocketTransport(DuplexTransport):
    """Single websocket connection to the realtime endpoint."""

    def __init__(
        self,
        *,
        max_size: int | None = None,
        ping_interval: float | None = 20.0,
    ) -> None:
        # Response audio deltas can exceed the library's 1 MiB default frame cap
        self._max_size = max_size
        self._ping_interval = ping_interval
        self._ws: ClientConnection | None = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._ws is not None and not self._closed

    async def open(self, url: str, headers: dict[str, str]) -> None:
        if self._ws is not None or self._closed:
            raise TransportError("transport already used")

        try:
            self._ws = await ws_connect(
                url,
                additional_headers=headers,
                max_size=self._max_size,
                ping_interval=self._ping_interval,
            )
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise TransportError(f"websocket_connect_failed: {e!r}") from e

    async def send(self, message: str | bytes) -> None:
        ws = self._ws
        if ws is None or self._closed:
            raise TransportClosedError("transport is not open")

        try:
            await ws.send(message)
        except ConnectionClosed as e:
            raise TransportClosedError(f"websocket_closed: {e!r}") from e
        except WebSocketException as e:
            raise TransportError(f"websocket_send_failed: {e!r}") from e

    async def messages(self) -> AsyncIterator[str | bytes]:
        ws = self._ws
        if ws is None:
            raise TransportClosedError("transport is not open")

        try:
            # Iteration stops on a clean close and raises on an abnormal one
            async for raw in ws:
                yield raw
        except ConnectionClosed as e:
            if self._closed:
                return
            raise TransportClosedError(f"websocket_closed: {e!r}") from e

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True

        ws = self._ws
        if ws is None:
            return

        try:
            await asyncio.wait_for(ws.close(), timeout=TRANSPORT_CLOSE_TIMEOUT_S)
        except (asyncio.TimeoutError, OSError, WebSocketException) as e:
            log_event({
                "event_type": "TRANSPORT_CLOSE_ERROR",
                "error": repr(e),
            })
