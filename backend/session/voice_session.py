"""
Voice session container and public API.

- Owns session-scoped resources (devices, queues, observers, codec)
- Exposes the application-facing operations:
    connect / disconnect / start_listening / stop_listening / subscribe
- Turns each operation into a reducer event on the runtime
- Pumps captured microphone frames through the codec into the pending
  outbound queue
- NOT a state machine: contains no orchestration logic
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Coroutine

from audio.codec import AudioFrameCodec, CaptureEncoder
from audio.devices import CaptureStream
from audio.frames import AudioChunk
from audio.playback import PlaybackScheduler
from audio.queues import AudioChunkQueue
from config import AppConfig
from constants import PENDING_OUTBOUND_AUDIO_MAX_S
from errors import CodecError
from orchestrator.events import (
    CaptureFailed,
    ConnectRequested,
    DisconnectRequested,
    EventType,
    StartListeningRequested,
    StopListeningRequested,
)
from orchestrator.runtime import Runtime
from orchestrator.runtime_context import CameraFrameProvider, CredentialProvider
from orchestrator.state_dataclass import SessionState
from session.observers import ObserverRegistry, SessionObserver
from transport.base import DuplexTransport


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


# ---------------------------------------------------------------------
# VoiceSession
# ---------------------------------------------------------------------


@dataclass
class VoiceSession:
    """Mutable runtime container for a single voice session."""

    # ------------------------------------------------------------------
    # Identity / configuration
    # ------------------------------------------------------------------

    session_id: str
    config: AppConfig

    # ------------------------------------------------------------------
    # Collaborators (injected by SessionGateway)
    # ------------------------------------------------------------------

    transport_factory: Callable[[], DuplexTransport]
    credentials: CredentialProvider
    capture: CaptureStream
    playback: PlaybackScheduler
    camera: CameraFrameProvider | None = None
    codec: AudioFrameCodec = field(default_factory=AudioFrameCodec)

    created_at: float = field(default_factory=time.time)

    # ------------------------------------------------------------------
    # Runtime (executes commands + owns authoritative state)
    # ------------------------------------------------------------------

    runtime: Runtime | None = None

    # ------------------------------------------------------------------
    # Session-owned queues / observers
    # ------------------------------------------------------------------

    pending_audio: AudioChunkQueue = field(init=False)
    observers: ObserverRegistry = field(init=False)
    capture_encoder: CaptureEncoder = field(init=False)

    def __post_init__(self) -> None:
        self.pending_audio = AudioChunkQueue(max_depth_s=PENDING_OUTBOUND_AUDIO_MAX_S)
        self.observers = ObserverRegistry(session_id=self.session_id)
        self.capture_encoder = self.codec.stream_encoder()

        self._outbound_seq: int = 0
        # Strong references to fire-and-forget tasks spawned from callbacks
        self._background: set[asyncio.Task[None]] = set()

    # ------------------------------------------------------------------
    # Wiring helpers (called by SessionGateway)
    # ------------------------------------------------------------------

    def attach_runtime(self, runtime: Runtime) -> None:
        """
        Attach the runtime executor.

        Called by SessionGateway during session bootstrap.
        """
        self.runtime = runtime

    def _require_runtime(self) -> Runtime:
        if self.runtime is None:
            raise RuntimeError(f"session {self.session_id} has no runtime attached")
        return self.runtime

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @property
    def state(self) -> SessionState:
        return self._require_runtime().state

    async def connect(self) -> None:
        """
        Open the realtime connection.

        Returns once the request is accepted; the connection completes in
        the background (observe on_connection_state_changed). A no-op unless
        the session is IDLE or CLOSED.
        """
        await self._require_runtime().handle_event(
            ConnectRequested(event_type=EventType.CONNECT_REQUESTED, ts_ms=_now_ms())
        )

    async def disconnect(self, reason: str = "client") -> None:
        """
        Tear the connection down.

        Capture, playback and the transport are released before this
        returns. Idempotent.
        """
        await self._require_runtime().handle_event(
            DisconnectRequested(
                event_type=EventType.DISCONNECT_REQUESTED,
                ts_ms=_now_ms(),
                reason=reason,
            )
        )

    async def start_listening(self) -> None:
        """
        Start streaming microphone audio.

        From IDLE/CLOSED this also connects; capture starts once the
        session is ACTIVE. Idempotent.
        """
        await self._require_runtime().handle_event(
            StartListeningRequested(
                event_type=EventType.START_LISTENING_REQUESTED, ts_ms=_now_ms()
            )
        )

    async def stop_listening(self) -> None:
        """Stop microphone capture. Playback is not affected. Idempotent."""
        await self._require_runtime().handle_event(
            StopListeningRequested(
                event_type=EventType.STOP_LISTENING_REQUESTED, ts_ms=_now_ms()
            )
        )

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        """Register an observer. Returns its unsubscribe function."""
        return self.observers.subscribe(observer)

    async def close(self) -> None:
        """Disconnect and stop every background task of the runtime."""
        await self.disconnect(reason="session_closed")
        await self._require_runtime().shutdown()
        for task in tuple(self._background):
            task.cancel()
        if self._background:
            await asyncio.gather(*self._background, return_exceptions=True)

    # ------------------------------------------------------------------
    # Capture pump (event loop thread)
    # ------------------------------------------------------------------

    def on_capture_available(self) -> None:
        """
        Pull every pending capture frame, encode it and queue it.

        Called on the event loop (scheduled from the capture callback thread).
        Frames arriving while listening is neither active nor requested are
        dropped.
        """
        runtime = self._require_runtime()
        state = runtime.state

        if not (state.is_listening or state.listen_requested):
            while self.capture.read_frame() is not None:
                pass
            return

        queued = 0
        while True:
            frame = self.capture.read_frame()
            if frame is None:
                break

            try:
                pcm_bytes = self.capture_encoder.encode(frame)
            except CodecError as e:
                self._spawn(runtime.handle_event(
                    CaptureFailed(
                        event_type=EventType.CAPTURE_FAILED,
                        ts_ms=_now_ms(),
                        reason=str(e),
                    )
                ))
                return

            if not pcm_bytes:
                continue

            self._outbound_seq += 1
            self.pending_audio.enqueue(
                AudioChunk(
                    sequence_num=self._outbound_seq,
                    pcm_bytes=pcm_bytes,
                    ts_ms=_now_ms(),
                )
            )
            queued += 1

        if queued:
            self._spawn(runtime.notify_audio_enqueued())

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.get_running_loop().create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Observability helpers (read-only)
    # ------------------------------------------------------------------

    def snapshot(self) -> dict[str, Any]:
        """Read-only view of the session for the control API."""
        state = self.state
        return {
            "session_id": self.session_id,
            "created_at": self.created_at,
            "connection_state": state.connection_state.value,
            "connection_id": state.connection_id,
            "is_listening": state.is_listening,
            "listen_requested": state.listen_requested,
            "is_remote_speaking": state.is_remote_speaking,
            "current_response_text": state.current_response_text,
            "last_user_transcript": state.last_user_transcript,
            "last_error": state.last_error,
            "pending_audio": self.pending_audio.snapshot(),
            "playback": self.playback.snapshot(),
            "observers": len(self.observers),
        }
