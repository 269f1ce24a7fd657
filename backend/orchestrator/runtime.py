"""
Runtime execution shell for a single voice session.

Responsibilities:
- Own session state
- Call pure reducer
- Execute commands with side effects (transport, devices, timers, observers)
- Open the transport in the background and pump inbound messages
- Drain pending outbound audio to the transport
- Schedule and cancel timers
- Convert timer expiry into events
"""

from __future__ import annotations

import asyncio
import json
import time
from collections import deque
from typing import TYPE_CHECKING, Any, Deque

from audio.frames import AudioChunk
from constants import TRANSPORT_OPEN_TIMEOUT_S
from errors import (
    AudioDeviceError,
    CredentialError,
    TransportClosedError,
    TransportError,
)
from observability.logger import log_event
from observability.metrics import discard_timer, start_timer, stop_timer, timed
from orchestrator.commands import (
    CancelTimer,
    CloseTransport,
    Command,
    DiscardPendingAudio,
    DrainPendingAudio,
    EnqueuePlayback,
    LogEvent,
    Notify,
    OpenTransport,
    SendCameraContext,
    SendJSON,
    StartCapture,
    StartTimer,
    StopCapture,
    StopPlayback,
)
from orchestrator.enums.state import ConnectionState
from orchestrator.events import (
    CaptureFailed,
    CaptureStarted,
    Event,
    EventType,
    ListenRetryTick,
    PlaybackFailed,
    ProtocolViolation,
    SendFailed,
    SpeechStopped,
    TransportFailed,
    TransportLost,
    TransportOpened,
    TransportReleased,
)
from orchestrator.reducer import reduce
from orchestrator.state_dataclass import SessionState
from protocol.realtime import (
    RealtimeProtocolError,
    build_audio_append,
    build_camera_context,
    message_type,
    parse_inbound,
)

if TYPE_CHECKING:
    from orchestrator.runtime_context import RuntimeExecutionContext
    from transport.base import DuplexTransport


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


def _cancel_task(task: asyncio.Task[Any] | None) -> None:
    # A task never cancels itself: the command that asked for it may be
    # running inside that very task.
    if task is not None and not task.done() and task is not asyncio.current_task():
        task.cancel()


class Runtime:
    """
    Runtime execution boundary for a single voice session.

    Responsibilities:
    - Own the authoritative session state
    - Act as the universal event sink for the session
      (application requests, transport, devices, timers)
    - Invoke the pure reducer deterministically
    - Execute emitted commands with side effects

    Guarantees:
    - Reducer is always called exactly once per incoming event
    - Events are processed strictly one at a time, in arrival order
      (asyncio.Lock around the whole pipeline)
    - All side effects occur *after* state has been updated
    - Follow-up events produced while executing commands (CaptureStarted,
      TransportReleased, ...) are queued in an inbox and processed inside
      the same critical section, before any other caller gets the lock
    - Runtime never performs orchestration logic itself
    """

    def __init__(
        self,
        *,
        initial_state: SessionState,
        context: RuntimeExecutionContext,
    ) -> None:
        self._state = initial_state
        self._ctx = context
        self._lock = asyncio.Lock()
        self._inbox: Deque[Event] = deque()
        self._timers: dict[str, asyncio.Task[None]] = {}

        # Current connection (at most one)
        self._transport: DuplexTransport | None = None
        self._transport_connection_id: int = 0
        self._connect_task: asyncio.Task[None] | None = None
        self._receive_task: asyncio.Task[None] | None = None

        # Metric timers
        self._connect_metric: str | None = None
        self._response_audio_metric: str | None = None

        self.audio_chunks_sent: int = 0

    @property
    def state(self) -> SessionState:
        """
        Return the current immutable session state.

        The returned object must be treated as read-only; state is only
        replaced internally by Runtime via the reducer.
        """
        return self._state

    async def handle_event(self, event: Event) -> None:
        """
        Process a single event through the pipeline.

        Processing steps:
        1. Pass the current state and event to the pure reducer
        2. Swap in the new session state
        3. Execute all emitted commands sequentially
        4. Process any follow-up events raised by those commands

        This method is the *only* entry point for events affecting session
        state. Safe to call concurrently from any task on the loop.
        """
        async with self._lock:
            self._inbox.append(event)
            await self._process_inbox()

    async def notify_audio_enqueued(self) -> None:
        """Notification from the session that captured audio was queued."""
        async with self._lock:
            await self._drain_pending_audio(self._state.connection_id)
            await self._process_inbox()

    async def shutdown(self) -> None:
        """
        Clean shutdown of runtime.

        Cancels all in-flight timers and background tasks and waits for them.
        The transport itself is released through the reducer (disconnect).
        """
        tasks = [t for t in self._timers.values() if not t.done()]
        for timer_id in list(self._timers.keys()):
            self._cancel_timer(timer_id)

        for task in (self._connect_task, self._receive_task):
            if task is not None and not task.done():
                tasks.append(task)
                _cancel_task(task)
        self._connect_task = None
        self._receive_task = None

        discard_timer(self._connect_metric)
        discard_timer(self._response_audio_metric)
        self._connect_metric = None
        self._response_audio_metric = None

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ------------------------------------------------------------------
    # Event pipeline
    # ------------------------------------------------------------------

    async def _process_inbox(self) -> None:
        while self._inbox:
            event = self._inbox.popleft()
            prev_state = self._state
            new_state, commands = reduce(self._state, event)
            self._state = new_state
            self._track_metrics(prev_state, event)

            for cmd in commands:
                await self._execute_command(cmd)

    def _follow_up(self, event: Event) -> None:
        """Queue an event produced by command execution."""
        self._inbox.append(event)

    # ------------------------------------------------------------------
    # Command execution (side effects)
    # ------------------------------------------------------------------

    async def _execute_command(self, cmd: Command) -> None:
        """Execute a single command with side effects."""

        if isinstance(cmd, LogEvent):
            log_event({
                **cmd.event,
                "session_id": self._ctx.session_id,
            })

        elif isinstance(cmd, Notify):
            self._ctx.observers.notify(cmd.notification)

        elif isinstance(cmd, OpenTransport):
            self._connect_task = asyncio.create_task(self._open_transport(cmd))

        elif isinstance(cmd, CloseTransport):
            await self._close_transport(cmd.connection_id)

        elif isinstance(cmd, SendJSON):
            await self._send_json(cmd.connection_id, cmd.message)

        elif isinstance(cmd, SendCameraContext):
            await self._send_camera_context(cmd.connection_id)

        elif isinstance(cmd, StartCapture):
            self._ctx.capture_encoder.reset()
            try:
                self._ctx.capture.start(self._ctx.on_capture_available)
            except AudioDeviceError as e:
                self._follow_up(CaptureFailed(
                    event_type=EventType.CAPTURE_FAILED,
                    ts_ms=_now_ms(),
                    reason=str(e),
                ))
            else:
                self._follow_up(CaptureStarted(
                    event_type=EventType.CAPTURE_STARTED,
                    ts_ms=_now_ms(),
                ))

        elif isinstance(cmd, StopCapture):
            self._ctx.capture.stop()

        elif isinstance(cmd, DrainPendingAudio):
            await self._drain_pending_audio(cmd.connection_id)

        elif isinstance(cmd, DiscardPendingAudio):
            dropped = self._ctx.pending_audio.discard()
            if dropped:
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "PENDING_AUDIO_DISCARDED",
                    "session_id": self._ctx.session_id,
                    "chunks": dropped,
                })

        elif isinstance(cmd, EnqueuePlayback):
            await self._enqueue_playback(cmd)

        elif isinstance(cmd, StopPlayback):
            discarded = self._ctx.playback.stop()
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "PLAYBACK_STOPPED",
                "session_id": self._ctx.session_id,
                "discarded_chunks": discarded,
            })

        elif isinstance(cmd, StartTimer):
            self._start_timer(
                timer_id=cmd.timer_id,
                duration_ms=cmd.duration_ms,
                timeout_event_type=cmd.timeout_event_type,
            )

        elif isinstance(cmd, CancelTimer):
            self._cancel_timer(cmd.timer_id)

        else:
            raise ValueError(f"Unknown command: {cmd!r}")

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    async def _open_transport(self, cmd: OpenTransport) -> None:
        """
        Background connect for one connection attempt.

        Emits exactly one TransportOpened or TransportFailed. If the attempt
        went stale while the handshake was in flight, the socket is closed
        and nothing is emitted.
        """
        try:
            credential = self._ctx.credentials.get_credential(cmd.credential_name)
        except CredentialError as e:
            await self.handle_event(self._transport_failed(cmd, str(e)))
            return

        headers = dict(cmd.headers)
        headers["Authorization"] = f"Bearer {credential}"

        transport = self._ctx.transport_factory()
        installed = False
        try:
            try:
                with timed(
                    "transport_open_ms",
                    session_id=self._ctx.session_id,
                    details={"connection_id": cmd.connection_id},
                ):
                    await asyncio.wait_for(
                        transport.open(cmd.url, headers),
                        timeout=TRANSPORT_OPEN_TIMEOUT_S,
                    )
            except (TransportError, asyncio.TimeoutError) as e:
                reason = str(e) or "open_timeout"
                await self.handle_event(self._transport_failed(cmd, reason))
                return

            async with self._lock:
                if (
                    self._state.connection_id != cmd.connection_id
                    or self._state.connection_state is not ConnectionState.CONNECTING
                ):
                    log_event({
                        "ts_ms": _now_ms(),
                        "event_type": "STALE_TRANSPORT_CLOSED",
                        "session_id": self._ctx.session_id,
                        "connection_id": cmd.connection_id,
                    })
                    return

                self._transport = transport
                self._transport_connection_id = cmd.connection_id
                installed = True
                self._receive_task = asyncio.create_task(
                    self._receive_loop(transport, cmd.connection_id)
                )
                self._follow_up(TransportOpened(
                    event_type=EventType.TRANSPORT_OPENED,
                    ts_ms=_now_ms(),
                    connection_id=cmd.connection_id,
                ))
                await self._process_inbox()
        finally:
            if not installed:
                await transport.close()

    def _transport_failed(self, cmd: OpenTransport, reason: str) -> TransportFailed:
        return TransportFailed(
            event_type=EventType.TRANSPORT_FAILED,
            ts_ms=_now_ms(),
            connection_id=cmd.connection_id,
            reason=reason,
        )

    async def _close_transport(self, connection_id: int) -> None:
        _cancel_task(self._connect_task)
        self._connect_task = None
        _cancel_task(self._receive_task)
        self._receive_task = None

        transport = self._transport
        self._transport = None
        if transport is not None:
            await transport.close()
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "TRANSPORT_CLOSED",
                "session_id": self._ctx.session_id,
                "connection_id": self._transport_connection_id,
                "audio_chunks_sent": self.audio_chunks_sent,
            })

        self._follow_up(TransportReleased(
            event_type=EventType.TRANSPORT_RELEASED,
            ts_ms=_now_ms(),
            connection_id=connection_id,
        ))

    async def _receive_loop(self, transport: DuplexTransport, connection_id: int) -> None:
        """
        Pump inbound frames into the reducer until the connection ends.

        A clean remote close and a connection failure both surface as
        TransportLost; events of a replaced connection are dropped by the
        reducer's connection_id gate.
        """
        reason = "remote_closed"
        try:
            async for raw in transport.messages():
                await self._dispatch_inbound(raw, connection_id)
        except asyncio.CancelledError:
            return
        except TransportError as e:
            reason = str(e)
        except Exception as e:  # pylint: disable=broad-exception-caught
            reason = f"receive_failed: {e!r}"

        await self.handle_event(TransportLost(
            event_type=EventType.TRANSPORT_LOST,
            ts_ms=_now_ms(),
            connection_id=connection_id,
            reason=reason,
        ))

    async def _dispatch_inbound(self, raw: str | bytes, connection_id: int) -> None:
        ts_ms = _now_ms()
        try:
            event = parse_inbound(raw, connection_id=connection_id, ts_ms=ts_ms)
        except RealtimeProtocolError as e:
            event = ProtocolViolation(
                event_type=EventType.PROTOCOL_VIOLATION,
                ts_ms=ts_ms,
                connection_id=connection_id,
                reason=str(e),
            )

        if event is None:
            log_event({
                "ts_ms": ts_ms,
                "event_type": "REALTIME_MESSAGE_IGNORED",
                "session_id": self._ctx.session_id,
                "connection_id": connection_id,
                "message_type": message_type(raw),
            })
            return

        await self.handle_event(event)

    async def _send_json(self, connection_id: int, message: dict[str, Any]) -> bool:
        """
        Send one message on the current connection.

        Returns False if the message was not sent. A closed connection
        becomes TransportLost; any other failure becomes SendFailed.
        """
        transport = self._transport
        if transport is None or self._transport_connection_id != connection_id:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "SEND_DROPPED",
                "session_id": self._ctx.session_id,
                "connection_id": connection_id,
                "message_type": message.get("type"),
            })
            return False

        try:
            await transport.send(json.dumps(message))
        except TransportClosedError as e:
            self._follow_up(TransportLost(
                event_type=EventType.TRANSPORT_LOST,
                ts_ms=_now_ms(),
                connection_id=connection_id,
                reason=str(e),
            ))
            return False
        except TransportError as e:
            self._follow_up(SendFailed(
                event_type=EventType.SEND_FAILED,
                ts_ms=_now_ms(),
                connection_id=connection_id,
                reason=str(e),
            ))
            return False

        return True

    # ------------------------------------------------------------------
    # Outbound audio / camera
    # ------------------------------------------------------------------

    async def _drain_pending_audio(self, connection_id: int) -> None:
        """
        Send every pending outbound chunk in capture order.

        Only while the session is ACTIVE and configured; otherwise the
        audio stays queued (bounded) until it is, or is discarded.
        """
        state = self._state
        if (
            state.connection_id != connection_id
            or state.connection_state is not ConnectionState.ACTIVE
            or not state.config_sent
        ):
            return

        queue = self._ctx.pending_audio
        while True:
            chunk = queue.dequeue()
            if chunk is None:
                return

            if not await self._send_json(connection_id, build_audio_append(chunk.pcm_bytes)):
                queue.discard()
                return
            self.audio_chunks_sent += 1

    async def _send_camera_context(self, connection_id: int) -> None:
        camera = self._ctx.camera
        frame: bytes | None = None
        if camera is not None:
            try:
                frame = camera.capture_frame()
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": _now_ms(),
                    "event_type": "CAMERA_CAPTURE_ERROR",
                    "session_id": self._ctx.session_id,
                    "error": repr(e),
                })
                return

        if not frame:
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CAMERA_FRAME_UNAVAILABLE",
                "session_id": self._ctx.session_id,
            })
            return

        if await self._send_json(connection_id, build_camera_context(frame)):
            log_event({
                "ts_ms": _now_ms(),
                "event_type": "CAMERA_CONTEXT_SENT",
                "session_id": self._ctx.session_id,
                "jpeg_bytes": len(frame),
            })

    # ------------------------------------------------------------------
    # Playback
    # ------------------------------------------------------------------

    async def _enqueue_playback(self, cmd: EnqueuePlayback) -> None:
        chunk = AudioChunk(
            sequence_num=cmd.sequence_num,
            pcm_bytes=self._ctx.codec.decode(cmd.pcm_bytes),
            ts_ms=_now_ms(),
        )
        try:
            self._ctx.playback.enqueue(chunk)
        except AudioDeviceError as e:
            self._follow_up(PlaybackFailed(
                event_type=EventType.PLAYBACK_FAILED,
                ts_ms=_now_ms(),
                reason=str(e),
            ))
            return

        if self._response_audio_metric is not None:
            stop_timer(
                self._response_audio_metric,
                session_id=self._ctx.session_id,
                connection_state=self._state.connection_state.value,
            )
            self._response_audio_metric = None

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def _track_metrics(self, prev_state: SessionState, event: Event) -> None:
        prev = prev_state.connection_state
        current = self._state.connection_state

        if current is ConnectionState.CONNECTING and prev is not ConnectionState.CONNECTING:
            discard_timer(self._connect_metric)
            self._connect_metric = start_timer("connect_to_active_ms")

        elif current is ConnectionState.ACTIVE and prev is not ConnectionState.ACTIVE:
            if self._connect_metric is not None:
                stop_timer(
                    self._connect_metric,
                    session_id=self._ctx.session_id,
                    connection_state=current.value,
                )
                self._connect_metric = None

        elif current in (ConnectionState.CLOSING, ConnectionState.CLOSED):
            discard_timer(self._connect_metric)
            discard_timer(self._response_audio_metric)
            self._connect_metric = None
            self._response_audio_metric = None

        if isinstance(event, SpeechStopped) and current is ConnectionState.ACTIVE:
            discard_timer(self._response_audio_metric)
            self._response_audio_metric = start_timer("first_response_audio_ms")

    # ------------------------------------------------------------------
    # Timer management
    # ------------------------------------------------------------------

    def _start_timer(
        self,
        *,
        timer_id: str,
        duration_ms: int,
        timeout_event_type: EventType,
    ) -> None:
        """
        Start or replace a timer that emits a timeout event.

        Timer tasks re-enter handle_event() when they expire,
        maintaining the single event entry point invariant.
        """
        # Cancel existing timer if present (idempotent)
        self._cancel_timer(timer_id)

        async def _timer_task() -> None:
            try:
                await asyncio.sleep(duration_ms / 1000.0)
                event = self._construct_timeout_event(
                    timer_id=timer_id,
                    timeout_event_type=timeout_event_type,
                )
                await self.handle_event(event)
            except asyncio.CancelledError:
                # Timer was cancelled - this is normal
                return

        self._timers[timer_id] = asyncio.create_task(_timer_task())

    def _cancel_timer(self, timer_id: str) -> None:
        """
        Cancel an in-flight timer if it exists.

        Idempotent: safe to call even if timer doesn't exist.
        """
        _cancel_task(self._timers.pop(timer_id, None))

    def _construct_timeout_event(
        self,
        *,
        timer_id: str,
        timeout_event_type: EventType,
    ) -> Event:
        if timeout_event_type is EventType.LISTEN_RETRY_TICK:
            return ListenRetryTick(
                event_type=EventType.LISTEN_RETRY_TICK,
                ts_ms=_now_ms(),
            )

        # This should never happen if reducer is correct
        raise ValueError(
            f"Unknown timeout event type: {timeout_event_type} "
            f"for timer_id: {timer_id}"
        )
