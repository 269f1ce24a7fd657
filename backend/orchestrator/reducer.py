"""
Pure session reducer.

(state, event) -> (new_state, commands)

Rules:
- Pure: no side effects, no IO, no clocks.
- Deterministic: output depends only on inputs.
- Total: every (state, event) pair is handled or explicitly ignored (logged).
"""

# Reducer owns timer semantics; runtime must not cancel timers implicitly.

from __future__ import annotations

from dataclasses import replace
from typing import Any

from constants import (
    LISTEN_RETRY_MAX_ATTEMPTS,
    REALTIME_BETA_HEADER,
    TIMER_LISTEN_RETRY,
)
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
from orchestrator.enums.state import (
    LIVE_STATES,
    RESTARTABLE_STATES,
    ConnectionState,
)
from orchestrator.events import (
    AssistantAudioDelta,
    AssistantTextDelta,
    AssistantTextDone,
    CaptureFailed,
    CaptureStarted,
    ConnectionEvent,
    ConnectRequested,
    DisconnectRequested,
    Event,
    EventType,
    ListenRetryTick,
    PlaybackFailed,
    ProtocolViolation,
    RemoteError,
    ResponseDone,
    SendFailed,
    SessionCreated,
    SessionUpdated,
    SpeechStarted,
    SpeechStopped,
    StartListeningRequested,
    StopListeningRequested,
    TransportFailed,
    TransportLost,
    TransportOpened,
    TransportReleased,
    UserTranscript,
)
from orchestrator.notifications import (
    AssistantResponseUpdated,
    ConnectionStateChanged,
    ErrorReported,
    ListeningChanged,
    SpeakingChanged,
    TranscriptReceived,
)
from orchestrator.retry import (
    get_listen_retry_delay_ms,
    next_attempt,
    reset_attempt,
    should_retry_listen,
)
from orchestrator.state_dataclass import SessionState
from protocol.realtime import build_session_update


Result = tuple[SessionState, tuple[Command, ...]]


# =============================================================================
# Small helpers
# =============================================================================

def _log(
    state: SessionState,
    event: Event,
    decision: str,
    details: dict[str, Any] | None = None,
) -> LogEvent:
    return LogEvent(
        event={
            "ts_ms": event.ts_ms,
            "connection_state": state.connection_state.value,
            "connection_id": state.connection_id,
            "event_type": event.event_type.value,
            "decision": decision,
            "is_listening": state.is_listening,
            "listen_requested": state.listen_requested,
            "details": details or {},
        }
    )


def _logs_last(commands: tuple[Command, ...]) -> tuple[Command, ...]:
    non_logs: list[Command] = []
    logs: list[Command] = []
    state_change_logs: list[Command] = []

    for command in commands:
        if isinstance(command, LogEvent):
            if command.event.get("decision") == "state_changed":
                state_change_logs.append(command)
            else:
                logs.append(command)
        else:
            non_logs.append(command)

    return tuple(non_logs + logs + state_change_logs)


def _ignore(state: SessionState, event: Event, reason: str) -> Result:
    return state, (_log(state, event, "ignore", {"reason": reason}),)


def _state_changed(
    old: SessionState,
    new: SessionState,
    event: Event,
    source: str,
) -> tuple[Command, ...]:
    return (
        Notify(ConnectionStateChanged(new.connection_state)),
        _log(
            new,
            event,
            "state_changed",
            {
                "from_state": old.connection_state.value,
                "to_state": new.connection_state.value,
                "source": source,
            },
        ),
    )


def _arm_listen_retry(state: SessionState) -> StartTimer:
    return StartTimer(
        timer_id=TIMER_LISTEN_RETRY,
        duration_ms=get_listen_retry_delay_ms(state.listen_retry_attempt),
        timeout_event_type=EventType.LISTEN_RETRY_TICK,
    )


# =============================================================================
# Connection lifecycle
# =============================================================================

def _begin_connect(
    state: SessionState, event: Event, *, listen_requested: bool
) -> Result:
    """
    Start a fresh connection.

    All per-connection fields start from defaults; connection_id is bumped so
    anything still in flight from an earlier connection is stale.
    """
    connection_id = state.connection_id + 1
    new_state = SessionState(
        config=state.config,
        connection_state=ConnectionState.CONNECTING,
        connection_id=connection_id,
        listen_requested=listen_requested,
    )

    commands: tuple[Command, ...] = (
        OpenTransport(
            connection_id=connection_id,
            url=state.config.realtime_url,
            credential_name=state.config.credential_name,
            headers=(REALTIME_BETA_HEADER,),
        ),
    )
    if listen_requested:
        commands += (
            _arm_listen_retry(new_state),
            _log(new_state, event, "listen_deferred", {"reason": "not_active"}),
        )

    return new_state, _logs_last(
        commands + _state_changed(state, new_state, event, "connect")
    )


def _begin_close(
    state: SessionState,
    event: Event,
    *,
    source: str,
    error: str | None,
) -> Result:
    """
    Release every per-connection resource and move to CLOSING.

    The runtime answers CloseTransport with TransportReleased, which
    completes the move to CLOSED.
    """
    new_state = replace(
        state,
        connection_state=ConnectionState.CLOSING,
        is_listening=False,
        listen_requested=False,
        listen_retry_attempt=reset_attempt(),
        is_remote_speaking=False,
        last_error=error if error is not None else state.last_error,
    )

    commands: tuple[Command, ...] = (
        CancelTimer(timer_id=TIMER_LISTEN_RETRY),
        StopCapture(),
        StopPlayback(),
        DiscardPendingAudio(),
        CloseTransport(connection_id=state.connection_id),
    )
    if state.is_listening:
        commands += (Notify(ListeningChanged(False)),)
    if state.is_remote_speaking:
        commands += (Notify(SpeakingChanged(False)),)
    if error is not None:
        commands += (
            Notify(ErrorReported(error)),
            _log(new_state, event, "connection_error", {"error": error}),
        )

    return new_state, _logs_last(
        commands + _state_changed(state, new_state, event, source)
    )


def _finish_close(state: SessionState, event: TransportReleased) -> Result:
    if state.connection_state is not ConnectionState.CLOSING:
        return _ignore(state, event, "not_closing")

    new_state = SessionState(
        config=state.config,
        connection_state=ConnectionState.CLOSED,
        connection_id=state.connection_id,
    )
    return new_state, _logs_last(
        _state_changed(state, new_state, event, "transport_released")
    )


def _on_connect_requested(state: SessionState, event: ConnectRequested) -> Result:
    if state.connection_state in RESTARTABLE_STATES:
        return _begin_connect(state, event, listen_requested=False)
    return _ignore(state, event, "already_connected")


def _on_disconnect_requested(
    state: SessionState, event: DisconnectRequested
) -> Result:
    if state.connection_state in LIVE_STATES:
        return _begin_close(
            state, event, source=f"disconnect:{event.reason}", error=None
        )
    if state.connection_state is ConnectionState.CLOSING:
        return _ignore(state, event, "already_closing")
    return _ignore(state, event, "already_closed")


def _on_transport_opened(state: SessionState, event: TransportOpened) -> Result:
    if state.connection_state is not ConnectionState.CONNECTING:
        return _ignore(state, event, "not_connecting")

    new_state = replace(state, connection_state=ConnectionState.AWAITING_CONFIG)
    return new_state, _logs_last(
        _state_changed(state, new_state, event, "transport_opened")
    )


def _on_transport_failed(state: SessionState, event: TransportFailed) -> Result:
    if state.connection_state is not ConnectionState.CONNECTING:
        return _ignore(state, event, "not_connecting")
    return _begin_close(
        state,
        event,
        source="transport_failed",
        error=f"Connection failed: {event.reason}",
    )


def _on_transport_lost(state: SessionState, event: TransportLost) -> Result:
    return _begin_close(
        state,
        event,
        source="transport_lost",
        error=f"Connection lost: {event.reason}",
    )


def _on_send_failed(state: SessionState, event: SendFailed) -> Result:
    message = f"Send failed: {event.reason}"
    new_state = replace(state, last_error=message)
    return new_state, _logs_last((
        Notify(ErrorReported(message)),
        _log(new_state, event, "send_failed", {"reason": event.reason}),
    ))


# =============================================================================
# Listening
# =============================================================================

def _on_start_listening(
    state: SessionState, event: StartListeningRequested
) -> Result:
    if state.is_listening:
        return _ignore(state, event, "already_listening")

    if state.listen_requested:
        return _ignore(state, event, "listen_already_requested")

    cs = state.connection_state

    if cs in RESTARTABLE_STATES:
        return _begin_connect(state, event, listen_requested=True)

    if cs in (ConnectionState.CONNECTING, ConnectionState.AWAITING_CONFIG):
        new_state = replace(
            state, listen_requested=True, listen_retry_attempt=reset_attempt()
        )
        return new_state, _logs_last((
            _arm_listen_retry(new_state),
            _log(new_state, event, "listen_deferred", {"reason": "not_active"}),
        ))

    if cs is ConnectionState.ACTIVE:
        new_state = replace(state, listen_requested=True)
        return new_state, _logs_last((
            StartCapture(),
            _log(new_state, event, "start_capture"),
        ))

    return _ignore(state, event, "closing")


def _on_stop_listening(
    state: SessionState, event: StopListeningRequested
) -> Result:
    if not state.is_listening and not state.listen_requested:
        return _ignore(state, event, "not_listening")

    new_state = replace(
        state,
        is_listening=False,
        listen_requested=False,
        listen_retry_attempt=reset_attempt(),
    )
    commands: tuple[Command, ...] = (
        CancelTimer(timer_id=TIMER_LISTEN_RETRY),
        StopCapture(),
        DiscardPendingAudio(),
        _log(new_state, event, "stop_capture"),
    )
    if state.is_listening:
        commands += (Notify(ListeningChanged(False)),)
    return new_state, _logs_last(commands)


def _on_listen_retry_tick(state: SessionState, event: ListenRetryTick) -> Result:
    if not state.listen_requested:
        return _ignore(state, event, "no_pending_listen")

    if state.connection_state is ConnectionState.ACTIVE:
        new_state = replace(state, listen_retry_attempt=reset_attempt())
        return new_state, _logs_last((
            StartCapture(),
            _log(new_state, event, "start_capture"),
        ))

    attempt = next_attempt(state.listen_retry_attempt)
    if should_retry_listen(attempt):
        new_state = replace(state, listen_retry_attempt=attempt)
        return new_state, _logs_last((
            _arm_listen_retry(new_state),
            _log(new_state, event, "listen_retry", {"attempt": attempt.attempt}),
        ))

    message = (
        "Could not start listening: session did not become active after "
        f"{LISTEN_RETRY_MAX_ATTEMPTS} retries"
    )
    new_state = replace(
        state,
        listen_requested=False,
        listen_retry_attempt=reset_attempt(),
        last_error=message,
    )
    return new_state, _logs_last((
        Notify(ErrorReported(message)),
        _log(new_state, event, "listen_retry_exhausted", {"attempt": attempt.attempt}),
    ))


def _on_capture_started(state: SessionState, event: CaptureStarted) -> Result:
    if state.connection_state is not ConnectionState.ACTIVE or not state.listen_requested:
        return state, _logs_last((
            StopCapture(),
            _log(state, event, "ignore", {"reason": "capture_not_wanted"}),
        ))

    new_state = replace(
        state,
        is_listening=True,
        listen_requested=False,
        listen_retry_attempt=reset_attempt(),
    )
    return new_state, _logs_last((
        CancelTimer(timer_id=TIMER_LISTEN_RETRY),
        Notify(ListeningChanged(True)),
        DrainPendingAudio(connection_id=state.connection_id),
        _log(new_state, event, "listening_started"),
    ))


def _on_capture_failed(state: SessionState, event: CaptureFailed) -> Result:
    message = f"Microphone error: {event.reason}"
    new_state = replace(
        state,
        is_listening=False,
        listen_requested=False,
        listen_retry_attempt=reset_attempt(),
        last_error=message,
    )
    commands: tuple[Command, ...] = (
        CancelTimer(timer_id=TIMER_LISTEN_RETRY),
        StopCapture(),
        DiscardPendingAudio(),
    )
    if state.is_listening:
        commands += (Notify(ListeningChanged(False)),)
    commands += (
        Notify(ErrorReported(message)),
        _log(new_state, event, "capture_failed", {"reason": event.reason}),
    )
    return new_state, _logs_last(commands)


def _on_playback_failed(state: SessionState, event: PlaybackFailed) -> Result:
    message = f"Playback error: {event.reason}"
    new_state = replace(state, last_error=message)
    return new_state, _logs_last((
        StopPlayback(),
        Notify(ErrorReported(message)),
        _log(new_state, event, "playback_failed", {"reason": event.reason}),
    ))


# =============================================================================
# Inbound realtime events
# =============================================================================

def _on_session_created(state: SessionState, event: SessionCreated) -> Result:
    if state.connection_state is ConnectionState.ACTIVE:
        return _ignore(state, event, "duplicate_session_created")

    commands: tuple[Command, ...] = ()

    # Remote may announce the session before the handshake completion is
    # observed; pass through AWAITING_CONFIG so observers see every state.
    if state.connection_state is ConnectionState.CONNECTING:
        awaiting = replace(state, connection_state=ConnectionState.AWAITING_CONFIG)
        commands += _state_changed(state, awaiting, event, "session_created")
        state = awaiting

    new_state = replace(
        state,
        connection_state=ConnectionState.ACTIVE,
        config_sent=True,
    )
    commands += (
        SendJSON(
            connection_id=state.connection_id,
            message=build_session_update(state.config),
        ),
        DrainPendingAudio(connection_id=state.connection_id),
    )
    if state.listen_requested and not state.is_listening:
        commands += (
            StartCapture(),
            _log(new_state, event, "start_capture", {"reason": "deferred_listen"}),
        )
    commands += _state_changed(state, new_state, event, "session_created")

    return new_state, _logs_last(commands)


def _on_remote_error(state: SessionState, event: RemoteError) -> Result:
    new_state = replace(state, last_error=event.message)
    return new_state, _logs_last((
        Notify(ErrorReported(event.message)),
        _log(new_state, event, "remote_error", {"message": event.message}),
    ))


def _on_protocol_violation(
    state: SessionState, event: ProtocolViolation
) -> Result:
    return state, _logs_last((
        Notify(ErrorReported(f"Protocol error: {event.reason}")),
        _log(state, event, "protocol_violation", {"reason": event.reason}),
    ))


def _on_speech_started(state: SessionState, event: SpeechStarted) -> Result:
    new_state = replace(state, is_remote_speaking=True)
    commands: tuple[Command, ...] = (Notify(SpeakingChanged(True)),)
    if state.config.barge_in_stops_playback:
        commands += (
            StopPlayback(),
            _log(new_state, event, "barge_in_stop_playback"),
        )
    return new_state, _logs_last(commands)


def _on_speech_stopped(state: SessionState, event: SpeechStopped) -> Result:
    new_state = replace(state, is_remote_speaking=False)
    commands: tuple[Command, ...] = (Notify(SpeakingChanged(False)),)
    if state.config.camera_context_enabled:
        commands += (
            SendCameraContext(connection_id=state.connection_id),
            _log(new_state, event, "send_camera_context"),
        )
    return new_state, _logs_last(commands)


def _on_user_transcript(state: SessionState, event: UserTranscript) -> Result:
    new_state = replace(state, last_user_transcript=event.text)
    return new_state, _logs_last((
        Notify(TranscriptReceived(event.text)),
        _log(new_state, event, "user_transcript", {"text": event.text}),
    ))


def _on_assistant_text_delta(
    state: SessionState, event: AssistantTextDelta
) -> Result:
    text = state.current_response_text + event.text
    new_state = replace(state, current_response_text=text)
    return new_state, (Notify(AssistantResponseUpdated(text)),)


def _on_assistant_text_done(
    state: SessionState, event: AssistantTextDone
) -> Result:
    new_state = replace(state, current_response_text=event.text)
    return new_state, _logs_last((
        Notify(AssistantResponseUpdated(event.text)),
        _log(new_state, event, "assistant_text_done", {"text": event.text}),
    ))


def _on_assistant_audio_delta(
    state: SessionState, event: AssistantAudioDelta
) -> Result:
    if not event.pcm_bytes:
        return _ignore(state, event, "empty_audio")

    seq = state.playback_seq + 1
    new_state = replace(state, playback_seq=seq)
    return new_state, (
        EnqueuePlayback(sequence_num=seq, pcm_bytes=event.pcm_bytes),
    )


def _on_response_done(state: SessionState, event: ResponseDone) -> Result:
    new_state = replace(state, current_response_text="")
    return new_state, (_log(new_state, event, "response_done"),)


# =============================================================================
# Reducer
# =============================================================================

def reduce(state: SessionState, event: Event) -> Result:
    """
    Pure reducer for the voice session state machine.

    Given the current session state and a single event, returns:
    - the next state
    - a tuple of commands describing required side effects

    Properties:
    - Deterministic: no IO, clocks, or randomness
    - Total: every (state, event) pair is handled or explicitly ignored
    - Version-safe: ignores events carrying a stale connection_id
    """
    # -------------------------------------------------------------------------
    # Connection-scoped events: gate on connection_id and liveness
    # -------------------------------------------------------------------------
    if isinstance(event, ConnectionEvent):
        if event.connection_id != state.connection_id:
            return _ignore(state, event, "stale_connection")

        if isinstance(event, TransportReleased):
            return _finish_close(state, event)

        if state.connection_state is ConnectionState.CLOSING:
            return _ignore(state, event, "closing")

        if state.connection_state not in LIVE_STATES:
            return _ignore(state, event, "no_live_connection")

        if isinstance(event, TransportOpened):
            return _on_transport_opened(state, event)
        if isinstance(event, TransportFailed):
            return _on_transport_failed(state, event)
        if isinstance(event, TransportLost):
            return _on_transport_lost(state, event)
        if isinstance(event, SendFailed):
            return _on_send_failed(state, event)
        if isinstance(event, SessionCreated):
            return _on_session_created(state, event)
        if isinstance(event, RemoteError):
            return _on_remote_error(state, event)
        if isinstance(event, ProtocolViolation):
            return _on_protocol_violation(state, event)
        if isinstance(event, SessionUpdated):
            return state, (_log(state, event, "session_config_acknowledged"),)

        # Conversation traffic only flows once the session is configured
        if state.connection_state is not ConnectionState.ACTIVE:
            return _ignore(state, event, "not_active")

        if isinstance(event, SpeechStarted):
            return _on_speech_started(state, event)
        if isinstance(event, SpeechStopped):
            return _on_speech_stopped(state, event)
        if isinstance(event, UserTranscript):
            return _on_user_transcript(state, event)
        if isinstance(event, AssistantTextDelta):
            return _on_assistant_text_delta(state, event)
        if isinstance(event, AssistantTextDone):
            return _on_assistant_text_done(state, event)
        if isinstance(event, AssistantAudioDelta):
            return _on_assistant_audio_delta(state, event)
        if isinstance(event, ResponseDone):
            return _on_response_done(state, event)

        return _ignore(state, event, "unhandled_connection_event")

    # -------------------------------------------------------------------------
    # Application requests, timers and local devices
    # -------------------------------------------------------------------------
    if isinstance(event, ConnectRequested):
        return _on_connect_requested(state, event)
    if isinstance(event, DisconnectRequested):
        return _on_disconnect_requested(state, event)
    if isinstance(event, StartListeningRequested):
        return _on_start_listening(state, event)
    if isinstance(event, StopListeningRequested):
        return _on_stop_listening(state, event)
    if isinstance(event, ListenRetryTick):
        return _on_listen_retry_tick(state, event)
    if isinstance(event, CaptureStarted):
        return _on_capture_started(state, event)
    if isinstance(event, CaptureFailed):
        return _on_capture_failed(state, event)
    if isinstance(event, PlaybackFailed):
        return _on_playback_failed(state, event)

    return _ignore(state, event, "unhandled_event")
