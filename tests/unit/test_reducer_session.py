# pylint: disable=missing-module-docstring,missing-function-docstring

from dataclasses import replace

from config import AppConfig
from constants import (
    LISTEN_RETRY_DELAY_MS,
    LISTEN_RETRY_MAX_ATTEMPTS,
    TIMER_LISTEN_RETRY,
    TRANSPORT_OPEN_TIMEOUT_S,
)
from orchestrator.reducer import reduce
from orchestrator.state_dataclass import SessionState
from orchestrator.enums.state import ConnectionState
from orchestrator.events import (
    AssistantAudioDelta,
    AssistantTextDelta,
    AssistantTextDone,
    CaptureFailed,
    CaptureStarted,
    ConnectRequested,
    DisconnectRequested,
    EventType,
    ListenRetryTick,
    ProtocolViolation,
    RemoteError,
    ResponseDone,
    SessionCreated,
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
from orchestrator.commands import (
    CancelTimer,
    CloseTransport,
    Command,
    DiscardPendingAudio,
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
from orchestrator.notifications import (
    AssistantResponseUpdated,
    ConnectionStateChanged,
    ErrorReported,
    ListeningChanged,
    SpeakingChanged,
    TranscriptReceived,
)


# ---------------------------------------------------------------------
# Event helpers (mirror runtime construction)
# ---------------------------------------------------------------------

def connect(ts_ms: int = 0) -> ConnectRequested:
    return ConnectRequested(event_type=EventType.CONNECT_REQUESTED, ts_ms=ts_ms)


def disconnect(ts_ms: int = 0) -> DisconnectRequested:
    return DisconnectRequested(event_type=EventType.DISCONNECT_REQUESTED, ts_ms=ts_ms)


def start_listening() -> StartListeningRequested:
    return StartListeningRequested(
        event_type=EventType.START_LISTENING_REQUESTED, ts_ms=0
    )


def stop_listening() -> StopListeningRequested:
    return StopListeningRequested(
        event_type=EventType.STOP_LISTENING_REQUESTED, ts_ms=0
    )


def retry_tick() -> ListenRetryTick:
    return ListenRetryTick(event_type=EventType.LISTEN_RETRY_TICK, ts_ms=0)


def transport_opened(cid: int) -> TransportOpened:
    return TransportOpened(
        event_type=EventType.TRANSPORT_OPENED, ts_ms=0, connection_id=cid
    )


def transport_released(cid: int) -> TransportReleased:
    return TransportReleased(
        event_type=EventType.TRANSPORT_RELEASED, ts_ms=0, connection_id=cid
    )


def session_created(cid: int) -> SessionCreated:
    return SessionCreated(
        event_type=EventType.SESSION_CREATED, ts_ms=0, connection_id=cid
    )


def capture_started() -> CaptureStarted:
    return CaptureStarted(event_type=EventType.CAPTURE_STARTED, ts_ms=0)


def delta(cid: int, text: str) -> AssistantTextDelta:
    return AssistantTextDelta(
        event_type=EventType.ASSISTANT_TEXT_DELTA, ts_ms=0, connection_id=cid, text=text
    )


def of_type(commands: tuple[Command, ...], cls: type) -> list:
    return [c for c in commands if isinstance(c, cls)]


def notifications(commands: tuple[Command, ...]) -> list:
    return [c.notification for c in commands if isinstance(c, Notify)]


def active_state(**overrides) -> SessionState:
    """ACTIVE state on connection 1 with config sent."""
    state = SessionState(
        connection_state=ConnectionState.ACTIVE,
        connection_id=1,
        config_sent=True,
    )
    return replace(state, **overrides)


def run(state: SessionState, *events) -> tuple[SessionState, tuple[Command, ...]]:
    commands: tuple[Command, ...] = ()
    for event in events:
        state, cmds = reduce(state, event)
        commands += cmds
    return state, commands


# ---------------------------------------------------------------------
# Connect / handshake
# ---------------------------------------------------------------------

def test_connect_from_idle_opens_transport_with_new_connection_id():
    state, commands = reduce(SessionState(), connect())

    assert state.connection_state is ConnectionState.CONNECTING
    assert state.connection_id == 1

    opens = of_type(commands, OpenTransport)
    assert len(opens) == 1
    assert opens[0].connection_id == 1
    assert opens[0].url == AppConfig().realtime_url
    assert opens[0].credential_name == "OPENAI_API_KEY"
    assert ("OpenAI-Beta", "realtime=v1") in opens[0].headers

    assert ConnectionStateChanged(ConnectionState.CONNECTING) in notifications(commands)


def test_connect_while_connected_is_logged_noop():
    state = active_state()
    new_state, commands = reduce(state, connect())

    assert new_state == state
    assert all(isinstance(c, LogEvent) for c in commands)
    assert commands[0].event["details"]["reason"] == "already_connected"


def test_idle_connect_session_created_reaches_active_with_one_config_send():
    state, commands = run(
        SessionState(),
        connect(),
        transport_opened(1),
        session_created(1),
    )

    assert state.connection_state is ConnectionState.ACTIVE
    assert state.config_sent is True

    sends = of_type(commands, SendJSON)
    assert len(sends) == 1
    assert sends[0].message["type"] == "session.update"
    assert sends[0].message["session"]["turn_detection"]["type"] == "server_vad"

    assert [n.state for n in notifications(commands) if isinstance(n, ConnectionStateChanged)] == [
        ConnectionState.CONNECTING,
        ConnectionState.AWAITING_CONFIG,
        ConnectionState.ACTIVE,
    ]


def test_duplicate_session_created_is_ignored():
    state = active_state()
    new_state, commands = reduce(state, session_created(1))

    assert new_state == state
    assert not of_type(commands, SendJSON)


def test_session_created_before_transport_opened_passes_through_awaiting_config():
    state, _ = reduce(SessionState(), connect())
    state, commands = reduce(state, session_created(1))

    assert state.connection_state is ConnectionState.ACTIVE
    states = [n.state for n in notifications(commands) if isinstance(n, ConnectionStateChanged)]
    assert states == [ConnectionState.AWAITING_CONFIG, ConnectionState.ACTIVE]


def test_transport_failed_closes_and_reports_error():
    state, _ = reduce(SessionState(), connect())
    failed = TransportFailed(
        event_type=EventType.TRANSPORT_FAILED, ts_ms=0, connection_id=1, reason="401"
    )
    state, commands = run(state, failed, transport_released(1))

    assert state.connection_state is ConnectionState.CLOSED
    errors = [n for n in notifications(commands) if isinstance(n, ErrorReported)]
    assert errors and "401" in errors[0].message
    assert ConnectionStateChanged(ConnectionState.CLOSED) in notifications(commands)


# ---------------------------------------------------------------------
# Transcript assembly
# ---------------------------------------------------------------------

def test_deltas_concatenate_in_order_and_done_overwrites():
    state, commands = run(
        active_state(),
        delta(1, "Hel"),
        delta(1, "lo"),
        delta(1, " there"),
    )
    assert state.current_response_text == "Hello there"
    assert [n.text for n in notifications(commands)] == ["Hel", "Hello", "Hello there"]

    done = AssistantTextDone(
        event_type=EventType.ASSISTANT_TEXT_DONE, ts_ms=0, connection_id=1, text="Hello, there."
    )
    state, commands = reduce(state, done)
    assert state.current_response_text == "Hello, there."
    assert AssistantResponseUpdated("Hello, there.") in notifications(commands)

    state, _ = reduce(
        state, ResponseDone(event_type=EventType.RESPONSE_DONE, ts_ms=0, connection_id=1)
    )
    assert state.current_response_text == ""


def test_user_transcript_is_recorded_and_notified():
    event = UserTranscript(
        event_type=EventType.USER_TRANSCRIPT, ts_ms=0, connection_id=1, text="What is 2+2?"
    )
    state, commands = reduce(active_state(), event)

    assert state.last_user_transcript == "What is 2+2?"
    assert TranscriptReceived("What is 2+2?") in notifications(commands)


def test_audio_deltas_get_increasing_playback_sequence_numbers():
    chunk = AssistantAudioDelta(
        event_type=EventType.ASSISTANT_AUDIO_DELTA, ts_ms=0, connection_id=1, pcm_bytes=b"\x00\x01" * 10
    )
    state, commands = run(active_state(), chunk, chunk)

    enqueued = of_type(commands, EnqueuePlayback)
    assert [c.sequence_num for c in enqueued] == [1, 2]
    assert state.playback_seq == 2


def test_speech_events_toggle_remote_speaking_without_stopping_playback():
    started = SpeechStarted(event_type=EventType.SPEECH_STARTED, ts_ms=0, connection_id=1)
    stopped = SpeechStopped(event_type=EventType.SPEECH_STOPPED, ts_ms=0, connection_id=1)

    state, commands = reduce(active_state(), started)
    assert state.is_remote_speaking is True
    assert SpeakingChanged(True) in notifications(commands)
    assert not of_type(commands, StopPlayback)

    state, commands = reduce(state, stopped)
    assert state.is_remote_speaking is False
    assert SpeakingChanged(False) in notifications(commands)
    assert not of_type(commands, SendCameraContext)


def test_barge_in_policy_stops_playback_when_enabled():
    config = AppConfig(barge_in_stops_playback=True)
    started = SpeechStarted(event_type=EventType.SPEECH_STARTED, ts_ms=0, connection_id=1)

    _, commands = reduce(active_state(config=config), started)

    assert of_type(commands, StopPlayback)


def test_speech_stopped_sends_camera_context_when_enabled():
    config = AppConfig(camera_context_enabled=True)
    stopped = SpeechStopped(event_type=EventType.SPEECH_STOPPED, ts_ms=0, connection_id=1)

    _, commands = reduce(active_state(config=config), stopped)

    assert of_type(commands, SendCameraContext) == [SendCameraContext(connection_id=1)]


# ---------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------

def test_remote_error_is_not_fatal():
    err = RemoteError(
        event_type=EventType.REMOTE_ERROR, ts_ms=0, connection_id=1, message="rate limited"
    )
    state, commands = reduce(active_state(is_listening=True), err)

    assert state.connection_state is ConnectionState.ACTIVE
    assert state.is_listening is True
    assert state.last_error == "rate limited"
    assert ErrorReported("rate limited") in notifications(commands)
    assert not of_type(commands, CloseTransport)


def test_protocol_violation_notifies_and_leaves_state_unchanged():
    state = active_state()
    violation = ProtocolViolation(
        event_type=EventType.PROTOCOL_VIOLATION, ts_ms=0, connection_id=1, reason="invalid JSON"
    )
    new_state, commands = reduce(state, violation)

    assert new_state == state
    assert any(isinstance(n, ErrorReported) for n in notifications(commands))


def test_transport_lost_releases_everything_and_reports_error():
    state = active_state(is_listening=True, is_remote_speaking=True)
    lost = TransportLost(
        event_type=EventType.TRANSPORT_LOST, ts_ms=0, connection_id=1, reason="reset"
    )
    state, commands = reduce(state, lost)

    assert state.connection_state is ConnectionState.CLOSING
    assert of_type(commands, StopCapture)
    assert of_type(commands, StopPlayback)
    assert of_type(commands, DiscardPendingAudio)
    assert of_type(commands, CloseTransport) == [CloseTransport(connection_id=1)]
    assert ListeningChanged(False) in notifications(commands)
    assert SpeakingChanged(False) in notifications(commands)
    assert any(isinstance(n, ErrorReported) for n in notifications(commands))

    state, _ = reduce(state, transport_released(1))
    assert state.connection_state is ConnectionState.CLOSED
    assert state.is_listening is False
    assert state.connection_id == 1


# ---------------------------------------------------------------------
# Disconnect
# ---------------------------------------------------------------------

def test_disconnect_resets_all_fields_and_keeps_connection_id():
    state = active_state(
        is_listening=True,
        current_response_text="partial",
        last_user_transcript="hi",
        playback_seq=7,
    )
    state, commands = run(state, disconnect(), transport_released(1))

    assert state.connection_state is ConnectionState.CLOSED
    assert state.is_listening is False
    assert state.listen_requested is False
    assert state.is_remote_speaking is False
    assert state.current_response_text == ""
    assert state.config_sent is False
    assert state.playback_seq == 0
    assert state.connection_id == 1

    assert of_type(commands, CancelTimer) == [CancelTimer(timer_id=TIMER_LISTEN_RETRY)]


def test_disconnect_from_idle_or_closed_is_noop():
    for cs in (ConnectionState.IDLE, ConnectionState.CLOSED):
        state = SessionState(connection_state=cs, connection_id=3)
        new_state, commands = reduce(state, disconnect())

        assert new_state == state
        assert all(isinstance(c, LogEvent) for c in commands)


def test_reconnect_after_close_uses_fresh_connection_id():
    state, _ = run(
        active_state(),
        disconnect(),
        transport_released(1),
        connect(),
    )

    assert state.connection_state is ConnectionState.CONNECTING
    assert state.connection_id == 2


# ---------------------------------------------------------------------
# Stale connection gating
# ---------------------------------------------------------------------

def test_events_from_stale_connection_are_discarded():
    state = active_state(connection_id=2)

    for event in (
        session_created(1),
        delta(1, "ghost"),
        TransportLost(event_type=EventType.TRANSPORT_LOST, ts_ms=0, connection_id=1, reason="old"),
        transport_released(1),
    ):
        new_state, commands = reduce(state, event)
        assert new_state == state
        assert len(commands) == 1
        assert commands[0].event["details"]["reason"] == "stale_connection"


def test_inbound_events_after_close_are_ignored():
    state = SessionState(connection_state=ConnectionState.CLOSED, connection_id=1)
    new_state, commands = reduce(state, delta(1, "late"))

    assert new_state == state
    assert not notifications(commands)


def test_inbound_events_while_closing_are_ignored():
    state = active_state(connection_state=ConnectionState.CLOSING)
    new_state, commands = reduce(state, delta(1, "late"))

    assert new_state == state
    assert not notifications(commands)


# ---------------------------------------------------------------------
# Listening
# ---------------------------------------------------------------------

def test_start_listening_from_idle_connects_and_arms_retry():
    state, commands = reduce(SessionState(), start_listening())

    assert state.connection_state is ConnectionState.CONNECTING
    assert state.listen_requested is True
    assert of_type(commands, OpenTransport)
    timers = of_type(commands, StartTimer)
    assert len(timers) == 1
    assert timers[0].timer_id == TIMER_LISTEN_RETRY
    assert timers[0].timeout_event_type is EventType.LISTEN_RETRY_TICK


def test_deferred_listen_starts_capture_on_session_created():
    state, _ = run(SessionState(), start_listening(), transport_opened(1))
    state, commands = reduce(state, session_created(1))

    assert of_type(commands, StartCapture)
    assert state.is_listening is False

    state, commands = reduce(state, capture_started())
    assert state.is_listening is True
    assert state.listen_requested is False
    assert ListeningChanged(True) in notifications(commands)
    assert of_type(commands, CancelTimer)


def test_start_listening_in_active_starts_capture_immediately():
    state, commands = reduce(active_state(), start_listening())

    assert of_type(commands, StartCapture)
    assert not of_type(commands, StartTimer)
    assert state.listen_requested is True


def test_start_listening_is_idempotent():
    state = active_state(is_listening=True)
    new_state, commands = reduce(state, start_listening())

    assert new_state == state
    assert not of_type(commands, StartCapture)


def test_stop_listening_is_idempotent_and_keeps_playback():
    state, commands = reduce(active_state(is_listening=True), stop_listening())

    assert state.is_listening is False
    assert of_type(commands, StopCapture)
    assert not of_type(commands, StopPlayback)
    assert ListeningChanged(False) in notifications(commands)

    again, commands = reduce(state, stop_listening())
    assert again == state
    assert all(isinstance(c, LogEvent) for c in commands)


def test_listen_retry_is_bounded_and_ends_in_error():
    state, _ = run(SessionState(), start_listening(), transport_opened(1))

    commands: tuple[Command, ...] = ()
    for _ in range(LISTEN_RETRY_MAX_ATTEMPTS - 1):
        state, commands = reduce(state, retry_tick())
        assert state.listen_requested is True
        assert of_type(commands, StartTimer)

    state, commands = reduce(state, retry_tick())

    assert state.listen_requested is False
    assert not of_type(commands, StartTimer)
    errors = [n for n in notifications(commands) if isinstance(n, ErrorReported)]
    assert len(errors) == 1
    assert "Could not start listening" in errors[0].message
    # The connection attempt itself is not abandoned
    assert state.connection_state is ConnectionState.AWAITING_CONFIG

    # Further ticks are ignored
    again, _ = reduce(state, retry_tick())
    assert again == state


def test_listen_request_outlasts_a_slow_transport_open():
    state, _ = reduce(SessionState(), start_listening())
    assert state.connection_state is ConnectionState.CONNECTING

    waited_ms = 0
    while waited_ms < TRANSPORT_OPEN_TIMEOUT_S * 1000:
        state, _ = reduce(state, retry_tick())
        waited_ms += LISTEN_RETRY_DELAY_MS
        assert state.listen_requested is True

    # The open succeeds right at its timeout
    state, commands = run(state, transport_opened(1), session_created(1))

    assert state.connection_state is ConnectionState.ACTIVE
    assert of_type(commands, StartCapture)
    assert not any(isinstance(n, ErrorReported) for n in notifications(commands))


def test_capture_failure_reports_error_and_keeps_connection():
    state = active_state(listen_requested=True)
    failed = CaptureFailed(event_type=EventType.CAPTURE_FAILED, ts_ms=0, reason="no microphone")
    state, commands = reduce(state, failed)

    assert state.connection_state is ConnectionState.ACTIVE
    assert state.is_listening is False
    assert state.listen_requested is False
    assert not of_type(commands, CloseTransport)
    assert any(
        isinstance(n, ErrorReported) and "no microphone" in n.message
        for n in notifications(commands)
    )


def test_capture_started_after_stop_is_undone():
    state = active_state()
    state, commands = reduce(state, capture_started())

    assert state.is_listening is False
    assert of_type(commands, StopCapture)
