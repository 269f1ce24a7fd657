"""
Unified event definitions for the session reducer.

Rules:
- Events describe facts that have occurred (or requests that were made).
- Events carry data only (no behavior).
- All reducer decisions are based on these events.
- No clocks, no timers, no async, no side effects.

Events produced by a specific transport connection carry its connection_id;
the reducer discards them once that connection is no longer current.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


# =============================================================================
# Event Type Enumeration
# =============================================================================

class EventType(str, Enum):
    """
    Canonical event types understood by the reducer.

    Every (state, event_type) pair must be explicitly handled
    or explicitly ignored by the reducer.
    """

    # ------------------------------------------------------------------
    # Application requests
    # ------------------------------------------------------------------
    CONNECT_REQUESTED = "CONNECT_REQUESTED"
    DISCONNECT_REQUESTED = "DISCONNECT_REQUESTED"
    START_LISTENING_REQUESTED = "START_LISTENING_REQUESTED"
    STOP_LISTENING_REQUESTED = "STOP_LISTENING_REQUESTED"

    # ------------------------------------------------------------------
    # Timers
    # ------------------------------------------------------------------
    LISTEN_RETRY_TICK = "LISTEN_RETRY_TICK"

    # ------------------------------------------------------------------
    # Transport lifecycle
    # ------------------------------------------------------------------
    TRANSPORT_OPENED = "TRANSPORT_OPENED"
    TRANSPORT_FAILED = "TRANSPORT_FAILED"
    TRANSPORT_LOST = "TRANSPORT_LOST"
    TRANSPORT_RELEASED = "TRANSPORT_RELEASED"
    SEND_FAILED = "SEND_FAILED"

    # ------------------------------------------------------------------
    # Local devices
    # ------------------------------------------------------------------
    CAPTURE_STARTED = "CAPTURE_STARTED"
    CAPTURE_FAILED = "CAPTURE_FAILED"
    PLAYBACK_FAILED = "PLAYBACK_FAILED"

    # ------------------------------------------------------------------
    # Inbound realtime events
    # ------------------------------------------------------------------
    SESSION_CREATED = "SESSION_CREATED"
    SESSION_UPDATED = "SESSION_UPDATED"
    REMOTE_ERROR = "REMOTE_ERROR"
    SPEECH_STARTED = "SPEECH_STARTED"
    SPEECH_STOPPED = "SPEECH_STOPPED"
    USER_TRANSCRIPT = "USER_TRANSCRIPT"
    ASSISTANT_TEXT_DELTA = "ASSISTANT_TEXT_DELTA"
    ASSISTANT_TEXT_DONE = "ASSISTANT_TEXT_DONE"
    ASSISTANT_AUDIO_DELTA = "ASSISTANT_AUDIO_DELTA"
    RESPONSE_DONE = "RESPONSE_DONE"
    PROTOCOL_VIOLATION = "PROTOCOL_VIOLATION"


# =============================================================================
# Base Event
# =============================================================================

@dataclass(frozen=True)
class Event:
    """
    Base event type.

    All events must specify:
    - event_type: discriminant
    - ts_ms: timestamp provided by the source (or fake in tests)
    """

    event_type: EventType
    ts_ms: int


@dataclass(frozen=True)
class ConnectionEvent(Event):
    """
    Base class for events produced by one transport connection.

    The reducer MUST ignore events whose connection_id does not match the
    current connection.
    """

    connection_id: int


# =============================================================================
# Application Requests
# =============================================================================

@dataclass(frozen=True)
class ConnectRequested(Event):
    """Application asked to open the voice session."""


@dataclass(frozen=True)
class DisconnectRequested(Event):
    """Application asked to tear the voice session down."""
    reason: str = "client"


@dataclass(frozen=True)
class StartListeningRequested(Event):
    """Application asked to start microphone capture."""


@dataclass(frozen=True)
class StopListeningRequested(Event):
    """Application asked to stop microphone capture."""


# =============================================================================
# Timers
# =============================================================================

@dataclass(frozen=True)
class ListenRetryTick(Event):
    """Deferred capture-start retry delay elapsed."""


# =============================================================================
# Transport Lifecycle
# =============================================================================

@dataclass(frozen=True)
class TransportOpened(ConnectionEvent):
    """Websocket handshake completed. The session is not usable yet."""


@dataclass(frozen=True)
class TransportFailed(ConnectionEvent):
    """Transport could not be opened."""
    reason: str


@dataclass(frozen=True)
class TransportLost(ConnectionEvent):
    """Connection closed or failed after it was opened."""
    reason: str


@dataclass(frozen=True)
class TransportReleased(ConnectionEvent):
    """Transport for this connection has been closed by the runtime."""


@dataclass(frozen=True)
class SendFailed(ConnectionEvent):
    """A single outbound message could not be sent; connection still up."""
    reason: str


# =============================================================================
# Local Devices
# =============================================================================

@dataclass(frozen=True)
class CaptureStarted(Event):
    """Microphone capture is running."""


@dataclass(frozen=True)
class CaptureFailed(Event):
    """Microphone could not be started, or captured audio could not be encoded."""
    reason: str


@dataclass(frozen=True)
class PlaybackFailed(Event):
    """Output device could not play response audio."""
    reason: str


# =============================================================================
# Inbound Realtime Events
# =============================================================================

@dataclass(frozen=True)
class SessionCreated(ConnectionEvent):
    """Remote session exists; configuration may now be sent."""


@dataclass(frozen=True)
class SessionUpdated(ConnectionEvent):
    """Remote acknowledged the session configuration."""


@dataclass(frozen=True)
class RemoteError(ConnectionEvent):
    """
    Error reported by the remote service.

    Usually scoped to a single message (rate limits, malformed item);
    never tears the session down.
    """
    message: str


@dataclass(frozen=True)
class SpeechStarted(ConnectionEvent):
    """Remote VAD detected the start of user speech."""


@dataclass(frozen=True)
class SpeechStopped(ConnectionEvent):
    """Remote VAD detected the end of user speech."""


@dataclass(frozen=True)
class UserTranscript(ConnectionEvent):
    """Final transcription of one user utterance."""
    text: str


@dataclass(frozen=True)
class AssistantTextDelta(ConnectionEvent):
    """Incremental assistant transcript text."""
    text: str


@dataclass(frozen=True)
class AssistantTextDone(ConnectionEvent):
    """Authoritative final assistant transcript for the response."""
    text: str


@dataclass(frozen=True)
class AssistantAudioDelta(ConnectionEvent):
    """One chunk of assistant audio (decoded PCM16 bytes)."""
    pcm_bytes: bytes


@dataclass(frozen=True)
class ResponseDone(ConnectionEvent):
    """Assistant turn finished."""


@dataclass(frozen=True)
class ProtocolViolation(ConnectionEvent):
    """Inbound message could not be parsed."""
    reason: str
