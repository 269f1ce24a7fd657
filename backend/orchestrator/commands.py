"""
Side-effect command definitions for the session reducer.

Rules:
- Commands are declarative requests for side effects.
- Commands are emitted by the reducer and executed by the runtime.
- No behavior, no async, no I/O, no clocks.
- Reducer logic remains pure and deterministic.
Invariant:
    - All concrete Command subclasses MUST be frozen dataclasses.
    - Commands are immutable value objects emitted by the reducer.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from orchestrator.events import EventType
from orchestrator.notifications import Notification

# =============================================================================
# Command Type Enumeration
# =============================================================================

class CommandType(str, Enum):
    """
    Canonical command types emitted by the reducer.

    These are stable discriminants used for logging, replay,
    and runtime dispatch.
    """

    # Transport
    OPEN_TRANSPORT = "OPEN_TRANSPORT"
    CLOSE_TRANSPORT = "CLOSE_TRANSPORT"
    SEND_JSON = "SEND_JSON"
    SEND_CAMERA_CONTEXT = "SEND_CAMERA_CONTEXT"

    # Capture / outbound audio
    START_CAPTURE = "START_CAPTURE"
    STOP_CAPTURE = "STOP_CAPTURE"
    DRAIN_PENDING_AUDIO = "DRAIN_PENDING_AUDIO"
    DISCARD_PENDING_AUDIO = "DISCARD_PENDING_AUDIO"

    # Playback
    ENQUEUE_PLAYBACK = "ENQUEUE_PLAYBACK"
    STOP_PLAYBACK = "STOP_PLAYBACK"

    # Timers
    START_TIMER = "START_TIMER"
    CANCEL_TIMER = "CANCEL_TIMER"

    # Observers
    NOTIFY = "NOTIFY"

    # Observability
    LOG_EVENT = "LOG_EVENT"


# =============================================================================
# Base Command
# =============================================================================

class Command:
    """
    Base command type.

    command_type is an explicit discriminant and must never be inferred
    from Python type identity.
    """

    command_type: CommandType


# =============================================================================
# Transport Commands
# =============================================================================

@dataclass(frozen=True)
class OpenTransport(Command):
    """
    Open a new transport connection.

    The runtime resolves credential_name into an Authorization header, adds
    it to headers, opens the socket and must answer with exactly one
    TransportOpened or TransportFailed for connection_id.
    """
    connection_id: int
    url: str
    credential_name: str
    headers: tuple[tuple[str, str], ...] = ()
    command_type: CommandType = CommandType.OPEN_TRANSPORT


@dataclass(frozen=True)
class CloseTransport(Command):
    """
    Close the transport for connection_id (if any).

    The runtime must answer with TransportReleased once closed.
    """
    connection_id: int
    command_type: CommandType = CommandType.CLOSE_TRANSPORT


@dataclass(frozen=True)
class SendJSON(Command):
    """Send one JSON control message on the current connection."""
    connection_id: int
    message: dict[str, Any]
    command_type: CommandType = CommandType.SEND_JSON


@dataclass(frozen=True)
class SendCameraContext(Command):
    """Grab the latest camera frame (if any) and send it as a user item."""
    connection_id: int
    command_type: CommandType = CommandType.SEND_CAMERA_CONTEXT


# =============================================================================
# Capture / Outbound Audio Commands
# =============================================================================

@dataclass(frozen=True)
class StartCapture(Command):
    """
    Start microphone capture.

    The runtime must answer with exactly one CaptureStarted or CaptureFailed.
    """
    command_type: CommandType = CommandType.START_CAPTURE


@dataclass(frozen=True)
class StopCapture(Command):
    """Stop microphone capture. Idempotent."""
    command_type: CommandType = CommandType.STOP_CAPTURE


@dataclass(frozen=True)
class DrainPendingAudio(Command):
    """Flush buffered outbound audio to the current connection, in order."""
    connection_id: int
    command_type: CommandType = CommandType.DRAIN_PENDING_AUDIO


@dataclass(frozen=True)
class DiscardPendingAudio(Command):
    """Drop buffered outbound audio without sending it."""
    command_type: CommandType = CommandType.DISCARD_PENDING_AUDIO


# =============================================================================
# Playback Commands
# =============================================================================

@dataclass(frozen=True)
class EnqueuePlayback(Command):
    """Schedule one assistant audio chunk after everything already queued."""
    sequence_num: int
    pcm_bytes: bytes
    command_type: CommandType = CommandType.ENQUEUE_PLAYBACK


@dataclass(frozen=True)
class StopPlayback(Command):
    """Halt playback and discard queued response audio. Idempotent."""
    command_type: CommandType = CommandType.STOP_PLAYBACK


# =============================================================================
# Timer Commands
# =============================================================================

@dataclass(frozen=True)
class StartTimer(Command):
    """
    Request to start a named timer.

    On expiration, the runtime must inject the specified timeout event.
    Starting a timer that is already running replaces it.
    """
    timer_id: str
    duration_ms: int
    timeout_event_type: EventType
    command_type: CommandType = CommandType.START_TIMER


@dataclass(frozen=True)
class CancelTimer(Command):
    """Request to cancel a previously scheduled timer."""
    timer_id: str
    command_type: CommandType = CommandType.CANCEL_TIMER


# =============================================================================
# Observer Commands
# =============================================================================

@dataclass(frozen=True)
class Notify(Command):
    """Deliver one notification to every subscribed observer."""
    notification: Notification
    command_type: CommandType = CommandType.NOTIFY


# =============================================================================
# Observability Commands
# =============================================================================

@dataclass(frozen=True)
class LogEvent(Command):
    """Request to emit a structured observability event."""
    event: dict[str, Any]
    command_type: CommandType = CommandType.LOG_EVENT
