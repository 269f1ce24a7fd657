"""
Authoritative session state container.

Rules:
- This dataclass is a pure data model.
- It contains ALL state the reducer may ever need.
- No behavior, no helpers, no derived logic.
"""
from __future__ import annotations

from dataclasses import dataclass, field

from config import AppConfig
from orchestrator.enums.state import ConnectionState
from orchestrator.retry import RetryAttempt


@dataclass(frozen=True)
class SessionState:
    """Immutable snapshot of all session-owned state."""

    # Static configuration for the session (endpoint, session.update payload,
    # barge-in and camera policy). Never changed by the reducer.
    config: AppConfig = field(default_factory=AppConfig)

    connection_state: ConnectionState = ConnectionState.IDLE

    # Monotonic; bumped on every new connection attempt and never reused.
    # Transport and inbound events carrying another id are stale.
    connection_id: int = 0

    # session.update has been sent on the current connection
    config_sent: bool = False

    # Capture is running and audio is being streamed
    is_listening: bool = False

    # Listening was requested but capture has not started yet
    listen_requested: bool = False
    listen_retry_attempt: RetryAttempt = field(
        default_factory=lambda: RetryAttempt(attempt=0)
    )

    # Remote VAD says the user is speaking
    is_remote_speaking: bool = False

    # Assistant transcript accumulated for the current response
    current_response_text: str = ""

    last_user_transcript: str = ""
    last_error: str | None = None

    # Sequence number of the last response audio chunk scheduled for playback
    playback_seq: int = 0
