"""
Authoritative connection state enumeration.

Rules:
- This enum defines ONLY the session lifecycle states.
- No behavior, no helper methods, no side effects.
- Transitions are defined exclusively in the reducer.
"""

from __future__ import annotations

from enum import Enum


class ConnectionState(str, Enum):
    """
    Lifecycle of one realtime voice session.

    Listening is NOT a state: it is a flag that may be requested in any
    state and is honored once the session is ACTIVE.
    """

    IDLE = "IDLE"
    CONNECTING = "CONNECTING"
    AWAITING_CONFIG = "AWAITING_CONFIG"
    ACTIVE = "ACTIVE"
    CLOSING = "CLOSING"
    CLOSED = "CLOSED"


# States in which a transport connection exists (or is being opened)
LIVE_STATES = frozenset({
    ConnectionState.CONNECTING,
    ConnectionState.AWAITING_CONFIG,
    ConnectionState.ACTIVE,
})

# States from which connect() starts a fresh connection
RESTARTABLE_STATES = frozenset({
    ConnectionState.IDLE,
    ConnectionState.CLOSED,
})
