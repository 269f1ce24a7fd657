"""
Duplex transport contract.

This module defines the *interface only*: no reconnect policy, no protocol
parsing, no state machine logic.

Key invariants:
- One transport instance carries exactly one connection (open once, close once).
- There is no automatic reconnect; failures surface to the caller.
- messages() ends normally when the remote closes the connection cleanly and
  raises TransportClosedError when the connection fails.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AsyncIterator


class DuplexTransport(ABC):
    """
    Persistent, message-oriented, bidirectional connection.

    Implementations are responsible for:
    - Opening the connection with the given headers
    - Sending text or binary frames
    - Yielding inbound frames in arrival order
    - Releasing the connection on close()

    Non-responsibilities:
    - No JSON parsing or message construction
    - No retries
    """

    @abstractmethod
    async def open(self, url: str, headers: dict[str, str]) -> None:
        """
        Open the connection.

        Raises:
            TransportError if the connection cannot be established.
        """
        raise NotImplementedError

    @abstractmethod
    async def send(self, message: str | bytes) -> None:
        """
        Send one frame.

        Raises:
            TransportClosedError if the connection is no longer open.
            TransportError for any other send failure.
        """
        raise NotImplementedError

    @abstractmethod
    def messages(self) -> AsyncIterator[str | bytes]:
        """Inbound frames, in arrival order, until the connection ends."""
        raise NotImplementedError

    @abstractmethod
    async def close(self) -> None:
        """Close the connection. Idempotent; never raises."""
        raise NotImplementedError
