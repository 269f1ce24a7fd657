"""
Observer registry for session notifications.

Observers subscribe explicitly and receive every notification emitted after
subscription, in emission order, on the event loop thread.

An observer that raises is logged and skipped; it never affects other
observers or the session.
"""

from __future__ import annotations

import time
from typing import Callable

from observability.logger import log_event
from orchestrator.enums.state import ConnectionState
from orchestrator.notifications import (
    AssistantResponseUpdated,
    ConnectionStateChanged,
    ErrorReported,
    ListeningChanged,
    Notification,
    SpeakingChanged,
    TranscriptReceived,
)


class SessionObserver:
    """
    Base observer. Override only the callbacks you need.

    All callbacks run synchronously on the event loop and must not block.
    """

    def on_connection_state_changed(self, state: ConnectionState) -> None:
        pass

    def on_transcript(self, text: str) -> None:
        pass

    def on_assistant_response(self, text: str) -> None:
        """Cumulative assistant text for the current response."""

    def on_error(self, message: str) -> None:
        pass

    def on_speaking_changed(self, speaking: bool) -> None:
        pass

    def on_listening_changed(self, listening: bool) -> None:
        pass


def dispatch(observer: SessionObserver, notification: Notification) -> None:
    """Invoke the observer callback matching the notification."""
    if isinstance(notification, ConnectionStateChanged):
        observer.on_connection_state_changed(notification.state)
    elif isinstance(notification, TranscriptReceived):
        observer.on_transcript(notification.text)
    elif isinstance(notification, AssistantResponseUpdated):
        observer.on_assistant_response(notification.text)
    elif isinstance(notification, ErrorReported):
        observer.on_error(notification.message)
    elif isinstance(notification, SpeakingChanged):
        observer.on_speaking_changed(notification.speaking)
    elif isinstance(notification, ListeningChanged):
        observer.on_listening_changed(notification.listening)
    else:
        raise ValueError(f"Unknown notification: {notification!r}")


class ObserverRegistry:
    """Ordered set of observers for one session."""

    def __init__(self, *, session_id: str) -> None:
        self._session_id = session_id
        self._observers: list[SessionObserver] = []

    def __len__(self) -> int:
        return len(self._observers)

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        """
        Register an observer.

        Returns an unsubscribe function (idempotent).
        """
        self._observers.append(observer)

        def _unsubscribe() -> None:
            try:
                self._observers.remove(observer)
            except ValueError:
                pass

        return _unsubscribe

    def notify(self, notification: Notification) -> None:
        # Snapshot: observers may unsubscribe from inside a callback
        for observer in tuple(self._observers):
            try:
                dispatch(observer, notification)
            except Exception as e:  # pylint: disable=broad-exception-caught
                log_event({
                    "ts_ms": time.time_ns() // 1_000_000,
                    "event_type": "OBSERVER_ERROR",
                    "session_id": self._session_id,
                    "observer": type(observer).__name__,
                    "notification": type(notification).__name__,
                    "error": repr(e),
                })
