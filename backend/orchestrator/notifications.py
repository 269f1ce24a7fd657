"""
Observer notifications emitted by the reducer.

Each notification maps to exactly one observer callback:

    ConnectionStateChanged   -> on_connection_state_changed(state)
    TranscriptReceived       -> on_transcript(text)
    AssistantResponseUpdated -> on_assistant_response(cumulative_text)
    ErrorReported            -> on_error(message)
    SpeakingChanged          -> on_speaking_changed(speaking)
    ListeningChanged         -> on_listening_changed(listening)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Union

from orchestrator.enums.state import ConnectionState


@dataclass(frozen=True)
class ConnectionStateChanged:
    state: ConnectionState


@dataclass(frozen=True)
class TranscriptReceived:
    text: str


@dataclass(frozen=True)
class AssistantResponseUpdated:
    text: str


@dataclass(frozen=True)
class ErrorReported:
    message: str


@dataclass(frozen=True)
class SpeakingChanged:
    speaking: bool


@dataclass(frozen=True)
class ListeningChanged:
    listening: bool


Notification = Union[
    ConnectionStateChanged,
    TranscriptReceived,
    AssistantResponseUpdated,
    ErrorReported,
    SpeakingChanged,
    ListeningChanged,
]


def notification_to_json(notification: Notification) -> dict[str, Any]:
    """Wire shape used by display clients on the observer websocket."""
    if isinstance(notification, ConnectionStateChanged):
        return {"type": "connection_state", "state": notification.state.value}
    if isinstance(notification, TranscriptReceived):
        return {"type": "transcript", "text": notification.text}
    if isinstance(notification, AssistantResponseUpdated):
        return {"type": "assistant_response", "text": notification.text}
    if isinstance(notification, ErrorReported):
        return {"type": "error", "message": notification.message}
    if isinstance(notification, SpeakingChanged):
        return {"type": "speaking", "speaking": notification.speaking}
    if isinstance(notification, ListeningChanged):
        return {"type": "listening", "listening": notification.listening}
    raise ValueError(notification)
