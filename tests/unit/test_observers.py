# pylint: disable=missing-module-docstring,missing-function-docstring

import json

import pytest

from observability import logger
from orchestrator.enums.state import ConnectionState
from orchestrator.notifications import (
    AssistantResponseUpdated,
    ConnectionStateChanged,
    ErrorReported,
    ListeningChanged,
    SpeakingChanged,
    TranscriptReceived,
    notification_to_json,
)
from session.observers import ObserverRegistry, SessionObserver

from session_fakes import RecordingObserver


class ExplodingObserver(SessionObserver):
    def on_transcript(self, text: str) -> None:
        raise RuntimeError("observer bug")


def test_notifications_are_dispatched_to_matching_callbacks():
    registry = ObserverRegistry(session_id="sess_1")
    observer = RecordingObserver()
    registry.subscribe(observer)

    registry.notify(ConnectionStateChanged(ConnectionState.CONNECTING))
    registry.notify(TranscriptReceived("hello"))
    registry.notify(AssistantResponseUpdated("Hi"))
    registry.notify(ErrorReported("oops"))
    registry.notify(SpeakingChanged(True))
    registry.notify(ListeningChanged(True))

    assert observer.states == [ConnectionState.CONNECTING]
    assert observer.transcripts == ["hello"]
    assert observer.responses == ["Hi"]
    assert observer.errors == ["oops"]
    assert observer.speaking == [True]
    assert observer.listening == [True]


def test_unsubscribe_is_idempotent():
    registry = ObserverRegistry(session_id="sess_1")
    observer = RecordingObserver()
    unsubscribe = registry.subscribe(observer)

    unsubscribe()
    unsubscribe()
    registry.notify(TranscriptReceived("hello"))

    assert len(registry) == 0
    assert not observer.transcripts


def test_failing_observer_is_logged_and_others_still_notified(
    monkeypatch: pytest.MonkeyPatch,
):
    lines: list[str] = []
    monkeypatch.setattr(logger, "_print", lines.append)

    registry = ObserverRegistry(session_id="sess_1")
    good = RecordingObserver()
    registry.subscribe(ExplodingObserver())
    registry.subscribe(good)

    registry.notify(TranscriptReceived("hello"))

    assert good.transcripts == ["hello"]
    logged = [json.loads(line) for line in lines]
    assert logged[0]["event_type"] == "OBSERVER_ERROR"
    assert logged[0]["observer"] == "ExplodingObserver"
    assert logged[0]["session_id"] == "sess_1"


def test_notification_json_shapes():
    assert notification_to_json(ConnectionStateChanged(ConnectionState.ACTIVE)) == {
        "type": "connection_state",
        "state": "ACTIVE",
    }
    assert notification_to_json(TranscriptReceived("hi")) == {
        "type": "transcript",
        "text": "hi",
    }
    assert notification_to_json(SpeakingChanged(False)) == {
        "type": "speaking",
        "speaking": False,
    }
