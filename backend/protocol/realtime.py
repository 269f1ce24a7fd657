"""
Realtime wire protocol (JSON over websocket).

Outbound (client -> remote):
    session.update               session configuration, sent once per connection
    input_audio_buffer.append    {"audio": base64 PCM16 24kHz mono}
    conversation.item.create     user message (camera context)

Inbound (remote -> client), every message carries a "type" discriminant:
    session.created / session.updated / error
    input_audio_buffer.speech_started / speech_stopped
    conversation.item.input_audio_transcription.completed   {"transcript"}
    response.audio_transcript.delta                         {"delta"}
    response.audio_transcript.done                          {"transcript"}
    response.audio.delta                                    {"delta": base64}
    response.done

Usage example:

    try:
        event = parse_inbound(raw, connection_id=cid, ts_ms=now_ms)
    except RealtimeProtocolError as e:
        event = ProtocolViolation(...)

    if event is None:
        # recognized JSON, unknown type: log and drop
        ...
"""

from __future__ import annotations

import base64
import binascii
import json
from typing import Any

from config import AppConfig
from constants import (
    CAMERA_CONTEXT_NOTE,
    CAMERA_JPEG_MIME,
    MSG_AUDIO_APPEND,
    MSG_AUDIO_DELTA,
    MSG_CONVERSATION_ITEM_CREATE,
    MSG_ERROR,
    MSG_RESPONSE_DONE,
    MSG_SESSION_CREATED,
    MSG_SESSION_UPDATE,
    MSG_SESSION_UPDATED,
    MSG_SPEECH_STARTED,
    MSG_SPEECH_STOPPED,
    MSG_TRANSCRIPT_DELTA,
    MSG_TRANSCRIPT_DONE,
    MSG_USER_TRANSCRIPT,
    SESSION_MODALITIES,
    TURN_DETECTION_TYPE,
    WIRE_AUDIO_FORMAT_NAME,
)
from orchestrator.events import (
    AssistantAudioDelta,
    AssistantTextDelta,
    AssistantTextDone,
    ConnectionEvent,
    EventType,
    RemoteError,
    ResponseDone,
    SessionCreated,
    SessionUpdated,
    SpeechStarted,
    SpeechStopped,
    UserTranscript,
)


# -------------------------
# Exceptions
# -------------------------

class RealtimeProtocolError(Exception):
    """Inbound message is not valid realtime protocol JSON."""


# -------------------------
# Outbound builders
# -------------------------

def build_session_update(config: AppConfig) -> dict[str, Any]:
    """session.update payload for the configured voice session."""
    return {
        "type": MSG_SESSION_UPDATE,
        "session": {
            "modalities": list(SESSION_MODALITIES),
            "instructions": config.instructions,
            "voice": config.voice,
            "input_audio_format": WIRE_AUDIO_FORMAT_NAME,
            "output_audio_format": WIRE_AUDIO_FORMAT_NAME,
            "input_audio_transcription": {
                "model": config.transcription_model,
            },
            "turn_detection": {
                "type": TURN_DETECTION_TYPE,
                "threshold": config.vad_threshold,
                "prefix_padding_ms": config.vad_prefix_padding_ms,
                "silence_duration_ms": config.vad_silence_duration_ms,
            },
            "temperature": config.temperature,
            "max_response_output_tokens": config.max_response_output_tokens,
        },
    }


def build_audio_append(pcm_bytes: bytes) -> dict[str, Any]:
    """input_audio_buffer.append carrying one wire-format audio chunk."""
    return {
        "type": MSG_AUDIO_APPEND,
        "audio": base64.b64encode(pcm_bytes).decode("ascii"),
    }


def build_camera_context(jpeg_bytes: bytes) -> dict[str, Any]:
    """User message attaching the current camera view to the conversation."""
    encoded = base64.b64encode(jpeg_bytes).decode("ascii")
    return {
        "type": MSG_CONVERSATION_ITEM_CREATE,
        "item": {
            "type": "message",
            "role": "user",
            "content": [
                {"type": "input_text", "text": CAMERA_CONTEXT_NOTE},
                {
                    "type": "input_image",
                    "image_url": f"data:{CAMERA_JPEG_MIME};base64,{encoded}",
                },
            ],
        },
    }


# -------------------------
# Inbound parsing
# -------------------------

def _load(raw: str | bytes) -> dict[str, Any]:
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = bytes(raw).decode("utf-8")
        except UnicodeDecodeError as e:
            raise RealtimeProtocolError(f"binary frame is not UTF-8: {e}") from e

    try:
        message = json.loads(raw)
    except json.JSONDecodeError as e:
        raise RealtimeProtocolError(f"invalid JSON: {e.msg}") from e

    if not isinstance(message, dict):
        raise RealtimeProtocolError("message is not a JSON object")

    msg_type = message.get("type")
    if not isinstance(msg_type, str) or not msg_type:
        raise RealtimeProtocolError("message has no type")

    return message


def _require_str(message: dict[str, Any], field_name: str) -> str:
    value = message.get(field_name)
    if not isinstance(value, str):
        raise RealtimeProtocolError(
            f"{message['type']}: missing or non-string field {field_name!r}"
        )
    return value


def _error_message(message: dict[str, Any]) -> str:
    error = message.get("error")
    if isinstance(error, dict) and isinstance(error.get("message"), str):
        return error["message"]
    if isinstance(message.get("message"), str):
        return message["message"]
    return "unknown error"


def _decode_audio(message: dict[str, Any]) -> bytes:
    encoded = _require_str(message, "delta")
    try:
        return base64.b64decode(encoded, validate=True)
    except (binascii.Error, ValueError) as e:
        raise RealtimeProtocolError(f"{message['type']}: invalid base64 audio") from e


def message_type(raw: str | bytes) -> str | None:
    """Best-effort type lookup for logging dropped messages."""
    try:
        return _load(raw)["type"]
    except RealtimeProtocolError:
        return None


def parse_inbound(
    raw: str | bytes,
    *,
    connection_id: int,
    ts_ms: int,
) -> ConnectionEvent | None:
    """
    Parse one inbound frame into a reducer event.

    Returns None for well-formed messages of an unrecognized type.

    Raises:
        RealtimeProtocolError for malformed messages.
    """
    message = _load(raw)
    msg_type = message["type"]
    common = {"ts_ms": ts_ms, "connection_id": connection_id}

    if msg_type == MSG_SESSION_CREATED:
        return SessionCreated(event_type=EventType.SESSION_CREATED, **common)

    if msg_type == MSG_SESSION_UPDATED:
        return SessionUpdated(event_type=EventType.SESSION_UPDATED, **common)

    if msg_type == MSG_ERROR:
        return RemoteError(
            event_type=EventType.REMOTE_ERROR,
            message=_error_message(message),
            **common,
        )

    if msg_type == MSG_SPEECH_STARTED:
        return SpeechStarted(event_type=EventType.SPEECH_STARTED, **common)

    if msg_type == MSG_SPEECH_STOPPED:
        return SpeechStopped(event_type=EventType.SPEECH_STOPPED, **common)

    if msg_type == MSG_USER_TRANSCRIPT:
        return UserTranscript(
            event_type=EventType.USER_TRANSCRIPT,
            text=_require_str(message, "transcript"),
            **common,
        )

    if msg_type == MSG_TRANSCRIPT_DELTA:
        return AssistantTextDelta(
            event_type=EventType.ASSISTANT_TEXT_DELTA,
            text=_require_str(message, "delta"),
            **common,
        )

    if msg_type == MSG_TRANSCRIPT_DONE:
        return AssistantTextDone(
            event_type=EventType.ASSISTANT_TEXT_DONE,
            text=_require_str(message, "transcript"),
            **common,
        )

    if msg_type == MSG_AUDIO_DELTA:
        return AssistantAudioDelta(
            event_type=EventType.ASSISTANT_AUDIO_DELTA,
            pcm_bytes=_decode_audio(message),
            **common,
        )

    if msg_type == MSG_RESPONSE_DONE:
        return ResponseDone(event_type=EventType.RESPONSE_DONE, **common)

    return None
