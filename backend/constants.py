"""
BEHAVIOR-AS-CONSTANTS
---------------------
Single source of truth for all behavioral invariants of the voice session.

Rules:
- If changing a value changes runtime behavior, it belongs here.
- Deployment knobs (keys, model names, VAD tuning) belong in config.py.
- Other modules MUST import from this file.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final, Tuple

# =============================================================================
# Wire Audio Format (PCM16 mono @ 24kHz)
# =============================================================================

WIRE_SAMPLE_RATE_HZ: Final[int] = 24_000
WIRE_CHANNELS: Final[int] = 1
WIRE_SAMPLE_WIDTH_BYTES: Final[int] = 2  # PCM16 (signed 16-bit, little-endian)
WIRE_AUDIO_FORMAT_NAME: Final[str] = "pcm16"

# Device capture defaults (most phone / laptop mics run at 48kHz)
CAPTURE_SAMPLE_RATE_HZ_DEFAULT: Final[int] = 48_000
CAPTURE_BLOCK_MS: Final[int] = 100

# Output device block size (frames pulled per device callback)
PLAYBACK_BLOCK_MS: Final[int] = 20

# =============================================================================
# Outbound Audio Queue
# =============================================================================

# Pending outbound audio is only held between "listening requested" and
# "session active"; anything older than this is stale speech.
PENDING_OUTBOUND_AUDIO_MAX_S: Final[float] = 2.0

# =============================================================================
# Transport
# =============================================================================

TRANSPORT_OPEN_TIMEOUT_S: Final[float] = 10.0
TRANSPORT_CLOSE_TIMEOUT_S: Final[float] = 2.0

REALTIME_BETA_HEADER: Final[Tuple[str, str]] = ("OpenAI-Beta", "realtime=v1")

# =============================================================================
# Listen Retry (deferred capture start while connecting)
# =============================================================================

LISTEN_RETRY_DELAY_MS: Final[int] = 1_500

# The retry window outlasts the transport open timeout by one delay, so a
# slow but successful connect still starts capture.
LISTEN_RETRY_MAX_ATTEMPTS: Final[int] = (
    math.ceil(TRANSPORT_OPEN_TIMEOUT_S * 1000 / LISTEN_RETRY_DELAY_MS) + 1
)

TIMER_LISTEN_RETRY: Final[str] = "listen_retry"

# =============================================================================
# Realtime Protocol Message Types
# =============================================================================

MSG_SESSION_UPDATE: Final[str] = "session.update"
MSG_AUDIO_APPEND: Final[str] = "input_audio_buffer.append"
MSG_CONVERSATION_ITEM_CREATE: Final[str] = "conversation.item.create"

MSG_SESSION_CREATED: Final[str] = "session.created"
MSG_SESSION_UPDATED: Final[str] = "session.updated"
MSG_ERROR: Final[str] = "error"
MSG_SPEECH_STARTED: Final[str] = "input_audio_buffer.speech_started"
MSG_SPEECH_STOPPED: Final[str] = "input_audio_buffer.speech_stopped"
MSG_USER_TRANSCRIPT: Final[str] = (
    "conversation.item.input_audio_transcription.completed"
)
MSG_TRANSCRIPT_DELTA: Final[str] = "response.audio_transcript.delta"
MSG_TRANSCRIPT_DONE: Final[str] = "response.audio_transcript.done"
MSG_AUDIO_DELTA: Final[str] = "response.audio.delta"
MSG_RESPONSE_DONE: Final[str] = "response.done"

# =============================================================================
# Session Configuration Defaults
# =============================================================================

SESSION_MODALITIES: Final[Tuple[str, ...]] = ("text", "audio")
TURN_DETECTION_TYPE: Final[str] = "server_vad"

CAMERA_CONTEXT_NOTE: Final[str] = (
    "[Camera view attached - analyze this along with the user's voice request]"
)
CAMERA_JPEG_MIME: Final[str] = "image/jpeg"

# =============================================================================
# Observability
# =============================================================================

LOG_STRING_FIELD_MAX_CHARS: Final[int] = 256

# Notifications buffered per display client on /ws/observe
OBSERVER_QUEUE_MAX_ITEMS: Final[int] = 256


# =============================================================================
# Convenience Bundles
# =============================================================================

@dataclass(frozen=True)
class AudioFormat:
    """
    Immutable descriptor of a PCM audio format.

    Convenience wrapper for passing format metadata around alongside bytes;
    it is NOT a second source of truth.
    """
    sample_rate_hz: int = WIRE_SAMPLE_RATE_HZ
    channels: int = WIRE_CHANNELS
    sample_width_bytes: int = WIRE_SAMPLE_WIDTH_BYTES

    @property
    def bytes_per_second(self) -> int:
        """Return PCM bytes per second of audio."""
        return self.sample_rate_hz * self.channels * self.sample_width_bytes

    def duration_s(self, num_bytes: int) -> float:
        """Return the duration of num_bytes of audio in this format."""
        if num_bytes <= 0:
            return 0.0
        return num_bytes / float(self.bytes_per_second)


WIRE_AUDIO_FORMAT: Final[AudioFormat] = AudioFormat()
