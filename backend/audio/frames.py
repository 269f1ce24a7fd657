"""
Audio frame primitives.

Pure data containers only.
No behavior, no queues, no timing logic.
"""

from __future__ import annotations
from dataclasses import dataclass

import numpy as np

from constants import AudioFormat, WIRE_AUDIO_FORMAT


@dataclass(frozen=True)
class RawAudioFrame:
    """
    One block of audio as delivered by the local capture device.

    samples:
        Native samples, shape (n,) or (n, channels). float32 in [-1.0, 1.0)
        or int16.

    sample_rate_hz / channels:
        Native device format; the codec converts to the wire format.
    """
    samples: np.ndarray
    sample_rate_hz: int
    channels: int = 1


@dataclass(frozen=True)
class AudioChunk:
    """
    Canonical encoded audio unit (wire format by default).

    sequence_num:
        Monotonic sequence number assigned by the producer (capture path or
        playback path). Used for ordering and debugging.

    pcm_bytes:
        PCM16 little-endian bytes in `audio_format`.

    ts_ms:
        Wall-clock timestamp when the chunk was produced. Observability only.

    A chunk is consumed exactly once, by the transport or by the
    playback scheduler.
    """
    sequence_num: int
    pcm_bytes: bytes
    ts_ms: int
    audio_format: AudioFormat = WIRE_AUDIO_FORMAT

    @property
    def duration_s(self) -> float:
        """Playback duration of this chunk."""
        return self.audio_format.duration_s(len(self.pcm_bytes))
