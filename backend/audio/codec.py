"""
Audio frame codec: native capture audio <-> wire format.

Wire format is fixed: PCM16 little-endian, mono, 24kHz.

- AudioFrameCodec: pure, stateless transforms
    encode(): one native RawAudioFrame -> wire PCM16 bytes (mixdown + resample)
    decode(): wire PCM16 bytes -> validated bytes for playback
- CaptureEncoder: continuous capture encoding; carries resampler history
  from one capture block to the next so block edges stay seamless
"""

from __future__ import annotations

from math import gcd

import numpy as np
from scipy import signal

from audio.frames import RawAudioFrame
from constants import WIRE_SAMPLE_RATE_HZ, WIRE_SAMPLE_WIDTH_BYTES
from errors import CodecError


def _to_float_mono(frame: RawAudioFrame) -> np.ndarray:
    samples = np.asarray(frame.samples)

    if samples.dtype == np.int16:
        samples = samples.astype(np.float32) / 32768.0
    elif np.issubdtype(samples.dtype, np.floating):
        samples = samples.astype(np.float32, copy=False)
    else:
        raise CodecError(f"unsupported sample dtype: {samples.dtype}")

    if samples.ndim == 2:
        # (frames, channels) -> mono
        samples = samples.mean(axis=1)
    elif samples.ndim != 1:
        raise CodecError(f"unsupported sample shape: {samples.shape}")

    return samples


def _float_to_pcm16(samples: np.ndarray) -> bytes:
    scaled = np.clip(samples * 32768.0, -32768, 32767)
    return scaled.astype("<i2").tobytes()


def _check_rate(frame: RawAudioFrame) -> None:
    if frame.sample_rate_hz <= 0:
        raise CodecError(f"invalid sample rate: {frame.sample_rate_hz}")


def _ratio(source_rate_hz: int, target_rate_hz: int) -> tuple[int, int]:
    divisor = gcd(source_rate_hz, target_rate_hz)
    return target_rate_hz // divisor, source_rate_hz // divisor


class AudioFrameCodec:
    """Converts captured device audio to the realtime wire format."""

    def __init__(self, *, target_rate_hz: int = WIRE_SAMPLE_RATE_HZ) -> None:
        self._target_rate_hz = target_rate_hz

    @property
    def target_rate_hz(self) -> int:
        return self._target_rate_hz

    def encode(self, frame: RawAudioFrame) -> bytes:
        """
        Convert one isolated frame (any rate, any channel count) to PCM16 mono.

        Signal outside the frame is treated as silence. Use stream_encoder()
        for consecutive capture blocks.
        """
        _check_rate(frame)

        mono = _to_float_mono(frame)
        if mono.size == 0:
            return b""

        if frame.sample_rate_hz != self._target_rate_hz:
            up, down = _ratio(frame.sample_rate_hz, self._target_rate_hz)
            mono = signal.resample_poly(mono, up, down)

        return _float_to_pcm16(mono)

    def decode(self, pcm_bytes: bytes) -> bytes:
        """
        Validate wire PCM16 bytes for playback.

        A truncated trailing sample is dropped rather than played as noise.
        """
        remainder = len(pcm_bytes) % WIRE_SAMPLE_WIDTH_BYTES
        if remainder:
            pcm_bytes = pcm_bytes[: len(pcm_bytes) - remainder]
        return pcm_bytes

    def stream_encoder(self) -> CaptureEncoder:
        """New encoder for one continuous capture stream."""
        return CaptureEncoder(target_rate_hz=self._target_rate_hz)


class _StreamResampler:
    """
    Block-wise resample_poly with filter history.

    Output sample g sits at input position g * down / up. It is emitted once
    every input sample under its filter has arrived, so consecutive blocks
    produce exactly what one call over the joined signal would, minus a tail
    of half a filter length that is held back until the next block.
    """

    def __init__(self, source_rate_hz: int, target_rate_hz: int) -> None:
        self.source_rate_hz = source_rate_hz
        self._up, self._down = _ratio(source_rate_hz, target_rate_hz)
        # resample_poly's default filter spans half_len taps each side
        # at the upsampled rate
        self._half_len = 10 * max(self._up, self._down)

        self._buffer = np.zeros(0, dtype=np.float32)
        # Absolute input index of _buffer[0]; always a multiple of down
        self._buffer_start = 0
        self._next_out = 0

    def process(self, samples: np.ndarray) -> np.ndarray:
        up, down = self._up, self._down

        self._buffer = np.concatenate((self._buffer, samples))
        end = self._buffer_start + self._buffer.size

        stop = (end * up - self._half_len - 1) // down + 1
        if stop <= self._next_out:
            return np.zeros(0, dtype=np.float32)

        resampled = signal.resample_poly(self._buffer, up, down)
        first_out = self._buffer_start * up // down
        out = resampled[self._next_out - first_out : stop - first_out]
        self._next_out = stop

        needed = (stop * down - self._half_len) // up
        keep_from = max(self._buffer_start, (needed // down) * down)
        self._buffer = self._buffer[keep_from - self._buffer_start :]
        self._buffer_start = keep_from

        return out


class CaptureEncoder:
    """
    Stateful encoder for consecutive capture blocks.

    Reset whenever capture restarts so audio from separate listening spans
    is never filtered together.
    """

    def __init__(self, *, target_rate_hz: int = WIRE_SAMPLE_RATE_HZ) -> None:
        self._target_rate_hz = target_rate_hz
        self._resampler: _StreamResampler | None = None

    def reset(self) -> None:
        self._resampler = None

    def encode(self, frame: RawAudioFrame) -> bytes:
        """Encode the next capture block to PCM16 mono at the wire rate."""
        _check_rate(frame)

        mono = _to_float_mono(frame)
        if mono.size == 0:
            return b""

        if frame.sample_rate_hz == self._target_rate_hz:
            return _float_to_pcm16(mono)

        resampler = self._resampler
        if resampler is None or resampler.source_rate_hz != frame.sample_rate_hz:
            resampler = _StreamResampler(frame.sample_rate_hz, self._target_rate_hz)
            self._resampler = resampler

        return _float_to_pcm16(resampler.process(mono))
