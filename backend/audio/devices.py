"""
Local audio devices (sounddevice / PortAudio).

Two independently owned resources, each with its own start/stop lifecycle:
- SoundDeviceCapture: microphone input stream
- SoundDeviceOutput:  speaker output stream (driven by PlaybackScheduler)

No shared engine object: capture and playback never reconfigure each other.

sounddevice is imported on start() so that hosts without PortAudio can still
import the session stack (and run it with injected devices).
"""

from __future__ import annotations

import asyncio
from collections import deque
from typing import Any, Callable, Deque, Protocol, runtime_checkable

import numpy as np

from audio.frames import RawAudioFrame
from audio.playback import PullFn
from constants import (
    CAPTURE_BLOCK_MS,
    PLAYBACK_BLOCK_MS,
    WIRE_CHANNELS,
    WIRE_SAMPLE_RATE_HZ,
)
from errors import AudioDeviceError
from observability.logger import log_event


FrameAvailableFn = Callable[[], None]


@runtime_checkable
class CaptureStream(Protocol):
    """
    Microphone capture stream.

    start() begins capture and arranges for on_frame_available() to be
    called on the event loop whenever a new frame can be pulled with
    read_frame(). read_frame() is the pull-based frame provider: it returns
    the oldest unread frame, or None when nothing is pending.
    """

    def start(self, on_frame_available: FrameAvailableFn) -> None: ...
    def stop(self) -> None: ...
    def read_frame(self) -> RawAudioFrame | None: ...


def _import_sounddevice() -> Any:
    try:
        import sounddevice  # pylint: disable=import-outside-toplevel
    except (ImportError, OSError) as e:
        raise AudioDeviceError(f"sounddevice unavailable: {e!r}") from e
    return sounddevice


class SoundDeviceCapture:
    """Microphone capture at the device's native rate (float32)."""

    def __init__(
        self,
        *,
        sample_rate_hz: int,
        channels: int = 1,
        block_ms: int = CAPTURE_BLOCK_MS,
        device: int | str | None = None,
    ) -> None:
        self._sample_rate_hz = sample_rate_hz
        self._channels = channels
        self._blocksize = (sample_rate_hz * block_ms) // 1000
        self._device = device

        self._stream: Any = None
        # deque append/popleft are atomic; the PortAudio thread appends,
        # the event loop pops.
        self._frames: Deque[RawAudioFrame] = deque()

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    def start(self, on_frame_available: FrameAvailableFn) -> None:
        if self._stream is not None:
            return

        sd = _import_sounddevice()
        loop = asyncio.get_running_loop()

        def _callback(indata: np.ndarray, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
            if status:
                log_event({"event_type": "CAPTURE_STATUS", "status": str(status)})
            self._frames.append(
                RawAudioFrame(
                    samples=indata.copy(),
                    sample_rate_hz=self._sample_rate_hz,
                    channels=self._channels,
                )
            )
            loop.call_soon_threadsafe(on_frame_available)

        try:
            stream = sd.InputStream(
                samplerate=self._sample_rate_hz,
                channels=self._channels,
                dtype="float32",
                blocksize=self._blocksize,
                device=self._device,
                callback=_callback,
            )
            stream.start()
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise AudioDeviceError(f"failed to start microphone: {e!r}") from e

        self._stream = stream

    def stop(self) -> None:
        stream = self._stream
        self._stream = None
        self._frames.clear()
        if stream is None:
            return
        try:
            stream.stop()
            stream.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({"event_type": "CAPTURE_STOP_ERROR", "error": repr(e)})

    def read_frame(self) -> RawAudioFrame | None:
        try:
            return self._frames.popleft()
        except IndexError:
            return None


class SoundDeviceOutput:
    """PCM16 mono output stream at the wire rate, fed by a pull function."""

    def __init__(
        self,
        *,
        sample_rate_hz: int = WIRE_SAMPLE_RATE_HZ,
        block_ms: int = PLAYBACK_BLOCK_MS,
        device: int | str | None = None,
    ) -> None:
        self._sample_rate_hz = sample_rate_hz
        self._blocksize = (sample_rate_hz * block_ms) // 1000
        self._device = device
        self._stream: Any = None

    @property
    def is_active(self) -> bool:
        return self._stream is not None

    def start(self, pull: PullFn) -> None:
        if self._stream is not None:
            return

        sd = _import_sounddevice()

        def _callback(outdata: Any, frames: int, time_info: Any, status: Any) -> None:  # pylint: disable=unused-argument
            outdata[:] = pull(len(outdata))

        try:
            stream = sd.RawOutputStream(
                samplerate=self._sample_rate_hz,
                channels=WIRE_CHANNELS,
                dtype="int16",
                blocksize=self._blocksize,
                device=self._device,
                callback=_callback,
            )
            stream.start()
        except Exception as e:  # pylint: disable=broad-exception-caught
            raise AudioDeviceError(f"failed to start output: {e!r}") from e

        self._stream = stream

    def stop(self) -> None:
        stream = self._stream
        self._stream = None
        if stream is None:
            return
        try:
            # abort() drops whatever PortAudio has already buffered
            stream.abort()
            stream.close()
        except Exception as e:  # pylint: disable=broad-exception-caught
            log_event({"event_type": "OUTPUT_STOP_ERROR", "error": repr(e)})
