"""
Playback scheduler for assistant response audio.

Responsibilities:
- Accept response chunks in arrival order (== playback order)
- Feed an output device continuously so irregular chunk arrival does not
  produce audible gaps (underruns are filled with silence)
- Start the output device lazily on first enqueue
- stop(): halt output immediately and discard anything not yet played

Threading:
- enqueue()/stop() are called from the event loop
- read() is called from the output device callback thread
- All buffer access is guarded by a threading.Lock; the device is
  started/stopped outside the lock so a device that joins its callback
  thread on stop cannot deadlock against read().
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Callable, Deque, Protocol, runtime_checkable

from audio.frames import AudioChunk
from constants import AudioFormat, WIRE_AUDIO_FORMAT


PullFn = Callable[[int], bytes]


@runtime_checkable
class OutputDevice(Protocol):
    """
    Audio output stream.

    The device pulls exactly `num_bytes` of PCM16 audio per callback via the
    pull function handed to start().
    """

    def start(self, pull: PullFn) -> None: ...
    def stop(self) -> None: ...


class PlaybackScheduler:
    """
    FIFO response-audio scheduler with lazy device start.

    enqueue() never blocks on audio output.
    """

    def __init__(
        self,
        *,
        device: OutputDevice,
        audio_format: AudioFormat = WIRE_AUDIO_FORMAT,
    ) -> None:
        self._device = device
        self._format = audio_format
        self._lock = threading.Lock()

        self._chunks: Deque[bytes] = deque()
        self._head_offset: int = 0
        self._buffered_bytes: int = 0

        self._started: bool = False
        self._last_sequence_num: int = 0

        self.underruns: int = 0
        self.chunks_played: int = 0

    # ------------------------------------------------------------------
    # Producer side (event loop)
    # ------------------------------------------------------------------

    def enqueue(self, chunk: AudioChunk) -> None:
        """
        Schedule a chunk after everything already queued.

        Raises:
            AudioDeviceError if the output device cannot be started.
        """
        if not chunk.pcm_bytes:
            return

        with self._lock:
            self._chunks.append(chunk.pcm_bytes)
            self._buffered_bytes += len(chunk.pcm_bytes)
            self._last_sequence_num = chunk.sequence_num
            needs_start = not self._started
            self._started = True

        if needs_start:
            try:
                self._device.start(self.read)
            except Exception:
                with self._lock:
                    self._started = False
                    self._drop_locked()
                raise

    def stop(self) -> int:
        """
        Halt output and discard all not-yet-played audio.

        Idempotent. Returns the number of queued chunks discarded.
        """
        with self._lock:
            discarded = len(self._chunks)
            self._drop_locked()
            was_started = self._started
            self._started = False

        if was_started:
            self._device.stop()
        return discarded

    # ------------------------------------------------------------------
    # Consumer side (device callback thread)
    # ------------------------------------------------------------------

    def read(self, num_bytes: int) -> bytes:
        """
        Pull exactly num_bytes of PCM16 audio.

        Missing audio is padded with silence (counts as an underrun only
        when some audio was expected, i.e. the buffer ran dry mid-read).
        """
        if num_bytes <= 0:
            return b""

        out = bytearray()
        with self._lock:
            while len(out) < num_bytes and self._chunks:
                head = self._chunks[0]
                take = min(num_bytes - len(out), len(head) - self._head_offset)
                out += head[self._head_offset:self._head_offset + take]
                self._head_offset += take
                self._buffered_bytes -= take

                if self._head_offset >= len(head):
                    self._chunks.popleft()
                    self._head_offset = 0
                    self.chunks_played += 1

            if 0 < len(out) < num_bytes:
                self.underruns += 1

        if len(out) < num_bytes:
            out += b"\x00" * (num_bytes - len(out))
        return bytes(out)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def is_playing(self) -> bool:
        """True while the output device is running."""
        with self._lock:
            return self._started

    def queued_seconds(self) -> float:
        """Seconds of audio not yet handed to the device."""
        with self._lock:
            return self._format.duration_s(self._buffered_bytes)

    def snapshot(self) -> dict[str, float | int | bool]:
        """Lightweight snapshot for logging / metrics."""
        with self._lock:
            return {
                "playing": self._started,
                "queued_chunks": len(self._chunks),
                "queued_s": round(self._format.duration_s(self._buffered_bytes), 3),
                "last_sequence_num": self._last_sequence_num,
                "chunks_played": self.chunks_played,
                "underruns": self.underruns,
            }

    def _drop_locked(self) -> None:
        self._chunks.clear()
        self._head_offset = 0
        self._buffered_bytes = 0
