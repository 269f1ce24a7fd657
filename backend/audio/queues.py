# backend/audio/queues.py
"""
Bounded audio chunk queue with canonical depth measurement.

Requirements:
- Depth measured in seconds (not chunk count)
- Explicit drop behavior
- Drop OLDEST chunks on overflow to prevent latency buildup
  (stale speech is worth less than fresh speech)
- Deterministic, synchronous behavior
"""

from __future__ import annotations
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional

from audio.frames import AudioChunk


@dataclass
class DropCounters:
    """
    Drop counters for observability.

    overflow: chunks evicted because the queue exceeded max_depth_s
    discarded: chunks dropped by an explicit discard() (teardown)
    """
    overflow: int = 0
    discarded: int = 0


class AudioChunkQueue:
    """
    Bounded FIFO queue for AudioChunk objects.

    Used for pending outbound audio: chunks captured before the session is
    active are held here and drained in capture order once it is.
    """

    def __init__(self, *, max_depth_s: float) -> None:
        if max_depth_s <= 0:
            raise ValueError("max_depth_s must be > 0")

        self._max_depth_s: float = max_depth_s
        self._chunks: Deque[AudioChunk] = deque()
        self._depth_s: float = 0.0
        self.drops: DropCounters = DropCounters()

    # -------------------------
    # Core queue operations
    # -------------------------

    def enqueue(self, chunk: AudioChunk) -> int:
        """
        Enqueue an AudioChunk, evicting the oldest chunks if needed.

        Returns:
            Number of chunks evicted to make room.
        """
        self._chunks.append(chunk)
        self._depth_s += chunk.duration_s

        evicted = 0
        while self._depth_s > self._max_depth_s and len(self._chunks) > 1:
            oldest = self._chunks.popleft()
            self._depth_s -= oldest.duration_s
            evicted += 1

        self.drops.overflow += evicted
        return evicted

    def dequeue(self) -> Optional[AudioChunk]:
        """
        Dequeue the oldest AudioChunk.

        Returns None if queue is empty.
        """
        if not self._chunks:
            return None
        chunk = self._chunks.popleft()
        self._depth_s = max(0.0, self._depth_s - chunk.duration_s)
        return chunk

    def peek(self) -> Optional[AudioChunk]:
        """View the oldest chunk without removing it."""
        return self._chunks[0] if self._chunks else None

    def discard(self) -> int:
        """
        Drop all queued chunks.

        Used on session teardown. Returns the number of chunks dropped.
        """
        dropped = len(self._chunks)
        self._chunks.clear()
        self._depth_s = 0.0
        self.drops.discarded += dropped
        return dropped

    # -------------------------
    # Introspection helpers
    # -------------------------

    def __len__(self) -> int:
        return len(self._chunks)

    def is_empty(self) -> bool:
        """Check if the queue is empty."""
        return not self._chunks

    def depth_seconds(self) -> float:
        """Canonical queue depth in seconds of audio."""
        return self._depth_s

    def snapshot(self) -> dict[str, float | int]:
        """Lightweight snapshot for logging / metrics."""
        return {
            "chunks": len(self._chunks),
            "depth_s": round(self._depth_s, 3),
            "dropped_overflow": self.drops.overflow,
            "dropped_discarded": self.drops.discarded,
        }
