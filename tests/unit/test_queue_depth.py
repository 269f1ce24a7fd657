# pylint: disable=missing-module-docstring,missing-function-docstring

import time

import pytest

from audio.frames import AudioChunk
from audio.queues import AudioChunkQueue
from constants import WIRE_AUDIO_FORMAT


CHUNK_S = 0.02


def make_chunk(seq: int, duration_ms: int = 20) -> AudioChunk:
    return AudioChunk(
        sequence_num=seq,
        pcm_bytes=b"\x00" * (WIRE_AUDIO_FORMAT.bytes_per_second * duration_ms // 1000),
        ts_ms=int(time.time() * 1000),
    )


# ---------------------------------------------------------------------
# depth_seconds math
# ---------------------------------------------------------------------

def test_depth_seconds_exact():
    q = AudioChunkQueue(max_depth_s=1.0)

    q.enqueue(make_chunk(1))
    q.enqueue(make_chunk(2))
    q.enqueue(make_chunk(3))

    assert q.depth_seconds() == pytest.approx(3 * CHUNK_S)
    assert len(q) == 3


def test_dequeue_is_fifo_and_updates_depth():
    q = AudioChunkQueue(max_depth_s=1.0)
    for seq in (1, 2, 3):
        q.enqueue(make_chunk(seq))

    first = q.dequeue()
    assert first is not None
    assert first.sequence_num == 1
    assert q.depth_seconds() == pytest.approx(2 * CHUNK_S)

    assert [q.dequeue().sequence_num, q.dequeue().sequence_num] == [2, 3]  # type: ignore[union-attr]
    assert q.dequeue() is None
    assert q.is_empty()


# ---------------------------------------------------------------------
# Overflow behavior
# ---------------------------------------------------------------------

def test_overflow_evicts_oldest():
    q = AudioChunkQueue(max_depth_s=2 * CHUNK_S + 0.001)

    assert q.enqueue(make_chunk(1)) == 0
    assert q.enqueue(make_chunk(2)) == 0

    # Would exceed max_depth_s
    assert q.enqueue(make_chunk(3)) == 1

    assert q.drops.overflow == 1
    head = q.peek()
    assert head is not None
    assert head.sequence_num == 2
    assert q.depth_seconds() == pytest.approx(2 * CHUNK_S)


def test_single_oversized_chunk_is_kept():
    q = AudioChunkQueue(max_depth_s=CHUNK_S / 2)

    assert q.enqueue(make_chunk(1)) == 0
    assert len(q) == 1


# ---------------------------------------------------------------------
# Discard
# ---------------------------------------------------------------------

def test_discard_drops_everything_and_counts():
    q = AudioChunkQueue(max_depth_s=1.0)
    q.enqueue(make_chunk(1))
    q.enqueue(make_chunk(2))

    assert q.discard() == 2
    assert q.discard() == 0
    assert q.is_empty()
    assert q.depth_seconds() == 0.0
    assert q.snapshot()["dropped_discarded"] == 2


def test_invalid_max_depth_rejected():
    with pytest.raises(ValueError):
        AudioChunkQueue(max_depth_s=0)
