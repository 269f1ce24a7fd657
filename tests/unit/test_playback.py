# pylint: disable=missing-module-docstring,missing-function-docstring

import pytest

from audio.frames import AudioChunk
from audio.playback import PlaybackScheduler
from errors import AudioDeviceError

from session_fakes import FakeOutputDevice


def chunk(seq: int, pcm: bytes) -> AudioChunk:
    return AudioChunk(sequence_num=seq, pcm_bytes=pcm, ts_ms=0)


def test_device_starts_lazily_on_first_enqueue():
    device = FakeOutputDevice()
    playback = PlaybackScheduler(device=device)

    assert device.starts == 0
    assert playback.is_playing is False

    playback.enqueue(chunk(1, b"\x01\x00"))
    playback.enqueue(chunk(2, b"\x02\x00"))

    assert device.starts == 1
    assert playback.is_playing is True


def test_read_returns_chunks_in_order_and_pads_with_silence():
    device = FakeOutputDevice()
    playback = PlaybackScheduler(device=device)

    playback.enqueue(chunk(1, b"\x01\x00\x02\x00"))
    playback.enqueue(chunk(2, b"\x03\x00"))

    assert device.pull is not None
    assert device.pull(2) == b"\x01\x00"
    assert device.pull(4) == b"\x02\x00\x03\x00"
    assert device.pull(4) == b"\x00" * 4
    assert playback.chunks_played == 2


def test_partial_read_counts_underrun():
    playback = PlaybackScheduler(device=FakeOutputDevice())
    playback.enqueue(chunk(1, b"\x01\x00"))

    assert playback.read(6) == b"\x01\x00" + b"\x00" * 4
    assert playback.underruns == 1


def test_stop_discards_unplayed_audio_and_stops_device():
    device = FakeOutputDevice()
    playback = PlaybackScheduler(device=device)
    playback.enqueue(chunk(1, b"\x01\x00" * 100))
    playback.enqueue(chunk(2, b"\x02\x00" * 100))

    assert playback.stop() == 2
    assert device.stops == 1
    assert playback.is_playing is False
    assert playback.queued_seconds() == 0.0

    # Idempotent
    assert playback.stop() == 0
    assert device.stops == 1


def test_enqueue_after_stop_restarts_device():
    device = FakeOutputDevice()
    playback = PlaybackScheduler(device=device)

    playback.enqueue(chunk(1, b"\x01\x00"))
    playback.stop()
    playback.enqueue(chunk(2, b"\x02\x00"))

    assert device.starts == 2
    assert playback.read(2) == b"\x02\x00"


def test_device_start_failure_propagates_and_drops_audio():
    device = FakeOutputDevice(start_error=RuntimeError("no output device"))
    playback = PlaybackScheduler(device=device)

    with pytest.raises(AudioDeviceError):
        playback.enqueue(chunk(1, b"\x01\x00"))

    assert playback.is_playing is False
    assert playback.queued_seconds() == 0.0


def test_queued_seconds_tracks_wire_rate():
    playback = PlaybackScheduler(device=FakeOutputDevice())
    # 24 kHz PCM16 mono: 48_000 bytes per second
    playback.enqueue(chunk(1, b"\x00" * 4800))

    assert playback.queued_seconds() == pytest.approx(0.1)
    playback.read(2400)
    assert playback.queued_seconds() == pytest.approx(0.05)
