import asyncio
import threading

import numpy as np
import pytest

from voice_relay.services.audio_playback import AudioPlayer, pcm16_to_float32


class SlowSink:
    """Sink that records the order writes start and finish in."""

    def __init__(self, delay=0.01):
        self.delay = delay
        self.log = []
        self.closed = False
        self._lock = threading.Lock()

    def write(self, samples):
        with self._lock:
            self.log.append(("start", float(samples[0])))
        threading.Event().wait(self.delay)
        with self._lock:
            self.log.append(("end", float(samples[0])))

    def close(self):
        self.closed = True


def test_pcm16_to_float32():
    samples = pcm16_to_float32(b"\x00\x00\xff\x7f\x00\x80")
    assert samples.dtype == np.float32
    assert samples[0] == 0.0
    assert samples[1] == pytest.approx(32767 / 32768)
    assert samples[2] == -1.0


def test_pcm16_odd_length_drops_trailing_byte():
    assert len(pcm16_to_float32(b"\x00\x40\x01")) == 1


@pytest.mark.asyncio
async def test_chunks_play_one_after_another():
    sink = SlowSink()
    player = AudioPlayer(sink)
    player.enqueue(b"\x00\x40")
    player.enqueue(b"\x00\xc0")
    assert player.is_playing

    await asyncio.wait_for(player.drain(), 1.0)

    assert sink.log == [("start", 0.5), ("end", 0.5), ("start", -0.5), ("end", -0.5)]
    assert player.chunks_played == 2
    assert not player.is_playing
    await player.close()
    assert sink.closed


@pytest.mark.asyncio
async def test_no_sink_drops_audio():
    player = AudioPlayer()
    player.enqueue(b"\x00\x40")
    assert not player.is_playing
    assert player.chunks_played == 0


@pytest.mark.asyncio
async def test_stop_discards_queued_audio():
    sink = SlowSink(delay=0.05)
    player = AudioPlayer(sink)
    for _ in range(5):
        player.enqueue(b"\x00\x40")
    await asyncio.sleep(0.01)

    await player.stop()

    assert not player.is_playing
    assert player.chunks_played <= 1
