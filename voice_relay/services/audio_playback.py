"""
Client-side audio input and output.

``AudioPlayer`` plays synthesized linear16 chunks back-to-back, in the order they
arrive, through an ``AudioSink``. The PyAudio-backed sink and microphone need the
``audio`` extra (``pip install voice-relay[audio]``); PyAudio is imported only when
one of them is created.
"""

import asyncio
import logging
from typing import AsyncIterator, Optional, Protocol

import numpy as np

from voice_relay.config.constants import LOGGER_NAME, TTS_CHANNELS, TTS_SAMPLE_RATE

logger = logging.getLogger(LOGGER_NAME)

# Microphone capture settings
INPUT_SAMPLE_RATE = 16000
INPUT_CHUNK_SIZE = 1600  # 100ms at 16kHz


def pcm16_to_float32(data: bytes) -> np.ndarray:
    """Convert little-endian 16-bit PCM to float32 samples in [-1.0, 1.0)."""
    if len(data) % 2:
        data = data[:-1]
    return np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0


class AudioSink(Protocol):
    def write(self, samples: np.ndarray) -> None:
        ...

    def close(self) -> None:
        ...


class PyAudioSink:
    """Speaker output through a blocking PyAudio float32 stream."""

    def __init__(self, sample_rate: int = TTS_SAMPLE_RATE, channels: int = TTS_CHANNELS):
        import pyaudio

        self._pa = pyaudio.PyAudio()
        self._stream = self._pa.open(
            format=pyaudio.paFloat32,
            channels=channels,
            rate=sample_rate,
            output=True,
        )

    def write(self, samples: np.ndarray) -> None:
        self._stream.write(samples.astype(np.float32).tobytes())

    def close(self) -> None:
        self._stream.stop_stream()
        self._stream.close()
        self._pa.terminate()


class PyAudioMicrophone:
    """Microphone capture yielding linear16 chunks."""

    def __init__(self, sample_rate: int = INPUT_SAMPLE_RATE, chunk_size: int = INPUT_CHUNK_SIZE):
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size

    async def chunks(self) -> AsyncIterator[bytes]:
        import pyaudio

        pa = pyaudio.PyAudio()
        stream = pa.open(
            format=pyaudio.paInt16,
            channels=1,
            rate=self.sample_rate,
            input=True,
            frames_per_buffer=self.chunk_size,
        )
        try:
            while True:
                yield await asyncio.to_thread(stream.read, self.chunk_size, exception_on_overflow=False)
        finally:
            stream.stop_stream()
            stream.close()
            pa.terminate()


class AudioPlayer:
    """
    Sequential playback queue.

    Chunks are decoded to float32 and written to the sink one after another; a
    chunk never starts before the previous one has been written.
    """

    def __init__(self, sink: Optional[AudioSink] = None):
        self.sink = sink
        self._queue: asyncio.Queue = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._busy = False
        self.chunks_played = 0

    @property
    def is_playing(self) -> bool:
        return self._busy or not self._queue.empty()

    def enqueue(self, pcm: bytes) -> None:
        """Queue one linear16 chunk for playback."""
        if self.sink is None:
            logger.debug("No audio sink configured, dropping audio chunk")
            return
        self._queue.put_nowait(pcm)
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._play_loop())

    async def _play_loop(self) -> None:
        while True:
            pcm = await self._queue.get()
            self._busy = True
            try:
                samples = pcm16_to_float32(pcm)
                await asyncio.to_thread(self.sink.write, samples)
                self.chunks_played += 1
            except Exception as e:
                logger.error(f"Audio playback error: {e}")
            finally:
                self._busy = False
                self._queue.task_done()

    async def drain(self) -> None:
        """Wait until every queued chunk has been played."""
        await self._queue.join()

    async def stop(self) -> None:
        """Stop playback and drop queued audio."""
        while not self._queue.empty():
            self._queue.get_nowait()
            self._queue.task_done()
        if self._worker is not None:
            self._worker.cancel()
            await asyncio.gather(self._worker, return_exceptions=True)
            self._worker = None

    async def close(self) -> None:
        await self.stop()
        if self.sink is not None:
            self.sink.close()
            self.sink = None
