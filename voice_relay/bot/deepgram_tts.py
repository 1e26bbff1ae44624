"""
Streaming text-to-speech leg of a voice session.

Reply text is sent to the Deepgram speak endpoint as a Clear/Speak/Flush command
sequence; the linear16 PCM frames it streams back are emitted as ``AudioChunk``
events in arrival order.
"""

import asyncio
import json
import logging
from typing import Optional, Union
from urllib.parse import urlencode

from pydantic import ValidationError

from voice_relay.bot.events import LEG_TTS, SpeakRequest, SpeechCompleted
from voice_relay.bot.upstream import UpstreamConnection
from voice_relay.config.constants import (
    DEEPGRAM_TTS_URL,
    DEFAULT_VOICE_ID,
    LOGGER_NAME,
    TTS_CONTAINER,
    TTS_ENCODING,
    TTS_SAMPLE_RATE,
)
from voice_relay.config.settings import DEFAULT_TIMINGS, SessionTimings
from voice_relay.errors import UpstreamProtocolError
from voice_relay.models.conversation import AudioChunk, AudioEncoding
from voice_relay.models.deepgram_schemas import (
    ClearCommand,
    FlushCommand,
    SpeakCommand,
    TtsControlMessage,
)

logger = logging.getLogger(LOGGER_NAME)


class TextToSpeechAdapter(UpstreamConnection):
    """Deepgram speak stream producing audio chunk events."""

    leg = LEG_TTS

    def __init__(
        self,
        api_key: str,
        emit,
        base_url: str = DEEPGRAM_TTS_URL,
        sample_rate: int = TTS_SAMPLE_RATE,
        timings: SessionTimings = DEFAULT_TIMINGS,
        **kwargs,
    ):
        super().__init__(api_key, emit, **kwargs)
        self.base_url = base_url
        self.voice_id = DEFAULT_VOICE_ID
        self.opening_message: Optional[str] = None
        self.timings = timings
        self.encoding = AudioEncoding(sample_rate=sample_rate)
        self._timer_tasks: set = set()

    def build_url(self) -> str:
        params = {
            "model": self.voice_id,
            "encoding": TTS_ENCODING,
            "sample_rate": self.encoding.sample_rate,
            "container": TTS_CONTAINER,
        }
        return f"{self.base_url}?{urlencode(params)}"

    async def open(self, voice_id: str = DEFAULT_VOICE_ID, opening_message: Optional[str] = None) -> bool:
        """
        Open the synthesis stream for a voice.

        Args:
            voice_id: Deepgram voice model, e.g. ``aura-asteria-en``
            opening_message: Greeting requested once, shortly after the first open

        Returns:
            bool: True if the stream opened on the first try
        """
        self.voice_id = voice_id
        self.opening_message = opening_message
        return await super().open()

    async def _on_open(self, reconnected: bool) -> None:
        if reconnected or not self.opening_message:
            return
        logger.info(f"[{self.session_id}] Scheduling opening message")
        self._request_later(SpeakRequest(text=self.opening_message), self.timings.greeting_delay)

    async def speak(self, text: str, attempt: int = 0) -> bool:
        """
        Synthesize one reply.

        While the stream is open this sends Clear, Speak and, after the flush delay,
        Flush. Otherwise the text is re-requested once the retry delay has elapsed.

        Returns:
            bool: True if the text was sent to the vendor
        """
        if self.is_closed:
            return False

        if not self.is_open:
            logger.warning(
                f"[{self.session_id}] TTS not open, retrying speech in "
                f"{self.timings.speak_retry_delay}s (attempt {attempt + 1})"
            )
            self._request_later(SpeakRequest(text=text, attempt=attempt + 1), self.timings.speak_retry_delay)
            return False

        logger.info(f"[{self.session_id}] Speaking: {text[:80]}")
        if not await self._send(ClearCommand().model_dump_json()):
            return False
        if not await self._send(SpeakCommand(text=text).model_dump_json()):
            return False
        await asyncio.sleep(self.timings.flush_delay)
        return await self._send(FlushCommand().model_dump_json())

    def _request_later(self, request: SpeakRequest, delay: float) -> None:
        task = asyncio.create_task(self._emit_after(request, delay))
        self._timer_tasks.add(task)
        task.add_done_callback(self._timer_tasks.discard)

    async def _emit_after(self, request: SpeakRequest, delay: float) -> None:
        await asyncio.sleep(delay)
        if not self.is_closed:
            self.emit(request)

    async def _handle_message(self, message: Union[str, bytes]) -> None:
        if isinstance(message, bytes):
            self.emit(AudioChunk(data=message, encoding=self.encoding))
            return

        try:
            control = TtsControlMessage.model_validate(json.loads(message))
        except (json.JSONDecodeError, ValidationError) as e:
            raise UpstreamProtocolError(f"Malformed TTS message: {e}") from e

        if control.type == "Flushed":
            logger.debug(f"[{self.session_id}] TTS flushed (sequence {control.sequence_id})")
            self.emit(SpeechCompleted(sequence_id=control.sequence_id))
        elif control.type == "Warning":
            logger.warning(f"[{self.session_id}] TTS warning: {control.description}")
        else:
            logger.debug(f"[{self.session_id}] TTS control message: {control.type}")

    async def close(self) -> None:
        for task in list(self._timer_tasks):
            task.cancel()
        self._timer_tasks.clear()
        await super().close()
