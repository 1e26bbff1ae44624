"""
Streaming speech-to-text leg of a voice session.

Audio frames from the client are forwarded unmodified to the Deepgram listen
endpoint, and the JSON results it returns are turned into ``TranscriptEvent``s for
the owning session.
"""

import json
import logging
from typing import Optional, Union
from urllib.parse import urlencode

from pydantic import ValidationError

from voice_relay.bot.events import LEG_STT
from voice_relay.bot.upstream import UpstreamConnection
from voice_relay.config.constants import DEEPGRAM_STT_URL, LOGGER_NAME
from voice_relay.config.settings import SttOptions
from voice_relay.errors import UpstreamProtocolError
from voice_relay.models.conversation import TranscriptEvent
from voice_relay.models.deepgram_schemas import (
    DeepgramResults,
    DeepgramSpeechStarted,
    DeepgramUtteranceEnd,
)

logger = logging.getLogger(LOGGER_NAME)


class SpeechToTextAdapter(UpstreamConnection):
    """Deepgram listen stream producing transcript events."""

    leg = LEG_STT

    def __init__(self, api_key: str, emit, base_url: str = DEEPGRAM_STT_URL, **kwargs):
        super().__init__(api_key, emit, **kwargs)
        self.base_url = base_url
        self.options = SttOptions()

    def build_url(self) -> str:
        return f"{self.base_url}?{urlencode(self.options.query_params())}"

    async def open(self, options: Optional[SttOptions] = None) -> bool:
        """
        Open the transcription stream.

        Args:
            options: Recognition options sent as query parameters; the defaults
                are used when omitted

        Returns:
            bool: True if the stream opened on the first try. When False the
            adapter keeps retrying in the background.
        """
        if options is not None:
            self.options = options
        return await super().open()

    async def send_audio(self, chunk: bytes) -> bool:
        """Forward one audio frame. Frames are dropped while the stream is not open."""
        if not self.is_open:
            logger.debug(f"[{self.session_id}] STT not open, dropping {len(chunk)} bytes")
            return False
        return await self._send(chunk)

    async def _handle_message(self, message: Union[str, bytes]) -> None:
        if isinstance(message, bytes):
            logger.debug(f"[{self.session_id}] Ignoring binary frame from STT")
            return

        try:
            data = json.loads(message)
        except json.JSONDecodeError as e:
            raise UpstreamProtocolError(f"Malformed STT message: {e}") from e
        if not isinstance(data, dict):
            raise UpstreamProtocolError("STT message is not a JSON object")

        message_type = data.get("type")
        if message_type == "Results":
            self._handle_results(data)
        elif message_type == "UtteranceEnd":
            end = self._validate(DeepgramUtteranceEnd, data)
            logger.info(f"[{self.session_id}] Utterance end detected (last word ends at {end.last_word_end}s)")
        elif message_type == "SpeechStarted":
            started = self._validate(DeepgramSpeechStarted, data)
            logger.info(f"[{self.session_id}] Speech started at {started.timestamp}s")
        else:
            logger.debug(f"[{self.session_id}] Ignoring STT message type: {message_type}")

    @staticmethod
    def _validate(model, data: dict):
        try:
            return model.model_validate(data)
        except ValidationError as e:
            raise UpstreamProtocolError(f"Invalid STT {data.get('type')} message: {e}") from e

    def _handle_results(self, data: dict) -> None:
        results = self._validate(DeepgramResults, data)

        best = results.best
        if best is None or not best.transcript.strip():
            return

        event = TranscriptEvent(
            text=best.transcript,
            is_final=results.is_final,
            is_speech_final=results.speech_final,
            confidence=best.confidence,
        )
        logger.info(
            f"[{self.session_id}] Transcript (final={event.is_final}, "
            f"speech_final={event.is_speech_final}): {event.text}"
        )
        self.emit(event)
