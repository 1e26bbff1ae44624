"""
Pydantic models for the Deepgram streaming STT and TTS message structures.

Only the fields the relay reads are modelled; unknown fields are ignored so that
vendor additions do not break parsing.
"""

from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class DeepgramAlternative(BaseModel):
    transcript: str = ""
    confidence: float = 1.0


class DeepgramChannel(BaseModel):
    alternatives: List[DeepgramAlternative] = Field(default_factory=list)


class DeepgramResults(BaseModel):
    """Transcription result from the listen endpoint."""

    type: Literal["Results"] = "Results"
    channel: DeepgramChannel
    is_final: bool = False
    speech_final: bool = False

    @property
    def best(self) -> Optional[DeepgramAlternative]:
        if not self.channel.alternatives:
            return None
        return self.channel.alternatives[0]


class DeepgramUtteranceEnd(BaseModel):
    type: Literal["UtteranceEnd"] = "UtteranceEnd"
    last_word_end: Optional[float] = None


class DeepgramSpeechStarted(BaseModel):
    type: Literal["SpeechStarted"] = "SpeechStarted"
    timestamp: Optional[float] = None


# TTS commands (gateway -> vendor)
class SpeakCommand(BaseModel):
    type: Literal["Speak"] = "Speak"
    text: str


class ClearCommand(BaseModel):
    type: Literal["Clear"] = "Clear"


class FlushCommand(BaseModel):
    type: Literal["Flush"] = "Flush"


# TTS control messages (vendor -> gateway)
class TtsControlMessage(BaseModel):
    type: str
    sequence_id: Optional[int] = None
    description: Optional[str] = None
