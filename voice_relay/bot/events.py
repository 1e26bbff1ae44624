"""
Events delivered to a session actor.

Everything that can change a session (client frames, upstream adapter output and
timers) is turned into one of these values and put on the session queue, so the
session processes them strictly one at a time.
"""

from dataclasses import dataclass
from typing import Optional, Union

from voice_relay.models.conversation import AudioChunk, TranscriptEvent
from voice_relay.models.message_schemas import IncomingMessage

LEG_CLIENT = "client"
LEG_STT = "stt"
LEG_TTS = "tts"


@dataclass(frozen=True)
class ClientMessageReceived:
    message: IncomingMessage


@dataclass(frozen=True)
class ClientAudioReceived:
    """Raw binary audio frame sent by the client without a JSON envelope."""

    data: bytes


@dataclass(frozen=True)
class ClientDisconnected:
    code: Optional[int] = None
    reason: str = ""


@dataclass(frozen=True)
class UpstreamOpened:
    leg: str
    reconnected: bool = False


@dataclass(frozen=True)
class UpstreamFailed:
    """An upstream leg ran out of reconnect attempts."""

    leg: str
    reason: str = ""


@dataclass(frozen=True)
class SpeakRequest:
    """Text the TTS leg wants spoken (opening message or a deferred reply)."""

    text: str
    attempt: int = 0


@dataclass(frozen=True)
class SpeechCompleted:
    """The TTS vendor finished synthesizing the current utterance."""

    sequence_id: Optional[int] = None


@dataclass(frozen=True)
class EndCallDue:
    reason: str = "ai_decision"


SessionEvent = Union[
    ClientMessageReceived,
    ClientAudioReceived,
    ClientDisconnected,
    UpstreamOpened,
    UpstreamFailed,
    SpeakRequest,
    SpeechCompleted,
    EndCallDue,
    TranscriptEvent,
    AudioChunk,
]
