"""
Pydantic models for the client <-> gateway WebSocket protocol.

Clients tag their messages with either an ``event`` or a ``type`` key; both spellings
are normalized here into one tagged model per message so the rest of the relay only
ever sees typed messages. Gateway messages always use ``type`` and carry an epoch
millisecond ``timestamp``.
"""

import base64
import binascii
import json
from typing import Any, Dict, Literal, Optional, Type, Union

from pydantic import BaseModel, Field, field_validator

from voice_relay.config.constants import (
    EVENT_CONNECTED,
    EVENT_MEDIA,
    EVENT_PING,
    EVENT_TEXT_INPUT,
    MESSAGE_TYPE_AI_RESPONSE,
    MESSAGE_TYPE_AUDIO_RESPONSE,
    MESSAGE_TYPE_CONNECTION_ESTABLISHED,
    MESSAGE_TYPE_END_CALL,
    MESSAGE_TYPE_ERROR,
    MESSAGE_TYPE_PONG,
    MESSAGE_TYPE_READY,
    MESSAGE_TYPE_STT_CONNECTED,
    MESSAGE_TYPE_TRANSCRIPT,
    MESSAGE_TYPE_TRANSFER_CALL,
    MESSAGE_TYPE_TTS_CONNECTED,
)
from voice_relay.errors import UnknownMessageError
from voice_relay.models.conversation import AgentProfile, ConversationReply, TranscriptEvent, now_ms


def encode_audio(data: bytes) -> str:
    """Encode raw audio bytes for a JSON frame."""
    return base64.b64encode(data).decode("ascii")


def decode_audio(payload: str) -> bytes:
    """Decode a base64 audio payload; raises ValueError on malformed input."""
    try:
        return base64.b64decode(payload, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ValueError(f"Invalid base64 encoded audio data: {e}") from e


# Client -> gateway
class ClientMessage(BaseModel):
    """Base model for all messages sent by the client."""

    event: str = Field(..., description="Message tag")


class ConnectedMessage(ClientMessage):
    """Handshake carrying the agent to talk to."""

    event: Literal["connected"]
    assistantId: str = Field("demo", description="Agent profile identifier")
    userId: str = Field("demo-user", description="Owner of the agent profile")


class MediaPayload(BaseModel):
    payload: str = Field(..., description="Base64-encoded audio data")

    @field_validator("payload")
    def validate_payload(cls, v):
        """Validate that the payload is non-empty base64."""
        if not v:
            raise ValueError("Audio payload cannot be empty")
        decode_audio(v)
        return v


class MediaMessage(ClientMessage):
    event: Literal["media"]
    media: MediaPayload

    @property
    def audio(self) -> bytes:
        return decode_audio(self.media.payload)


class TextInputMessage(ClientMessage):
    """Typed user turn, processed exactly like a final transcript."""

    event: Literal["text_input"]
    text: str

    @field_validator("text")
    def validate_text(cls, v):
        if not v.strip():
            raise ValueError("Text input cannot be empty")
        return v.strip()


class PingMessage(ClientMessage):
    event: Literal["ping"]


IncomingMessage = Union[ConnectedMessage, MediaMessage, TextInputMessage, PingMessage]

CLIENT_MESSAGE_MODELS: Dict[str, Type[ClientMessage]] = {
    EVENT_CONNECTED: ConnectedMessage,
    EVENT_MEDIA: MediaMessage,
    EVENT_TEXT_INPUT: TextInputMessage,
    EVENT_PING: PingMessage,
}


def parse_client_message(raw: Union[str, bytes, Dict[str, Any]]) -> IncomingMessage:
    """
    Normalize and validate one client message.

    Args:
        raw: JSON text or an already-decoded dictionary

    Returns:
        The typed message

    Raises:
        UnknownMessageError: if the tag is missing or not recognized
        pydantic.ValidationError: if the message does not match its schema
        json.JSONDecodeError: if ``raw`` is not valid JSON
    """
    data = json.loads(raw) if isinstance(raw, (str, bytes)) else dict(raw)
    if not isinstance(data, dict):
        raise UnknownMessageError(None)
    tag = data.get("event") or data.get("type")
    if not isinstance(tag, str):
        raise UnknownMessageError(tag)
    model = CLIENT_MESSAGE_MODELS.get(tag)
    if model is None:
        raise UnknownMessageError(tag)
    data["event"] = tag
    data.pop("type", None)
    return model.model_validate(data)


# Gateway -> client
class ServerMessage(BaseModel):
    """Base model for all messages sent by the gateway."""

    type: str
    timestamp: int = Field(default_factory=now_ms)


class AssistantInfo(BaseModel):
    name: str
    first_message: Optional[str] = None

    @classmethod
    def from_profile(cls, profile: AgentProfile) -> "AssistantInfo":
        return cls(name=profile.name, first_message=profile.opening_message)


class ConnectionEstablishedResponse(ServerMessage):
    type: Literal["connection_established"] = "connection_established"
    assistant: AssistantInfo


class SttConnectedResponse(ServerMessage):
    type: Literal["stt_connected"] = "stt_connected"


class TtsConnectedResponse(ServerMessage):
    type: Literal["tts_connected"] = "tts_connected"


class ReadyResponse(ServerMessage):
    type: Literal["ready"] = "ready"
    status: str = "Ready to chat"
    assistant: AssistantInfo


class TranscriptResponse(ServerMessage):
    type: Literal["transcript"] = "transcript"
    text: str
    isFinal: bool
    speechFinal: bool = False
    confidence: float

    @classmethod
    def from_event(cls, event: TranscriptEvent) -> "TranscriptResponse":
        return cls(
            text=event.text,
            isFinal=event.is_final,
            speechFinal=event.is_speech_final,
            confidence=event.confidence,
        )


class AiResponse(ServerMessage):
    type: Literal["ai_response"] = "ai_response"
    text: str
    intent: str
    confidence: float
    shouldTransfer: bool = False
    shouldEndCall: bool = False

    @classmethod
    def from_reply(cls, reply: ConversationReply) -> "AiResponse":
        return cls(
            text=reply.text,
            intent=reply.intent,
            confidence=reply.confidence,
            shouldTransfer=reply.should_transfer,
            shouldEndCall=reply.should_end_call,
        )


class AudioResponse(ServerMessage):
    type: Literal["audio_response"] = "audio_response"
    audio: str = Field(..., description="Base64-encoded linear16 PCM")

    @classmethod
    def from_bytes(cls, data: bytes) -> "AudioResponse":
        return cls(audio=encode_audio(data))


class EndCallResponse(ServerMessage):
    type: Literal["end_call"] = "end_call"
    reason: str = "ai_decision"


class TransferCallResponse(ServerMessage):
    type: Literal["transfer_call"] = "transfer_call"
    reason: str = "ai_decision"


class ErrorResponse(ServerMessage):
    type: Literal["error"] = "error"
    error: str


class PongResponse(ServerMessage):
    type: Literal["pong"] = "pong"


OutgoingMessage = Union[
    ConnectionEstablishedResponse,
    SttConnectedResponse,
    TtsConnectedResponse,
    ReadyResponse,
    TranscriptResponse,
    AiResponse,
    AudioResponse,
    EndCallResponse,
    TransferCallResponse,
    ErrorResponse,
    PongResponse,
]

SERVER_MESSAGE_MODELS: Dict[str, Type[ServerMessage]] = {
    MESSAGE_TYPE_CONNECTION_ESTABLISHED: ConnectionEstablishedResponse,
    MESSAGE_TYPE_STT_CONNECTED: SttConnectedResponse,
    MESSAGE_TYPE_TTS_CONNECTED: TtsConnectedResponse,
    MESSAGE_TYPE_READY: ReadyResponse,
    MESSAGE_TYPE_TRANSCRIPT: TranscriptResponse,
    MESSAGE_TYPE_AI_RESPONSE: AiResponse,
    MESSAGE_TYPE_AUDIO_RESPONSE: AudioResponse,
    MESSAGE_TYPE_END_CALL: EndCallResponse,
    MESSAGE_TYPE_TRANSFER_CALL: TransferCallResponse,
    MESSAGE_TYPE_ERROR: ErrorResponse,
    MESSAGE_TYPE_PONG: PongResponse,
}


def parse_server_message(raw: Union[str, bytes, Dict[str, Any]]) -> OutgoingMessage:
    """Validate one gateway message on the client side."""
    data = json.loads(raw) if isinstance(raw, (str, bytes)) else dict(raw)
    if not isinstance(data, dict):
        raise UnknownMessageError(None)
    tag = data.get("type")
    model = SERVER_MESSAGE_MODELS.get(tag) if isinstance(tag, str) else None
    if model is None:
        raise UnknownMessageError(tag)
    return model.model_validate(data)
