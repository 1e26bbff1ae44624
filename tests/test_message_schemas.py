"""
Unit tests for the message schemas.

These tests validate that client messages are normalized into typed models and
that gateway messages serialize with the fields clients rely on.
"""

import base64
import json

import pytest
from pydantic import ValidationError

from voice_relay.errors import UnknownMessageError
from voice_relay.models.conversation import DEFAULT_PROFILE, ConversationReply, TranscriptEvent
from voice_relay.models.message_schemas import (
    AiResponse,
    AssistantInfo,
    AudioResponse,
    ConnectedMessage,
    EndCallResponse,
    ErrorResponse,
    MediaMessage,
    PingMessage,
    SERVER_MESSAGE_MODELS,
    ReadyResponse,
    TextInputMessage,
    TranscriptResponse,
    decode_audio,
    parse_client_message,
    parse_server_message,
)


class TestParseClientMessage:
    """Tests for client message normalization."""

    def test_event_key(self):
        message = parse_client_message('{"event": "connected", "assistantId": "a1", "userId": "u1"}')
        assert isinstance(message, ConnectedMessage)
        assert message.assistantId == "a1"
        assert message.userId == "u1"

    def test_type_key_is_accepted(self):
        """Test that a message tagged with ``type`` is treated like ``event``"""
        message = parse_client_message({"type": "ping"})
        assert isinstance(message, PingMessage)
        assert message.event == "ping"

    def test_handshake_defaults(self):
        message = parse_client_message({"event": "connected"})
        assert message.assistantId == "demo"
        assert message.userId == "demo-user"

    def test_text_input_is_stripped(self):
        message = parse_client_message({"event": "text_input", "text": "  hello  "})
        assert isinstance(message, TextInputMessage)
        assert message.text == "hello"

    def test_blank_text_input_rejected(self):
        with pytest.raises(ValidationError):
            parse_client_message({"event": "text_input", "text": "   "})

    def test_unknown_tag(self):
        with pytest.raises(UnknownMessageError) as exc_info:
            parse_client_message({"event": "dance"})
        assert exc_info.value.tag == "dance"

    def test_missing_tag(self):
        with pytest.raises(UnknownMessageError):
            parse_client_message({"text": "hi"})

    def test_non_string_tag(self):
        with pytest.raises(UnknownMessageError) as exc_info:
            parse_client_message({"event": ["media"]})
        assert exc_info.value.tag == ["media"]

    def test_non_object_json(self):
        with pytest.raises(UnknownMessageError):
            parse_client_message("[1, 2, 3]")

    def test_invalid_json(self):
        with pytest.raises(ValueError):
            parse_client_message("{not json")


class TestMediaMessage:
    """Tests for audio carried in media messages."""

    def test_valid_payload_decodes(self):
        raw = b"\x01\x02\x03\x04"
        message = parse_client_message(
            {"event": "media", "media": {"payload": base64.b64encode(raw).decode()}}
        )
        assert isinstance(message, MediaMessage)
        assert message.audio == raw

    def test_invalid_base64(self):
        with pytest.raises(ValidationError):
            parse_client_message({"event": "media", "media": {"payload": "not base64!!"}})

    def test_empty_payload(self):
        with pytest.raises(ValidationError):
            parse_client_message({"event": "media", "media": {"payload": ""}})

    def test_decode_audio_error_message(self):
        with pytest.raises(ValueError, match="Invalid base64"):
            decode_audio("@@@")


class TestServerMessages:
    """Tests for gateway -> client messages."""

    def test_timestamp_is_epoch_ms(self):
        message = ErrorResponse(error="boom")
        assert message.timestamp > 1_600_000_000_000

    def test_ready_carries_assistant(self):
        message = ReadyResponse(assistant=AssistantInfo.from_profile(DEFAULT_PROFILE))
        data = json.loads(message.model_dump_json())
        assert data["type"] == "ready"
        assert data["status"] == "Ready to chat"
        assert data["assistant"]["name"] == "Demo Assistant"
        assert data["assistant"]["first_message"] == DEFAULT_PROFILE.opening_message

    def test_transcript_from_event(self):
        event = TranscriptEvent(text="hi", is_final=True, confidence=0.9)
        data = json.loads(TranscriptResponse.from_event(event).model_dump_json())
        assert data["text"] == "hi"
        assert data["isFinal"] is True
        assert data["speechFinal"] is False
        assert data["confidence"] == 0.9

    def test_ai_response_from_reply(self):
        reply = ConversationReply(
            text="Goodbye", intent="not_interested", confidence=0.9, should_end_call=True
        )
        data = json.loads(AiResponse.from_reply(reply).model_dump_json())
        assert data["type"] == "ai_response"
        assert data["intent"] == "not_interested"
        assert data["shouldEndCall"] is True
        assert data["shouldTransfer"] is False

    def test_audio_response_encodes_bytes(self):
        message = AudioResponse.from_bytes(b"\x00\xff")
        assert base64.b64decode(message.audio) == b"\x00\xff"

    def test_end_call_default_reason(self):
        assert EndCallResponse().reason == "ai_decision"

    def test_parse_server_message(self):
        raw = ErrorResponse(error="nope").model_dump_json()
        message = parse_server_message(raw)
        assert isinstance(message, ErrorResponse)
        assert message.error == "nope"

    def test_registry_keys_match_model_types(self):
        for message_type, model in SERVER_MESSAGE_MODELS.items():
            assert model.model_fields["type"].default == message_type

    def test_parse_server_message_unknown_type(self):
        with pytest.raises(UnknownMessageError):
            parse_server_message({"type": "mystery"})
