"""
Models module for data structures and state management in the voice relay.

Key components:
- conversation: The session data model: agent profile, bounded dialogue history,
  connection records, the session phase machine, transcript/reply/audio value
  types and the gateway-wide session registry.
- message_schemas: Pydantic models for the client <-> gateway WebSocket protocol,
  normalizing ``event``/``type`` tagged client messages into one typed union.
- deepgram_schemas: Pydantic models for the Deepgram listen/speak streams.

Usage examples:
```python
from voice_relay.models.message_schemas import parse_client_message, AiResponse

message = parse_client_message('{"event": "connected", "assistantId": "demo"}')
print(message.assistantId)
```
"""

from voice_relay.models.conversation import (
    DEFAULT_PROFILE,
    AgentProfile,
    AudioChunk,
    AudioEncoding,
    ConnectionRecord,
    ConnectionState,
    ConversationReply,
    DialogueHistory,
    DialogueTurn,
    SessionPhase,
    SessionRegistry,
    TranscriptEvent,
)
from voice_relay.models.message_schemas import (
    AiResponse,
    AudioResponse,
    ConnectedMessage,
    ConnectionEstablishedResponse,
    EndCallResponse,
    ErrorResponse,
    IncomingMessage,
    MediaMessage,
    OutgoingMessage,
    PingMessage,
    PongResponse,
    ReadyResponse,
    TextInputMessage,
    TranscriptResponse,
    TransferCallResponse,
    parse_client_message,
    parse_server_message,
)
