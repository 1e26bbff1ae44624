"""
Conversation state for voice sessions.

This module holds the data model shared by the session orchestrator, the upstream
adapters and the turn engine: the immutable agent profile, the bounded dialogue
history, per-connection records, the session phase machine, the transcript, reply
and audio value types, and the gateway-wide session registry.
"""

import time
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Deque, Dict, Iterator, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from voice_relay.config.constants import (
    DEFAULT_VOICE_ID,
    MAX_HISTORY_TURNS,
    TTS_CHANNELS,
    TTS_CONTAINER,
    TTS_ENCODING,
    TTS_SAMPLE_RATE,
)


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


class AgentProfile(BaseModel):
    """Immutable snapshot of the agent a session talks to."""

    model_config = ConfigDict(frozen=True)

    name: str
    system_prompt: str
    voice_id: str = DEFAULT_VOICE_ID
    temperature: float = Field(default=0.8, ge=0.0, le=2.0)
    max_reply_tokens: int = Field(default=150, ge=1)
    opening_message: Optional[str] = None


DEFAULT_PROFILE = AgentProfile(
    name="Demo Assistant",
    system_prompt=(
        "You are a helpful voice assistant. Be friendly, conversational, and keep "
        "responses concise since this is a voice conversation."
    ),
    voice_id=DEFAULT_VOICE_ID,
    temperature=0.8,
    max_reply_tokens=150,
    opening_message="Hello! I can hear you clearly. How can I help you today?",
)


@dataclass(frozen=True)
class DialogueTurn:
    role: Literal["user", "assistant"]
    text: str


class DialogueHistory:
    """Most recent dialogue turns, oldest evicted first once the bound is reached."""

    def __init__(self, max_turns: int = MAX_HISTORY_TURNS):
        self.max_turns = max_turns
        self._turns: Deque[DialogueTurn] = deque(maxlen=max_turns)

    def append(self, role: Literal["user", "assistant"], text: str) -> None:
        self._turns.append(DialogueTurn(role=role, text=text))

    def turns(self) -> List[DialogueTurn]:
        return list(self._turns)

    def __len__(self) -> int:
        return len(self._turns)

    def __iter__(self) -> Iterator[DialogueTurn]:
        return iter(self.turns())


class ConnectionState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass
class ConnectionRecord:
    """Tracks one of the three legs of a session."""

    name: str
    state: ConnectionState = ConnectionState.DISCONNECTED
    attempt: int = 0
    last_activity: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_activity = time.monotonic()

    @property
    def is_open(self) -> bool:
        return self.state == ConnectionState.OPEN


class SessionPhase(str, Enum):
    """Lifecycle phases of a voice session."""

    IDLE = "idle"
    AWAITING_HANDSHAKE = "awaiting_handshake"
    LOADING_PROFILE = "loading_profile"
    OPENING_UPSTREAMS = "opening_upstreams"
    READY = "ready"
    LISTENING = "listening"
    PROCESSING = "processing"
    SPEAKING = "speaking"
    CLOSED = "closed"


# Valid phase transitions (from -> to)
VALID_TRANSITIONS: Dict[SessionPhase, set] = {
    SessionPhase.IDLE: {SessionPhase.AWAITING_HANDSHAKE, SessionPhase.CLOSED},
    SessionPhase.AWAITING_HANDSHAKE: {SessionPhase.LOADING_PROFILE, SessionPhase.CLOSED},
    SessionPhase.LOADING_PROFILE: {SessionPhase.OPENING_UPSTREAMS, SessionPhase.CLOSED},
    SessionPhase.OPENING_UPSTREAMS: {SessionPhase.READY, SessionPhase.CLOSED},
    SessionPhase.READY: {
        SessionPhase.LISTENING,
        SessionPhase.PROCESSING,
        SessionPhase.SPEAKING,
        SessionPhase.CLOSED,
    },
    SessionPhase.LISTENING: {
        SessionPhase.PROCESSING,
        SessionPhase.SPEAKING,
        SessionPhase.CLOSED,
    },
    SessionPhase.PROCESSING: {
        SessionPhase.SPEAKING,
        SessionPhase.LISTENING,
        SessionPhase.CLOSED,
    },
    SessionPhase.SPEAKING: {
        SessionPhase.LISTENING,
        SessionPhase.PROCESSING,
        SessionPhase.CLOSED,
    },
    SessionPhase.CLOSED: set(),
}

# Phases in which conversational turns are accepted
CONVERSATION_PHASES = frozenset(
    {
        SessionPhase.READY,
        SessionPhase.LISTENING,
        SessionPhase.PROCESSING,
        SessionPhase.SPEAKING,
    }
)


def is_valid_transition(from_phase: SessionPhase, to_phase: SessionPhase) -> bool:
    """Check if a phase transition is valid."""
    return to_phase in VALID_TRANSITIONS.get(from_phase, set())


@dataclass(frozen=True)
class TranscriptEvent:
    text: str
    is_final: bool = False
    is_speech_final: bool = False
    confidence: float = 1.0
    timestamp: int = field(default_factory=now_ms)

    @property
    def triggers_turn(self) -> bool:
        """Only finalized transcripts start a conversational turn."""
        return self.is_final or self.is_speech_final


@dataclass(frozen=True)
class ConversationReply:
    text: str
    intent: str
    confidence: float
    should_transfer: bool = False
    should_end_call: bool = False


@dataclass(frozen=True)
class AudioEncoding:
    encoding: str = TTS_ENCODING
    sample_rate: int = TTS_SAMPLE_RATE
    channels: int = TTS_CHANNELS
    container: str = TTS_CONTAINER


@dataclass(frozen=True)
class AudioChunk:
    data: bytes
    encoding: AudioEncoding = field(default_factory=AudioEncoding)


class SessionRegistry:
    """
    Registry of the sessions currently served by this gateway.

    The registry is used for admission control and health reporting only; sessions
    never reach into each other through it.
    """

    def __init__(self):
        """Initialize an empty dictionary of active sessions."""
        self.active_sessions: Dict[str, Any] = {}

    def add_session(self, session_id: str, session: Any) -> None:
        self.active_sessions[session_id] = session

    def remove_session(self, session_id: str) -> None:
        if session_id in self.active_sessions:
            del self.active_sessions[session_id]

    def get_all_sessions(self) -> Dict[str, Any]:
        return self.active_sessions

    def __len__(self) -> int:
        return len(self.active_sessions)
