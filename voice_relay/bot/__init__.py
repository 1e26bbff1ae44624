"""
Bot module: the voice session and everything it drives.

This module provides the components that turn a client audio stream into a spoken
conversation with an AI agent.

Key components:
- session: ``VoiceSession``, the per-call actor. Client frames, upstream output and
  timers become events on one queue that the session handles one at a time.
- upstream: Base class for the reconnecting vendor WebSocket legs.
- deepgram_stt / deepgram_tts: The Deepgram listen and speak legs.
- backoff: ``BackoffSupervisor``, the bounded exponential backoff policy.
- turn_engine: Intent matching, prompt building and reply post-processing.
- language_model: Hugging Face inference API client.
- events: Event types posted to a session queue.

Usage examples:
```python
from voice_relay.bot.session import VoiceSession
from voice_relay.config.settings import RelaySettings

async def serve(websocket):
    session = VoiceSession(websocket, RelaySettings.from_env())
    await session.run()
```
"""

from voice_relay.bot.backoff import BackoffSupervisor
from voice_relay.bot.deepgram_stt import SpeechToTextAdapter
from voice_relay.bot.deepgram_tts import TextToSpeechAdapter
from voice_relay.bot.language_model import HuggingFaceLanguageModel
from voice_relay.bot.turn_engine import ConversationTurnEngine, derive_intent

__all__ = [
    "BackoffSupervisor",
    "SpeechToTextAdapter",
    "TextToSpeechAdapter",
    "HuggingFaceLanguageModel",
    "ConversationTurnEngine",
    "derive_intent",
]
