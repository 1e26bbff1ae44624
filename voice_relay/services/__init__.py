"""
Services module for collaborators outside the session actor.

Key components:
- profile_store: Agent profile lookup (in-memory or Supabase REST) with fallback
  to the built-in default profile.
- voice_client: ``VoiceAssistantClient``, the client side of the gateway protocol
  with keepalive and reconnection.
- audio_playback: Sequential playback of synthesized audio and PyAudio microphone
  capture.

Usage examples:
```python
from voice_relay.services.voice_client import VoiceAssistantClient
import asyncio

async def talk():
    client = VoiceAssistantClient("ws://localhost:8000/ws", assistant_id="demo")
    if await client.connect():
        await client.send_text("hello")
        await asyncio.sleep(5)
    await client.disconnect()

asyncio.run(talk())
```
"""

# Services module initialization
