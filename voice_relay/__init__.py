"""
Real-Time Voice Relay - spoken conversations with configurable AI agents

This application lets a user talk to an AI agent in real time. Audio captured on
the client is streamed to a speech-to-text engine, each finalized utterance is
turned into a reply by a language model, and the reply is synthesized and
streamed back to the client as audio.

Architecture Overview:
- FastAPI server exposing a WebSocket endpoint for clients
- Deepgram streaming speech-to-text and text-to-speech over WebSockets
- Hugging Face inference API for reply generation
- One asyncio actor per call, with independent reconnection of every leg

Key Components:
- bot: Voice session actor, upstream speech adapters, backoff and turn engine
- config: Application-wide configuration, constants, and logging setup
- handlers: Handlers for client messages and upstream events
- models: Data structures, the session phase machine and wire schemas
- services: Profile store and the client-side gateway connection and playback
- websocket_manager: Accepts connections and runs one session per connection

Getting Started:
1. Set up environment variables:
   - DEEPGRAM_API_KEY: Your Deepgram API key
   - HUGGING_FACE_API: Hugging Face token (optional, intent templates otherwise)
   - SUPABASE_URL / SUPABASE_SERVICE_ROLE_KEY: Profile store (optional)
   - PORT: Port to run the server on (default 8000)
   - HOST: Host to bind the server to (default 0.0.0.0)
   - LOG_LEVEL: Logging level (default INFO)

2. Start the server:
   ```bash
   python run.py
   ```

3. Talk to the demo assistant:
   ```bash
   python client.py --url ws://localhost:8000/ws
   ```
"""
