"""
Handlers module for voice session events.

Handlers run inside a ``VoiceSession`` actor and receive the event (or typed client
message) together with the session.

Key components:
- client_handlers: Handshake, audio, typed turns and keepalive from the client.
- upstream_handlers: Leg-open notifications, transcripts, synthesized audio,
  speech completion, deferred speech, leg failures and the end-of-call timer.
"""

# Handlers module initialization
