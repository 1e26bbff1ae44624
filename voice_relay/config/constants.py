"""
Constants and configuration values used throughout the application.

This module defines constants that are used across different parts of the relay,
providing a centralized location for protocol names, timings and vendor defaults.
"""

# Logger name used throughout the application
LOGGER_NAME = "voice_relay"

# Deepgram streaming endpoints
DEEPGRAM_STT_URL = "wss://api.deepgram.com/v1/listen"
DEEPGRAM_TTS_URL = "wss://api.deepgram.com/v1/speak"
DEFAULT_STT_MODEL = "nova-2"
DEFAULT_STT_LANGUAGE = "en-US"
DEFAULT_VOICE_ID = "aura-asteria-en"

# TTS output encoding (linear PCM, mono, no container)
TTS_ENCODING = "linear16"
TTS_SAMPLE_RATE = 24000
TTS_CHANNELS = 1
TTS_CONTAINER = "none"

# Hugging Face inference defaults
DEFAULT_HF_API_URL = "https://api-inference.huggingface.co"
DEFAULT_HF_MODEL = "microsoft/DialoGPT-large"

# WebSocket close codes
CLOSE_NORMAL = 1000
CLOSE_TRY_AGAIN_LATER = 1013

# Backoff policy
BACKOFF_BASE_MS = 1000
BACKOFF_CAP_MS = 10000
BACKOFF_MAX_ATTEMPTS = 3

# Client keepalive
CLIENT_PING_INTERVAL = 20.0  # seconds
CLIENT_IDLE_TIMEOUT = 45.0  # seconds
CLIENT_CONNECT_TIMEOUT = 10.0  # seconds

# Conversation
MAX_HISTORY_TURNS = 10
MAX_REPLY_CHARS = 300
DEFAULT_MAX_SESSIONS = 100

EMPTY_REPLY_FALLBACK = "I understand. Could you tell me more about that?"
TURN_FAILURE_FALLBACK = (
    "I'm having trouble processing your request. Could you please try again?"
)

# Client -> gateway message tags
EVENT_CONNECTED = "connected"
EVENT_MEDIA = "media"
EVENT_TEXT_INPUT = "text_input"
EVENT_PING = "ping"

# Gateway -> client message types
MESSAGE_TYPE_CONNECTION_ESTABLISHED = "connection_established"
MESSAGE_TYPE_STT_CONNECTED = "stt_connected"
MESSAGE_TYPE_TTS_CONNECTED = "tts_connected"
MESSAGE_TYPE_READY = "ready"
MESSAGE_TYPE_TRANSCRIPT = "transcript"
MESSAGE_TYPE_AI_RESPONSE = "ai_response"
MESSAGE_TYPE_AUDIO_RESPONSE = "audio_response"
MESSAGE_TYPE_END_CALL = "end_call"
MESSAGE_TYPE_TRANSFER_CALL = "transfer_call"
MESSAGE_TYPE_ERROR = "error"
MESSAGE_TYPE_PONG = "pong"
