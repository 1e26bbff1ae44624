"""
FastAPI server for the real-time voice relay.

This module initializes and configures the FastAPI application that clients
connect to for spoken conversations with an AI agent. Each WebSocket connection on
``/ws`` becomes a voice session that bridges the client to the Deepgram streaming
speech-to-text and text-to-speech services and to the language model.
"""

from contextlib import asynccontextmanager
from pathlib import Path

import dotenv
from fastapi import FastAPI, WebSocket

from voice_relay.config.logging_config import configure_logging
from voice_relay.config.settings import RelaySettings
from voice_relay.websocket_manager import WebSocketManager

# Load environment variables from .env file if it exists
env_path = Path(".") / ".env"
if env_path.exists():
    dotenv.load_dotenv(env_path)

# Configure logging
logger = configure_logging()

settings = RelaySettings.from_env()

# Create WebSocket manager
websocket_manager = WebSocketManager(settings)


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    logger.info("Shutting down, closing active sessions")
    await websocket_manager.shutdown()


# Create FastAPI application
app = FastAPI(
    title="Real-Time Voice Relay",
    description="Voice conversations with AI agents over Deepgram streaming speech services",
    version="1.0.0",
    lifespan=lifespan,
)


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for voice sessions.

    The client sends a ``connected`` handshake naming the assistant, then streams
    base64 ``media`` frames (or typed ``text_input`` turns) and receives
    transcripts, replies and synthesized audio.
    """
    await websocket_manager.handle_websocket(websocket)


@app.get("/health")
async def health_check():
    """Health check endpoint for monitoring system status.

    Returns:
        dict: Status information including the number of active sessions and
        whether the vendor credentials are configured.
    """
    return {
        "status": "healthy",
        "active_sessions": websocket_manager.active_sessions,
        "max_sessions": websocket_manager.settings.max_sessions,
        "deepgram_api_key_configured": bool(websocket_manager.settings.deepgram_api_key),
        "language_model_configured": websocket_manager.language_model is not None,
    }


@app.get("/")
async def root():
    """Root endpoint to display basic information about the API.

    Returns:
        dict: Basic information about the API and its purpose.
    """
    return {
        "name": "Real-Time Voice Relay",
        "description": "Voice conversations with AI agents over Deepgram streaming speech services",
        "version": "1.0.0",
        "endpoints": {
            "/ws": "WebSocket endpoint for voice sessions",
            "/health": "Health check endpoint",
        },
    }


if __name__ == "__main__":
    import uvicorn

    logger.info(f"Starting server on http://{settings.host}:{settings.port}")
    uvicorn.run(
        app,
        host=settings.host,
        port=settings.port,
        ws_ping_interval=20,
        ws_max_size=16777216,  # 16MB - large enough for audio chunks
        ws_ping_timeout=20,
        http="h11",
    )
