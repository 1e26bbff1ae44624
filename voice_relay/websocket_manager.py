"""
WebSocket connection manager for the voice relay.

This module accepts client WebSocket connections and turns each one into a
``VoiceSession``:
- Accept the connection and tune the socket for low latency
- Refuse connections beyond the configured session limit
- Register the session for health reporting while it runs
- Remove the session and release its resources when it ends

The WebSocketManager holds only gateway-wide collaborators (settings, profile
store, language model); all per-call state lives in the session.
"""

import logging
import socket
from typing import Any, Callable, Optional

from fastapi import WebSocket

from voice_relay.bot.language_model import HuggingFaceLanguageModel, LanguageModel
from voice_relay.bot.session import VoiceSession
from voice_relay.config.constants import CLOSE_TRY_AGAIN_LATER, LOGGER_NAME
from voice_relay.config.settings import DEFAULT_TIMINGS, RelaySettings, SessionTimings
from voice_relay.models.conversation import SessionRegistry
from voice_relay.models.message_schemas import ErrorResponse
from voice_relay.services.profile_store import ProfileStore, SupabaseProfileStore

logger = logging.getLogger(LOGGER_NAME)


class WebSocketManager:
    """Accepts client connections and runs one voice session per connection.

    Args:
        settings: Relay settings; read from the environment when omitted
        profile_store: Profile store; built from the Supabase settings when omitted
        language_model: Reply model; built from the Hugging Face settings when omitted
        connector: Upstream socket factory passed through to each session
        timings: Session delays passed through to each session
    """

    def __init__(
        self,
        settings: Optional[RelaySettings] = None,
        profile_store: Optional[ProfileStore] = None,
        language_model: Optional[LanguageModel] = None,
        connector: Optional[Callable[..., Any]] = None,
        timings: SessionTimings = DEFAULT_TIMINGS,
    ):
        self.settings = settings or RelaySettings.from_env()
        self.registry = SessionRegistry()
        self.connector = connector
        self.timings = timings

        if profile_store is None and self.settings.profile_store_configured:
            profile_store = SupabaseProfileStore(
                self.settings.supabase_url, self.settings.supabase_service_role_key
            )
        self.profile_store = profile_store

        if language_model is None and self.settings.language_model_configured:
            language_model = HuggingFaceLanguageModel(
                self.settings.huggingface_api_key,
                api_url=self.settings.hf_api_url,
                model=self.settings.hf_model,
            )
        self.language_model = language_model

    @property
    def active_sessions(self) -> int:
        return len(self.registry)

    async def _optimize_socket(self, websocket: WebSocket) -> None:
        """
        Optimize the WebSocket's underlying TCP socket for low-latency transmission.

        Args:
            websocket: The FastAPI WebSocket connection
        """
        try:
            client = websocket.client
            if hasattr(client, "sock") and client.sock is not None:
                # Disable Nagle's algorithm to send packets immediately
                client.sock.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
                logger.info("Optimized socket: TCP_NODELAY enabled for low latency")
        except Exception as e:
            logger.warning(f"Could not optimize socket: {e}")

    def create_session(self, websocket: WebSocket) -> VoiceSession:
        return VoiceSession(
            websocket,
            self.settings,
            profile_store=self.profile_store,
            language_model=self.language_model,
            connector=self.connector,
            timings=self.timings,
        )

    async def handle_websocket(self, websocket: WebSocket) -> None:
        """Handle a client connection throughout its lifecycle.

        Args:
            websocket (WebSocket): The FastAPI WebSocket connection object

        The session runs until the client disconnects or an upstream leg fails
        permanently. Connections beyond ``max_sessions`` receive an error and are
        closed with code 1013 (try again later).
        """
        await websocket.accept()

        if len(self.registry) >= self.settings.max_sessions:
            logger.warning(
                f"Refusing connection: {len(self.registry)} active sessions "
                f"(max {self.settings.max_sessions})"
            )
            try:
                await websocket.send_text(
                    ErrorResponse(error="Server is busy. Please try again later.").model_dump_json()
                )
                await websocket.close(code=CLOSE_TRY_AGAIN_LATER)
            except Exception as e:
                logger.warning(f"Error refusing connection: {e}")
            return

        await self._optimize_socket(websocket)
        session = self.create_session(websocket)
        self.registry.add_session(session.session_id, session)
        logger.info(f"Session {session.session_id} started ({len(self.registry)} active)")

        try:
            await session.run()
        except Exception as e:
            logger.error(f"Error in session {session.session_id}: {e}", exc_info=True)
        finally:
            await session.close()
            self.registry.remove_session(session.session_id)
            logger.info(f"Session {session.session_id} removed ({len(self.registry)} active)")

    async def shutdown(self) -> None:
        """Close every active session and release shared clients."""
        for session in list(self.registry.get_all_sessions().values()):
            await session.close()
        if isinstance(self.language_model, HuggingFaceLanguageModel):
            await self.language_model.aclose()
