"""
Handlers for messages received from the client socket.

Each handler receives the typed message and the owning ``VoiceSession``. Handlers
run inside the session actor, one at a time, so they may freely read and update
session state.
"""

import asyncio
import logging

from voice_relay.config.constants import LOGGER_NAME
from voice_relay.models.conversation import CONVERSATION_PHASES, SessionPhase
from voice_relay.models.message_schemas import (
    AssistantInfo,
    ConnectedMessage,
    ConnectionEstablishedResponse,
    ErrorResponse,
    MediaMessage,
    PingMessage,
    PongResponse,
    TextInputMessage,
)
from voice_relay.services.profile_store import resolve_profile

logger = logging.getLogger(LOGGER_NAME)


async def handle_connected(message: ConnectedMessage, session) -> None:
    """
    Handle the client handshake.

    Resolves the agent profile, reports it to the client and opens both upstream
    legs concurrently. READY is entered later, once both legs report open.
    """
    if session.phase != SessionPhase.AWAITING_HANDSHAKE:
        logger.warning(f"[{session.session_id}] Ignoring duplicate handshake in phase {session.phase.value}")
        return

    logger.info(
        f"[{session.session_id}] Handshake for assistant {message.assistantId} (user {message.userId})"
    )
    session.transition(SessionPhase.LOADING_PROFILE)
    profile = await resolve_profile(session.profile_store, message.assistantId, message.userId)
    session.set_profile(profile)

    await session.send(ConnectionEstablishedResponse(assistant=AssistantInfo.from_profile(profile)))

    if not session.settings.deepgram_api_key:
        logger.error(f"[{session.session_id}] DEEPGRAM_API_KEY is not configured")
        await session.send(ErrorResponse(error="Voice service is not configured."))
        await session.close()
        return

    session.transition(SessionPhase.OPENING_UPSTREAMS)
    await asyncio.gather(
        session.stt.open(session.settings.stt),
        session.tts.open(profile.voice_id, profile.opening_message),
    )


async def handle_media(message: MediaMessage, session) -> None:
    await forward_audio(message.audio, session)


async def forward_audio(audio: bytes, session) -> None:
    """Forward client audio to the STT leg; audio before READY is dropped."""
    if session.phase not in CONVERSATION_PHASES:
        logger.debug(f"[{session.session_id}] Dropping audio in phase {session.phase.value}")
        return
    if session.phase == SessionPhase.READY:
        session.transition(SessionPhase.LISTENING)
    await session.stt.send_audio(audio)


async def handle_text_input(message: TextInputMessage, session) -> None:
    """Run a typed turn exactly like a final transcript."""
    if session.phase not in CONVERSATION_PHASES:
        logger.warning(f"[{session.session_id}] Ignoring text input before ready (phase {session.phase.value})")
        return
    logger.info(f"[{session.session_id}] Text input: {message.text}")
    await session.run_turn(message.text)


async def handle_ping(message: PingMessage, session) -> None:
    await session.send(PongResponse())
