"""
Handlers for events produced by the upstream legs and session timers.
"""

import logging

from voice_relay.bot.events import (
    LEG_STT,
    LEG_TTS,
    EndCallDue,
    SpeakRequest,
    SpeechCompleted,
    UpstreamFailed,
    UpstreamOpened,
)
from voice_relay.config.constants import LOGGER_NAME
from voice_relay.models.conversation import (
    CONVERSATION_PHASES,
    AudioChunk,
    SessionPhase,
    TranscriptEvent,
)
from voice_relay.models.message_schemas import (
    AssistantInfo,
    AudioResponse,
    EndCallResponse,
    ErrorResponse,
    ReadyResponse,
    SttConnectedResponse,
    TranscriptResponse,
    TtsConnectedResponse,
)

logger = logging.getLogger(LOGGER_NAME)


async def handle_upstream_opened(event: UpstreamOpened, session) -> None:
    """Report the leg to the client and enter READY once both legs are open."""
    if event.reconnected:
        logger.info(f"[{session.session_id}] {event.leg} upstream reconnected")
    session.opened_legs.add(event.leg)
    await session.send(SttConnectedResponse() if event.leg == LEG_STT else TtsConnectedResponse())

    if (
        session.phase == SessionPhase.OPENING_UPSTREAMS
        and session.opened_legs >= {LEG_STT, LEG_TTS}
        and session.stt.is_open
        and session.tts.is_open
    ):
        session.transition(SessionPhase.READY)
        await session.send(ReadyResponse(assistant=AssistantInfo.from_profile(session.profile)))
        logger.info(f"[{session.session_id}] Session ready")


async def handle_transcript(event: TranscriptEvent, session) -> None:
    """
    Forward a transcript to the client.

    Only finalized transcripts start a turn; interim results are informational.
    """
    await session.send(TranscriptResponse.from_event(event))

    if session.phase not in CONVERSATION_PHASES:
        return
    if event.triggers_turn:
        await session.run_turn(event.text)
    elif session.phase == SessionPhase.READY:
        session.transition(SessionPhase.LISTENING)


async def handle_audio_chunk(chunk: AudioChunk, session) -> None:
    if session.phase in (SessionPhase.READY, SessionPhase.LISTENING, SessionPhase.PROCESSING):
        session.transition(SessionPhase.SPEAKING)
    await session.send(AudioResponse.from_bytes(chunk.data))


async def handle_speech_completed(event: SpeechCompleted, session) -> None:
    if session.phase == SessionPhase.SPEAKING:
        session.transition(SessionPhase.LISTENING)


async def handle_speak_request(event: SpeakRequest, session) -> None:
    if session.phase in CONVERSATION_PHASES:
        await session.speak(event.text, event.attempt)
    elif session.phase == SessionPhase.OPENING_UPSTREAMS:
        # Not ready yet, ask again later
        session.schedule(event, session.timings.speak_retry_delay)
    else:
        logger.debug(f"[{session.session_id}] Dropping speech request in phase {session.phase.value}")


async def handle_upstream_failed(event: UpstreamFailed, session) -> None:
    logger.error(f"[{session.session_id}] {event.leg} upstream failed permanently: {event.reason}")
    await session.send(ErrorResponse(error="Lost connection to the voice service. Please try again."))
    await session.close()


async def handle_end_call_due(event: EndCallDue, session) -> None:
    logger.info(f"[{session.session_id}] Ending call ({event.reason})")
    await session.send(EndCallResponse(reason=event.reason))
