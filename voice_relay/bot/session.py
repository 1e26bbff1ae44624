"""
Voice session actor.

A ``VoiceSession`` owns everything about one client call: the client socket, the
STT and TTS upstream legs, the turn engine and the session phase. Every input
(client frames, upstream output and timers) is put on a single queue, and the
run loop handles the events one by one, so no two handlers of a session ever run
at the same time. A language model call therefore suspends only its own session.
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from voice_relay.bot.backoff import BackoffSupervisor
from voice_relay.bot.deepgram_stt import SpeechToTextAdapter
from voice_relay.bot.deepgram_tts import TextToSpeechAdapter
from voice_relay.bot.events import (
    LEG_CLIENT,
    LEG_STT,
    LEG_TTS,
    ClientAudioReceived,
    ClientDisconnected,
    ClientMessageReceived,
    EndCallDue,
    SessionEvent,
    SpeakRequest,
    SpeechCompleted,
    UpstreamFailed,
    UpstreamOpened,
)
from voice_relay.bot.language_model import LanguageModel
from voice_relay.bot.turn_engine import ConversationTurnEngine
from voice_relay.config.constants import CLOSE_NORMAL, LOGGER_NAME
from voice_relay.config.settings import DEFAULT_TIMINGS, RelaySettings, SessionTimings
from voice_relay.errors import UnknownMessageError
from voice_relay.handlers.client_handlers import (
    forward_audio,
    handle_connected,
    handle_media,
    handle_ping,
    handle_text_input,
)
from voice_relay.handlers.upstream_handlers import (
    handle_audio_chunk,
    handle_end_call_due,
    handle_speak_request,
    handle_speech_completed,
    handle_transcript,
    handle_upstream_failed,
    handle_upstream_opened,
)
from voice_relay.models.conversation import (
    DEFAULT_PROFILE,
    AgentProfile,
    AudioChunk,
    ConnectionRecord,
    ConnectionState,
    DialogueHistory,
    SessionPhase,
    TranscriptEvent,
    is_valid_transition,
)
from voice_relay.models.message_schemas import (
    AiResponse,
    ServerMessage,
    TransferCallResponse,
    parse_client_message,
)
from voice_relay.services.profile_store import ProfileStore

logger = logging.getLogger(LOGGER_NAME)

HandlerFunc = Callable[[Any, "VoiceSession"], Awaitable[None]]


class VoiceSession:
    """
    One client call bridged to the speech vendors.

    Args:
        websocket: The accepted client WebSocket
        settings: Relay settings (API keys, vendor URLs, STT options)
        profile_store: Store used to resolve the agent profile, or None for the default
        language_model: Model used for replies; None runs the intent templates only
        connector: Factory used to open upstream sockets (``websockets.connect``)
        timings: Fixed session delays
        session_id: Identifier for logs; generated when omitted
    """

    def __init__(
        self,
        websocket: WebSocket,
        settings: RelaySettings,
        profile_store: Optional[ProfileStore] = None,
        language_model: Optional[LanguageModel] = None,
        connector: Optional[Callable[..., Any]] = None,
        timings: SessionTimings = DEFAULT_TIMINGS,
        session_id: Optional[str] = None,
    ):
        self.session_id = session_id or uuid.uuid4().hex
        self.websocket = websocket
        self.settings = settings
        self.profile_store = profile_store
        self.language_model = language_model
        self.timings = timings

        self.phase = SessionPhase.IDLE
        self.profile: AgentProfile = DEFAULT_PROFILE
        self.history = DialogueHistory()
        self.engine: Optional[ConversationTurnEngine] = None

        self.queue: asyncio.Queue = asyncio.Queue()
        # Upstream legs that have reported open at least once
        self.opened_legs: set = set()
        self.client_record = ConnectionRecord(name=LEG_CLIENT, state=ConnectionState.OPEN)
        api_key = settings.deepgram_api_key or ""
        self.stt = SpeechToTextAdapter(
            api_key,
            self.post,
            base_url=settings.stt_url,
            supervisor=BackoffSupervisor(),
            connector=connector,
            session_id=self.session_id,
        )
        self.tts = TextToSpeechAdapter(
            api_key,
            self.post,
            base_url=settings.tts_url,
            sample_rate=settings.tts_sample_rate,
            timings=timings,
            supervisor=BackoffSupervisor(),
            connector=connector,
            session_id=self.session_id,
        )

        self._reader_task: Optional[asyncio.Task] = None
        self._timer_tasks: set = set()
        self._closed = False

        self.client_handlers: Dict[str, HandlerFunc] = {
            "connected": handle_connected,
            "media": handle_media,
            "text_input": handle_text_input,
            "ping": handle_ping,
        }
        self.event_handlers: Dict[type, HandlerFunc] = {
            UpstreamOpened: handle_upstream_opened,
            TranscriptEvent: handle_transcript,
            AudioChunk: handle_audio_chunk,
            SpeechCompleted: handle_speech_completed,
            SpeakRequest: handle_speak_request,
            UpstreamFailed: handle_upstream_failed,
            EndCallDue: handle_end_call_due,
        }

    @property
    def connections(self) -> Dict[str, ConnectionRecord]:
        return {
            LEG_CLIENT: self.client_record,
            LEG_STT: self.stt.record,
            LEG_TTS: self.tts.record,
        }

    @property
    def is_closed(self) -> bool:
        return self._closed

    def post(self, event: SessionEvent) -> None:
        """Enqueue an event for the run loop. Events posted after close are dropped."""
        if self._closed:
            return
        self.queue.put_nowait(event)

    def schedule(self, event: SessionEvent, delay: float) -> None:
        """Post ``event`` after ``delay`` seconds unless the session closes first."""
        task = asyncio.create_task(self._post_after(event, delay))
        self._timer_tasks.add(task)
        task.add_done_callback(self._timer_tasks.discard)

    async def _post_after(self, event: SessionEvent, delay: float) -> None:
        await asyncio.sleep(delay)
        self.post(event)

    def transition(self, phase: SessionPhase) -> bool:
        """
        Move to ``phase`` if the phase table allows it.

        Invalid transitions are logged and ignored.
        """
        if phase == self.phase:
            return True
        if not is_valid_transition(self.phase, phase):
            logger.warning(
                f"[{self.session_id}] Ignoring invalid phase transition {self.phase.value} -> {phase.value}"
            )
            return False
        logger.debug(f"[{self.session_id}] Phase {self.phase.value} -> {phase.value}")
        self.phase = phase
        return True

    def set_profile(self, profile: AgentProfile) -> None:
        self.profile = profile
        self.engine = ConversationTurnEngine(
            profile,
            history=self.history,
            language_model=self.language_model,
            session_id=self.session_id,
        )

    async def send(self, message: ServerMessage) -> bool:
        """Send one message to the client."""
        if self._closed:
            return False
        try:
            await self.websocket.send_text(message.model_dump_json())
        except Exception as e:
            logger.warning(f"[{self.session_id}] Failed to send {message.type} to client: {e}")
            return False
        self.client_record.touch()
        return True

    async def speak(self, text: str, attempt: int = 0) -> bool:
        sent = await self.tts.speak(text, attempt)
        if sent:
            self.transition(SessionPhase.SPEAKING)
        return sent

    async def run_turn(self, text: str) -> None:
        """
        Run one conversational turn for a final utterance.

        The reply text is sent before any of its audio, followed by the call
        control messages the reply asks for.
        """
        if self.engine is None:
            self.set_profile(self.profile)

        self.transition(SessionPhase.PROCESSING)
        reply = await self.engine.on_final_transcript(text)
        if self._closed:
            return

        await self.send(AiResponse.from_reply(reply))
        if not await self.speak(reply.text) and self.phase == SessionPhase.PROCESSING:
            self.transition(SessionPhase.LISTENING)

        if reply.should_end_call:
            logger.info(f"[{self.session_id}] Call will end in {self.timings.end_call_delay}s")
            self.schedule(EndCallDue(), self.timings.end_call_delay)
        elif reply.should_transfer:
            logger.info(f"[{self.session_id}] Transferring call")
            await self.send(TransferCallResponse())

    async def _read_client(self) -> None:
        """Read client frames and post them to the queue until the client goes away."""
        try:
            while True:
                frame = await self.websocket.receive()
                if frame.get("type") == "websocket.disconnect":
                    self.post(ClientDisconnected(code=frame.get("code")))
                    return

                self.client_record.touch()
                if frame.get("bytes") is not None:
                    self.post(ClientAudioReceived(data=frame["bytes"]))
                elif frame.get("text") is not None:
                    try:
                        message = parse_client_message(frame["text"])
                    except UnknownMessageError as e:
                        logger.warning(f"[{self.session_id}] {e}")
                        continue
                    except (ValidationError, ValueError) as e:
                        logger.warning(f"[{self.session_id}] Invalid client message: {e}")
                        continue
                    if message.event != "media":
                        logger.info(f"[{self.session_id}] Received client message: {message.event}")
                    self.post(ClientMessageReceived(message=message))
        except WebSocketDisconnect as e:
            self.post(ClientDisconnected(code=e.code, reason=str(e.reason or "")))
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.session_id}] Error reading from client: {e}", exc_info=True)
            self.post(ClientDisconnected(reason=str(e)))

    async def dispatch(self, event: SessionEvent) -> None:
        """Route one event to its handler."""
        if isinstance(event, ClientDisconnected):
            logger.info(f"[{self.session_id}] Client disconnected (code {event.code})")
            self.client_record.state = ConnectionState.CLOSED
            await self.close()
            return

        if isinstance(event, ClientAudioReceived):
            await forward_audio(event.data, self)
            return

        if isinstance(event, ClientMessageReceived):
            handler = self.client_handlers.get(event.message.event)
            payload = event.message
        else:
            handler = self.event_handlers.get(type(event))
            payload = event

        if handler is None:
            logger.warning(f"[{self.session_id}] No handler for event {type(event).__name__}")
            return
        await handler(payload, self)

    async def run(self) -> None:
        """Process events until the session closes."""
        self.transition(SessionPhase.AWAITING_HANDSHAKE)
        self._reader_task = asyncio.create_task(self._read_client())
        try:
            while self.phase != SessionPhase.CLOSED:
                event = await self.queue.get()
                if event is None:
                    break
                try:
                    await self.dispatch(event)
                except Exception as e:
                    logger.error(
                        f"[{self.session_id}] Error handling {type(event).__name__}: {e}",
                        exc_info=True,
                    )
        finally:
            await self.close()

    async def close(self, code: int = CLOSE_NORMAL) -> None:
        """Tear down both upstream legs and the client socket. Safe to call repeatedly."""
        if self._closed:
            return
        self._closed = True
        self.transition(SessionPhase.CLOSED)
        # Wake the run loop if it is waiting on an empty queue
        self.queue.put_nowait(None)
        logger.info(f"[{self.session_id}] Closing session")

        for task in list(self._timer_tasks):
            task.cancel()
        self._timer_tasks.clear()

        if self._reader_task is not None and self._reader_task is not asyncio.current_task():
            self._reader_task.cancel()
            await asyncio.gather(self._reader_task, return_exceptions=True)

        await asyncio.gather(self.stt.close(), self.tts.close(), return_exceptions=True)

        if self.client_record.state != ConnectionState.CLOSED:
            try:
                await self.websocket.close(code=code)
            except Exception as e:
                logger.debug(f"[{self.session_id}] Client socket already closed: {e}")
        self.client_record.state = ConnectionState.CLOSED
        logger.info(f"[{self.session_id}] Session closed")
