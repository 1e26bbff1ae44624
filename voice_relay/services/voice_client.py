"""
Client for the voice relay gateway.

``VoiceAssistantClient`` keeps one connection to the gateway alive for the length
of a conversation: it sends the handshake, streams microphone audio and typed
turns, plays back synthesized audio and reconnects with exponential backoff when
the link drops.
"""

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Callable, Optional

import websockets
from pydantic import ValidationError
from websockets.exceptions import ConnectionClosed

from voice_relay.bot.backoff import BackoffSupervisor
from voice_relay.config.constants import (
    CLIENT_CONNECT_TIMEOUT,
    CLIENT_IDLE_TIMEOUT,
    CLIENT_PING_INTERVAL,
    CLOSE_NORMAL,
    LOGGER_NAME,
)
from voice_relay.errors import RetriesExhausted, UnknownMessageError
from voice_relay.models.message_schemas import (
    AiResponse,
    AudioResponse,
    ConnectedMessage,
    EndCallResponse,
    ErrorResponse,
    MediaMessage,
    MediaPayload,
    PingMessage,
    ReadyResponse,
    ServerMessage,
    TextInputMessage,
    TranscriptResponse,
    TransferCallResponse,
    decode_audio,
    encode_audio,
    parse_server_message,
)
from voice_relay.services.audio_playback import AudioPlayer

logger = logging.getLogger(LOGGER_NAME)

CONNECTION_LOST_MESSAGE = "Connection lost. Please refresh to try again."


class VoiceAssistantClient:
    """
    Client for talking to an assistant through the gateway WebSocket.

    Args:
        url: Gateway WebSocket URL, e.g. ``ws://localhost:8000/ws``
        assistant_id: Assistant to talk to
        user_id: Owner of the assistant profile
        player: Playback queue for ``audio_response`` frames
        on_transcript: Called with the text of each transcript
        on_assistant_response: Called with the text of each reply
        on_error: Called with human-readable error messages
        on_message: Called with every parsed gateway message
        connector: Socket factory, ``websockets.connect`` by default
        supervisor: Backoff policy for reconnects
    """

    def __init__(
        self,
        url: str,
        assistant_id: str = "demo",
        user_id: str = "demo-user",
        player: Optional[AudioPlayer] = None,
        on_transcript: Optional[Callable[[str], None]] = None,
        on_assistant_response: Optional[Callable[[str], None]] = None,
        on_error: Optional[Callable[[str], None]] = None,
        on_message: Optional[Callable[[ServerMessage], None]] = None,
        connector: Optional[Callable[..., Any]] = None,
        supervisor: Optional[BackoffSupervisor] = None,
        ping_interval: float = CLIENT_PING_INTERVAL,
        idle_timeout: float = CLIENT_IDLE_TIMEOUT,
    ):
        self.url = url
        self.assistant_id = assistant_id
        self.user_id = user_id
        self.player = player or AudioPlayer()
        self.on_transcript = on_transcript
        self.on_assistant_response = on_assistant_response
        self.on_error = on_error
        self.on_message = on_message
        self._connector = connector or websockets.connect
        self.supervisor = supervisor or BackoffSupervisor()
        self.ping_interval = ping_interval
        self.idle_timeout = idle_timeout

        self.websocket = None
        self.is_connected = False
        self.is_recording = False
        self.status = "Disconnected"
        self.last_activity = time.monotonic()

        self._recv_task: Optional[asyncio.Task] = None
        self._keepalive_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._closing = False
        self._stale = False

    def _report_error(self, message: str) -> None:
        logger.error(message)
        if self.on_error:
            self.on_error(message)

    async def connect(self) -> bool:
        """
        Connect to the gateway and send the handshake.

        Returns:
            True if the connection was established, False otherwise. On failure a
            reconnect is scheduled.
        """
        self._closing = False
        if await self._open():
            return True
        self._start_reconnect()
        return False

    async def _open(self) -> bool:
        self.status = "Connecting..."
        try:
            websocket = await self._connector(self.url, open_timeout=CLIENT_CONNECT_TIMEOUT)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Failed to connect to {self.url}: {e}")
            self.status = "Connection error"
            return False

        if self._closing:
            await websocket.close(code=CLOSE_NORMAL)
            return False

        self.websocket = websocket
        self.is_connected = True
        self.status = "Connected"
        self._stale = False
        self.last_activity = time.monotonic()
        self.supervisor.reset()
        logger.info(f"Connected to voice relay at {self.url}")

        handshake = ConnectedMessage(event="connected", assistantId=self.assistant_id, userId=self.user_id)
        await websocket.send(handshake.model_dump_json())

        self._recv_task = asyncio.create_task(self._receive_loop(websocket))
        self._keepalive_task = asyncio.create_task(self._keepalive_loop(websocket))
        return True

    def _start_reconnect(self) -> None:
        if self._closing:
            return
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())

    async def _reconnect_loop(self) -> None:
        while not self._closing:
            try:
                delay = self.supervisor.next_delay()
            except RetriesExhausted:
                self.status = "Connection failed"
                self._report_error(CONNECTION_LOST_MESSAGE)
                return
            self.status = f"Reconnecting... ({self.supervisor.attempt}/{self.supervisor.max_attempts})"
            logger.info(f"Reconnecting in {delay:.1f}s ({self.status})")
            await asyncio.sleep(delay)
            if self._closing:
                return
            if await self._open():
                return

    async def _receive_loop(self, websocket) -> None:
        close_code = None
        try:
            async for raw in websocket:
                self.last_activity = time.monotonic()
                self._handle_message(raw)
            close_code = getattr(websocket, "close_code", None)
        except ConnectionClosed as e:
            close_code = e.rcvd.code if e.rcvd is not None else getattr(websocket, "close_code", None)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in receive loop: {e}", exc_info=True)

        await self._on_connection_lost(websocket, close_code)

    async def _on_connection_lost(self, websocket, close_code: Optional[int]) -> None:
        if self.websocket is not websocket:
            return
        self.websocket = None
        self.is_connected = False
        self.is_recording = False
        if self._keepalive_task is not None and self._keepalive_task is not asyncio.current_task():
            self._keepalive_task.cancel()

        if self._closing:
            return
        if close_code == CLOSE_NORMAL and not self._stale:
            logger.info("Gateway closed the connection")
            self.status = "Disconnected"
            return

        logger.warning(f"Connection to gateway lost (code {close_code})")
        self.status = "Disconnected"
        await self._reconnect_loop()

    async def _keepalive_loop(self, websocket) -> None:
        """
        Ping the gateway and force a reconnect when it goes quiet.

        The loop wakes at whichever comes first, the next ping or the idle
        deadline, so a silent gateway is detected ``idle_timeout`` seconds after
        its last frame.
        """
        next_ping = time.monotonic() + self.ping_interval
        while True:
            idle_deadline = self.last_activity + self.idle_timeout
            await asyncio.sleep(max(0.0, min(next_ping, idle_deadline) - time.monotonic()))
            now = time.monotonic()
            if now - self.last_activity >= self.idle_timeout:
                logger.warning(f"No activity from gateway for {self.idle_timeout}s, reconnecting")
                self._stale = True
                await websocket.close(code=CLOSE_NORMAL)
                return
            if now >= next_ping:
                next_ping = now + self.ping_interval
                try:
                    await websocket.send(PingMessage(event="ping").model_dump_json())
                except ConnectionClosed:
                    return

    def _handle_message(self, raw) -> None:
        try:
            message = parse_server_message(raw)
        except UnknownMessageError as e:
            logger.debug(f"Ignoring gateway message: {e}")
            return
        except (ValidationError, ValueError) as e:
            self._report_error("Failed to parse server message")
            logger.debug(f"Unparseable gateway message: {e}")
            return

        if isinstance(message, ReadyResponse):
            self.status = message.status
        elif message.type == "connection_established":
            self.status = "Initializing..."
        elif isinstance(message, TranscriptResponse):
            if message.isFinal or message.speechFinal:
                self.status = "Processing..."
            if self.on_transcript:
                self.on_transcript(message.text)
        elif isinstance(message, AiResponse):
            self.status = "Speaking..."
            if self.on_assistant_response:
                self.on_assistant_response(message.text)
        elif isinstance(message, AudioResponse):
            try:
                self.player.enqueue(decode_audio(message.audio))
            except ValueError as e:
                logger.warning(f"Dropping invalid audio frame: {e}")
        elif isinstance(message, EndCallResponse):
            self.status = "Call ended"
        elif isinstance(message, TransferCallResponse):
            self.status = "Transferring..."
        elif isinstance(message, ErrorResponse):
            self.status = "Error"
            self._report_error(message.error)

        if self.on_message:
            self.on_message(message)

    async def send_audio(self, pcm: bytes) -> bool:
        """Send one chunk of microphone audio as a base64 media frame."""
        if not self.is_connected or self.websocket is None:
            return False
        message = MediaMessage(event="media", media=MediaPayload(payload=encode_audio(pcm)))
        try:
            await self.websocket.send(message.model_dump_json())
        except ConnectionClosed as e:
            logger.warning(f"Failed to send audio: {e}")
            return False
        return True

    async def send_text(self, text: str) -> bool:
        """Send a typed turn."""
        if not self.is_connected or self.websocket is None:
            self._report_error("Not connected to voice assistant")
            return False
        message = TextInputMessage(event="text_input", text=text)
        try:
            await self.websocket.send(message.model_dump_json())
        except ConnectionClosed as e:
            logger.warning(f"Failed to send text: {e}")
            return False
        return True

    async def record(self, source: AsyncIterator[bytes]) -> None:
        """Forward chunks from an audio source until it ends or the connection drops."""
        if not self.is_connected:
            self._report_error("Not connected to voice assistant")
            return
        self.is_recording = True
        self.status = "Recording..."
        try:
            async for chunk in source:
                if not self.is_recording or not await self.send_audio(chunk):
                    break
        finally:
            self.is_recording = False

    def stop_recording(self) -> None:
        self.is_recording = False

    async def disconnect(self) -> None:
        """Close the connection with code 1000. Calling it again does nothing."""
        if self._closing and self.websocket is None:
            return
        self._closing = True
        self.is_recording = False

        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._reconnect_task, self._keepalive_task, self._recv_task)
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()

        websocket, self.websocket = self.websocket, None
        if websocket is not None:
            try:
                await websocket.close(code=CLOSE_NORMAL, reason="User disconnect")
            except Exception as e:
                logger.debug(f"Error closing gateway connection: {e}")

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self.player.stop()
        self.is_connected = False
        self.status = "Disconnected"
        self.supervisor.reset()
        logger.info("Disconnected from voice relay")
