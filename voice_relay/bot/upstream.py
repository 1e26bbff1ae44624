"""
Base class for the reconnecting vendor WebSocket connections.

An upstream connection owns exactly one socket to a speech vendor. It reports what
it receives through an ``emit`` callable that enqueues events on the owning
session, and it keeps itself alive: any close other than a normal (1000) close
while the session is active hands off to the backoff supervisor and re-opens,
until the supervisor reports that retries are exhausted.
"""

import asyncio
import logging
import time
from typing import Any, Callable, Optional, Union

import websockets
from websockets.exceptions import ConnectionClosed

from voice_relay.bot.backoff import BackoffSupervisor
from voice_relay.bot.events import UpstreamFailed, UpstreamOpened
from voice_relay.config.constants import CLOSE_NORMAL, LOGGER_NAME
from voice_relay.errors import RetriesExhausted, TransientNetworkFailure, UpstreamProtocolError
from voice_relay.models.conversation import ConnectionRecord, ConnectionState

logger = logging.getLogger(LOGGER_NAME)

# WebSocket configuration for low latency
CONNECTION_TIMEOUT = 10  # seconds
WS_MAX_SIZE = 16 * 1024 * 1024  # 16MB - large enough for audio frames
SEND_TIMEOUT = 5.0  # seconds

Emit = Callable[[Any], None]


class UpstreamConnection:
    """
    One reconnecting WebSocket leg of a voice session.

    Subclasses provide ``build_url`` and ``_handle_message`` and may hook
    ``_on_open``.
    """

    leg = "upstream"

    def __init__(
        self,
        api_key: str,
        emit: Emit,
        supervisor: Optional[BackoffSupervisor] = None,
        connector: Optional[Callable[..., Any]] = None,
        session_id: str = "",
    ):
        self.api_key = api_key
        self.emit = emit
        self.supervisor = supervisor or BackoffSupervisor()
        self._connector = connector or websockets.connect
        self.session_id = session_id
        self.record = ConnectionRecord(name=self.leg)
        self.ws = None
        self._recv_task: Optional[asyncio.Task] = None
        self._reconnect_task: Optional[asyncio.Task] = None
        self._is_closing = False
        self._has_opened = False

    @property
    def is_open(self) -> bool:
        return self.ws is not None and self.record.is_open

    @property
    def is_closed(self) -> bool:
        return self._is_closing

    def build_url(self) -> str:
        raise NotImplementedError

    async def _handle_message(self, message: Union[str, bytes]) -> None:
        raise NotImplementedError

    async def _on_open(self, reconnected: bool) -> None:
        """Hook run after every successful open."""

    async def open(self) -> bool:
        """
        Open the connection once, falling back to the reconnect loop on failure.

        Returns:
            bool: True if the socket is open when this call returns
        """
        if self._is_closing:
            logger.warning(f"[{self.session_id}] Cannot open {self.leg} - connection is closing")
            return False
        if await self._connect():
            return True
        self._reconnect_task = asyncio.create_task(self._reconnect_loop())
        return False

    async def _connect(self) -> bool:
        self.record.state = ConnectionState.CONNECTING
        url = self.build_url()
        try:
            ws = await self._open_socket(url)
        except TransientNetworkFailure as e:
            logger.warning(f"[{self.session_id}] {e}")
            self.record.state = ConnectionState.DISCONNECTED
            return False

        if self._is_closing:
            await ws.close(code=CLOSE_NORMAL)
            return False

        self.ws = ws
        self.record.state = ConnectionState.OPEN
        self.record.attempt = 0
        self.record.touch()
        self.supervisor.reset()

        reconnected = self._has_opened
        self._has_opened = True
        self._recv_task = asyncio.create_task(self._recv_loop(ws))
        self.emit(UpstreamOpened(leg=self.leg, reconnected=reconnected))
        await self._on_open(reconnected)
        return True

    async def _open_socket(self, url: str):
        """
        Open the vendor socket.

        Raises:
            TransientNetworkFailure: if the socket could not be opened
        """
        logger.info(f"[{self.session_id}] Connecting {self.leg} upstream")
        connection_start = time.time()
        try:
            ws = await self._connector(
                url,
                # Token travels as a sub-protocol, never in the URL
                subprotocols=["token", self.api_key],
                max_size=WS_MAX_SIZE,
                compression=None,
                open_timeout=CONNECTION_TIMEOUT,
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise TransientNetworkFailure(
                f"Failed to connect {self.leg} upstream: {e}", {"leg": self.leg}
            ) from e
        logger.debug(f"[{self.session_id}] {self.leg} connected in {time.time() - connection_start:.2f}s")
        return ws

    async def _reconnect_loop(self) -> None:
        while not self._is_closing:
            try:
                delay = self.supervisor.next_delay()
            except RetriesExhausted as e:
                logger.error(f"[{self.session_id}] {self.leg} upstream retries exhausted: {e}")
                self.record.state = ConnectionState.CLOSED
                self.emit(UpstreamFailed(leg=self.leg, reason=str(e)))
                return

            self.record.attempt = self.supervisor.attempt
            logger.info(
                f"[{self.session_id}] Reconnecting {self.leg} upstream "
                f"(attempt {self.supervisor.attempt}/{self.supervisor.max_attempts}) in {delay:.1f}s"
            )
            await asyncio.sleep(delay)
            if self._is_closing:
                return
            if await self._connect():
                return

    async def _recv_loop(self, ws) -> None:
        close_code = None
        try:
            async for message in ws:
                self.record.touch()
                try:
                    await self._handle_message(message)
                except UpstreamProtocolError as e:
                    logger.warning(f"[{self.session_id}] Dropped {self.leg} message: {e}")
            close_code = getattr(ws, "close_code", None)
        except ConnectionClosed as e:
            close_code = e.rcvd.code if e.rcvd is not None else getattr(ws, "close_code", None)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"[{self.session_id}] Error in {self.leg} receive loop: {e}", exc_info=True)

        await self._on_connection_lost(ws, close_code)

    async def _on_connection_lost(self, ws, close_code: Optional[int]) -> None:
        if self.ws is ws:
            self.ws = None

        if self._is_closing:
            self.record.state = ConnectionState.CLOSED
            return

        if close_code == CLOSE_NORMAL:
            logger.info(f"[{self.session_id}] {self.leg} upstream closed normally")
            self.record.state = ConnectionState.CLOSED
            return

        logger.warning(f"[{self.session_id}] {self.leg} upstream closed unexpectedly (code {close_code})")
        self.record.state = ConnectionState.DISCONNECTED
        await self._reconnect_loop()

    async def _send(self, payload: Union[str, bytes]) -> bool:
        """Send one frame if the socket is open; the receive loop handles failures."""
        ws = self.ws
        if ws is None or not self.record.is_open:
            return False
        try:
            await asyncio.wait_for(ws.send(payload), timeout=SEND_TIMEOUT)
        except (ConnectionClosed, asyncio.TimeoutError) as e:
            logger.warning(f"[{self.session_id}] Send on {self.leg} upstream failed: {e}")
            return False
        self.record.touch()
        return True

    async def close(self) -> None:
        """Close the connection with code 1000 and stop reconnecting. Safe to repeat."""
        if self._is_closing:
            return
        self._is_closing = True

        current = asyncio.current_task()
        tasks = [
            task
            for task in (self._reconnect_task, self._recv_task)
            if task is not None and task is not current and not task.done()
        ]
        for task in tasks:
            task.cancel()

        ws, self.ws = self.ws, None
        if ws is not None:
            try:
                await ws.close(code=CLOSE_NORMAL)
            except Exception as e:
                logger.warning(f"[{self.session_id}] Error closing {self.leg} upstream: {e}")

        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        self.record.state = ConnectionState.CLOSED
        logger.info(f"[{self.session_id}] {self.leg} upstream closed")
