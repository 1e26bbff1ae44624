import asyncio
import json
import logging

import pytest
from fastapi import WebSocketDisconnect

_CLOSE = object()


@pytest.fixture(autouse=True)
def reset_logging():
    """Reset logging configuration before each test"""
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    logging.basicConfig(level=logging.NOTSET)
    yield


class FakeUpstreamSocket:
    """Scripted vendor socket. Tests push frames; async iteration yields them."""

    def __init__(self, url):
        self.url = url
        self.sent = []
        self.close_code = None
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, payload):
        self.sent.append(payload)

    def sent_json(self):
        return [json.loads(p) for p in self.sent if isinstance(p, str)]

    def push(self, message):
        self._incoming.put_nowait(message)

    def drop(self, code=1011):
        """Simulate the vendor closing the connection."""
        self.close_code = code
        self._incoming.put_nowait(_CLOSE)

    async def close(self, code=1000, reason=""):
        if not self.closed:
            self.closed = True
            self.close_code = code
            self._incoming.put_nowait(_CLOSE)

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is _CLOSE:
            raise StopAsyncIteration
        return item


class FakeConnector:
    """Stands in for websockets.connect; records calls and hands out fake sockets."""

    def __init__(self, failures=0):
        self.failures = failures
        self.calls = []
        self.sockets = []

    async def __call__(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.failures > 0:
            self.failures -= 1
            raise OSError("connection refused")
        ws = FakeUpstreamSocket(url)
        self.sockets.append(ws)
        return ws

    def latest(self, fragment):
        """Most recent socket whose URL contains ``fragment``."""
        for ws in reversed(self.sockets):
            if fragment in ws.url:
                return ws
        return None


class FakeClientSocket:
    """The FastAPI WebSocket seen by a session: scripted frames in, JSON frames out."""

    def __init__(self):
        self.sent = []
        self.close_code = None
        self._frames = asyncio.Queue()

    def push_json(self, message):
        self._frames.put_nowait({"type": "websocket.receive", "text": json.dumps(message)})

    def push_text(self, text):
        self._frames.put_nowait({"type": "websocket.receive", "text": text})

    def push_bytes(self, data):
        self._frames.put_nowait({"type": "websocket.receive", "bytes": data})

    def disconnect(self, code=1000):
        self._frames.put_nowait({"type": "websocket.disconnect", "code": code})

    def raise_on_receive(self, exc):
        self._frames.put_nowait(exc)

    async def receive(self):
        frame = await self._frames.get()
        if isinstance(frame, Exception):
            raise frame
        return frame

    async def send_text(self, data):
        self.sent.append(json.loads(data))

    async def close(self, code=1000, reason=None):
        self.close_code = code

    def types(self):
        return [m["type"] for m in self.sent]

    def of_type(self, message_type):
        return [m for m in self.sent if m["type"] == message_type]

    async def wait_for(self, message_type, count=1, timeout=2.0):
        async def _wait():
            while len(self.of_type(message_type)) < count:
                await asyncio.sleep(0.005)
            return self.of_type(message_type)[count - 1]

        return await asyncio.wait_for(_wait(), timeout)


@pytest.fixture
def connector():
    return FakeConnector()


@pytest.fixture
def client_socket():
    return FakeClientSocket()


@pytest.fixture
def disconnect_error():
    return WebSocketDisconnect(code=1001)
