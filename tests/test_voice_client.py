import asyncio
import base64

import pytest

from voice_relay.bot.backoff import BackoffSupervisor
from voice_relay.models.message_schemas import (
    AiResponse,
    AssistantInfo,
    AudioResponse,
    ErrorResponse,
    ReadyResponse,
    TranscriptResponse,
)
from voice_relay.services.audio_playback import AudioPlayer
from voice_relay.services.voice_client import CONNECTION_LOST_MESSAGE, VoiceAssistantClient


class RecordingSink:
    def __init__(self):
        self.writes = []
        self.closed = False

    def write(self, samples):
        self.writes.append(samples)

    def close(self):
        self.closed = True


async def settle():
    for _ in range(5):
        await asyncio.sleep(0.01)


@pytest.fixture
def errors():
    return []


@pytest.fixture
def make_client(connector, errors):
    def _make(**kwargs):
        kwargs.setdefault("connector", connector)
        kwargs.setdefault("supervisor", BackoffSupervisor(base_ms=1, cap_ms=4))
        kwargs.setdefault("on_error", errors.append)
        return VoiceAssistantClient("ws://relay/ws", assistant_id="a1", user_id="u1", **kwargs)

    return _make


@pytest.mark.asyncio
async def test_connect_sends_handshake(make_client, connector):
    client = make_client()
    assert await client.connect()

    assert client.is_connected
    assert client.status == "Connected"
    handshake = connector.sockets[0].sent_json()[0]
    assert handshake == {"event": "connected", "assistantId": "a1", "userId": "u1"}
    await client.disconnect()


@pytest.mark.asyncio
async def test_status_follows_gateway_messages(make_client, connector):
    transcripts, replies = [], []
    client = make_client(on_transcript=transcripts.append, on_assistant_response=replies.append)
    await client.connect()
    ws = connector.sockets[0]

    ws.push(ReadyResponse(assistant=AssistantInfo(name="Demo")).model_dump_json())
    await settle()
    assert client.status == "Ready to chat"

    ws.push(TranscriptResponse(text="hello", isFinal=True, confidence=0.9).model_dump_json())
    await settle()
    assert client.status == "Processing..."
    assert transcripts == ["hello"]

    ws.push(AiResponse(text="Hi!", intent="greeting", confidence=0.8).model_dump_json())
    await settle()
    assert client.status == "Speaking..."
    assert replies == ["Hi!"]
    await client.disconnect()


@pytest.mark.asyncio
async def test_error_message_reported(make_client, connector, errors):
    client = make_client()
    await client.connect()
    connector.sockets[0].push(ErrorResponse(error="Server is busy. Please try again later.").model_dump_json())
    connector.sockets[0].push("garbage")
    await settle()

    assert errors == ["Server is busy. Please try again later.", "Failed to parse server message"]
    await client.disconnect()


@pytest.mark.asyncio
async def test_audio_is_played_in_order(make_client, connector):
    sink = RecordingSink()
    client = make_client(player=AudioPlayer(sink))
    await client.connect()
    ws = connector.sockets[0]
    ws.push(AudioResponse.from_bytes(b"\x00\x40").model_dump_json())
    ws.push(AudioResponse.from_bytes(b"\x00\xc0").model_dump_json())
    await settle()
    await client.player.drain()

    assert [float(w[0]) for w in sink.writes] == [0.5, -0.5]
    await client.disconnect()


@pytest.mark.asyncio
async def test_send_text_and_audio(make_client, connector):
    client = make_client()
    await client.connect()
    assert await client.send_text("hello")
    assert await client.send_audio(b"\x01\x02")

    sent = connector.sockets[0].sent_json()
    assert sent[1] == {"event": "text_input", "text": "hello"}
    assert sent[2]["event"] == "media"
    assert base64.b64decode(sent[2]["media"]["payload"]) == b"\x01\x02"
    await client.disconnect()


@pytest.mark.asyncio
async def test_send_text_when_disconnected(make_client, errors):
    client = make_client()
    assert not await client.send_text("hello")
    assert errors == ["Not connected to voice assistant"]


@pytest.mark.asyncio
async def test_keepalive_pings(make_client, connector):
    client = make_client(ping_interval=0.01, idle_timeout=10)
    await client.connect()
    await settle()

    assert {"event": "ping"} in connector.sockets[0].sent_json()
    await client.disconnect()


@pytest.mark.asyncio
async def test_reconnects_after_abnormal_close(make_client, connector):
    client = make_client()
    await client.connect()
    connector.sockets[0].drop(code=1006)
    await settle()

    assert len(connector.sockets) == 2
    assert client.is_connected
    assert connector.sockets[1].sent_json()[0]["event"] == "connected"
    assert client.supervisor.attempt == 0
    await client.disconnect()


@pytest.mark.asyncio
async def test_normal_close_does_not_reconnect(make_client, connector):
    client = make_client()
    await client.connect()
    connector.sockets[0].drop(code=1000)
    await settle()

    assert len(connector.sockets) == 1
    assert not client.is_connected
    assert client.status == "Disconnected"


@pytest.mark.asyncio
async def test_idle_gateway_forces_reconnect(make_client, connector):
    client = make_client(ping_interval=0.01, idle_timeout=0.015)
    await client.connect()
    await asyncio.sleep(0.1)

    assert len(connector.sockets) >= 2
    await client.disconnect()


@pytest.mark.asyncio
async def test_idle_deadline_does_not_wait_for_next_ping(make_client, connector):
    """Test a silent gateway is dropped at the idle deadline, not at a later ping tick"""
    client = make_client(ping_interval=0.3, idle_timeout=0.05)
    await client.connect()
    first = connector.sockets[0]
    await asyncio.sleep(0.15)

    assert first.closed
    assert first.sent_json() == [{"event": "connected", "assistantId": "a1", "userId": "u1"}]
    assert len(connector.sockets) >= 2
    await client.disconnect()


@pytest.mark.asyncio
async def test_gateway_activity_extends_idle_deadline(make_client, connector):
    client = make_client(ping_interval=0.3, idle_timeout=0.08)
    await client.connect()
    ws = connector.sockets[0]
    for _ in range(4):
        await asyncio.sleep(0.03)
        ws.push(ErrorResponse(error="still here").model_dump_json())
    await asyncio.sleep(0.01)

    assert not ws.closed
    await client.disconnect()


@pytest.mark.asyncio
async def test_retries_exhausted(make_client, connector, errors):
    connector.failures = 10
    client = make_client()
    assert not await client.connect()
    await asyncio.wait_for(client._reconnect_task, 1.0)

    assert client.status == "Connection failed"
    assert errors == [CONNECTION_LOST_MESSAGE]
    assert not client.is_connected


@pytest.mark.asyncio
async def test_disconnect_is_idempotent(make_client, connector):
    client = make_client()
    await client.connect()
    await client.disconnect()
    await client.disconnect()

    ws = connector.sockets[0]
    assert ws.closed
    assert ws.close_code == 1000
    assert client.status == "Disconnected"
    assert len(connector.sockets) == 1
