"""
Command-line client for the Real-Time Voice Relay.

Connects to the gateway, prints transcripts and replies, and sends each line typed
on stdin as a text turn. With ``--speaker`` synthesized replies are played back and
with ``--mic`` microphone audio is streamed (both need the ``audio`` extra).

Usage:
    python client.py [--url URL] [--assistant ID] [--speaker] [--mic]
"""

import argparse
import asyncio
import logging
import sys

from voice_relay.services.audio_playback import AudioPlayer, PyAudioMicrophone, PyAudioSink
from voice_relay.services.voice_client import VoiceAssistantClient

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("voice_client")


def parse_args():
    parser = argparse.ArgumentParser(description="Talk to a voice relay assistant")
    parser.add_argument("--url", default="ws://localhost:8000/ws", help="Gateway WebSocket URL")
    parser.add_argument("--assistant", default="demo", help="Assistant id (default: demo)")
    parser.add_argument("--user", default="demo-user", help="User id (default: demo-user)")
    parser.add_argument("--speaker", action="store_true", help="Play synthesized replies")
    parser.add_argument("--mic", action="store_true", help="Stream microphone audio (16kHz linear16)")
    return parser.parse_args()


async def read_lines():
    """Yield lines typed on stdin without blocking the event loop."""
    while True:
        line = await asyncio.to_thread(sys.stdin.readline)
        if not line:
            return
        yield line.strip()


async def run_client(args):
    player = AudioPlayer(PyAudioSink() if args.speaker else None)
    client = VoiceAssistantClient(
        args.url,
        assistant_id=args.assistant,
        user_id=args.user,
        player=player,
        on_transcript=lambda text: print(f"You: {text}"),
        on_assistant_response=lambda text: print(f"Assistant: {text}"),
        on_error=lambda error: print(f"Error: {error}"),
    )

    if not await client.connect():
        logger.error("Could not connect to the gateway")
        await client.disconnect()
        return

    record_task = None
    if args.mic:
        record_task = asyncio.create_task(client.record(PyAudioMicrophone().chunks()))

    try:
        async for line in read_lines():
            if line in ("quit", "exit"):
                break
            if line:
                await client.send_text(line)
    finally:
        if record_task is not None:
            client.stop_recording()
            record_task.cancel()
        await client.disconnect()
        await player.close()


if __name__ == "__main__":
    asyncio.run(run_client(parse_args()))
