#!/usr/bin/env python3
"""
Synthetic Test Client - Exercises the backend without a microphone.

Streams a few seconds of synthetic float32 audio to the WebSocket endpoint,
asks for audio inference, then sends a typed instruction, printing both replies.

Usage:
    python synthetic_client.py ["typed instruction"]
"""
import asyncio
import json
import sys
import logging
import numpy as np
import websockets

# Setup basic logging
logging.basicConfig(level=logging.WARNING)
logger = logging.getLogger(__name__)

# Audio configuration (must match server settings)
SAMPLE_RATE = 16000  # Hz
DTYPE = "<f4"  # little-endian float32
CHUNK_SIZE = 1024  # samples per chunk
DURATION_S = 3.0

# Server configuration
SERVER_URL = "ws://localhost:8000/ws/audio"

DEFAULT_INSTRUCTION = "Who co-founded Apple with Steve Jobs?"


def generate_audio(duration_s: float, seed: int = 0) -> np.ndarray:
    """A quiet tone over low-level noise, in [-1, 1]."""
    rng = np.random.default_rng(seed)
    t = np.arange(int(duration_s * SAMPLE_RATE)) / SAMPLE_RATE
    tone = 0.2 * np.sin(2 * np.pi * 220.0 * t)
    noise = rng.normal(0.0, 0.01, size=t.size)
    return (tone + noise).astype(DTYPE)


def print_reply(label: str, reply: dict):
    print(f"\n[{label}]")
    if "error" in reply:
        print(f"  error:    {reply['error']}")
        if reply.get("transcript") is not None:
            print(f"  transcript: {reply['transcript']!r}")
        return
    print(f"  instruct: {reply['instruct']!r}")
    print(f"  text:     {reply['text']!r}")
    print(f"  tokens:   {reply['meta']['n_tokens']} in {reply['meta']['n_secs']}s")


async def run_client(instruction: str):
    """Stream audio, request both inference kinds, print the answers."""
    audio = generate_audio(DURATION_S)
    n_chunks = (audio.size + CHUNK_SIZE - 1) // CHUNK_SIZE

    print("=" * 70)
    print("Voice Instruct Backend - Synthetic Test Client")
    print("=" * 70)
    print(f"Sample Rate: {SAMPLE_RATE} Hz")
    print(f"Audio: {DURATION_S:.1f}s in {n_chunks} chunks of {CHUNK_SIZE} samples")
    print(f"Server: {SERVER_URL}")
    print("=" * 70)

    try:
        async with websockets.connect(SERVER_URL, ping_interval=None) as websocket:
            print("✓ Connected to server")

            for i in range(n_chunks):
                chunk = audio[i * CHUNK_SIZE:(i + 1) * CHUNK_SIZE]
                await websocket.send(chunk.tobytes())
            print(f"✓ Sent {audio.size} samples")

            await websocket.send(json.dumps({"audio": True}))
            print_reply("audio", json.loads(await websocket.recv()))

            await websocket.send(json.dumps({"text": instruction}))
            print_reply("text", json.loads(await websocket.recv()))

            print("\n✓ Test completed")

    except ConnectionRefusedError:
        print("\n✗ ERROR: Could not connect to server at", SERVER_URL)
        print("  Make sure the backend is running:")
        print("    cd backend && python -m uvicorn voiceinstruct.main:app")
        sys.exit(1)


if __name__ == "__main__":
    try:
        asyncio.run(run_client(sys.argv[1] if len(sys.argv) > 1 else DEFAULT_INSTRUCTION))
    except KeyboardInterrupt:
        print("\n\nExiting...")
