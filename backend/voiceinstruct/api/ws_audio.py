"""WebSocket endpoint for streamed audio intake and inference requests."""
import json
import uuid
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from starlette.concurrency import run_in_threadpool
from voiceinstruct.core.errors import AssistantError, InvalidCommand
from voiceinstruct.core.logging import logger
from voiceinstruct.services.assistant import Assistant, get_assistant
from voiceinstruct.services.schemas import Command


async def handle_command(assistant: Assistant, message: str) -> dict:
    """
    Run one JSON command and build the reply.

    Args:
        assistant: Loaded assistant
        message: JSON text, `{"text": ...}` or `{"audio": true}`

    Returns:
        Response JSON, or `{"error": code}` on failure
    """
    try:
        command = Command.model_validate(json.loads(message))
    except (json.JSONDecodeError, ValidationError) as e:
        logger.warning(f"Invalid command message: {e}")
        return InvalidCommand().to_dict()

    try:
        # Inference blocks on the model locks, keep it off the event loop
        response = await run_in_threadpool(assistant.ask, command)
    except AssistantError as e:
        logger.error(f"ask: error during inference: {e!r}")
        return e.to_dict()
    return response.model_dump()


async def process_stream(session_id: str, websocket: WebSocket, assistant: Assistant) -> None:
    """
    Binary messages are audio chunks, text messages are commands.

    Args:
        session_id: Identifier used in logs
        websocket: WebSocket connection
        assistant: Loaded assistant
    """
    chunk_count = 0
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))

            data = message.get("bytes")
            if data is not None:
                try:
                    assistant.submit_audio_chunk(data)
                    chunk_count += 1
                except AssistantError as e:
                    logger.warning(f"Invalid audio chunk from {session_id}: {e}")
                    await websocket.send_json(e.to_dict())
                continue

            text = message.get("text")
            if text is not None:
                reply = await handle_command(assistant, text)
                await websocket.send_json(reply)

    except WebSocketDisconnect:
        logger.info(f"WebSocket disconnected for {session_id} after {chunk_count} chunks")


async def websocket_audio_endpoint(websocket: WebSocket) -> None:
    """
    WebSocket endpoint handler for /ws/audio.

    Accepts binary float32 PCM chunks and JSON commands, sends JSON replies.
    """
    await websocket.accept()

    session_id = f"ws-{uuid.uuid4().hex[:8]}"
    logger.info(f"New WebSocket connection: {session_id}")

    assistant = get_assistant()
    if assistant is None:
        await websocket.send_json({"error": "models_not_loaded"})
        await websocket.close(code=1011)
        return

    try:
        await process_stream(session_id, websocket, assistant)
    except Exception as e:
        logger.error(f"WebSocket error for {session_id}: {e}", exc_info=True)
        try:
            await websocket.close(code=1011)
        except RuntimeError:
            # Already closed by the client
            pass
