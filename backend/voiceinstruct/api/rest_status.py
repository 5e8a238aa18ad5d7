"""REST endpoints for inference commands, audio intake, health and status."""
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response as EmptyResponse
from voiceinstruct.core.errors import AssistantError
from voiceinstruct.core.logging import logger
from voiceinstruct.services.assistant import Assistant, get_assistant
from voiceinstruct.services.schemas import Command, Response

VERSION = "0.1.0"

router = APIRouter()


def _require_assistant() -> Assistant:
    assistant = get_assistant()
    if assistant is None:
        raise HTTPException(status_code=503, detail={"error": "models_not_loaded"})
    return assistant


def _http_error(context: str, e: AssistantError) -> HTTPException:
    """Log the full error and keep only its stable code for the client."""
    if e.status_code >= 500:
        logger.error(f"{context}: {e!r}", exc_info=True)
    else:
        logger.warning(f"{context}: {e!r}")
    return HTTPException(status_code=e.status_code, detail=e.to_dict())


@router.get("/health")
def health_check():
    """
    Health check endpoint.

    Returns:
        Status and version information
    """
    return {
        "status": "ok",
        "version": VERSION,
        "models_loaded": get_assistant() is not None,
    }


@router.get("/status")
def get_status():
    """Buffered audio and model activity."""
    return {"models_loaded": True, **_require_assistant().status()}


@router.post("/ask", response_model=Response)
def ask(command: Command):
    """
    Run text or audio inference.

    Args:
        command: `{"text": ...}` for a typed instruction or `{"audio": true}`
            for the audio streamed so far

    Returns:
        Generated answer with its source text and metadata
    """
    assistant = _require_assistant()
    try:
        return assistant.ask(command)
    except AssistantError as e:
        raise _http_error("ask: error during inference", e)


@router.post("/audio/chunk", status_code=204)
async def audio_chunk(request: Request):
    """Accept a raw chunk of little-endian float32 samples."""
    assistant = _require_assistant()
    data = await request.body()
    try:
        assistant.submit_audio_chunk(data)
    except AssistantError as e:
        raise _http_error("audio_chunk", e)
    return EmptyResponse(status_code=204)


@router.post("/audio/reset", status_code=204)
def reset_audio():
    """Discard any audio streamed since the last inference."""
    _require_assistant().reset_audio()
    return EmptyResponse(status_code=204)
