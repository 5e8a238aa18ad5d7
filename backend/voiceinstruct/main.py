"""FastAPI application entrypoint."""
from fastapi import FastAPI, WebSocket
from voiceinstruct.api import ws_audio, rest_status
from voiceinstruct.core.config import settings
from voiceinstruct.core.logging import setup_logging

# Setup logging
setup_logging()

# Create FastAPI app
app = FastAPI(
    title="Voice Instruct Backend",
    description="Offline speech recognition and instruction following for a local voice assistant",
    version=rest_status.VERSION
)

# Include routers
app.include_router(rest_status.router)


# WebSocket endpoint
@app.websocket("/ws/audio")
async def websocket_endpoint(websocket: WebSocket):
    """WebSocket endpoint for audio streaming and commands."""
    # ws_audio.websocket_audio_endpoint already calls websocket.accept()
    await ws_audio.websocket_audio_endpoint(websocket)


@app.on_event("startup")
def startup_event():
    """Load both models and start the audio ingest loop."""
    from voiceinstruct.core.logging import logger
    from voiceinstruct.services.assistant import Assistant, get_assistant, set_assistant

    logger.info(f"Starting Voice Instruct Backend on {settings.host}:{settings.port}")
    logger.info(f"Sample rate: {settings.sample_rate} Hz, minimum audio: {settings.min_audio_samples} samples")

    if get_assistant() is None:
        if not settings.load_models_on_startup:
            logger.info("Model loading disabled (set LOAD_MODELS_ON_STARTUP=true to enable)")
            return
        set_assistant(Assistant.from_settings(settings))

    get_assistant().start()
    logger.info("Models loaded, ready for commands")


@app.on_event("shutdown")
def shutdown_event():
    """Stop the ingest loop on shutdown."""
    from voiceinstruct.core.logging import logger
    from voiceinstruct.services.assistant import get_assistant

    assistant = get_assistant()
    if assistant is not None:
        assistant.stop()
    logger.info("Shutting down Voice Instruct Backend")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "voiceinstruct.main:app",
        host=settings.host,
        port=settings.port,
    )
