"""Error taxonomy shared by the inference core and the HTTP shell.

Every error carries a short, stable ``code`` that is safe to hand to a client.
The message is for logs only and never crosses the boundary.
"""
from typing import Any, Dict, Optional


class AssistantError(Exception):
    """Base class for all failures raised by the inference core."""

    code = "internal_error"
    status_code = 500

    def to_dict(self) -> Dict[str, Any]:
        """Client-safe representation of the error."""
        return {"error": self.code}


class ConfigurationError(AssistantError):
    """Model configuration or vocabulary does not match what the core expects."""

    code = "configuration_error"


class InvalidCommand(AssistantError):
    """Request names neither a text instruction nor an audio inference."""

    code = "invalid_command"
    status_code = 400


class InvalidChunk(AssistantError):
    """Raw audio payload is empty or not a whole number of float32 samples."""

    code = "invalid_chunk"
    status_code = 400


class InsufficientAudio(AssistantError):
    """Fewer samples buffered than the minimum analysis window.

    Recoverable: the caller should push more chunks and try again.
    """

    code = "insufficient_audio"
    status_code = 409

    def __init__(self, available: int, required: int):
        super().__init__(f"Not enough audio data in buffer: {available} < {required} samples")
        self.available = available
        self.required = required


class PromptTokenizationError(AssistantError):
    """The rendered prompt could not be turned into token ids."""

    code = "prompt_tokenization_error"
    status_code = 422


class TranscriptionError(AssistantError):
    """Decoded speech tokens could not be turned back into text."""

    code = "transcription_error"
    status_code = 422


class InferenceError(AssistantError):
    """Forward pass, numeric or lock failure inside a model call."""

    code = "inference_error"


class GenerationFailed(AssistantError):
    """Audio path partially succeeded: a transcript exists but generation failed.

    The transcript is kept so the caller can retry only the text stage.
    """

    code = "generation_failed"

    def __init__(self, transcript: str, cause: Optional[AssistantError] = None):
        super().__init__(f"Generation failed after transcription: {cause!r}")
        self.transcript = transcript
        self.cause = cause

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "transcript": self.transcript,
            "cause": self.cause.code if self.cause is not None else None,
        }
