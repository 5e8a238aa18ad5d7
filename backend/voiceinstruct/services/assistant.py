"""Orchestrates the speech and language models behind the shell's commands."""
from typing import Any, Dict, Optional
from voiceinstruct.audio.buffers import IngestLoop, SampleBuffer
from voiceinstruct.audio.ingestion import bytes_to_audio_chunk
from voiceinstruct.core.errors import AssistantError, GenerationFailed, InvalidCommand
from voiceinstruct.core.logging import logger
from voiceinstruct.ml.generator import TextGenerator
from voiceinstruct.ml.recognizer import SpeechRecognizer
from voiceinstruct.services.schemas import Command, Response


class Assistant:
    """
    Owns both models and the audio intake.

    Each model is serialized by its own guard, so one transcription and one
    generation may run at the same time, but never two of the same kind.
    The audio path is two independent calls: a transcript that was produced
    is not lost if generation fails afterwards.
    """

    def __init__(
        self,
        recognizer: SpeechRecognizer,
        generator: TextGenerator,
        ingest: Optional[IngestLoop] = None,
    ):
        """
        Args:
            recognizer: Speech model wrapper, draining `recognizer.buffer`
            generator: Language model wrapper
            ingest: Chunk queue feeding the recognizer's buffer
        """
        self.recognizer = recognizer
        self.generator = generator
        self.buffer: SampleBuffer = recognizer.buffer
        self.ingest = ingest or IngestLoop(self.buffer)

    @classmethod
    def from_settings(cls, settings) -> "Assistant":
        """Load both models from disk as configured."""
        from voiceinstruct.ml.backends import load_language_model, load_speech_model, select_device

        device = select_device(settings.device)
        lm, lm_vocab = load_language_model(settings.resolved_language_model_dir(), device)
        whisper, whisper_vocab = load_speech_model(settings.resolved_speech_model_dir(), device)

        buffer = SampleBuffer()
        recognizer = SpeechRecognizer.from_settings(whisper, whisper_vocab, buffer, settings)
        generator = TextGenerator.from_settings(lm, lm_vocab, settings)
        return cls(recognizer, generator)

    # ----------------- lifecycle -----------------
    def start(self) -> None:
        self.ingest.start()

    def stop(self) -> None:
        self.ingest.stop()

    # ----------------- audio intake --------------
    def submit_audio_chunk(self, data: bytes) -> None:
        """
        Queue a raw chunk of little-endian float32 samples.

        Raises:
            InvalidChunk: If the payload is empty or not a multiple of 4 bytes
        """
        self.ingest.push(bytes_to_audio_chunk(data))

    def reset_audio(self) -> int:
        """Discard queued and buffered audio, returning the samples dropped."""
        self.ingest.join()
        dropped = self.buffer.clear()
        logger.info(f"Discarded {dropped} buffered samples")
        return dropped

    # ----------------- inference -----------------
    def text_inference(self, instruction: str) -> Response:
        """Answer a typed instruction."""
        if instruction is None or not instruction.strip():
            raise InvalidCommand("empty instruction")

        text, n_tokens, elapsed = self.generator.generate(instruction)
        return Response.build(instruction, text, n_tokens, elapsed)

    def audio_inference(self) -> Response:
        """
        Transcribe the buffered audio and answer the transcript.

        Raises:
            InsufficientAudio: If not enough audio has been streamed
            GenerationFailed: If a transcript was produced but generation failed
        """
        # Make every chunk submitted so far visible to the drain
        self.ingest.join()
        transcript, asr_tokens, asr_elapsed = self.recognizer.transcribe()
        logger.info(f"Transcript: {transcript!r}")

        try:
            text, lm_tokens, lm_elapsed = self.generator.generate(transcript)
        except AssistantError as e:
            logger.error(f"Generation failed after transcription: {e!r}")
            raise GenerationFailed(transcript, e) from e

        return Response.build(
            transcript,
            text,
            asr_tokens + lm_tokens,
            asr_elapsed + lm_elapsed,
        )

    def ask(self, command: Command) -> Response:
        """Dispatch a shell command to text or audio inference."""
        if command.text is not None:
            return self.text_inference(command.text)
        if command.audio:
            return self.audio_inference()
        raise InvalidCommand("not a valid command")

    @property
    def buffered_samples(self) -> int:
        return len(self.buffer)

    def status(self) -> Dict[str, Any]:
        return {
            "buffered_samples": self.buffered_samples,
            "pending_chunks": self.ingest.pending,
            "ingest_running": self.ingest.running,
            "speech_busy": self.recognizer.busy,
            "language_busy": self.generator.busy,
        }


# Global assistant instance, set at startup
_assistant: Optional[Assistant] = None


def set_assistant(assistant: Optional[Assistant]) -> None:
    global _assistant
    _assistant = assistant


def get_assistant() -> Optional[Assistant]:
    return _assistant
