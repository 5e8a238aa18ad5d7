"""Segment-wise speech-to-text decoding with temperature fallback."""
import math
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional, Protocol, Sequence
import numpy as np
from voiceinstruct.audio.buffers import SampleBuffer
from voiceinstruct.audio.mel import N_FRAMES, log_mel_spectrogram, mel_filters, segment_spectrogram
from voiceinstruct.core.errors import AssistantError, ConfigurationError, InferenceError, TranscriptionError
from voiceinstruct.core.logging import logger
from voiceinstruct.ml.guard import ModelGuard
from voiceinstruct.ml.results import DecodingResult, InferenceOutput
from voiceinstruct.ml.sampling import sample_with_temperature, softmax
from voiceinstruct.ml.tokens import Vocabulary, WhisperTokens

DEFAULT_TEMPERATURES = (0.0, 0.2, 0.4, 0.6, 0.8, 1.0)
LOGPROB_THRESHOLD = -1.0
NO_SPEECH_THRESHOLD = 0.6


class SpeechModel(Protocol):
    """Encoder/decoder speech model as seen by the recognizer."""

    num_mel_bins: int
    max_target_positions: int

    def encode(self, mel: np.ndarray) -> Any:  # pragma: no cover - interface only
        """Audio features for one (1, n_mels, frames) segment."""
        ...

    def decode(self, tokens: Sequence[int], features: Any, flush: bool) -> np.ndarray:  # pragma: no cover - interface only
        """Logits shaped (n, vocab) for the last n positions of `tokens`.

        `flush` is True on the first step of each decode pass: cached decoder
        state from the previous pass is dropped and the whole prefix is scored
        (n == len(tokens)). Later steps may score only the new token.
        """
        ...


@dataclass
class SpeechState:
    """Everything the speech decoder mutates, kept behind one lock."""
    model: SpeechModel
    rng: np.random.Generator


class SpeechRecognizer:
    """
    Turns buffered PCM into text.

    Responsibilities
    ----------------
    - Drain the shared SampleBuffer and build the log-mel spectrogram.
    - Decode each 30 s segment, retrying at higher temperatures when the
      result looks unreliable.
    - Drop segments that are confidently silent, join the rest with a newline
      and turn the token list into text once at the end.
    """

    def __init__(
        self,
        model: SpeechModel,
        vocabulary: Vocabulary,
        buffer: SampleBuffer,
        *,
        temperatures: Sequence[float] = DEFAULT_TEMPERATURES,
        logprob_threshold: float = LOGPROB_THRESHOLD,
        no_speech_threshold: float = NO_SPEECH_THRESHOLD,
        min_samples: int = 4096 * 4,
        language: str = "en",
        seed: Optional[int] = None,
        lock_timeout: float = -1.0,
    ):
        if not temperatures:
            raise ConfigurationError("at least one decoding temperature is required")

        # Fails fast on an unsupported bin count
        mel_filters(model.num_mel_bins)

        self.vocabulary = vocabulary
        self.tokens = WhisperTokens.from_vocabulary(vocabulary, language)
        if model.max_target_positions <= len(self.tokens.prompt()):
            raise ConfigurationError(f"max_target_positions {model.max_target_positions} too small")

        self.buffer = buffer
        self.temperatures = tuple(float(t) for t in temperatures)
        self.logprob_threshold = logprob_threshold
        self.no_speech_threshold = no_speech_threshold
        self.min_samples = min_samples
        self.num_mel_bins = model.num_mel_bins
        self.max_target_positions = model.max_target_positions
        self._newline = vocabulary.encode("\n")
        self._guard = ModelGuard(SpeechState(model, np.random.default_rng(seed)), "speech", lock_timeout)

    @classmethod
    def from_settings(cls, model: SpeechModel, vocabulary: Vocabulary, buffer: SampleBuffer, settings) -> "SpeechRecognizer":
        return cls(
            model,
            vocabulary,
            buffer,
            temperatures=settings.whisper_temperatures,
            logprob_threshold=settings.whisper_logprob_threshold,
            no_speech_threshold=settings.whisper_no_speech_threshold,
            min_samples=settings.min_audio_samples,
            language=settings.whisper_language,
            seed=settings.whisper_seed,
            lock_timeout=settings.model_lock_timeout,
        )

    @property
    def busy(self) -> bool:
        return self._guard.busy

    # ----------------- acceptance rules -----------------
    def accepts(self, result: DecodingResult) -> bool:
        """Early accept: confident enough, or confidently silent."""
        return (
            result.avg_logprob >= self.logprob_threshold
            or result.no_speech_prob > self.no_speech_threshold
        )

    def is_silence(self, result: DecodingResult) -> bool:
        """Discard only when silent AND not confident."""
        return (
            result.no_speech_prob > self.no_speech_threshold
            and result.avg_logprob < self.logprob_threshold
        )

    # ----------------- public API -----------------------
    def transcribe(self) -> InferenceOutput:
        """
        Transcribe everything currently buffered.

        Returns:
            (text, tokens decoded over all segments, elapsed seconds)

        Raises:
            InsufficientAudio: If the buffer holds less than `min_samples`
            InferenceError: If the model fails on the last temperature
            TranscriptionError: If the tokens cannot be turned into text
        """
        start = time.perf_counter()

        samples = self.buffer.drain_all(self.min_samples)
        mel = log_mel_spectrogram(samples, self.num_mel_bins)
        segments = segment_spectrogram(mel, N_FRAMES)
        logger.info(f"Transcribing {samples.size} samples ({mel.shape[-1]} frames, {len(segments)} segments)")

        transcript: List[int] = []
        total_tokens = 0
        seek = 0
        with self._guard.acquire() as state:
            for segment in segments:
                decoded = self.decode_segment(state, segment)
                seek += segment.shape[-1]
                total_tokens += len(decoded.tokens)

                if self.is_silence(decoded):
                    logger.info(
                        f"No speech detected, skipping segment ending at frame {seek} "
                        f"(no_speech_prob={decoded.no_speech_prob:.3f}, avg_logprob={decoded.avg_logprob:.3f})"
                    )
                    continue

                transcript.extend(decoded.tokens)
                transcript.extend(self._newline)

        text = self._to_text(transcript)
        elapsed = time.perf_counter() - start
        logger.info(f"Transcribed {total_tokens} tokens in {elapsed:.2f}s")
        return InferenceOutput(text, total_tokens, elapsed)

    # ----------------- decoding -------------------------
    def decode_segment(self, state: SpeechState, segment: np.ndarray) -> DecodingResult:
        """
        Decode one segment, climbing the temperature ladder.

        Every temperature but the last is accepted only if `accepts()` holds;
        an attempt that errors is logged and skipped. The last temperature is
        always accepted and its error, if any, propagates.
        """
        *early, last = self.temperatures
        for temperature in early:
            try:
                decoded = self.decode(state, segment, temperature)
            except InferenceError as e:
                logger.warning(f"Error decoding @ temperature {temperature}: {e}")
                continue

            if self.accepts(decoded):
                return decoded

            logger.warning(
                f"Low confidence decode @ temperature {temperature} "
                f"(avg_logprob={decoded.avg_logprob:.3f}, no_speech_prob={decoded.no_speech_prob:.3f})"
            )

        return self.decode(state, segment, last)

    def decode(self, state: SpeechState, segment: np.ndarray, temperature: float) -> DecodingResult:
        """Single decode pass of one segment at a fixed temperature."""
        model = state.model
        features = _forward("encoder", model.encode, segment)

        tokens = self.tokens.prompt()
        prompt_len = len(tokens)
        no_speech_prob = 0.0
        sum_logprob = 0.0

        for i in range(self.max_target_positions):
            logits = _forward("decoder", model.decode, tokens, features, i == 0)
            logits = np.asarray(logits)
            # The first step scores the whole prefix, later ones may score only the new token
            min_rows = len(tokens) if i == 0 else 1
            if logits.ndim != 2 or not min_rows <= logits.shape[0] <= len(tokens):
                raise InferenceError(f"decoder returned logits of shape {logits.shape} for {len(tokens)} tokens")
            if not np.all(np.isfinite(logits)):
                raise InferenceError(f"decoder returned non-finite logits at step {i}")

            # No-speech probability comes from the first position only
            if i == 0:
                no_speech_prob = float(softmax(logits[0])[self.tokens.no_speech])

            last = logits[-1]
            next_token = sample_with_temperature(last, temperature, state.rng)
            tokens.append(next_token)

            prob = float(softmax(last)[next_token])
            if next_token == self.tokens.eot or len(tokens) > self.max_target_positions:
                break
            sum_logprob += math.log(max(prob, np.finfo(np.float64).tiny))

        generated = tokens[prompt_len:]
        if generated and generated[-1] == self.tokens.eot:
            generated.pop()

        return DecodingResult(
            tokens=generated,
            avg_logprob=sum_logprob / len(tokens),
            no_speech_prob=no_speech_prob,
            temperature=temperature,
        )

    def _to_text(self, transcript: List[int]) -> str:
        try:
            return self.vocabulary.decode(transcript, skip_special_tokens=True).strip()
        except Exception as e:
            logger.error(f"Error creating text from {len(transcript)} tokens: {e}", exc_info=True)
            raise TranscriptionError("error creating text from tokens") from e


def _forward(stage: str, fn: Callable, *args):
    """Run a model call, turning backend failures into InferenceError."""
    try:
        return fn(*args)
    except AssistantError:
        raise
    except Exception as e:
        raise InferenceError(f"{stage} forward pass failed: {e}") from e
