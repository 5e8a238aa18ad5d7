"""Autoregressive text generation with a causal language model."""
import time
from dataclasses import dataclass
from typing import List, Optional, Protocol, Sequence
import numpy as np
from voiceinstruct.core.errors import AssistantError, ConfigurationError, InferenceError, PromptTokenizationError
from voiceinstruct.core.logging import logger
from voiceinstruct.ml.guard import ModelGuard
from voiceinstruct.ml.results import InferenceOutput
from voiceinstruct.ml.sampling import LogitsSampler, apply_repeat_penalty
from voiceinstruct.ml.tokens import Vocabulary, resolve_stop_tokens

SYSTEM_PROMPT = (
    "You are a terse, literal assistant running on the user's own machine. "
    "Answer the question or carry out the instruction directly. "
    "Do not add any preamble, pleasantries, caveats or explanation of what you are about to do. "
    "If you are not sure of the answer, reply with exactly: Not Known"
)

PROMPT_TEMPLATE = (
    "<|begin_of_text|><|start_header_id|>system<|end_header_id|>\n\n"
    "{system}<|eot_id|><|start_header_id|>user<|end_header_id|>\n\n"
    "{instruction}<|eot_id|><|start_header_id|>assistant<|end_header_id|>\n\n"
)


class LanguageModel(Protocol):
    """Causal language model keeping its own attention cache between calls."""

    def forward(self, tokens: Sequence[int], index_pos: int) -> np.ndarray:  # pragma: no cover - interface only
        """Logits of the last position, shaped (vocab,).

        `index_pos` is the position of tokens[0]; 0 starts a new sequence.
        """
        ...


@dataclass
class GeneratorState:
    """Model plus sampler, mutated together under one lock."""
    model: LanguageModel
    sampler: LogitsSampler


def render_prompt(instruction: str, system: str = SYSTEM_PROMPT) -> str:
    """Wrap an instruction in the chat template."""
    return PROMPT_TEMPLATE.format(system=system, instruction=instruction.strip())


class TextGenerator:
    """Generates an answer for a single instruction, one call at a time."""

    def __init__(
        self,
        model: LanguageModel,
        vocabulary: Vocabulary,
        *,
        sampler: Optional[LogitsSampler] = None,
        max_new_tokens: int = 1024,
        stop_tokens: Optional[Sequence[int]] = None,
        repeat_penalty: float = 1.0,
        repeat_last_n: int = 64,
        lock_timeout: float = -1.0,
    ):
        if max_new_tokens < 1:
            raise ConfigurationError(f"max_new_tokens must be >= 1, got {max_new_tokens}")

        self.vocabulary = vocabulary
        self.max_new_tokens = max_new_tokens
        self.stop_tokens = frozenset(stop_tokens if stop_tokens is not None else resolve_stop_tokens(vocabulary))
        self.repeat_penalty = repeat_penalty
        self.repeat_last_n = repeat_last_n
        self._guard = ModelGuard(GeneratorState(model, sampler or LogitsSampler()), "language", lock_timeout)

    @classmethod
    def from_settings(cls, model: LanguageModel, vocabulary: Vocabulary, settings) -> "TextGenerator":
        sampler = LogitsSampler(
            temperature=settings.llm_temperature,
            top_k=settings.llm_top_k,
            top_p=settings.llm_top_p,
            seed=settings.llm_seed,
        )
        return cls(
            model,
            vocabulary,
            sampler=sampler,
            max_new_tokens=settings.llm_max_new_tokens,
            repeat_penalty=settings.llm_repeat_penalty,
            repeat_last_n=settings.llm_repeat_last_n,
            lock_timeout=settings.model_lock_timeout,
        )

    @property
    def busy(self) -> bool:
        return self._guard.busy

    def tokenize(self, prompt: str) -> List[int]:
        """
        Token ids of a rendered prompt.

        Raises:
            PromptTokenizationError: If the tokenizer fails or yields nothing
        """
        try:
            ids = self.vocabulary.encode(prompt)
        except Exception as e:
            logger.error(f"Error tokenizing prompt: {e}", exc_info=True)
            raise PromptTokenizationError("error tokenizing prompt") from e
        if not ids:
            raise PromptTokenizationError("prompt produced no tokens")
        return ids

    def generate(self, instruction: str) -> InferenceOutput:
        """
        Generate an answer for `instruction`.

        Returns:
            (decoded text, number of generated tokens, elapsed seconds)

        Raises:
            PromptTokenizationError: If the prompt cannot be tokenized
            InferenceError: On lock or forward-pass failure
        """
        start = time.perf_counter()
        prompt_tokens = self.tokenize(render_prompt(instruction))

        generated: List[int] = []
        with self._guard.acquire() as state:
            context = list(prompt_tokens)
            logits = self._forward(state, prompt_tokens, 0)

            while len(generated) < self.max_new_tokens:
                next_token = self._sample(state, logits, context)
                if next_token in self.stop_tokens:
                    break

                generated.append(next_token)
                context.append(next_token)
                if len(generated) >= self.max_new_tokens:
                    logger.info(f"Generation hit the {self.max_new_tokens} token cap")
                    break

                # The model caches earlier positions, feed only the new token
                logits = self._forward(state, [next_token], len(context) - 1)

        try:
            text = self.vocabulary.decode(generated, skip_special_tokens=True).strip()
        except Exception as e:
            logger.error(f"Error decoding {len(generated)} generated tokens: {e}", exc_info=True)
            raise InferenceError("error creating text from tokens") from e

        elapsed = time.perf_counter() - start
        logger.info(f"Generated {len(generated)} tokens in {elapsed:.2f}s")
        return InferenceOutput(text, len(generated), elapsed)

    def _sample(self, state: GeneratorState, logits: np.ndarray, context: List[int]) -> int:
        if self.repeat_penalty != 1.0:
            logits = apply_repeat_penalty(logits, self.repeat_penalty, context[-self.repeat_last_n:])
        return state.sampler.sample(logits)

    @staticmethod
    def _forward(state: GeneratorState, tokens: Sequence[int], index_pos: int) -> np.ndarray:
        try:
            logits = np.asarray(state.model.forward(tokens, index_pos))
        except AssistantError:
            raise
        except Exception as e:
            raise InferenceError(f"language model forward pass failed at position {index_pos}: {e}") from e
        if logits.ndim != 1:
            raise InferenceError(f"language model returned logits of shape {logits.shape}")
        if not np.all(np.isfinite(logits)):
            raise InferenceError(f"language model returned non-finite logits at position {index_pos}")
        return logits
