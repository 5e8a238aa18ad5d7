"""Next-token selection shared by the speech and text decoders."""
from typing import Optional, Sequence
import numpy as np


def softmax(logits: np.ndarray, temperature: float = 1.0) -> np.ndarray:
    """
    Numerically stable softmax over the last axis.

    Args:
        logits: Raw scores
        temperature: Divides the logits before normalization (must be > 0)

    Returns:
        float64 probabilities summing to 1
    """
    scaled = np.asarray(logits, dtype=np.float64) / temperature
    scaled = scaled - scaled.max(axis=-1, keepdims=True)
    exp = np.exp(scaled)
    return exp / exp.sum(axis=-1, keepdims=True)


def greedy(logits: np.ndarray) -> int:
    """Index of the largest logit."""
    return int(np.argmax(logits))


def sample_categorical(probs: np.ndarray, rng: np.random.Generator) -> int:
    """Draw one index from a probability vector."""
    probs = np.asarray(probs, dtype=np.float64)
    probs = probs / probs.sum()
    return int(rng.choice(probs.size, p=probs))


def sample_with_temperature(logits: np.ndarray, temperature: float, rng: np.random.Generator) -> int:
    """Greedy when temperature is 0, otherwise sample from softmax(logits / t)."""
    if temperature <= 0:
        return greedy(logits)
    return sample_categorical(softmax(logits, temperature), rng)


def apply_repeat_penalty(logits: np.ndarray, penalty: float, context: Sequence[int]) -> np.ndarray:
    """
    Penalize tokens that already appear in `context`.

    Positive logits are divided by the penalty, negative ones multiplied, so
    a penalty above 1 always makes a repeat less likely.
    """
    if penalty == 1.0 or not context:
        return logits
    logits = np.array(logits, dtype=np.float32, copy=True)
    ids = np.unique(np.asarray(context, dtype=np.int64))
    ids = ids[(ids >= 0) & (ids < logits.size)]
    values = logits[ids]
    logits[ids] = np.where(values >= 0, values / penalty, values * penalty)
    return logits


class LogitsSampler:
    """
    Top-k, then top-p (nucleus), then temperature sampling.

    The generator is the only mutable state; callers that share a sampler
    must serialize access to it.
    """

    def __init__(
        self,
        temperature: float = 0.8,
        top_k: Optional[int] = 40,
        top_p: Optional[float] = 0.95,
        seed: Optional[int] = None,
    ):
        """
        Initialize the sampler.

        Args:
            temperature: Logit scaling; <= 0 selects greedy arg-max
            top_k: Number of highest-probability candidates kept (None/0 = all)
            top_p: Cumulative probability cutoff in (0, 1] (None = 1.0)
            seed: Seed of the pseudo-random generator
        """
        if top_p is not None and not 0.0 < top_p <= 1.0:
            raise ValueError(f"top_p must be in (0, 1], got {top_p}")
        self.temperature = float(temperature)
        self.top_k = top_k
        self.top_p = top_p
        self.rng = np.random.default_rng(seed)

    @property
    def is_greedy(self) -> bool:
        return self.temperature <= 0

    def sample(self, logits: np.ndarray) -> int:
        """Pick the next token id from a 1-D logit vector."""
        if self.is_greedy:
            return greedy(logits)

        probs = softmax(logits, self.temperature)

        # Candidates in descending probability order
        if self.top_k and self.top_k < probs.size:
            candidates = np.argpartition(-probs, self.top_k - 1)[: self.top_k]
        else:
            candidates = np.arange(probs.size)
        candidates = candidates[np.argsort(-probs[candidates], kind="stable")]
        kept = probs[candidates]

        if self.top_p is not None and self.top_p < 1.0:
            kept = kept / kept.sum()
            cumulative = np.cumsum(kept)
            # Smallest prefix whose mass reaches top_p
            cutoff = int(np.searchsorted(cumulative, self.top_p)) + 1
            candidates = candidates[:cutoff]
            kept = kept[:cutoff]

        return int(candidates[sample_categorical(kept, self.rng)])
