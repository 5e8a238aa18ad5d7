"""Result records produced by the decoders."""
from dataclasses import dataclass, field
from typing import List, NamedTuple


class InferenceOutput(NamedTuple):
    """Text produced by one model call, with its token count and wall time."""
    text: str
    n_tokens: int
    elapsed: float  # seconds


@dataclass
class DecodingResult:
    """One decode attempt of a single spectrogram segment."""
    tokens: List[int] = field(default_factory=list)  # sampled ids, stop token excluded
    avg_logprob: float = 0.0
    no_speech_prob: float = 0.0
    temperature: float = 0.0
