"""Audio data models and structures."""
from dataclasses import dataclass, field
import numpy as np
import time


@dataclass
class AudioChunk:
    """A run of mono float32 PCM samples handed over by the capture side."""
    samples: np.ndarray  # float32 PCM samples in [-1, 1]
    received_at: float = field(default_factory=time.time)

    def __post_init__(self):
        """Validate chunk data."""
        if self.samples.dtype != np.float32:
            raise ValueError(f"Expected float32 PCM, got {self.samples.dtype}")
        if len(self.samples.shape) != 1:
            raise ValueError(f"Expected mono (1D array), got shape {self.samples.shape}")

    def __len__(self) -> int:
        return int(self.samples.size)
