"""
PyTorch / transformers backends for the speech and language models.

Artifacts are expected to already be on disk in the usual Hugging Face layout
(config.json, weights, tokenizer.json); nothing is downloaded here.
"""
import os
import time
from typing import Any, Sequence, Tuple
import numpy as np
import torch
from voiceinstruct.core.errors import ConfigurationError
from voiceinstruct.core.logging import logger
from voiceinstruct.ml.tokens import Vocabulary

TOKENIZER_FILE = "tokenizer.json"


def select_device(preference: str = "auto") -> torch.device:
    """
    Pick the compute device.

    Args:
        preference: "auto", or an explicit torch device string ("cpu", "cuda", "mps")

    Returns:
        torch.device to run both models on
    """
    if preference != "auto":
        device = torch.device(preference)
    elif torch.cuda.is_available():
        device = torch.device("cuda")
    elif getattr(torch.backends, "mps", None) is not None and torch.backends.mps.is_available():
        device = torch.device("mps")
    else:
        device = torch.device("cpu")

    logger.info(f"Device: {device}")
    return device


def _dtype_for(device: torch.device) -> torch.dtype:
    return torch.float16 if device.type == "cuda" else torch.float32


def load_vocabulary(model_dir: str) -> Vocabulary:
    """Load `tokenizer.json` from a model directory."""
    from tokenizers import Tokenizer

    path = os.path.join(model_dir, TOKENIZER_FILE)
    try:
        tokenizer = Tokenizer.from_file(path)
    except Exception as e:
        logger.error(f"Error loading tokenizer from {path}: {e}")
        raise ConfigurationError(f"cannot load tokenizer {path}") from e
    return Vocabulary(tokenizer)


class TorchWhisperModel:
    """Whisper encoder/decoder exposing numpy logits to the recognizer."""

    def __init__(self, model: Any, device: torch.device):
        self.model = model.to(device).eval()
        self.device = device
        config = model.config
        self.num_mel_bins = int(config.num_mel_bins)
        self.max_target_positions = int(config.max_target_positions)
        # The encoder convolution halves the frame count
        self.input_frames = int(config.max_source_positions) * 2
        self._past = None
        self._cached = 0

    @torch.no_grad()
    def encode(self, mel: np.ndarray) -> torch.Tensor:
        mel = np.asarray(mel, dtype=np.float32)
        short = self.input_frames - mel.shape[-1]
        if short > 0:
            # Pad the tail with the spectrogram floor, i.e. silence
            mel = np.pad(mel, ((0, 0), (0, 0), (0, short)), constant_values=float(mel.min()))
        features = torch.from_numpy(np.ascontiguousarray(mel)).to(self.device, dtype=self.model.dtype)
        return self.model.model.encoder(features).last_hidden_state

    @torch.no_grad()
    def decode(self, tokens: Sequence[int], features: torch.Tensor, flush: bool) -> np.ndarray:
        if flush:
            self._past = None
            self._cached = 0
        # Positions before `_cached` live in the key/value cache
        input_ids = torch.tensor([list(tokens[self._cached:])], dtype=torch.long, device=self.device)
        out = self.model.model.decoder(
            input_ids=input_ids,
            encoder_hidden_states=features,
            past_key_values=self._past,
            use_cache=True,
        )
        self._past = out.past_key_values
        self._cached = len(tokens)
        logits = self.model.proj_out(out.last_hidden_state)
        return logits[0].float().cpu().numpy()


class TorchCausalLM:
    """Causal LM that keeps its key/value cache between single-token steps."""

    def __init__(self, model: Any, device: torch.device):
        self.model = model.to(device).eval()
        self.device = device
        self._past = None

    @torch.no_grad()
    def forward(self, tokens: Sequence[int], index_pos: int) -> np.ndarray:
        if index_pos == 0:
            self._past = None
        input_ids = torch.tensor([list(tokens)], dtype=torch.long, device=self.device)
        out = self.model(input_ids=input_ids, past_key_values=self._past, use_cache=True)
        self._past = out.past_key_values
        return out.logits[0, -1].float().cpu().numpy()


def load_speech_model(model_dir: str, device: torch.device) -> Tuple[TorchWhisperModel, Vocabulary]:
    """Load Whisper weights, config and tokenizer from `model_dir`."""
    from transformers import WhisperForConditionalGeneration

    logger.info(f"Loading whisper from {model_dir}")
    start = time.time()
    try:
        model = WhisperForConditionalGeneration.from_pretrained(
            model_dir, local_files_only=True, torch_dtype=_dtype_for(device)
        )
    except OSError as e:
        logger.error(f"Error loading whisper model: {e}")
        raise ConfigurationError(f"cannot load speech model from {model_dir}") from e

    wrapped = TorchWhisperModel(model, device)
    vocabulary = load_vocabulary(model_dir)
    logger.info(f"Whisper ready in {time.time() - start:.1f}s ({wrapped.num_mel_bins} mel bins)")
    return wrapped, vocabulary


def load_language_model(model_dir: str, device: torch.device) -> Tuple[TorchCausalLM, Vocabulary]:
    """Load causal LM weights and tokenizer from `model_dir`."""
    from transformers import AutoModelForCausalLM

    logger.info(f"Loading language model from {model_dir}")
    start = time.time()
    try:
        model = AutoModelForCausalLM.from_pretrained(
            model_dir, local_files_only=True, torch_dtype=_dtype_for(device)
        )
    except OSError as e:
        logger.error(f"Error loading language model: {e}")
        raise ConfigurationError(f"cannot load language model from {model_dir}") from e

    wrapped = TorchCausalLM(model, device)
    vocabulary = load_vocabulary(model_dir)
    logger.info(f"Language model ready in {time.time() - start:.1f}s")
    return wrapped, vocabulary
