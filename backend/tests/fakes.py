"""Deterministic stand-ins for the tokenizer and both models."""
import re
import threading
import time
from types import SimpleNamespace
from typing import List, Optional, Sequence
import numpy as np

_PIECE = re.compile(r"<\|[^|]*\|>|\n| |\w+|[^\w\s]")

WHISPER_SPECIALS = [
    "<|endoftext|>",
    "<|startoftranscript|>",
    "<|en|>",
    "<|transcribe|>",
    "<|notimestamps|>",
    "<|nospeech|>",
    "\n",
    " ",
    "hello",
    "world",
    "what",
    "time",
    "is",
    "it",
]

LLAMA_SPECIALS = [
    "<|begin_of_text|>",
    "<|end_of_text|>",
    "<|eot_id|>",
    "<|start_header_id|>",
    "<|end_header_id|>",
    "\n",
    " ",
    "Not",
    "Known",
    "Steve",
    "Wozniak",
    "co",
    "-",
    "founded",
    "Apple",
    ".",
]


class FakeTokenizer:
    """Splits on special tokens, words, spaces and punctuation; unknown pieces get new ids."""

    def __init__(self, pieces: Sequence[str]):
        self.pieces: List[str] = list(pieces)
        self.ids = {p: i for i, p in enumerate(self.pieces)}
        self.fail_encode = False
        self.fail_decode = False

    def _id(self, piece: str) -> int:
        if piece not in self.ids:
            self.ids[piece] = len(self.pieces)
            self.pieces.append(piece)
        return self.ids[piece]

    def encode(self, text: str, add_special_tokens: bool = True):
        if self.fail_encode:
            raise ValueError("tokenizer exploded")
        return SimpleNamespace(ids=[self._id(p) for p in _PIECE.findall(text)])

    def decode(self, ids: Sequence[int], skip_special_tokens: bool = True) -> str:
        if self.fail_decode:
            raise ValueError("unknown id")
        out = []
        for i in ids:
            piece = self.pieces[i]
            if skip_special_tokens and piece.startswith("<|") and piece.endswith("|>"):
                continue
            out.append(piece)
        return "".join(out)

    def token_to_id(self, token: str) -> Optional[int]:
        return self.ids.get(token)


def one_hot_logits(size: int, index: int, peak: float) -> np.ndarray:
    logits = np.zeros(size, dtype=np.float32)
    logits[index] = peak
    return logits


class FakeSpeechModel:
    """
    Emits `script` after the four-token prefix, then end-of-transcript.

    `peak` controls confidence (10 is near certain, 0 is uniform) and
    `no_speech_logit` the first-position no-speech score. The first
    `nan_attempts` decode attempts produce NaN logits.
    """

    num_mel_bins = 80

    def __init__(
        self,
        tokenizer: FakeTokenizer,
        script: Sequence[str] = ("hello", " ", "world"),
        peak: float = 10.0,
        no_speech_logit: float = 0.0,
        max_target_positions: int = 448,
        vocab_size: int = 32,
        fail_on_encode: int = 0,
        nan_attempts: int = 0,
    ):
        self.vocab_size = vocab_size
        self.script = [tokenizer.token_to_id(p) for p in script]
        self.eot = tokenizer.token_to_id("<|endoftext|>")
        self.no_speech = tokenizer.token_to_id("<|nospeech|>")
        self.peak = peak
        self.no_speech_logit = no_speech_logit
        self.max_target_positions = max_target_positions
        self.fail_on_encode = fail_on_encode
        self.nan_attempts = nan_attempts
        self.encode_calls = 0
        self.segment_frames: List[int] = []
        self.flushes: List[int] = []

    def encode(self, mel: np.ndarray):
        self.encode_calls += 1
        self.segment_frames.append(mel.shape[-1])
        if self.encode_calls <= self.fail_on_encode:
            raise RuntimeError("shape mismatch")
        return mel

    def decode(self, tokens, features, flush):
        step = len(tokens) - 4
        logits = np.zeros((len(tokens), self.vocab_size), dtype=np.float32)
        logits[0, self.no_speech] = self.no_speech_logit
        target = self.script[step] if step < len(self.script) else self.eot
        if target != self.eot:
            # End of transcript only once the script is exhausted
            logits[-1, self.eot] = -1e9
        logits[-1, target] = self.peak
        if self.encode_calls <= self.nan_attempts:
            logits[:] = np.nan
        if flush:
            self.flushes.append(len(tokens))
            return logits
        # Like a cached decoder, only the newest position is scored
        return logits[-1:]


class FakeLanguageModel:
    """Replays `script` token by token, then a stop token."""

    def __init__(
        self,
        tokenizer: FakeTokenizer,
        script: Sequence[str] = ("Steve", " ", "Wozniak", " ", "co", "-", "founded", " ", "Apple", "."),
        stop: str = "<|eot_id|>",
        peak: float = 10.0,
        vocab_size: int = 64,
        delay: float = 0.0,
        fail_at_step: Optional[int] = None,
        nan_at_step: Optional[int] = None,
    ):
        self.vocab_size = vocab_size
        self.script = [tokenizer.token_to_id(p) for p in script]
        self.stop = tokenizer.token_to_id(stop)
        self.peak = peak
        self.delay = delay
        self.fail_at_step = fail_at_step
        self.nan_at_step = nan_at_step
        self.calls: List[tuple] = []
        self._step = 0
        self._active = 0
        self.max_active = 0
        self._counter_lock = threading.Lock()

    def forward(self, tokens, index_pos):
        with self._counter_lock:
            self._active += 1
            self.max_active = max(self.max_active, self._active)
        try:
            if index_pos == 0:
                self._step = 0
            self.calls.append((list(tokens), index_pos))
            if self.fail_at_step is not None and self._step == self.fail_at_step:
                raise RuntimeError("device-side assert triggered")
            if self.delay:
                time.sleep(self.delay)
            target = self.script[self._step] if self._step < len(self.script) else self.stop
            logits = one_hot_logits(self.vocab_size, target, self.peak)
            if self._step == self.nan_at_step:
                logits[:] = np.nan
            self._step += 1
            return logits
        finally:
            with self._counter_lock:
                self._active -= 1


def float_bytes(values) -> bytes:
    """Pack floats as little-endian float32 bytes."""
    return np.asarray(values, dtype="<f4").tobytes()


def make_assistant(speech_kwargs=None, language_kwargs=None):
    """Assistant wired to the fake models with greedy sampling."""
    from voiceinstruct.audio.buffers import SampleBuffer
    from voiceinstruct.ml.generator import TextGenerator
    from voiceinstruct.ml.recognizer import SpeechRecognizer
    from voiceinstruct.ml.sampling import LogitsSampler
    from voiceinstruct.ml.tokens import Vocabulary
    from voiceinstruct.services.assistant import Assistant

    whisper_tokenizer = FakeTokenizer(WHISPER_SPECIALS)
    llama_tokenizer = FakeTokenizer(LLAMA_SPECIALS)
    speech = FakeSpeechModel(whisper_tokenizer, **(speech_kwargs or {}))
    language = FakeLanguageModel(llama_tokenizer, **(language_kwargs or {}))

    recognizer = SpeechRecognizer(speech, Vocabulary(whisper_tokenizer), SampleBuffer(), seed=0)
    generator = TextGenerator(language, Vocabulary(llama_tokenizer), sampler=LogitsSampler(temperature=0.0))
    return Assistant(recognizer, generator)
