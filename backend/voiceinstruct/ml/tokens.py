"""Vocabulary wrapper and special-token bookkeeping for both models."""
from dataclasses import dataclass
from typing import Any, Iterable, List, Optional, Sequence, Tuple
from voiceinstruct.core.errors import ConfigurationError
from voiceinstruct.core.logging import logger

SOT_TOKEN = "<|startoftranscript|>"
EOT_TOKEN = "<|endoftext|>"
TRANSCRIBE_TOKEN = "<|transcribe|>"
NO_TIMESTAMPS_TOKEN = "<|notimestamps|>"
# Older vocabularies name the no-speech slot <|nocaptions|>
NO_SPEECH_TOKENS = ("<|nospeech|>", "<|nocaptions|>")

LLAMA3_STOP_TOKENS = ("<|eot_id|>", "<|end_of_text|>")


class Vocabulary:
    """
    Thin wrapper over a `tokenizers.Tokenizer`-like object.

    Only the handful of calls the decoders need are exposed, so tests can
    swap in any object with `encode(...).ids`, `decode` and `token_to_id`.
    """

    def __init__(self, tokenizer: Any):
        self._tokenizer = tokenizer

    def encode(self, text: str) -> List[int]:
        """Token ids for `text`, without post-processor special tokens."""
        return list(self._tokenizer.encode(text, add_special_tokens=False).ids)

    def decode(self, ids: Sequence[int], skip_special_tokens: bool = True) -> str:
        """Text for a complete token sequence."""
        return self._tokenizer.decode(list(ids), skip_special_tokens=skip_special_tokens)

    def token_to_id(self, token: str) -> Optional[int]:
        return self._tokenizer.token_to_id(token)

    def require(self, *candidates: str) -> int:
        """
        Id of the first candidate token present in the vocabulary.

        Raises:
            ConfigurationError: If none of the candidates exist
        """
        for token in candidates:
            token_id = self.token_to_id(token)
            if token_id is not None:
                return int(token_id)
        raise ConfigurationError(f"vocabulary has no token among {candidates}")


@dataclass(frozen=True)
class WhisperTokens:
    """Control tokens the speech decoder needs, resolved once per vocabulary."""
    sot: int
    eot: int
    lang: int
    transcribe: int
    no_timestamps: int
    no_speech: int

    @classmethod
    def from_vocabulary(cls, vocab: Vocabulary, language: str = "en") -> "WhisperTokens":
        tokens = cls(
            sot=vocab.require(SOT_TOKEN),
            eot=vocab.require(EOT_TOKEN),
            lang=vocab.require(f"<|{language}|>"),
            transcribe=vocab.require(TRANSCRIBE_TOKEN),
            no_timestamps=vocab.require(NO_TIMESTAMPS_TOKEN),
            no_speech=vocab.require(*NO_SPEECH_TOKENS),
        )
        logger.debug(f"Resolved whisper control tokens: {tokens}")
        return tokens

    def prompt(self) -> List[int]:
        """Decoder prefix: start, language, task, no timestamps."""
        return [self.sot, self.lang, self.transcribe, self.no_timestamps]


def resolve_stop_tokens(vocab: Vocabulary, names: Iterable[str] = LLAMA3_STOP_TOKENS) -> Tuple[int, ...]:
    """
    Ids of the generation stop tokens.

    Tokens missing from the vocabulary are skipped, but at least one must exist.
    """
    ids = []
    for name in names:
        token_id = vocab.token_to_id(name)
        if token_id is None:
            logger.warning(f"Stop token {name} not in vocabulary, ignoring")
            continue
        ids.append(int(token_id))
    if not ids:
        raise ConfigurationError(f"vocabulary has none of the stop tokens {tuple(names)}")
    return tuple(ids)
