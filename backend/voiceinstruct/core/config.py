"""Configuration settings for the voice-instruct inference backend."""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List, Optional


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Server settings
    host: str = "127.0.0.1"
    port: int = 8000

    # Model artifacts (already on disk, acquisition happens elsewhere)
    data_dir: str = "models"
    speech_model_dir: Optional[str] = None  # defaults to <data_dir>/whisper
    language_model_dir: Optional[str] = None  # defaults to <data_dir>/llm
    device: str = "auto"  # auto, cpu, cuda or mps
    load_models_on_startup: bool = True

    # Audio settings
    sample_rate: int = 16000  # Hz, fixed by the whisper front end
    min_audio_samples: int = 4096 * 4  # refuse to transcribe less than this

    # Speech decoding (temperature fallback ladder)
    whisper_temperatures: List[float] = [0.0, 0.2, 0.4, 0.6, 0.8, 1.0]
    whisper_logprob_threshold: float = -1.0
    whisper_no_speech_threshold: float = 0.6
    whisper_language: str = "en"
    whisper_seed: Optional[int] = None

    # Text generation
    llm_max_new_tokens: int = 1024
    llm_temperature: float = 0.8  # <= 0 means greedy
    llm_top_k: int = 40
    llm_top_p: float = 0.95
    llm_seed: int = 299792458
    llm_repeat_penalty: float = 1.0  # 1.0 disables the penalty
    llm_repeat_last_n: int = 64

    # Concurrency
    model_lock_timeout: float = -1.0  # seconds, -1 blocks until the model is free

    # Logging
    log_level: str = "INFO"

    def resolved_speech_model_dir(self) -> str:
        """Directory holding the speech model weights, config and tokenizer."""
        return self.speech_model_dir or f"{self.data_dir}/whisper"

    def resolved_language_model_dir(self) -> str:
        """Directory holding the language model weights and tokenizer."""
        return self.language_model_dir or f"{self.data_dir}/llm"


settings = Settings()
