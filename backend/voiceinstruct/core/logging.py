"""Logging configuration for the backend."""
import logging
import sys
from voiceinstruct.core.config import settings

# Third-party loggers that flood INFO while loading weights
_NOISY_LOGGERS = ("transformers", "torch", "numba", "urllib3", "multipart")


def setup_logging() -> None:
    """Configure application logging, keeping model-loading libraries at WARNING."""
    level = getattr(logging, settings.log_level.upper(), logging.INFO)
    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[
            logging.StreamHandler(sys.stdout)
        ]
    )
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))


logger = logging.getLogger("voiceinstruct")
