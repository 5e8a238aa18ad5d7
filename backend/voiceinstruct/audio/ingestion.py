"""Helper functions for ingesting and converting incoming audio data."""
import numpy as np
from voiceinstruct.audio.models import AudioChunk
from voiceinstruct.core.errors import InvalidChunk
from voiceinstruct.core.logging import logger

# Little-endian IEEE-754 single precision, 4 bytes per sample
SAMPLE_DTYPE = np.dtype("<f4")


def validate_audio_data(data: bytes) -> bool:
    """
    Validate incoming audio data.

    Args:
        data: Raw audio bytes

    Returns:
        True if valid, False otherwise
    """
    if len(data) == 0:
        logger.warning("Received empty audio data")
        return False

    # Check if size is multiple of 4 (float32 = 4 bytes)
    if len(data) % SAMPLE_DTYPE.itemsize != 0:
        logger.warning(f"Audio data size {len(data)} is not multiple of {SAMPLE_DTYPE.itemsize} bytes")
        return False

    return True


def bytes_to_samples(data: bytes) -> np.ndarray:
    """
    Convert raw little-endian float32 bytes to a native float32 array.

    Args:
        data: Raw PCM float32 LE bytes

    Returns:
        1-D float32 array, one sample per 4-byte group

    Raises:
        InvalidChunk: If the payload is empty or misaligned
    """
    if not validate_audio_data(data):
        raise InvalidChunk(f"Invalid audio chunk of {len(data)} bytes")

    # frombuffer is read-only and tied to `data`; copy into native byte order
    return np.frombuffer(data, dtype=SAMPLE_DTYPE).astype(np.float32)


def bytes_to_audio_chunk(data: bytes) -> AudioChunk:
    """
    Convert raw PCM bytes to an AudioChunk.

    Args:
        data: Raw PCM float32 LE bytes

    Returns:
        AudioChunk object
    """
    return AudioChunk(samples=bytes_to_samples(data))
