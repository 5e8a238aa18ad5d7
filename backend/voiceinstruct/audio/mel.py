"""Log-mel spectrogram front end and segmentation for the speech model."""
from functools import lru_cache
from typing import List
import numpy as np
from voiceinstruct.core.errors import ConfigurationError

SAMPLE_RATE = 16000
N_FFT = 400
HOP_LENGTH = 160
CHUNK_LENGTH = 30  # seconds of audio per model window
N_FRAMES = CHUNK_LENGTH * SAMPLE_RATE // HOP_LENGTH  # 3000 frames per segment
SUPPORTED_MEL_BINS = (80, 128)


@lru_cache(maxsize=None)
def mel_filters(n_mels: int) -> np.ndarray:
    """
    Mel filter bank matching the speech model's bin count.

    Args:
        n_mels: Number of mel bins configured for the model

    Returns:
        Filter matrix shaped (n_mels, N_FFT // 2 + 1)

    Raises:
        ConfigurationError: If the bin count is not 80 or 128
    """
    if n_mels not in SUPPORTED_MEL_BINS:
        raise ConfigurationError(f"unexpected num_mel_bins {n_mels}")

    import librosa

    filters = librosa.filters.mel(sr=SAMPLE_RATE, n_fft=N_FFT, n_mels=n_mels)
    filters = filters.astype(np.float32)
    filters.setflags(write=False)
    return filters


def _padded_frame_count(n_samples: int) -> int:
    # Round up to whole half-chunks, then add one more half-chunk of padding
    pad = N_FRAMES // 2
    n_len = n_samples // HOP_LENGTH
    if n_len % pad != 0:
        n_len = (n_len // pad + 1) * pad
    return n_len + pad


def log_mel_spectrogram(samples: np.ndarray, n_mels: int) -> np.ndarray:
    """
    Build the model input from raw PCM.

    The signal is zero padded to the frame count above, framed with a periodic
    Hann window, projected on the mel filter bank and compressed the way the
    model was trained: log10, clamped to 8 decades below the peak, rescaled.

    Args:
        samples: 1-D float32 PCM at SAMPLE_RATE
        n_mels: Number of mel bins

    Returns:
        Read-only float32 array shaped (1, n_mels, n_frames)
    """
    filters = mel_filters(n_mels)
    samples = np.asarray(samples, dtype=np.float32)

    n_frames = _padded_frame_count(samples.size)
    padded = np.zeros(n_frames * HOP_LENGTH + N_FFT, dtype=np.float32)
    padded[: samples.size] = samples[: padded.size]

    # (n_frames, N_FFT) strided view, one row per STFT frame
    frames = np.lib.stride_tricks.sliding_window_view(padded, N_FFT)[::HOP_LENGTH][:n_frames]
    window = (0.5 * (1.0 - np.cos(2.0 * np.pi * np.arange(N_FFT) / N_FFT))).astype(np.float32)
    power = np.abs(np.fft.rfft(frames * window, axis=-1)) ** 2

    mel = filters @ power.T.astype(np.float32)
    log_spec = np.log10(np.maximum(mel, 1e-10))
    log_spec = np.maximum(log_spec, log_spec.max() - 8.0)
    log_spec = (log_spec + 4.0) / 4.0

    log_spec = log_spec.astype(np.float32)[np.newaxis, :, :]
    log_spec.setflags(write=False)
    return log_spec


def segment_spectrogram(mel: np.ndarray, max_frames: int = N_FRAMES) -> List[np.ndarray]:
    """
    Split a spectrogram into sequential, non-overlapping segments.

    Args:
        mel: Spectrogram shaped (1, n_mels, n_frames)
        max_frames: Largest segment, in frames

    Returns:
        ceil(n_frames / max_frames) views along the time axis, each at most
        `max_frames` long, whose lengths sum to n_frames
    """
    if max_frames <= 0:
        raise ValueError("max_frames must be > 0")

    content_frames = mel.shape[-1]
    segments = []
    seek = 0
    while seek < content_frames:
        size = min(content_frames - seek, max_frames)
        segments.append(mel[..., seek: seek + size])
        seek += size
    return segments
