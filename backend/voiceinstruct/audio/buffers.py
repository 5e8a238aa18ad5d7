"""Sample buffering and the background chunk ingest loop."""
import queue
import threading
from typing import List, Optional
import numpy as np
from voiceinstruct.audio.models import AudioChunk
from voiceinstruct.core.errors import InsufficientAudio
from voiceinstruct.core.logging import logger


class SampleBuffer:
    """Accumulates float32 PCM samples until the recognizer drains them."""

    def __init__(self):
        """Initialize an empty buffer."""
        self._chunks: List[np.ndarray] = []
        self._count = 0
        self._lock = threading.Lock()

    def push(self, samples: np.ndarray) -> None:
        """Append samples to the end of the buffer."""
        if samples.size == 0:
            return
        with self._lock:
            self._chunks.append(samples)
            self._count += int(samples.size)

    def drain_all(self, min_samples: int = 0) -> np.ndarray:
        """
        Atomically remove and return everything currently buffered.

        Args:
            min_samples: Minimum number of samples required for a drain

        Returns:
            1-D float32 array of all buffered samples, in push order

        Raises:
            InsufficientAudio: If fewer than `min_samples` are buffered; the
                buffer is left untouched in that case
        """
        with self._lock:
            if self._count < min_samples:
                raise InsufficientAudio(self._count, min_samples)
            chunks = self._chunks
            self._chunks = []
            self._count = 0

        if not chunks:
            return np.array([], dtype=np.float32)
        return np.concatenate(chunks).astype(np.float32, copy=False)

    def clear(self) -> int:
        """Drop everything buffered, returning the number of samples discarded."""
        with self._lock:
            dropped = self._count
            self._chunks = []
            self._count = 0
        return dropped

    def __len__(self) -> int:
        with self._lock:
            return self._count


# Put on the queue by IngestLoop.stop() to end the consumer loop
_STOP = object()


class IngestLoop:
    """
    Single background consumer moving queued chunks into a SampleBuffer.

    Chunk arrival is driven by the capture side and must never wait on an
    inference that is still running on a previous buffer, so producers only
    enqueue and this thread does the (short, locked) append.
    """

    def __init__(self, buffer: SampleBuffer):
        """
        Initialize the loop.

        Args:
            buffer: Buffer receiving the chunks, in arrival order
        """
        self.buffer = buffer
        self._queue: "queue.Queue[object]" = queue.Queue()
        self._thread: Optional[threading.Thread] = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def pending(self) -> int:
        """Approximate number of chunks waiting to be appended."""
        return self._queue.qsize()

    def start(self) -> None:
        """Start the consumer thread (no-op if already running)."""
        if self.running:
            return
        self._thread = threading.Thread(target=self._run, name="ingest-loop", daemon=True)
        self._thread.start()
        logger.info("Audio ingest loop started")

    def push(self, chunk: AudioChunk) -> None:
        """Hand a chunk to the consumer without blocking."""
        self._queue.put_nowait(chunk)

    def join(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every chunk queued before this call has reached the buffer.

        Chunks pushed while waiting are not waited for, so a steady stream of
        incoming audio cannot hold the caller back.

        Returns:
            False if the timeout expired first
        """
        if not self.running:
            return True
        marker = threading.Event()
        self._queue.put_nowait(marker)
        return marker.wait(timeout)

    def stop(self, timeout: Optional[float] = 5.0) -> None:
        """Ask the consumer to finish the queued chunks and exit."""
        if not self.running:
            return
        self._queue.put_nowait(_STOP)
        self._thread.join(timeout)
        if self._thread.is_alive():
            logger.warning("Audio ingest loop did not stop within timeout")
        else:
            logger.info("Audio ingest loop stopped")
        self._thread = None

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    break
                if isinstance(item, threading.Event):
                    # join() marker: everything queued before it is buffered
                    item.set()
                    continue
                self.buffer.push(item.samples)
            except Exception as e:
                logger.error(f"Error appending audio chunk: {e}", exc_info=True)
            finally:
                self._queue.task_done()
