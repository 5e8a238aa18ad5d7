"""Mutual-exclusion wrapper around a loaded model and its sampler state."""
import threading
from contextlib import contextmanager
from typing import Generic, Iterator, TypeVar
from voiceinstruct.core.errors import InferenceError
from voiceinstruct.core.logging import logger

T = TypeVar("T")


class ModelGuard(Generic[T]):
    """
    Owns a model state object and hands it out one caller at a time.

    There is no accessor returning the raw state: the only way in is
    `acquire()`, which holds the lock for the duration of the `with` block
    and releases it on every exit path.
    """

    def __init__(self, state: T, name: str, timeout: float = -1.0):
        """
        Args:
            state: Model weights plus whatever per-call mutable state they need
            name: Label used in logs
            timeout: Seconds to wait for the lock, -1 to wait forever
        """
        self._state = state
        self._lock = threading.Lock()
        self.name = name
        self.timeout = timeout

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @contextmanager
    def acquire(self) -> Iterator[T]:
        """
        Exclusive access to the guarded state.

        Raises:
            InferenceError: If the lock could not be taken within the timeout
        """
        if not self._lock.acquire(timeout=self.timeout):
            logger.error(f"Timed out after {self.timeout}s waiting for {self.name} model lock")
            raise InferenceError(f"could not acquire {self.name} model lock")
        try:
            yield self._state
        finally:
            self._lock.release()
