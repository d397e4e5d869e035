"""
Scoped working memory for the SGM engine.

Similarity volumes are the memory bottleneck of depth map estimation. Every
buffer is acquired through ``DeviceMemoryPool.allocate`` which returns an
owning context manager: the buffer is accounted against the pool budget for
the lifetime of the ``with`` block and released on every exit path.
"""

import threading
from contextlib import contextmanager
from typing import Iterator, Optional, Tuple

import numpy as np

from ..errors import DeviceMemoryError
from utils.logger_config import get_logger

logger = get_logger(__name__)

_MB = 1024.0 * 1024.0


class DeviceMemoryPool:
    """
    Memory budget shared by concurrent tile workers.

    Args:
        budget_mb: Maximum resident size in MB, None for no limit
    """

    def __init__(self, budget_mb: Optional[float] = None):
        if budget_mb is not None and budget_mb <= 0:
            raise ValueError(f"budget_mb must be positive, got {budget_mb}")
        self.budget_bytes = None if budget_mb is None else int(budget_mb * _MB)
        self._used_bytes = 0
        self._peak_bytes = 0
        self._condition = threading.Condition()

    @property
    def used_mb(self) -> float:
        return self._used_bytes / _MB

    @property
    def peak_mb(self) -> float:
        return self._peak_bytes / _MB

    def _reserve(self, nbytes: int, wait: bool) -> None:
        with self._condition:
            if self.budget_bytes is not None:
                if nbytes > self.budget_bytes:
                    raise DeviceMemoryError(
                        f"Allocation of {nbytes / _MB:.2f} MB exceeds the device budget "
                        f"of {self.budget_bytes / _MB:.2f} MB")
                while self._used_bytes + nbytes > self.budget_bytes:
                    if not wait or self._used_bytes == 0:
                        raise DeviceMemoryError(
                            f"Cannot allocate {nbytes / _MB:.2f} MB: "
                            f"{self._used_bytes / _MB:.2f} MB already in use")
                    self._condition.wait()
            self._used_bytes += nbytes
            self._peak_bytes = max(self._peak_bytes, self._used_bytes)

    def _release(self, nbytes: int) -> None:
        with self._condition:
            self._used_bytes -= nbytes
            self._condition.notify_all()

    @contextmanager
    def reserve(self, nbytes: int, wait: bool = False) -> Iterator[None]:
        """Account ``nbytes`` against the budget without allocating."""
        self._reserve(nbytes, wait)
        try:
            yield
        finally:
            self._release(nbytes)

    @contextmanager
    def allocate(self, shape: Tuple[int, ...], dtype, fill=None, wait: bool = False) -> Iterator[np.ndarray]:
        """
        Allocate a scoped buffer.

        Args:
            shape: Buffer shape
            dtype: Buffer element type
            fill: Optional initial value
            wait: Block until enough memory is released by other workers
                instead of failing immediately

        Yields:
            np.ndarray: The buffer, valid until the block exits

        Raises:
            DeviceMemoryError: If the buffer does not fit in the budget
        """
        nbytes = int(np.prod(shape, dtype=np.int64)) * np.dtype(dtype).itemsize
        self._reserve(nbytes, wait)
        try:
            if fill is None:
                buffer = np.empty(shape, dtype=dtype)
            else:
                buffer = np.full(shape, fill, dtype=dtype)
        except MemoryError as e:
            self._release(nbytes)
            raise DeviceMemoryError(f"Allocation of {nbytes / _MB:.2f} MB failed: {e}") from e

        logger.debug(f"Allocated buffer {shape} {np.dtype(dtype).name} ({nbytes / _MB:.2f} MB)")
        try:
            yield buffer
        finally:
            del buffer
            self._release(nbytes)

    @contextmanager
    def sub_pool(self, nbytes: int, wait: bool = False) -> Iterator["DeviceMemoryPool"]:
        """
        Reserve ``nbytes`` at once and hand them out as a private pool.

        A worker allocating several buffers reserves its whole working set up
        front, so concurrent workers never wait on each other while holding
        part of their buffers.
        """
        with self.reserve(nbytes, wait):
            pool = DeviceMemoryPool()
            pool.budget_bytes = int(nbytes)
            yield pool
