"""
Queues of block heights that need another pass by the ingestion pipeline.

- error queue: heights that failed processing; newest pushes pop first
- unverified queue: heights waiting for verification; first in, first out
- persistent errors: every failed height ever reported, kept for operators

The ingestion side writes; API reads only list the persistent errors.
"""
from collections import deque
from typing import Deque, List, Optional

import structlog

from .errors import EmptyError
from .locking import ReadWriteLock

logger = structlog.get_logger()


class ErrorHeightQueues:
    """Error, unverified and persistent-error height records.

    Pass the block window's lock so queue mutations and window mutations
    are serialized by the same writer section.
    """

    def __init__(self, lock: Optional[ReadWriteLock] = None):
        self.lock = lock or ReadWriteLock()
        self._errors: Deque[int] = deque()
        self._unverified: Deque[int] = deque()
        self._persistent: List[int] = []

    def push_error_range(self, start: int, end: int) -> int:
        """
        Queue every height strictly between ``start`` and ``end``.

        Heights are pushed in ascending order; nothing is pushed when
        ``start >= end``.

        Returns:
            Number of heights queued
        """
        if start >= end:
            return 0
        with self.lock.write_locked():
            for height in range(start + 1, end):
                self._errors.appendleft(height)
        count = end - start - 1
        if count:
            logger.info("error_heights_queued", start=start + 1, end=end - 1, count=count)
        return count

    def push_error_height(self, height: int) -> None:
        """Queue a single height that failed processing."""
        with self.lock.write_locked():
            self._errors.appendleft(height)

    def pop_error_height(self) -> int:
        """Pop the most recently queued error height.

        Raises:
            EmptyError: If the error queue is empty
        """
        with self.lock.write_locked():
            if not self._errors:
                raise EmptyError("error queue is empty")
            return self._errors.popleft()

    def push_unverified(self, height: int) -> None:
        with self.lock.write_locked():
            self._unverified.append(height)

    def pop_unverified(self) -> int:
        """Pop the oldest unverified height.

        Raises:
            EmptyError: If the unverified queue is empty
        """
        with self.lock.write_locked():
            if not self._unverified:
                raise EmptyError("unverified queue is empty")
            return self._unverified.popleft()

    def push_persistent_error(self, height: int) -> None:
        with self.lock.write_locked():
            self._persistent.append(height)
        logger.warning("persistent_error_height_recorded", height=height)

    def list_persistent_errors(self) -> List[int]:
        """Every recorded persistent error height, in insertion order (duplicates kept)."""
        with self.lock.read_locked():
            return list(self._persistent)

    def error_queue_size(self) -> int:
        with self.lock.read_locked():
            return len(self._errors)

    def unverified_queue_size(self) -> int:
        with self.lock.read_locked():
            return len(self._unverified)
