"""Per-student single-writer guard for roadmap adjustments."""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from learnpath.core.errors import ConcurrentAdjustment
from learnpath.core.logging import get_logger

logger = get_logger(__name__)


class StudentLockRegistry:
    """Fail-fast locks keyed by student id.

    A second adjustment for a student whose adjustment is still running gets
    ``ConcurrentAdjustment`` immediately instead of queueing. Process-local;
    the roadmap version check in the store covers writers in other processes.
    """

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}

    def is_locked(self, student_id: str) -> bool:
        lock = self._locks.get(student_id)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, student_id: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(student_id, asyncio.Lock())
        if lock.locked():
            logger.warning("Concurrent adjustment rejected", student_id=student_id)
            raise ConcurrentAdjustment(student_id)
        try:
            async with lock:
                yield
        finally:
            if not lock.locked():
                self._locks.pop(student_id, None)
