"""
POS Returns Engine - Transition Locks

One asyncio.Lock per return id so two transitions on the same record
never interleave inside this process. Acquisition never waits: a
request that finds the lock held fails with ConflictingStateError and
the caller refetches. Cross-process races are caught by the record's
version column instead.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Union
from uuid import UUID

from app.utils.error_handling import ConflictingStateError

logger = logging.getLogger(__name__)


class TransitionLockRegistry:
    """Registry of per-return transition locks."""

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}

    def is_locked(self, return_id: Union[str, UUID]) -> bool:
        lock = self._locks.get(str(return_id))
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)

    @asynccontextmanager
    async def hold(self, return_id: Union[str, UUID]) -> AsyncIterator[None]:
        """
        Hold the lock for return_id for the duration of the block.

        Released on every exit path, including cancellation.
        """
        key = str(return_id)
        lock = self._locks.setdefault(key, asyncio.Lock())
        if lock.locked():
            logger.warning(f"Transition already in progress for return {key}")
            raise ConflictingStateError(
                key,
                message=f"Another transition on return '{key}' is in progress; refetch and retry",
            )

        await lock.acquire()
        try:
            yield
        finally:
            lock.release()
            # Nobody can be waiting on a non-blocking lock, so the entry is safe to drop
            if self._locks.get(key) is lock:
                del self._locks[key]


_registry = TransitionLockRegistry()


def get_lock_registry() -> TransitionLockRegistry:
    """Process-wide lock registry."""
    return _registry
