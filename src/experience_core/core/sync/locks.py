"""Per-user serialization of sync writes."""

import logging
import threading
import weakref
from contextlib import contextmanager
from typing import Iterator, Optional

from ...exceptions import SyncFailureError

logger = logging.getLogger(__name__)


class UserLockRegistry:
    """Hands out one re-entrant lock per user.

    Delta sync, conflict resolution, full sync and restore all take the
    user's lock, so two devices of the same user cannot interleave their
    check-then-apply steps inside one process.
    """

    def __init__(self, timeout: Optional[float] = None):
        """Initialize lock registry.

        Args:
            timeout: Seconds to wait for a lock; None waits forever
        """
        self.timeout = timeout
        # Entries vanish once no caller holds or waits on the lock
        self._locks: "weakref.WeakValueDictionary[str, threading.RLock]" = (
            weakref.WeakValueDictionary()
        )
        self._guard = threading.Lock()

    def _lock_for(self, user_id: str) -> threading.RLock:
        with self._guard:
            lock = self._locks.get(user_id)
            if lock is None:
                lock = threading.RLock()
                self._locks[user_id] = lock
            return lock

    @contextmanager
    def hold(self, user_id: str) -> Iterator[None]:
        """Hold the user's lock for the duration of the block.

        Raises:
            SyncFailureError: The lock could not be acquired within the timeout
        """
        lock = self._lock_for(user_id)
        timeout = -1 if self.timeout is None else self.timeout
        if not lock.acquire(timeout=timeout):
            raise SyncFailureError(
                f"Timed out after {self.timeout}s waiting for sync lock of user "
                f"{user_id}"
            )
        try:
            yield
        finally:
            lock.release()
