"""Per-giveaway mutual exclusion for draws and rerolls."""

from __future__ import annotations

import logging
import threading
from contextlib import contextmanager
from typing import Iterator, Optional

from .errors import ConcurrencyConflict

logger = logging.getLogger(__name__)


class GiveawayLocks:
    """Registry of one exclusive lock per giveaway id.

    This serialises draw/reroll inside one process. Across processes the
    engines additionally rely on ``SELECT ... FOR UPDATE`` and the
    giveaway's version column.
    """

    def __init__(self, timeout: float = 10.0) -> None:
        self.timeout = timeout
        self._locks: dict[int, threading.Lock] = {}
        self._guard = threading.Lock()

    def _lock_for(self, giveaway_id: int) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(giveaway_id)
            if lock is None:
                lock = self._locks[giveaway_id] = threading.Lock()
            return lock

    @contextmanager
    def hold(
        self, giveaway_id: int, timeout: Optional[float] = None
    ) -> Iterator[None]:
        """Hold the lock for ``giveaway_id`` for the duration of the block.

        Raises
        ------
        ConcurrencyConflict
            If the lock is not acquired within ``timeout`` seconds.
        """
        wait = self.timeout if timeout is None else timeout
        lock = self._lock_for(giveaway_id)
        if not lock.acquire(timeout=wait):
            logger.warning(f"Timed out after {wait}s waiting for giveaway {giveaway_id}")
            raise ConcurrencyConflict(
                f"Giveaway {giveaway_id} is busy with another draw or reroll"
            )
        try:
            yield
        finally:
            lock.release()


DEFAULT_LOCKS = GiveawayLocks()

__all__ = ["GiveawayLocks", "DEFAULT_LOCKS"]
