"""
Active Tracker Cache — in-memory index of tracking records for routes in progress.

Every ledger append for a route runs inside ``cache.hold(route_id)``, which
serialises writers of that route and keeps the entry fresh. Entries are
evicted explicitly when a route completes and by the idle sweep otherwise.
The sweep never touches a route whose lock is held or awaited.
"""

import asyncio
import logging
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Callable

from services.locks import KeyedLock

logger = logging.getLogger(__name__)


@dataclass
class ActiveTracker:
    """Cached head of one route's tracking record."""

    tracking_id: uuid.UUID
    route_id: uuid.UUID
    driver_id: uuid.UUID
    truck_id: uuid.UUID | None
    started_at: datetime | None
    next_position: int = 0
    status: str = "active"


@dataclass
class _Slot:
    tracker: ActiveTracker | None
    discard: bool = False


class ActiveTrackerCache:
    def __init__(self, idle_timeout: float, clock: Callable[[], float] = time.monotonic):
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._entries: dict[uuid.UUID, ActiveTracker] = {}
        self._last_used: dict[uuid.UUID, float] = {}
        self._locks = KeyedLock()

    @asynccontextmanager
    async def hold(self, route_id: uuid.UUID):
        """
        Exclusive access to one route's entry.

        Yields a slot whose ``tracker`` may be replaced by the caller. On exit
        the slot's tracker is stored (or dropped when ``discard`` is set) and
        the entry's idle clock restarts.
        """
        async with self._locks.hold(route_id):
            slot = _Slot(tracker=self._entries.get(route_id))
            try:
                yield slot
            finally:
                if slot.discard or slot.tracker is None:
                    self._entries.pop(route_id, None)
                    self._last_used.pop(route_id, None)
                else:
                    self._entries[route_id] = slot.tracker
                    self._last_used[route_id] = self._clock()

    def get(self, route_id: uuid.UUID) -> ActiveTracker | None:
        return self._entries.get(route_id)

    async def evict(self, route_id: uuid.UUID) -> bool:
        async with self._locks.hold(route_id):
            self._last_used.pop(route_id, None)
            return self._entries.pop(route_id, None) is not None

    def sweep(self) -> list[uuid.UUID]:
        """Drop idle entries. Returns the evicted route ids."""
        now = self._clock()
        evicted = []
        for route_id, last_used in list(self._last_used.items()):
            if now - last_used < self.idle_timeout:
                continue
            if self._locks.users(route_id):
                # write in flight, retry next sweep
                continue
            self._entries.pop(route_id, None)
            self._last_used.pop(route_id, None)
            evicted.append(route_id)
        return evicted

    def __contains__(self, route_id) -> bool:
        return route_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)


async def tracker_sweep_loop(cache: ActiveTrackerCache, interval: float):
    """Background task: evict idle trackers every ``interval`` seconds."""
    logger.info("🧹 Tracker sweep started (every %ss, idle timeout %ss)", interval, cache.idle_timeout)
    while True:
        await asyncio.sleep(interval)
        try:
            evicted = cache.sweep()
            if evicted:
                logger.info("Evicted %d idle tracker(s)", len(evicted))
        except Exception as e:
            logger.error("Tracker sweep failed: %s", e)
