"""
Driver presence registry.

Drivers report their position on connect and on every heartbeat.  A driver
is *online* while connected and heard from within ``stale_after_seconds``.

A disconnect does not drop the entry straight away: the driver keeps the
slot for ``grace_seconds`` so that a flaky connection can resume without
losing its place.  ``sweep`` (run periodically by the presence sweeper
worker) drops entries whose grace window has run out, as well as entries
that went silent without ever disconnecting.

State is process-wide.  Several API instances each see only the drivers
connected to them.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from typing import Callable, Optional

logger = logging.getLogger(__name__)


@dataclass
class DriverPresence:
    driver_id: int
    latitude: float
    longitude: float
    last_seen: float
    disconnected_at: Optional[float] = None

    @property
    def connected(self) -> bool:
        return self.disconnected_at is None


class PresenceRegistry:
    def __init__(
        self,
        stale_after_seconds: float = 180,
        grace_seconds: float = 600,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.stale_after = stale_after_seconds
        self.grace = grace_seconds
        self._clock = clock
        self._drivers: dict[int, DriverPresence] = {}

    def connect(self, driver_id: int, latitude: float, longitude: float) -> DriverPresence:
        """Register or refresh a driver's position.  Also used as the heartbeat."""
        now = self._clock()
        entry = self._drivers.get(driver_id)
        if entry is None:
            entry = DriverPresence(driver_id, latitude, longitude, last_seen=now)
            self._drivers[driver_id] = entry
            logger.info("Driver %d online", driver_id)
        else:
            if not entry.connected:
                logger.info("Driver %d reconnected within grace window", driver_id)
            entry.latitude = latitude
            entry.longitude = longitude
            entry.last_seen = now
            entry.disconnected_at = None
        return entry

    heartbeat = connect

    def disconnect(self, driver_id: int) -> bool:
        entry = self._drivers.get(driver_id)
        if entry is None or not entry.connected:
            return False
        entry.disconnected_at = self._clock()
        logger.info("Driver %d disconnected (grace=%ss)", driver_id, self.grace)
        return True

    def get(self, driver_id: int) -> Optional[DriverPresence]:
        return self._drivers.get(driver_id)

    def is_online(self, driver_id: int) -> bool:
        entry = self._drivers.get(driver_id)
        return entry is not None and self._is_online(entry, self._clock())

    def online(self) -> list[DriverPresence]:
        now = self._clock()
        return [e for e in self._drivers.values() if self._is_online(e, now)]

    def sweep(self) -> list[int]:
        """Drop expired entries and return the ids that were removed."""
        now = self._clock()
        expired = [
            driver_id
            for driver_id, entry in self._drivers.items()
            if self._expired(entry, now)
        ]
        for driver_id in expired:
            del self._drivers[driver_id]
        if expired:
            logger.info("Presence sweep dropped %d driver(s): %s", len(expired), expired)
        return expired

    def __len__(self) -> int:
        return len(self._drivers)

    def _is_online(self, entry: DriverPresence, now: float) -> bool:
        return entry.connected and now - entry.last_seen <= self.stale_after

    def _expired(self, entry: DriverPresence, now: float) -> bool:
        if not entry.connected:
            return now - entry.disconnected_at >= self.grace
        # silent without a disconnect: the connection died without notice
        return now - entry.last_seen >= self.stale_after + self.grace
