"""
Background Presence Sweeper
===========================

Runs every ``PRESENCE_SWEEP_INTERVAL_SECONDS`` (default 30 s) and drops
drivers whose disconnect grace window has expired, or who stopped sending
heartbeats altogether.  Dropped drivers no longer receive ride requests.

Presence is per process, so every API instance runs its own sweeper and no
cross-instance lock is needed.
"""

from __future__ import annotations

import asyncio
import logging

from ridehail.infrastructure.presence import PresenceRegistry

logger = logging.getLogger(__name__)

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_sweeper_loop(presence: PresenceRegistry, interval_seconds: float) -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop(presence, interval_seconds))
    logger.info("Presence sweeper started (interval=%ss)", interval_seconds)


async def stop_sweeper_loop() -> None:
    global _task, _stop_event
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    _task, _stop_event = None, None
    logger.info("Presence sweeper stopped")


def run_sweep_cycle(presence: PresenceRegistry) -> int:
    """Execute one sweep.  Returns the number of drivers dropped."""
    return len(presence.sweep())


# ── Internals ─────────────────────────────────────────────────────────


async def _loop(presence: PresenceRegistry, interval_seconds: float) -> None:
    assert _stop_event is not None
    stop = _stop_event
    while not stop.is_set():
        try:
            run_sweep_cycle(presence)
        except Exception:
            logger.exception("Unhandled error in presence sweep")
        try:
            await asyncio.wait_for(stop.wait(), timeout=interval_seconds)
            break
        except asyncio.TimeoutError:
            pass  # next cycle
