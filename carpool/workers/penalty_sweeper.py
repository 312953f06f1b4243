"""
Background Penalty Sweeper
==========================

Runs every ``PENALTY_SWEEP_INTERVAL_SECONDS`` (default 300 s) and deletes
penalty records whose ``expires_at`` has passed.

The guard already ignores expired records, so the sweeper only keeps the
table small; a missed cycle never lets a restricted user through or keeps
a free one blocked.  A Redis lock makes sure one process sweeps at a time.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional

from carpool.config import settings
from carpool.domain.ports import PenaltyStore
from carpool.infrastructure.database import async_session_factory
from carpool.infrastructure.locks import DistributedLock
from carpool.infrastructure.redis_client import get_redis
from carpool.infrastructure.stores import SqlPenaltyStore

logger = logging.getLogger(__name__)

LOCK_NAME = "penalty_sweeper"

_task: asyncio.Task | None = None
_stop_event: asyncio.Event | None = None


# ── Public API ────────────────────────────────────────────────────────


async def start_penalty_sweeper() -> None:
    global _task, _stop_event
    _stop_event = asyncio.Event()
    _task = asyncio.create_task(_loop())
    logger.info(
        "Penalty sweeper started (interval=%ds)",
        settings.penalty_sweep_interval_seconds,
    )


async def stop_penalty_sweeper() -> None:
    if _stop_event:
        _stop_event.set()
    if _task:
        _task.cancel()
        try:
            await _task
        except asyncio.CancelledError:
            pass
    logger.info("Penalty sweeper stopped")


async def run_sweep_cycle(
    store: Optional[PenaltyStore] = None,
    redis=None,
    now: Optional[datetime] = None,
) -> int:
    """Purge expired penalties once.  Returns the number of rows removed."""
    if redis is None:
        redis = await get_redis()
    if store is None:
        store = SqlPenaltyStore(async_session_factory)
    lock = DistributedLock(
        redis, LOCK_NAME, ttl_seconds=max(30, settings.penalty_sweep_interval_seconds)
    )

    if not await lock.acquire():
        logger.debug("Lock held by another worker, skipping sweep")
        return 0

    try:
        removed = await store.purge_expired(now or datetime.now(timezone.utc))
        if removed:
            logger.info("Penalty sweep removed %d expired record(s)", removed)
        return removed
    finally:
        await lock.release()


# ── Internals ─────────────────────────────────────────────────────────


async def _loop() -> None:
    assert _stop_event is not None
    while not _stop_event.is_set():
        try:
            await run_sweep_cycle()
        except Exception:
            logger.exception("Unhandled error in penalty sweep")
        try:
            await asyncio.wait_for(
                _stop_event.wait(), timeout=settings.penalty_sweep_interval_seconds
            )
            break
        except asyncio.TimeoutError:
            pass
