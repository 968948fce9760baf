"""
Periodic sync trigger.

A small polling loop that runs SyncEngine.sync() every interval_seconds in a
worker thread, so the blocking HTTP calls never stall the event loop. The
engine's own lock keeps a timed pass from overlapping a manual one.
"""

from __future__ import annotations

import asyncio
import logging

from .sync_engine import SyncEngine

logger = logging.getLogger(__name__)


async def run_sync_scheduler(engine: SyncEngine, *, interval_seconds: float) -> None:
    """
    Run sync passes forever. To stop the scheduler, cancel the task.

    A pass that raises (storage failure) is logged and the loop carries on
    with the next tick.
    """
    sleep_s = max(0.5, float(interval_seconds))
    logger.info("Sync scheduler started interval=%.1fs", sleep_s)

    while True:
        try:
            result = await asyncio.to_thread(engine.sync)
            if result.failed_items:
                logger.info(
                    "Scheduled sync: synced=%d failed=%d", result.synced_items, result.failed_items
                )
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Scheduled sync pass failed")

        await asyncio.sleep(sleep_s)
