"""Periodic retention sweep."""

import asyncio

import structlog

from missiontrack.app import App

logger = structlog.get_logger(__name__)


async def run_retention_loop(app: App, interval_seconds: float, iterations: int | None = None) -> None:
    """Purge expired positions every interval_seconds.

    A failed sweep is logged and retried on the next tick. Runs forever
    unless iterations is given.
    """
    completed = 0
    while iterations is None or completed < iterations:
        try:
            deleted = await app.enforce_retention()
            logger.debug("retention_sweep_finished", deleted=deleted)
        except Exception:
            logger.exception("retention_sweep_failed")
        completed += 1
        if iterations is None or completed < iterations:
            await asyncio.sleep(interval_seconds)


async def serve(app: App, interval_seconds: float) -> None:
    """Start the application and run the retention loop until cancelled."""
    async with app.lifespan():
        logger.info("retention_runner_started", interval_seconds=interval_seconds)
        await run_retention_loop(app, interval_seconds)
