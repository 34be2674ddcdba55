import asyncio
import logging
from typing import Optional

logger = logging.getLogger(__name__)

MIN_INTERVAL_MINUTES = 1


async def _wait_for_stop(stop_event: asyncio.Event, seconds: float) -> bool:
    """Sleep up to `seconds`; True when the stop event fired first."""
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except asyncio.TimeoutError:
        return False
    return True


async def run_scheduled_ingestion(
    orchestrator,
    *,
    interval_minutes: int,
    stop_event: Optional[asyncio.Event] = None,
    max_runs: Optional[int] = None,
) -> int:
    """
    Run ingestion now and then every `interval_minutes` (at least one minute).

    A failing run is logged and the loop keeps going. The loop ends when
    `stop_event` is set, after `max_runs` runs, or on cancellation.

    :return: Number of runs attempted.
    """
    stop_event = stop_event or asyncio.Event()
    interval_seconds = max(interval_minutes, MIN_INTERVAL_MINUTES) * 60
    runs = 0

    while not stop_event.is_set():
        try:
            result = await orchestrator.run_ingestion()
            logger.info(
                "Scheduled ingestion completed. Repositories=%d PRs=%d Errors=%d",
                result.repository_count,
                result.pull_request_count,
                result.error_count,
            )
        except Exception:
            logger.exception("Scheduled ingestion failed")
        runs += 1

        if max_runs is not None and runs >= max_runs:
            break
        if await _wait_for_stop(stop_event, interval_seconds):
            break

    logger.info("Scheduler stopped after %d runs", runs)
    return runs
