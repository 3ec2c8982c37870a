"""Wall-clock scheduling of the background jobs.

Jobs run on the service's event loop:
- delivery cycle: every hour at a fixed minute, plus once shortly after start
- missed-delivery report: daily at a fixed hour
- artifact retention sweep: daily at a fixed hour
"""

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional

from core.observability.logging import with_correlation

logger = logging.getLogger(__name__)


def seconds_until_next(now: datetime, minute: int, hour: Optional[int] = None) -> float:
    """Seconds from ``now`` to the next HH:MM (daily) or :MM (hourly) mark.

    A mark equal to ``now`` counts as already passed.
    """
    target = now.replace(minute=minute, second=0, microsecond=0)
    if hour is None:
        if target <= now:
            target += timedelta(hours=1)
    else:
        target = target.replace(hour=hour)
        if target <= now:
            target += timedelta(days=1)
    return (target - now).total_seconds()


async def _run_job(name: str, job: Callable[[], Awaitable]) -> None:
    with with_correlation(job=name):
        try:
            await job()
        except Exception:
            logger.exception(f"Scheduled job '{name}' failed")


async def run_at(
    name: str,
    job: Callable[[], Awaitable],
    minute: int,
    hour: Optional[int] = None,
    initial_delay: Optional[float] = None,
    clock: Callable[[], datetime] = datetime.now,
    sleep: Callable = asyncio.sleep,
) -> None:
    """Run ``job`` forever at every matching wall-clock mark.

    Args:
        name: Job name used in logs
        job: Coroutine function to run
        minute: Minute of the hour
        hour: Hour of the day; None for hourly jobs
        initial_delay: When set, also run once this many seconds after start
    """
    if initial_delay is not None:
        await sleep(initial_delay)
        await _run_job(name, job)

    while True:
        delay = seconds_until_next(clock(), minute, hour)
        logger.debug(f"Job '{name}' next run in {delay:.0f}s")
        await sleep(delay)
        await _run_job(name, job)
