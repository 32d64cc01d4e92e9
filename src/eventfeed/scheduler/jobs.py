"""
APScheduler jobs for background polling.

The new-events poll asks the server how many events arrived after the newest
one in the feed. It runs on a fixed interval inside the client's event loop.
"""
import logging
from typing import Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)

NEW_EVENTS_POLL_JOB_ID = "new_events_poll"


def build_scheduler() -> AsyncIOScheduler:
    """
    Create the APScheduler used for polling.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    return AsyncIOScheduler()


def schedule_new_events_poll(
    scheduler: AsyncIOScheduler,
    job: Callable[[], Awaitable[None]],
    interval_seconds: float,
) -> None:
    """
    Register the poll job, replacing any previous one.

    The first tick fires one interval from now. max_instances=1 means a slow
    tick is never overlapped by the next one; missed ticks are coalesced.
    """
    cancel_new_events_poll(scheduler)
    scheduler.add_job(
        job,
        trigger="interval",
        seconds=interval_seconds,
        id=NEW_EVENTS_POLL_JOB_ID,
        replace_existing=True,
        max_instances=1,
        coalesce=True,
    )
    if not scheduler.running:
        scheduler.start()


def cancel_new_events_poll(scheduler: AsyncIOScheduler) -> bool:
    """Remove the poll job if scheduled. Returns True if a job was removed."""
    if scheduler.get_job(NEW_EVENTS_POLL_JOB_ID) is None:
        return False
    scheduler.remove_job(NEW_EVENTS_POLL_JOB_ID)
    return True
