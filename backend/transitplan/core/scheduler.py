"""APScheduler setup for periodic tasks."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def create_scheduler(tracker, cache) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    from transitplan.config import settings

    scheduler = AsyncIOScheduler()

    # Pull every realtime feed
    scheduler.add_job(
        tracker.refresh_all,
        "interval",
        seconds=settings.realtime_refresh_seconds,
        id="refresh_vehicle_positions",
        name="Refresh realtime vehicle positions",
        max_instances=1,
    )

    # Drop positions past the retention window
    scheduler.add_job(
        tracker.cleanup_all,
        "interval",
        hours=1,
        id="cleanup_vehicle_positions",
        name="Delete old vehicle positions",
        max_instances=1,
    )

    scheduler.add_job(
        cache.clean_expired,
        "interval",
        hours=24,
        id="clean_route_cache",
        name="Delete expired route cache entries",
        max_instances=1,
    )

    return scheduler
