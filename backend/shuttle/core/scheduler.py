"""APScheduler setup for periodic tasks."""

import logging

from apscheduler.schedulers.asyncio import AsyncIOScheduler

logger = logging.getLogger(__name__)


def create_scheduler(planner) -> AsyncIOScheduler:
    """Create and configure the scheduler with all jobs."""
    from shuttle.config import settings

    scheduler = AsyncIOScheduler()

    # Recompute visit order for live services every N seconds
    scheduler.add_job(
        planner.refresh_routes,
        "interval",
        seconds=settings.route_refresh_seconds,
        id="refresh_routes",
        name="Recompute routes for live services",
        max_instances=1,
        coalesce=True,
    )

    return scheduler
