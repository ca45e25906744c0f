"""
Scheduler infrastructure for running periodic tasks.
"""

import logging
from datetime import datetime, timedelta, timezone as dt_timezone
from typing import Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger


logger = logging.getLogger(__name__)


class Scheduler:
    """Async interval scheduler wrapper around APScheduler.

    Jobs live in memory only: they are bound methods of live collectors and
    the monitor, rebuilt by the orchestrator on every start.
    """

    def __init__(self, timezone: str = "UTC"):
        job_defaults = {
            'coalesce': True,
            'max_instances': 1,
            'misfire_grace_time': 30,  # seconds
        }

        self._scheduler = AsyncIOScheduler(job_defaults=job_defaults, timezone=timezone)
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the scheduler."""
        if not self._started:
            self._scheduler.start()
            self._started = True
            logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler without waiting on running jobs."""
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler stopped")

    def add_interval_job(
        self,
        func: Callable,
        seconds: float,
        job_id: str,
        run_immediately: bool = False,
        **kwargs
    ) -> None:
        """Add (or replace) a job that runs every ``seconds``."""
        if seconds <= 0:
            raise ValueError("Interval must be greater than zero seconds")

        trigger = IntervalTrigger(seconds=seconds)
        if run_immediately:
            kwargs.setdefault("next_run_time", datetime.now(dt_timezone.utc) + timedelta(milliseconds=10))

        self._scheduler.add_job(
            func,
            trigger=trigger,
            id=job_id,
            name=job_id,
            replace_existing=True,
            **kwargs
        )

        logger.debug(f"Added interval job: {job_id} (every {seconds}s)")

    def remove_job(self, job_id: str) -> bool:
        """Remove a job by ID; returns False if it was not scheduled."""
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return False
        logger.debug(f"Removed job: {job_id}")
        return True

    def has_job(self, job_id: str) -> bool:
        return self._scheduler.get_job(job_id) is not None
