"""
Worker Scheduler - discovery of jobs that need enrichment

Two overlapping triggers feed the JobDispatcher:

    Push: ChangeFeed subscription. Any jobs-table event whose new row is
          ``collected`` (and not deleted) is dispatched immediately.
    Poll: APScheduler interval job (default every 30s, first run at
          startup). Lists every live ``collected`` job, dispatches them and
          waits for the queue to drain, then runs the stale-job reaper.

Reaper:
    Jobs still ``processing`` more than ``stale_after_seconds`` after they
    were created are presumed hung (worker crash mid-job) and moved to
    ``error``. It never touches ``finalized`` or ``error`` jobs and never
    re-queues anything.

Push and poll may both dispatch the same job; the processor's conditional
claim turns the second dispatch into a no-op.
"""

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

from scrape_worker.config import get_settings
from scrape_worker.middleware.metrics import record_stale_jobs
from scrape_worker.models import utcnow
from scrape_worker.services.change_feed import ChangeEvent, ChangeFeed
from scrape_worker.services.dispatcher import JobDispatcher
from scrape_worker.services.job_store import JobStore

logger = logging.getLogger(__name__)

STALE_JOB_MESSAGE = "Scraper timeout/hang detected."
SCAN_JOB_ID = "scan_pending_jobs"


class WorkerScheduler:
    """
    Owns the poll interval, the change-feed listener and the dispatcher.

    Attributes:
        store: JobStore for listing and reaping
        dispatcher: JobDispatcher that runs the jobs
        change_feed: Optional push source; polling alone still makes progress
        poll_interval: Seconds between scans
        stale_after: Seconds a job may stay in processing after creation
    """

    def __init__(
        self,
        store: JobStore,
        dispatcher: JobDispatcher,
        change_feed: Optional[ChangeFeed] = None,
        poll_interval: Optional[int] = None,
        stale_after: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.dispatcher = dispatcher
        self.change_feed = change_feed
        self.poll_interval = poll_interval if poll_interval is not None else settings.poll_interval_seconds
        self.stale_after = stale_after if stale_after is not None else settings.stale_after_seconds
        self.scheduler = AsyncIOScheduler()
        self._listener: Optional[asyncio.Task] = None

    async def scan_for_pending_jobs(self) -> int:
        """
        One poll cycle: dispatch pending jobs, wait for them, reap stale ones.

        Returns:
            Number of pending jobs found
        """
        try:
            pending = await self.store.list_pending()
        except Exception as e:
            logger.error(f"[scan] Failed to list pending jobs: {e}")
            pending = []

        if pending:
            logger.info(f"[scan] Found {len(pending)} pending jobs")
            for job in pending:
                self.dispatcher.submit(job.id)
            try:
                await self.dispatcher.drain()
            except RuntimeError as e:
                # Dispatcher stopped underneath us during shutdown
                logger.warning(f"[scan] Cycle abandoned: {e}")
                return len(pending)

        await self.reap_stale_jobs()
        return len(pending)

    async def reap_stale_jobs(self, now: Optional[datetime] = None) -> int:
        """
        Move hung ``processing`` jobs to ``error``.

        The job this worker is running right now is left alone; it is
        bounded by the per-job timeout instead.

        Returns:
            Number of jobs reset
        """
        threshold = (now or utcnow()) - timedelta(seconds=self.stale_after)
        try:
            stale = await self.store.list_stale(threshold)
        except Exception as e:
            logger.error(f"[stale] Failed to list stale jobs: {e}")
            return 0

        stale = [job for job in stale if job.id != self.dispatcher.current_job_id]
        if not stale:
            return 0

        logger.info(f"[stale] Found {len(stale)} stale jobs. Resetting...")
        reaped = 0
        for job in stale:
            try:
                if await self.store.reap(job.id, STALE_JOB_MESSAGE):
                    reaped += 1
            except Exception as e:
                logger.error(f"[stale] Failed to reset job {job.id}: {e}")

        record_stale_jobs(reaped)
        return reaped

    def handle_change(self, event: ChangeEvent) -> bool:
        """Dispatch the job behind a change event if it is waiting for enrichment."""
        job_id = event.collected_job_id
        if not job_id:
            return False
        logger.info(f"[push] {event.type} triggered job {job_id}")
        self.dispatcher.submit(job_id)
        return True

    async def _listen(self) -> None:
        async for event in self.change_feed.listen():
            self.handle_change(event)

    def start(self) -> None:
        """Start the dispatcher, the poll interval and the push listener."""
        self.dispatcher.start()

        self.scheduler.add_job(
            self.scan_for_pending_jobs,
            trigger=IntervalTrigger(seconds=self.poll_interval),
            id=SCAN_JOB_ID,
            replace_existing=True,
            max_instances=1,
            coalesce=True,
            next_run_time=datetime.now(timezone.utc),
        )
        self.scheduler.start()

        if self.change_feed is not None:
            self._listener = asyncio.create_task(self._listen(), name="change-feed-listener")
            mode = f"Hybrid (push + {self.poll_interval}s polling)"
        else:
            mode = f"Polling every {self.poll_interval}s"
        logger.info(f"Scheduler started. Mode: {mode}")

    async def stop(self) -> None:
        """Stop triggers first, then the dispatcher."""
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)

        if self._listener is not None:
            self._listener.cancel()
            try:
                await self._listener
            except asyncio.CancelledError:
                pass
            self._listener = None

        await self.dispatcher.stop()
        logger.info("Scheduler stopped")
