"""
Job Processor - single-job enrichment pipeline

Drives one job through:

    Claiming → Scraping → Refining → Persisting → Done(finalized | error)

- Claiming: conditional collected → processing update. Losing the claim
  (another trigger or process got there first, or the job left
  ``collected``) ends processing silently with no writes.
- Scraping/Refining/Persisting run under one wall-clock deadline. Any
  failure, including the deadline, is written back as status ``error`` with
  a readable diagnostic. ``error`` is terminal; nothing re-queues it.
- No exception escapes process(); one job's failure never stops the
  scheduler from moving on to the next job.
"""

import asyncio
import enum
import logging
import time
from typing import Optional

from scrape_worker.config import get_settings
from scrape_worker.errors import (
    PersistFailure,
    RefineFailure,
    ScrapeFailure,
    TimeoutFailure,
    WorkerError,
)
from scrape_worker.middleware.metrics import record_job_outcome
from scrape_worker.services.field_refiner import FieldRefiner, RefinedJob
from scrape_worker.services.job_store import JobStore
from scrape_worker.services.page_extractor import PageExtractor

logger = logging.getLogger(__name__)


class ProcessOutcome(str, enum.Enum):
    FINALIZED = "finalized"
    ERROR = "error"
    SKIPPED = "skipped"    # Claim lost; someone else owns the job
    DEFERRED = "deferred"  # Store unreachable at claim time; job left collected


class JobProcessor:
    """
    Orchestrates extractor, refiner and store for one job at a time.

    Attributes:
        store: JobStore used for claim and result writes
        extractor: PageExtractor for the job URL
        refiner: FieldRefiner for the extracted text
        timeout_seconds: Deadline for scrape + refine + persist
        refine_max_chars: Text truncation passed to the refiner
    """

    def __init__(
        self,
        store: JobStore,
        extractor: PageExtractor,
        refiner: FieldRefiner,
        timeout_seconds: Optional[float] = None,
        refine_max_chars: Optional[int] = None,
    ):
        settings = get_settings()
        self.store = store
        self.extractor = extractor
        self.refiner = refiner
        self.timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.job_timeout_seconds
        self.refine_max_chars = refine_max_chars if refine_max_chars is not None else settings.refine_max_chars

    async def process(self, job_id: str) -> ProcessOutcome:
        """
        Claim and enrich a job.

        Returns:
            ProcessOutcome describing what happened to the job
        """
        start_time = time.perf_counter()

        try:
            claimed = await self.store.claim(job_id)
        except Exception as e:
            logger.error(f"[{job_id}] Claim failed, leaving job for a later cycle: {e}")
            return ProcessOutcome.DEFERRED

        if not claimed:
            logger.debug(f"[{job_id}] Already claimed or no longer collected, skipping")
            record_job_outcome(ProcessOutcome.SKIPPED.value, time.perf_counter() - start_time)
            return ProcessOutcome.SKIPPED

        logger.info(f"--- [{job_id}] Claimed for processing ---")

        failure: Optional[Exception] = None
        try:
            refined = await asyncio.wait_for(self._run_pipeline(job_id), timeout=self.timeout_seconds)
            logger.info(f"[{job_id}] Success: {refined.title} at {refined.company}")
        except asyncio.TimeoutError:
            failure = TimeoutFailure(self.timeout_seconds)
        except WorkerError as e:
            failure = e
        except Exception as e:
            logger.error(f"[{job_id}] Unexpected pipeline error: {e}", exc_info=True)
            failure = e

        if failure is None:
            # Publish outside the deadline; the row is already committed
            await self.store.notify(job_id)
            record_job_outcome(ProcessOutcome.FINALIZED.value, time.perf_counter() - start_time)
            return ProcessOutcome.FINALIZED

        logger.error(f"[{job_id}] Failed: {failure}")
        await self._write_error(job_id, failure)
        record_job_outcome(ProcessOutcome.ERROR.value, time.perf_counter() - start_time)
        return ProcessOutcome.ERROR

    async def _run_pipeline(self, job_id: str) -> RefinedJob:
        try:
            job = await self.store.get(job_id)
        except Exception as e:
            raise PersistFailure(f"Failed to load job: {e}") from e
        if job is None:
            raise PersistFailure("Job disappeared after claim")

        url = job.normalized_url

        logger.info(f"[{job_id}] Step 1: Scraping {url}")
        try:
            page = await self.extractor.extract(url)
        except Exception as e:
            raise ScrapeFailure(e) from e

        logger.info(f"[{job_id}] Step 2: AI refining {len(page.content)} characters")
        try:
            refined = await self.refiner.refine(page.content, url, max_chars=self.refine_max_chars)
        except Exception as e:
            raise RefineFailure(e) from e

        logger.info(f"[{job_id}] Step 3: Updating record")
        try:
            await self.store.finalize(job_id, refined.to_fields(), notify=False)
        except Exception as e:
            raise PersistFailure(f"Failed to save results: {e}") from e

        return refined

    async def _write_error(self, job_id: str, failure: Exception) -> None:
        message = str(failure) or failure.__class__.__name__
        try:
            marked = await self.store.mark_error(job_id, message)
        except Exception as e:
            # Store is down; the reaper resets the job once it goes stale
            logger.error(f"[{job_id}] Failed to update error status: {e}")
            return
        if not marked:
            logger.warning(f"[{job_id}] Job already left processing, error not recorded")
