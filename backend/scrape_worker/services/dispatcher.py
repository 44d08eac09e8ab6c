"""
Job Dispatcher - serial execution of job ids from push and poll triggers

Both triggers only enqueue ids; a single consumer task feeds them to the
JobProcessor one at a time, with a short pause after each job that used
the browser/model to stay under API quotas. The queue does not
deduplicate: a job submitted twice is claimed once and the second run is a
no-op skip.
"""

import asyncio
import logging
from typing import Optional

from scrape_worker.middleware.metrics import update_queue_depth
from scrape_worker.services.job_processor import JobProcessor, ProcessOutcome

logger = logging.getLogger(__name__)


class JobDispatcher:
    """
    Single-consumer queue in front of a JobProcessor.

    Attributes:
        processor: JobProcessor that handles each id
        delay_seconds: Pause after each job that was actually processed
        current_job_id: Id being processed right now, if any
    """

    def __init__(self, processor: JobProcessor, delay_seconds: float = 0.0):
        self.processor = processor
        self.delay_seconds = delay_seconds
        self.queue: asyncio.Queue[str] = asyncio.Queue()
        self.current_job_id: Optional[str] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.create_task(self._run(), name="job-dispatcher")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    def submit(self, job_id: str) -> None:
        self.queue.put_nowait(job_id)
        update_queue_depth(self.queue.qsize())

    async def drain(self) -> None:
        """
        Wait until every submitted id has been processed.

        Raises:
            RuntimeError: if the consumer is not running, or stops before
                the queue is empty
        """
        if not self.running:
            raise RuntimeError("JobDispatcher is not running")

        consumer = self._task
        join = asyncio.ensure_future(self.queue.join())
        try:
            await asyncio.wait({join, consumer}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            drained = join.done()
            if not drained:
                join.cancel()
        if not drained:
            raise RuntimeError("JobDispatcher stopped before the queue drained")

    async def _run(self) -> None:
        while True:
            job_id = await self.queue.get()
            update_queue_depth(self.queue.qsize())
            outcome = None
            self.current_job_id = job_id
            try:
                outcome = await self.processor.process(job_id)
            except Exception as e:
                logger.error(f"[dispatcher] Unhandled error for job {job_id}: {e}", exc_info=True)
            finally:
                self.current_job_id = None
                self.queue.task_done()

            if outcome in (ProcessOutcome.FINALIZED, ProcessOutcome.ERROR) and self.delay_seconds > 0:
                await asyncio.sleep(self.delay_seconds)
