"""
Job Store Client - narrow read/write operations on the jobs table

Every write is a single-row statement keyed by id, committed in its own
transaction. ``claim`` is the only concurrency primitive in the system: a
conditional UPDATE that moves a job from ``collected`` to ``processing``
and reports whether this caller won.

When a ChangeFeed is attached, each successful write publishes the new row
so that UIs and other listeners see status changes.
"""

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from scrape_worker.models import Job, JobStatus, utcnow
from scrape_worker.services.change_feed import ChangeFeed

logger = logging.getLogger(__name__)

# Columns the refiner is allowed to write on finalize
ENRICHMENT_FIELDS = (
    "title",
    "company",
    "description",
    "location",
    "salary",
    "work_type",
    "posted_at",
    "skills",
)


class JobStore:
    """
    Typed operations against the shared jobs table.

    Attributes:
        session_factory: async_sessionmaker bound to the jobs database
        change_feed: Optional feed notified after each write
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        change_feed: Optional[ChangeFeed] = None,
    ):
        self.session_factory = session_factory
        self.change_feed = change_feed

    async def claim(self, job_id: str) -> bool:
        """
        Atomically move a job from ``collected`` to ``processing``.

        Returns:
            True if this call performed the transition, False if the job is
            missing, deleted, or no longer ``collected``
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(
                    Job.id == job_id,
                    Job.status == JobStatus.COLLECTED.value,
                    Job.is_deleted.is_(False),
                )
                .values(status=JobStatus.PROCESSING.value, updated_at=utcnow())
            )
            await session.commit()

        claimed = result.rowcount == 1
        if claimed:
            await self.notify(job_id)
        return claimed

    async def finalize(self, job_id: str, fields: Dict[str, Any], notify: bool = True) -> None:
        """
        Write enrichment fields and mark the job ``finalized``.

        Pass ``notify=False`` to publish later with notify(), e.g. once a
        deadline around the write has been left.
        """
        values = {k: v for k, v in fields.items() if k in ENRICHMENT_FIELDS}
        values["skills"] = list(values.get("skills") or [])
        values["status"] = JobStatus.FINALIZED.value
        values["error_message"] = None
        values["updated_at"] = utcnow()

        async with self.session_factory() as session:
            await session.execute(update(Job).where(Job.id == job_id).values(**values))
            await session.commit()

        if notify:
            await self.notify(job_id)

    async def mark_error(self, job_id: str, message: str) -> bool:
        """
        Mark a ``processing`` job ``error`` with a diagnostic message.

        The message is stored in ``error_message`` and, for clients that only
        read ``description``, copied there as well. Jobs that already left
        ``processing`` keep their status.

        Returns:
            True if the job was moved to ``error``
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.PROCESSING.value)
                .values(
                    status=JobStatus.ERROR.value,
                    error_message=message,
                    description=message,
                    updated_at=utcnow(),
                )
            )
            await session.commit()

        marked = result.rowcount == 1
        if marked:
            await self.notify(job_id)
        return marked

    async def reap(self, job_id: str, message: str) -> bool:
        """
        Reset a hung job to ``error``.

        Conditional on the job still being ``processing`` so that a job which
        finished between listing and reaping keeps its terminal status.
        """
        async with self.session_factory() as session:
            result = await session.execute(
                update(Job)
                .where(Job.id == job_id, Job.status == JobStatus.PROCESSING.value)
                .values(
                    status=JobStatus.ERROR.value,
                    error_message=message,
                    description=message,
                    updated_at=utcnow(),
                )
            )
            await session.commit()

        reaped = result.rowcount == 1
        if reaped:
            await self.notify(job_id)
        return reaped

    async def get(self, job_id: str) -> Optional[Job]:
        async with self.session_factory() as session:
            result = await session.execute(select(Job).where(Job.id == job_id))
            return result.scalar_one_or_none()

    async def list_pending(self) -> List[Job]:
        """Live jobs waiting for enrichment, oldest first."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job)
                .where(Job.status == JobStatus.COLLECTED.value, Job.is_deleted.is_(False))
                .order_by(Job.created_at.asc())
            )
            return list(result.scalars().all())

    async def list_stale(self, threshold: datetime) -> List[Job]:
        """Jobs still ``processing`` that were created before ``threshold``."""
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job).where(
                    Job.status == JobStatus.PROCESSING.value,
                    Job.created_at < threshold,
                )
            )
            return list(result.scalars().all())

    async def find_active_by_url(self, normalized_url: str) -> Optional[Job]:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Job)
                .where(Job.normalized_url == normalized_url, Job.is_deleted.is_(False))
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def create(self, normalized_url: str, **fields: Any) -> Job:
        """Insert a new job in ``collected`` status and announce it."""
        job = Job(normalized_url=normalized_url, status=JobStatus.COLLECTED.value, **fields)
        async with self.session_factory() as session:
            session.add(job)
            await session.commit()
            await session.refresh(job)

        if self.change_feed:
            await self.change_feed.publish("INSERT", job.to_record())
        return job

    async def notify(self, job_id: str) -> None:
        """Publish the current row as an UPDATE event. Never raises."""
        if not self.change_feed:
            return
        try:
            job = await self.get(job_id)
        except Exception as e:
            logger.warning(f"[job_store] Could not load {job_id} for change event: {e}")
            return
        if job is not None:
            await self.change_feed.publish("UPDATE", job.to_record())
