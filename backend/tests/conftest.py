"""
Shared fixtures: a throwaway SQLite database per test and a helper to seed
job rows in any state.
"""

from datetime import datetime
from typing import Optional

import pytest
import pytest_asyncio

from scrape_worker.database import create_engine_for, create_session_factory, init_db
from scrape_worker.models import Job, JobStatus, utcnow
from scrape_worker.services.job_store import JobStore


# Roughly 780 characters of posting text, comfortably above the 500 minimum
JOB_TEXT = (
    "Senior Engineer at Acme Corp. We are hiring a Senior Engineer to build and operate "
    "the core data platform that powers Acme Corp products used by millions of customers. "
    "You will design services in Go, model data in SQL, review code, mentor engineers and "
    "own reliability for critical systems. Requirements: five or more years building "
    "backend services, deep knowledge of Go and SQL, experience with distributed systems, "
    "strong written communication and a habit of shipping small changes often. Benefits "
    "include a competitive salary, remote-friendly hybrid work, learning budget, generous "
    "parental leave and health coverage for you and your family. Apply today to join the "
    "Acme Corp platform team and help us scale the next generation of our infrastructure."
)


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    engine = create_engine_for(f"sqlite:///{tmp_path / 'jobs.db'}")
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest.fixture
def store(session_factory):
    return JobStore(session_factory)


@pytest.fixture
def job_text():
    return JOB_TEXT


@pytest.fixture
def make_job(session_factory):
    """Insert a job row directly, bypassing the store."""

    async def _make(
        job_id: str = "j1",
        normalized_url: str = "https://example.com/post",
        status: str = JobStatus.COLLECTED.value,
        created_at: Optional[datetime] = None,
        **fields,
    ) -> Job:
        job = Job(
            id=job_id,
            normalized_url=normalized_url,
            status=status,
            created_at=created_at or utcnow(),
            **fields,
        )
        async with session_factory() as session:
            session.add(job)
            await session.commit()
        return job

    return _make
