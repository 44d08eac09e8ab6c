"""
Job Model - SQLAlchemy ORM model for tracked job postings

Rows are inserted by collectors (browser extension, mobile app, capture
endpoint) with status ``collected`` and only a URL. The enrichment worker
claims them, scrapes the page, asks the model for structured fields and
writes the result back.

Status Flow:
    collected → processing → finalized | error          (enrichment worker)
    finalized → applied → assignment → interview_r1..3 → hr → offer
              → rejected / ghosted                      (kanban board, UI only)
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, Boolean, JSON

from scrape_worker.database import Base


class JobStatus(str, enum.Enum):
    """Statuses owned by the enrichment pipeline."""

    COLLECTED = "collected"
    PROCESSING = "processing"
    FINALIZED = "finalized"
    ERROR = "error"


PIPELINE_STATUSES = [s.value for s in JobStatus]

# Workflow stages moved by the kanban board; never written by the worker
BOARD_STATUSES = [
    "applied",
    "assignment",
    "interview_r1",
    "interview_r2",
    "interview_r3",
    "hr",
    "offer",
    "rejected",
    "ghosted",
]


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored in the jobs table."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Job(Base):
    """
    Tracked job posting.

    Attributes:
        id: UUID primary key
        normalized_url: Source page address (unique among non-deleted jobs)
        status: Pipeline or board stage (indexed)
        title/company/description/location/salary/work_type/posted_at:
            Enrichment output, empty until finalized
        skills: JSON list of skill strings
        error_message: Diagnostic text for jobs that ended in error
        source: Origin label, usually the page hostname
        created_at: Insert time, used by the stale-job reaper
        is_deleted: Soft-delete flag; deleted jobs are never processed
    """

    __tablename__ = "jobs"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    normalized_url = Column(String(2000), nullable=False, index=True)
    status = Column(String(20), nullable=False, default=JobStatus.COLLECTED.value, index=True)
    title = Column(String(500), nullable=True)
    company = Column(String(500), nullable=True)
    description = Column(Text, nullable=True)
    location = Column(String(500), nullable=True)
    salary = Column(String(200), nullable=True)
    work_type = Column(String(100), nullable=True)
    posted_at = Column(String(100), nullable=True)  # Free text, e.g. "2 days ago"
    skills = Column(JSON, nullable=False, default=list)
    error_message = Column(Text, nullable=True)
    source = Column(String(200), nullable=True)
    notes = Column(Text, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False, index=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_record(self) -> dict:
        """Plain dict in the change-feed payload shape."""
        return {
            "id": self.id,
            "normalized_url": self.normalized_url,
            "status": self.status,
            "title": self.title,
            "company": self.company,
            "description": self.description,
            "location": self.location,
            "salary": self.salary,
            "work_type": self.work_type,
            "posted_at": self.posted_at,
            "skills": list(self.skills or []),
            "error_message": self.error_message,
            "source": self.source,
            "is_deleted": bool(self.is_deleted),
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
