from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select, func
from scrape_worker.database import get_db
from scrape_worker.models import Job, PIPELINE_STATUSES, BOARD_STATUSES

router = APIRouter()


@router.get("")
async def get_stats(
    db: AsyncSession = Depends(get_db),
):
    # Jobs by status - single GROUP BY query instead of N+1
    status_query = (
        select(Job.status, func.count(Job.id))
        .where(Job.is_deleted.is_(False))
        .group_by(Job.status)
    )
    status_result = await db.execute(status_query)
    status_counts = {row[0]: row[1] for row in status_result.all()}
    # Ensure all statuses are present with default 0
    for job_status in PIPELINE_STATUSES + BOARD_STATUSES:
        status_counts.setdefault(job_status, 0)

    deleted_result = await db.execute(select(func.count(Job.id)).where(Job.is_deleted.is_(True)))

    return {
        "total_jobs": sum(status_counts.values()),
        "pending_jobs": status_counts["collected"] + status_counts["processing"],
        "finalized_jobs": status_counts["finalized"],
        "error_jobs": status_counts["error"],
        "deleted_jobs": deleted_result.scalar() or 0,
        "jobs_by_status": status_counts,
    }
