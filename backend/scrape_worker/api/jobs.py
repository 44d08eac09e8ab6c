from fastapi import APIRouter, Depends, HTTPException, Query, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import select
from typing import Literal
from urllib.parse import urlparse
import logging
from bs4 import BeautifulSoup
from scrape_worker.config import get_settings
from scrape_worker.database import get_db
from scrape_worker.dependencies import get_job_store, get_refiner
from scrape_worker.errors import ParseError
from scrape_worker.models import Job, PIPELINE_STATUSES, BOARD_STATUSES
from scrape_worker.schemas import (
    JobResponse,
    JobListResponse,
    CollectRequest,
    CollectResponse,
    ExtractRequest,
)
from scrape_worker.services.field_refiner import FieldRefiner
from scrape_worker.services.job_store import JobStore

logger = logging.getLogger(__name__)

router = APIRouter()


def source_from_url(url: str, default: str = "extension") -> str:
    """Hostname without a leading www., used as the job's source label."""
    hostname = urlparse(url).hostname
    if not hostname:
        return default
    return hostname[4:] if hostname.startswith("www.") else hostname


@router.get("", response_model=JobListResponse)
async def list_jobs(
    stage: Literal["pipeline", "board"] = Query("pipeline"),
    db: AsyncSession = Depends(get_db),
):
    statuses = PIPELINE_STATUSES if stage == "pipeline" else BOARD_STATUSES
    query = (
        select(Job)
        .where(Job.status.in_(statuses), Job.is_deleted.is_(False))
        .order_by(Job.created_at.desc())
    )
    result = await db.execute(query)
    jobs = result.scalars().all()

    return JobListResponse(
        jobs=[JobResponse.model_validate(job) for job in jobs],
        total=len(jobs),
    )


@router.post("/collect", response_model=CollectResponse)
async def collect_job(
    request: CollectRequest,
    store: JobStore = Depends(get_job_store),
):
    existing = await store.find_active_by_url(request.url)
    if existing:
        return CollectResponse(duplicate=True, job=JobResponse.model_validate(existing))

    job = await store.create(
        request.url,
        title=request.title,
        company=request.company,
        source=request.source or source_from_url(request.url),
    )
    logger.info(f"Collected job {job.id} for {request.url}")
    body = CollectResponse(success=True, job=JobResponse.model_validate(job))
    return JSONResponse(status_code=status.HTTP_201_CREATED, content=body.model_dump(mode="json"))


@router.post("/extract", response_model=JobResponse, status_code=status.HTTP_201_CREATED)
async def extract_job(
    request: ExtractRequest,
    store: JobStore = Depends(get_job_store),
    refiner: FieldRefiner = Depends(get_refiner),
):
    """Refine page text captured by the extension and store it as a collected job."""
    text = request.manual_text or ""
    if not text and request.html_content:
        text = BeautifulSoup(request.html_content, "html.parser").get_text(" ", strip=True)

    if not text.strip():
        raise HTTPException(
            status_code=400,
            detail="No page text was provided. Please refresh the page and try again.",
        )

    try:
        refined = await refiner.refine(text, request.url, max_chars=get_settings().capture_max_chars)
    except ParseError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"AI extraction failed for {request.url}: {e}")
        raise HTTPException(status_code=502, detail=f"AI extraction failed: {e}")

    job = await store.create(
        request.url,
        source=source_from_url(request.url),
        **refined.to_fields(),
    )
    return JobResponse.model_validate(job)
