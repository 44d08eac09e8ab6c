from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import JSONResponse
import logging
from scrape_worker.dependencies import get_dispatcher
from scrape_worker.schemas import WebhookPayload
from scrape_worker.services.change_feed import ChangeEvent, JOBS_TABLE
from scrape_worker.services.dispatcher import JobDispatcher

logger = logging.getLogger(__name__)

router = APIRouter()


@router.post("/jobs")
async def job_webhook(
    payload: WebhookPayload,
    dispatcher: JobDispatcher = Depends(get_dispatcher),
):
    """
    Database webhook for the jobs table.

    Accepts the same event shape as the change feed. Collected jobs are
    queued on the worker; processing happens in the background.
    """
    record = payload.record
    if not record or not record.get("id") or not record.get("normalized_url"):
        raise HTTPException(status_code=400, detail="Invalid payload")

    event = ChangeEvent(
        type=(payload.type or "").upper(),
        table=payload.table or JOBS_TABLE,
        record=record,
        old_record=payload.old_record,
    )
    job_id = event.collected_job_id
    if not job_id:
        return {"queued": False, "jobId": record["id"]}

    dispatcher.submit(job_id)
    logger.info(f"[webhook] Queued job {job_id}")
    return JSONResponse(status_code=status.HTTP_202_ACCEPTED, content={"queued": True, "jobId": job_id})
