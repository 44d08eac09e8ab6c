from fastapi import APIRouter
from scrape_worker.api import jobs, stats, webhooks

api_router = APIRouter()
api_router.include_router(jobs.router, prefix="/jobs", tags=["jobs"])
api_router.include_router(stats.router, prefix="/stats", tags=["stats"])
api_router.include_router(webhooks.router, prefix="/webhooks", tags=["webhooks"])
