"""
Job Enrichment Worker - Main Application Entry Point

This module initializes the FastAPI application with:
- Database connection and schema initialization
- Enrichment pipeline wiring (store, extractor, refiner, processor)
- Background scheduler (change-feed push + interval polling + reaper)
- Liveness endpoints and API router registration

Architecture:
    FastAPI App
    ├── Lifespan Management (startup/shutdown)
    ├── CORS Middleware
    ├── Prometheus Middleware (/metrics)
    ├── Liveness: / and /health
    └── API Router
        ├── /jobs - Collect, capture and list jobs
        ├── /stats - Counts by status
        └── /webhooks - Database webhook trigger

Run:
    scrape-worker                      # uvicorn on $PORT (default 3001)
    uvicorn scrape_worker.main:app
"""

import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from scrape_worker.api import api_router
from scrape_worker.config import get_settings
from scrape_worker.database import async_session, engine, init_db
from scrape_worker.middleware.metrics import setup_metrics
from scrape_worker.scheduler import WorkerScheduler
from scrape_worker.services.change_feed import ChangeFeed
from scrape_worker.services.dispatcher import JobDispatcher
from scrape_worker.services.field_refiner import get_field_refiner
from scrape_worker.services.job_processor import JobProcessor
from scrape_worker.services.job_store import JobStore
from scrape_worker.services.page_extractor import PageExtractor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Manage application lifecycle events.

    Startup:
        1. Initialize database tables (failure aborts startup)
        2. Wire the enrichment pipeline
        3. Start dispatcher, polling and change-feed listener

    Shutdown:
        1. Stop triggers and dispatcher
        2. Close the change feed and database engine
    """
    logger.info("--- Job Enrichment Worker Starting ---")
    await init_db()

    change_feed = None
    if settings.change_feed_enabled:
        change_feed = ChangeFeed(
            redis_url=settings.redis_url,
            channel=settings.change_feed_channel,
            reconnect_delay=settings.change_feed_reconnect_seconds,
            publish_timeout=settings.change_feed_publish_timeout_seconds,
            connect_timeout=settings.change_feed_connect_timeout_seconds,
        )

    store = JobStore(async_session, change_feed=change_feed)
    refiner = get_field_refiner()
    processor = JobProcessor(store=store, extractor=PageExtractor(), refiner=refiner)
    dispatcher = JobDispatcher(processor, delay_seconds=settings.dispatch_delay_seconds)
    scheduler = WorkerScheduler(store=store, dispatcher=dispatcher, change_feed=change_feed)

    app.state.job_store = store
    app.state.dispatcher = dispatcher
    app.state.field_refiner = refiner

    scheduler.start()
    yield
    logger.info("Worker shutting down...")
    await scheduler.stop()
    if change_feed is not None:
        await change_feed.close()
    await engine.dispose()


app = FastAPI(
    title="Job Enrichment Worker",
    description="Scrapes collected job postings and refines them with an LLM",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

setup_metrics(app)
app.include_router(api_router)


@app.get("/", response_class=PlainTextResponse)
async def root():
    return "Job Enrichment Worker Active"


@app.get("/health")
async def health_check():
    return {"status": "ok"}


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=int(os.environ.get("PORT", "3001")))
