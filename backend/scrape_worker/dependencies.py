from fastapi import Request

from scrape_worker.services.dispatcher import JobDispatcher
from scrape_worker.services.field_refiner import FieldRefiner, get_field_refiner
from scrape_worker.services.job_store import JobStore


def get_job_store(request: Request) -> JobStore:
    return request.app.state.job_store


def get_dispatcher(request: Request) -> JobDispatcher:
    return request.app.state.dispatcher


def get_refiner(request: Request) -> FieldRefiner:
    refiner = getattr(request.app.state, "field_refiner", None)
    return refiner or get_field_refiner()
