from scrape_worker.schemas.job import (
    JobResponse,
    JobListResponse,
    CollectRequest,
    CollectResponse,
    ExtractRequest,
    WebhookPayload,
)

__all__ = [
    "JobResponse",
    "JobListResponse",
    "CollectRequest",
    "CollectResponse",
    "ExtractRequest",
    "WebhookPayload",
]
