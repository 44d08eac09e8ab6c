from pydantic import BaseModel, ConfigDict
from datetime import datetime
from typing import Any, Optional


class JobResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    normalized_url: str
    status: str
    title: Optional[str] = None
    company: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    salary: Optional[str] = None
    work_type: Optional[str] = None
    posted_at: Optional[str] = None
    skills: list[str] = []
    error_message: Optional[str] = None
    source: Optional[str] = None
    notes: Optional[str] = None
    is_deleted: bool = False
    created_at: datetime


class JobListResponse(BaseModel):
    jobs: list[JobResponse]
    total: int


class CollectRequest(BaseModel):
    url: str
    title: Optional[str] = None
    company: Optional[str] = None
    source: Optional[str] = None


class CollectResponse(BaseModel):
    success: bool = False
    duplicate: bool = False
    job: JobResponse


class ExtractRequest(BaseModel):
    url: str
    html_content: Optional[str] = None
    manual_text: Optional[str] = None


class WebhookPayload(BaseModel):
    type: Optional[str] = None
    table: Optional[str] = None
    record: Optional[dict[str, Any]] = None
    old_record: Optional[dict[str, Any]] = None
