from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from app.pipeline.models import JobStatus, ProgressStep


class JobSubmittedResponse(BaseModel):
    job_id: str
    status: JobStatus
    steps: list[ProgressStep] = Field(default_factory=list)


class JobStatusResponse(BaseModel):
    job_id: str
    status: JobStatus
    steps: list[ProgressStep] = Field(default_factory=list)
    failed_stage: str | None = None
    failure_reason: str | None = None
    message: str = ""
    degradations: list[str] = Field(default_factory=list)
    created_at: datetime | None = None
    updated_at: datetime | None = None


class JobResultResponse(BaseModel):
    job_id: str
    status: JobStatus
    source_ref: str | None = None
    image_ref: str | None = None
    company_name: str = ""
    job_title: str = ""
    job_description: str = ""
    feedback: Any = ""
    extracted_text: str | None = None
    markdown_text: str | None = None
    raw_analysis_text: str | None = None


class CancelJobResponse(BaseModel):
    job_id: str
    cancelled: bool
