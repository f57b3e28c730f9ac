from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

StepStatus = Literal["pending", "processing", "completed", "error"]
JobStatus = Literal["pending", "processing", "succeeded", "failed", "cancelled"]

STEP_EXTRACT_JD = "Extracting JD information"
STEP_CONVERT = "Converting document"
STEP_UPLOAD = "Uploading files"
STEP_EXTRACT_TEXT = "Extracting text"
STEP_ANALYZE = "Running AI analysis"
STEP_PARSE = "Parsing analysis"
STEP_PERSIST = "Saving results"

BASE_STEPS: tuple[str, ...] = (
    STEP_CONVERT,
    STEP_UPLOAD,
    STEP_EXTRACT_TEXT,
    STEP_ANALYZE,
    STEP_PARSE,
    STEP_PERSIST,
)

NOT_SPECIFIED = "Not specified"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ProgressStep(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    status: StepStatus = "pending"


class JobContext(BaseModel):
    model_config = ConfigDict(frozen=True)

    company_name: str = ""
    job_title: str = ""
    job_description: str = ""


@dataclass(frozen=True)
class SourceDocument:
    filename: str
    content: bytes
    content_type: str

    @property
    def extension(self) -> str:
        return self.filename.rsplit(".", 1)[-1].lower() if "." in self.filename else ""


@dataclass(frozen=True)
class ResumeSubmission:
    resume: SourceDocument
    jd_file: SourceDocument | None = None
    company_name: str = ""
    job_title: str = ""
    job_description: str = ""
    owner_id: str = "anonymous"


class Job(BaseModel):
    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    owner_id: str = "anonymous"
    source_ref: str | None = None
    image_ref: str | None = None
    extracted_text: str | None = None
    markdown_text: str | None = None
    analysis: Any = None
    raw_analysis_text: str | None = None
    company_name: str | None = None
    job_title: str | None = None
    job_description: str | None = None
    status: JobStatus = "pending"
    failed_stage: str | None = None
    failure_reason: str | None = None
    status_message: str = ""
    degradations: list[str] = Field(default_factory=list)
    status_persisted: bool = False
    steps: tuple[ProgressStep, ...] = ()
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: datetime = Field(default_factory=_utc_now)

    def _set_once(self, field: str, value: Any) -> None:
        if getattr(self, field) is not None:
            raise RuntimeError(f"Job.{field} is write-once and already set for job {self.id}")
        setattr(self, field, value)
        self.touch()

    def set_context(self, context: JobContext) -> None:
        self._set_once("company_name", context.company_name)
        self._set_once("job_title", context.job_title)
        self._set_once("job_description", context.job_description)

    def record_upload(self, source_ref: str, image_ref: str) -> None:
        self._set_once("source_ref", source_ref)
        self._set_once("image_ref", image_ref)

    def record_text(self, text: str) -> None:
        self._set_once("extracted_text", text)

    def record_markdown(self, markdown: str) -> None:
        self._set_once("markdown_text", markdown)

    def record_analysis(self, analysis: Any) -> None:
        self._set_once("analysis", analysis)

    def record_raw_analysis(self, raw_text: str) -> None:
        self._set_once("raw_analysis_text", raw_text)

    @property
    def context(self) -> JobContext:
        return JobContext(
            company_name=self.company_name or "",
            job_title=self.job_title or "",
            job_description=self.job_description or "",
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in {"succeeded", "failed", "cancelled"}

    def touch(self) -> None:
        self.updated_at = _utc_now()

    def to_record(self) -> dict[str, Any]:
        """Shape persisted under ``job:{id}``."""
        return {
            "id": self.id,
            "sourceRef": self.source_ref,
            "imageRef": self.image_ref,
            "companyName": self.company_name or "",
            "jobTitle": self.job_title or "",
            "jobDescription": self.job_description or "",
            "feedback": self.analysis if self.analysis is not None else "",
        }

    def to_status_record(
        self,
        status: JobStatus | None = None,
        steps: tuple[ProgressStep, ...] | None = None,
    ) -> dict[str, Any]:
        return {
            "id": self.id,
            "status": status or self.status,
            "failedStage": self.failed_stage,
            "failureReason": self.failure_reason,
            "message": self.status_message,
            "degradations": list(self.degradations),
            "steps": [step.model_dump() for step in (self.steps if steps is None else steps)],
            "createdAt": self.created_at.isoformat(),
            "updatedAt": self.updated_at.isoformat(),
        }
