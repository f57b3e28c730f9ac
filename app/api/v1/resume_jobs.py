from __future__ import annotations

from fastapi import APIRouter, File, Form, HTTPException, Request, UploadFile, status

from app.core.config import settings
from app.core.rate_limit import rate_limit
from app.pipeline.models import ResumeSubmission, SourceDocument
from app.schemas.resume_jobs import (
    CancelJobResponse,
    JobResultResponse,
    JobStatusResponse,
    JobSubmittedResponse,
)
from app.services.file_security import (
    JD_EXTENSIONS,
    RESUME_EXTENSIONS,
    content_type_for_extension,
    extension_from_filename,
    validate_upload_signature,
)
from app.services.job_runner import JobRunner

router = APIRouter()


def _runner(request: Request) -> JobRunner:
    return request.app.state.job_runner


async def _read_upload(file: UploadFile, *, allowed: frozenset[str], field_name: str) -> SourceDocument:
    filename = file.filename or f"{field_name}-upload"

    ext = extension_from_filename(filename)
    if ext not in allowed:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported {field_name} file type '.{ext}'. Allowed: {', '.join(sorted(allowed))}.",
        )

    max_bytes = settings.max_upload_bytes
    chunks: list[bytes] = []
    total = 0
    while True:
        chunk = await file.read(1024 * 64)
        if not chunk:
            break
        total += len(chunk)
        if total > max_bytes:
            raise HTTPException(
                status_code=status.HTTP_413_REQUEST_ENTITY_TOO_LARGE,
                detail=f"File too large. Maximum allowed size is {max_bytes // (1024 * 1024)} MB.",
            )
        chunks.append(chunk)
    payload = b"".join(chunks)
    if not payload:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=f"The {field_name} file is empty.")

    try:
        validate_upload_signature(filename=filename, content=payload)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

    return SourceDocument(filename=filename, content=payload, content_type=content_type_for_extension(ext))


@router.post("/resume-jobs", response_model=JobSubmittedResponse, status_code=status.HTTP_202_ACCEPTED)
@rate_limit(settings.submit_rate_limit)
async def submit_resume_job(
    request: Request,
    resume: UploadFile = File(...),
    jd_file: UploadFile | None = File(default=None),
    company_name: str = Form(default="", max_length=200),
    job_title: str = Form(default="", max_length=200),
    job_description: str = Form(default="", max_length=20000),
    owner_id: str = Form(default="anonymous", min_length=1, max_length=128),
):
    resume_doc = await _read_upload(resume, allowed=RESUME_EXTENSIONS, field_name="resume")
    jd_doc = None
    if jd_file is not None and jd_file.filename:
        jd_doc = await _read_upload(jd_file, allowed=JD_EXTENSIONS, field_name="job description")

    job = _runner(request).submit(
        ResumeSubmission(
            resume=resume_doc,
            jd_file=jd_doc,
            company_name=company_name,
            job_title=job_title,
            job_description=job_description,
            owner_id=owner_id,
        )
    )
    return JobSubmittedResponse(job_id=job.id, status=job.status, steps=list(job.steps))


@router.get("/resume-jobs/{job_id}", response_model=JobStatusResponse)
@rate_limit()
async def get_resume_job(request: Request, job_id: str, owner_id: str = "anonymous"):
    runner = _runner(request)
    live = runner.get_active(job_id, owner_id)
    if live is not None:
        return JobStatusResponse(
            job_id=live.id,
            status=live.status,
            steps=list(live.steps),
            failed_stage=live.failed_stage,
            failure_reason=live.failure_reason,
            message=live.status_message,
            degradations=list(live.degradations),
            created_at=live.created_at,
            updated_at=live.updated_at,
        )

    stored = await runner.orchestrator.repository.load_status(job_id, owner_id)
    if stored is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found.")
    return JobStatusResponse(
        job_id=stored["id"],
        status=stored["status"],
        steps=stored.get("steps") or [],
        failed_stage=stored.get("failedStage"),
        failure_reason=stored.get("failureReason"),
        message=stored.get("message") or "",
        degradations=stored.get("degradations") or [],
        created_at=stored.get("createdAt"),
        updated_at=stored.get("updatedAt"),
    )


@router.get("/resume-jobs/{job_id}/result", response_model=JobResultResponse)
@rate_limit()
async def get_resume_job_result(request: Request, job_id: str, owner_id: str = "anonymous"):
    runner = _runner(request)
    repository = runner.orchestrator.repository
    stored_status = await repository.load_status(job_id, owner_id)
    if stored_status is None:
        live = runner.get_active(job_id, owner_id)
        if live is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found.")
        if not live.is_terminal:
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Job is still running.")
        stored_status = live.to_status_record()

    record = await repository.load_record(job_id, owner_id) or {}
    raw = None
    if stored_status.get("failureReason") == "malformed_analysis":
        raw = await repository.load_side(job_id, owner_id, "raw")

    return JobResultResponse(
        job_id=job_id,
        status=stored_status["status"],
        source_ref=record.get("sourceRef"),
        image_ref=record.get("imageRef"),
        company_name=record.get("companyName") or "",
        job_title=record.get("jobTitle") or "",
        job_description=record.get("jobDescription") or "",
        feedback=record.get("feedback", ""),
        extracted_text=await repository.load_side(job_id, owner_id, "text"),
        markdown_text=await repository.load_side(job_id, owner_id, "markdown"),
        raw_analysis_text=raw,
    )


@router.post("/resume-jobs/{job_id}/cancel", response_model=CancelJobResponse)
@rate_limit()
async def cancel_resume_job(request: Request, job_id: str, owner_id: str = "anonymous"):
    runner = _runner(request)
    if runner.cancel(job_id, owner_id):
        return CancelJobResponse(job_id=job_id, cancelled=True)

    stored = await runner.orchestrator.repository.load_status(job_id, owner_id)
    if stored is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Job not found.")
    return CancelJobResponse(job_id=job_id, cancelled=False)
