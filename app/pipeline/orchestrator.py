from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Iterable, TypeVar

from app.ai.types import LanguageModelClient, VisionClient
from app.core.config import settings
from app.pipeline.analysis import AnalysisCoordinator
from app.pipeline.converter import DocumentConverter
from app.pipeline.errors import (
    AnalysisFailed,
    CollaboratorError,
    ConversionFailed,
    ExtractionFailed,
    JobDescriptionExtractionFailed,
    MalformedAnalysis,
    PersistenceFailed,
    PipelineCancelled,
    PipelineError,
    UploadFailed,
)
from app.pipeline.jd_extractor import JobDescriptionExtractor
from app.pipeline.json_extract import extract_json
from app.pipeline.models import (
    BASE_STEPS,
    STEP_ANALYZE,
    STEP_CONVERT,
    STEP_EXTRACT_JD,
    STEP_EXTRACT_TEXT,
    STEP_PARSE,
    STEP_PERSIST,
    STEP_UPLOAD,
    Job,
    JobContext,
    JobStatus,
    ProgressStep,
    ResumeSubmission,
)
from app.pipeline.progress import ProgressObserver, StepTracker
from app.pipeline.repository import JobRepository
from app.pipeline.resilience import CancellationToken, RetryPolicies, call_with_policy
from app.pipeline.text_extractor import TextExtractor
from app.pipeline.uploads import UploadCoordinator
from app.storage.kv_store import KeyValueStore
from app.storage.object_store import ObjectStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RAW_PREVIEW_CHARS = 500

# Unexpected exceptions inside a stage are reported with that stage's failure type.
_STAGE_ERRORS: dict[str, Callable[[str], PipelineError]] = {
    STEP_EXTRACT_JD: JobDescriptionExtractionFailed,
    STEP_CONVERT: ConversionFailed,
    STEP_UPLOAD: lambda message: UploadFailed("both", message),
    STEP_EXTRACT_TEXT: ExtractionFailed,
    STEP_ANALYZE: AnalysisFailed,
    STEP_PARSE: lambda message: PipelineError(message, code="malformed_analysis"),
    STEP_PERSIST: PersistenceFailed,
}


def _merge_context(extracted: JobContext, submission: ResumeSubmission) -> JobContext:
    return JobContext(
        company_name=submission.company_name.strip() or extracted.company_name,
        job_title=submission.job_title.strip() or extracted.job_title,
        job_description=submission.job_description.strip() or extracted.job_description,
    )


class PipelineOrchestrator:
    """Runs one resume job through every stage, strictly in order.

    The first failing stage ends the run. The job keeps whatever was recorded
    so far, the failing step is marked ``error`` and the terminal status is
    written to ``job:{id}:status``.
    """

    def __init__(
        self,
        *,
        converter: DocumentConverter,
        uploads: UploadCoordinator,
        text_extractor: TextExtractor,
        analysis: AnalysisCoordinator,
        jd_extractor: JobDescriptionExtractor,
        repository: JobRepository,
        policies: RetryPolicies,
        allow_empty_text: bool | None = None,
    ):
        self._converter = converter
        self._uploads = uploads
        self._text_extractor = text_extractor
        self._analysis = analysis
        self._jd_extractor = jd_extractor
        self._repository = repository
        self._policies = policies
        self._allow_empty_text = (
            settings.allow_empty_extracted_text if allow_empty_text is None else allow_empty_text
        )

    @classmethod
    def build(
        cls,
        *,
        object_store: ObjectStore,
        kv_store: KeyValueStore,
        llm: LanguageModelClient,
        vision: VisionClient,
        policies: RetryPolicies | None = None,
        allow_empty_text: bool | None = None,
    ) -> "PipelineOrchestrator":
        policies = policies or RetryPolicies.from_settings()
        return cls(
            converter=DocumentConverter(),
            uploads=UploadCoordinator(object_store, policy=policies.storage),
            text_extractor=TextExtractor(
                object_store,
                vision,
                storage_policy=policies.storage,
                ocr_policy=policies.ocr,
            ),
            analysis=AnalysisCoordinator(llm, policy=policies.llm),
            jd_extractor=JobDescriptionExtractor(llm, policy=policies.llm),
            repository=JobRepository(kv_store, policy=policies.storage),
            policies=policies,
            allow_empty_text=allow_empty_text,
        )

    @property
    def repository(self) -> JobRepository:
        return self._repository

    def create_job(self, submission: ResumeSubmission) -> Job:
        names = ((STEP_EXTRACT_JD,) if submission.jd_file is not None else ()) + BASE_STEPS
        job = Job(
            owner_id=submission.owner_id,
            steps=tuple(ProgressStep(name=name) for name in names),
        )
        if submission.jd_file is None:
            job.set_context(
                JobContext(
                    company_name=submission.company_name.strip(),
                    job_title=submission.job_title.strip(),
                    job_description=submission.job_description.strip(),
                )
            )
        return job

    async def _stage(
        self,
        tracker: StepTracker,
        name: str,
        timings: dict[str, int],
        token: CancellationToken,
        work: Callable[[], Awaitable[T]],
    ) -> T:
        tracker.start(name)
        started = time.perf_counter()
        try:
            token.raise_if_cancelled()
            result = await work()
        except PipelineError as exc:
            tracker.fail(name)
            exc.stage = name
            raise
        except asyncio.CancelledError:
            tracker.fail(name)
            raise
        except Exception as exc:  # noqa: BLE001 - converted to the stage's failure type
            tracker.fail(name)
            logger.exception("pipeline_stage_crashed stage=%s", name)
            error = _STAGE_ERRORS[name](f"{name} failed unexpectedly: {exc}")
            error.stage = name
            raise error from exc
        finally:
            timings[name] = int((time.perf_counter() - started) * 1000)
        tracker.complete(name)
        return result

    async def run(
        self,
        job: Job,
        submission: ResumeSubmission,
        token: CancellationToken | None = None,
        observers: Iterable[ProgressObserver] = (),
    ) -> Job:
        token = token or CancellationToken()

        def _sync_steps(snapshot: tuple[ProgressStep, ...]) -> None:
            job.steps = snapshot
            job.touch()

        tracker = StepTracker([step.name for step in job.steps], observers=[_sync_steps, *observers])
        timings: dict[str, int] = {}
        job.status = "processing"
        job.touch()
        logger.info("pipeline_started job_id=%s steps=%s", job.id, len(job.steps))

        interrupted: asyncio.CancelledError | None = None
        try:
            await self._run_stages(job, submission, token, tracker, timings)
            final_status: JobStatus = "succeeded"
        except PipelineError as exc:
            final_status = self._mark_failed(job, exc, tracker)
        except asyncio.CancelledError as exc:
            interrupted = exc
            final_status = self._mark_failed(job, PipelineCancelled("Job was interrupted"), tracker)

        job.steps = tracker.snapshot()
        job.touch()
        # Readers see the terminal status only once it is stored. A successful
        # run already stored it in the persist step.
        if not (final_status == "succeeded" and job.status_persisted):
            try:
                await self._repository.save_status(job, status=final_status)
            except PersistenceFailed as exc:
                logger.error(
                    "pipeline_status_save_failed job_id=%s status=%s error=%s",
                    job.id,
                    final_status,
                    exc,
                )
        job.status = final_status

        logger.info(
            "pipeline_finished job_id=%s status=%s reason=%s timings_ms=%s",
            job.id,
            job.status,
            job.failure_reason,
            timings,
        )
        if interrupted is not None:
            raise interrupted
        return job

    def _mark_failed(self, job: Job, exc: PipelineError, tracker: StepTracker) -> JobStatus:
        status: JobStatus = "cancelled" if isinstance(exc, PipelineCancelled) else "failed"
        job.failed_stage = exc.stage or tracker.failed
        job.failure_reason = exc.code
        job.status_message = str(exc)
        log = logger.info if status == "cancelled" else logger.warning
        log(
            "pipeline_stage_failed job_id=%s stage=%s reason=%s message=%s",
            job.id,
            job.failed_stage,
            job.failure_reason,
            job.status_message,
        )
        return status

    async def _run_stages(
        self,
        job: Job,
        submission: ResumeSubmission,
        token: CancellationToken,
        tracker: StepTracker,
        timings: dict[str, int],
    ) -> None:
        if submission.jd_file is not None:
            jd_file = submission.jd_file

            async def _extract_jd() -> None:
                extracted = await self._jd_extractor.extract(jd_file, token)
                job.set_context(_merge_context(extracted, submission))

            await self._stage(tracker, STEP_EXTRACT_JD, timings, token, _extract_jd)

        resume = submission.resume

        async def _convert() -> bytes:
            try:
                return await call_with_policy(
                    lambda: self._converter.convert(resume.content, resume.extension),
                    policy=self._policies.convert,
                    token=token,
                    label="convert",
                )
            except CollaboratorError as exc:
                raise ConversionFailed(f"Document conversion did not finish: {exc}") from exc

        image = await self._stage(tracker, STEP_CONVERT, timings, token, _convert)

        async def _upload() -> None:
            result = await self._uploads.store(resume, image, job.owner_id, token)
            job.record_upload(result.original_ref, result.converted_ref)
            await self._repository.save_record(job, token)

        await self._stage(tracker, STEP_UPLOAD, timings, token, _upload)

        async def _extract_text() -> str:
            text = await self._text_extractor.extract_text(job.image_ref or "", token)
            if not text.strip() and not self._allow_empty_text:
                raise ExtractionFailed("No text could be extracted from the resume image")
            job.record_text(text)
            await self._repository.save_text(job, token)
            return text

        text = await self._stage(tracker, STEP_EXTRACT_TEXT, timings, token, _extract_text)

        async def _analyze() -> str:
            result = await self._analysis.analyze(text, job.context, token)
            if result.markdown_text is not None:
                job.record_markdown(result.markdown_text)
                await self._repository.save_markdown(job, token)
            if result.degraded is not None:
                job.degradations.append(result.degraded.branch)
                logger.info(
                    "pipeline_degraded job_id=%s branch=%s message=%s",
                    job.id,
                    result.degraded.branch,
                    result.degraded.message,
                )
            return result.feedback_text

        feedback_text = await self._stage(tracker, STEP_ANALYZE, timings, token, _analyze)

        async def _parse() -> Any:
            data = extract_json(feedback_text)
            if data is None:
                job.record_raw_analysis(feedback_text)
                try:
                    await self._repository.save_raw_analysis(job, token)
                except PersistenceFailed:
                    logger.warning(
                        "raw_analysis_unsaved job_id=%s chars=%s preview=%r",
                        job.id,
                        len(feedback_text),
                        feedback_text[:_RAW_PREVIEW_CHARS],
                    )
                    raise
                raise MalformedAnalysis(feedback_text)
            return data

        analysis = await self._stage(tracker, STEP_PARSE, timings, token, _parse)

        async def _persist() -> None:
            job.record_analysis(analysis)
            await self._repository.save_record(job, token)
            job.status_message = "Analysis complete"
            # The persist step is the last one, so the stored snapshot shows every step completed.
            finished = tuple(step.model_copy(update={"status": "completed"}) for step in tracker.snapshot())
            await self._repository.save_status(job, status="succeeded", steps=finished)

        await self._stage(tracker, STEP_PERSIST, timings, token, _persist)
