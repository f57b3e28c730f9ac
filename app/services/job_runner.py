from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from app.pipeline.models import Job, ResumeSubmission
from app.pipeline.orchestrator import PipelineOrchestrator
from app.pipeline.resilience import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class _ActiveJob:
    job: Job
    token: CancellationToken
    task: asyncio.Task | None = field(default=None)


class JobRunner:
    """Runs pipeline jobs as background tasks on the current event loop.

    In-flight jobs are held in memory; once a run finishes its terminal
    status lives in the key/value store. A finished job whose status could
    not be stored stays in memory so it is still visible to readers.
    """

    def __init__(self, orchestrator: PipelineOrchestrator):
        self._orchestrator = orchestrator
        self._active: dict[str, _ActiveJob] = {}

    @property
    def orchestrator(self) -> PipelineOrchestrator:
        return self._orchestrator

    def submit(self, submission: ResumeSubmission) -> Job:
        job = self._orchestrator.create_job(submission)
        entry = _ActiveJob(job=job, token=CancellationToken())
        self._active[job.id] = entry
        entry.task = asyncio.create_task(self._run(entry, submission), name=f"resume-job-{job.id}")
        logger.info("job_submitted job_id=%s owner=%s steps=%s", job.id, job.owner_id, len(job.steps))
        return job

    async def _run(self, entry: _ActiveJob, submission: ResumeSubmission) -> None:
        try:
            await self._orchestrator.run(entry.job, submission, entry.token)
        except asyncio.CancelledError:
            logger.info("job_interrupted job_id=%s", entry.job.id)
            raise
        except Exception:  # noqa: BLE001 - a crashed job must not take the loop down
            logger.exception("job_crashed job_id=%s", entry.job.id)
        finally:
            job = entry.job
            if job.is_terminal and not job.status_persisted:
                # The store never took the terminal status; keep serving it from memory.
                logger.warning("job_status_held_in_memory job_id=%s status=%s", job.id, job.status)
            else:
                self._active.pop(job.id, None)

    def get_active(self, job_id: str, owner_id: str) -> Job | None:
        entry = self._active.get(job_id)
        if entry is None or entry.job.owner_id != owner_id:
            return None
        return entry.job

    def cancel(self, job_id: str, owner_id: str, reason: str = "Cancelled by user") -> bool:
        entry = self._active.get(job_id)
        if entry is None or entry.job.owner_id != owner_id or entry.job.is_terminal:
            return False
        entry.token.cancel(reason)
        logger.info("job_cancel_requested job_id=%s", job_id)
        return True

    async def wait(self, job_id: str) -> None:
        entry = self._active.get(job_id)
        if entry is not None and entry.task is not None:
            await asyncio.gather(entry.task, return_exceptions=True)

    async def shutdown(self, timeout_s: float = 10.0) -> None:
        entries = [entry for entry in self._active.values() if entry.task is not None and not entry.task.done()]
        if not entries:
            return
        for entry in entries:
            entry.token.cancel("Service is shutting down")
        tasks = [entry.task for entry in entries]
        _, pending = await asyncio.wait(tasks, timeout=timeout_s)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        logger.info("job_runner_shutdown cancelled=%s forced=%s", len(entries), len(pending))
