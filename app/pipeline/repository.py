from __future__ import annotations

import json
import logging
from typing import Any

from app.pipeline.errors import CollaboratorError, PersistenceFailed
from app.pipeline.models import Job, JobStatus, ProgressStep
from app.pipeline.resilience import CancellationToken, RetryPolicy, call_with_policy
from app.storage.kv_store import KeyValueStore

logger = logging.getLogger(__name__)


def job_key(job_id: str, suffix: str | None = None) -> str:
    return f"job:{job_id}:{suffix}" if suffix else f"job:{job_id}"


class JobRepository:
    """Job-scoped reads and writes on the key/value store.

    Every key is prefixed with the job id and written under the job's owner,
    so concurrent jobs never touch each other's entries.
    """

    def __init__(self, kv: KeyValueStore, *, policy: RetryPolicy):
        self._kv = kv
        self._policy = policy

    async def _set(self, key: str, value: str, owner: str, token: CancellationToken) -> None:
        try:
            await call_with_policy(
                lambda: self._kv.set(key, value, owner),
                policy=self._policy,
                token=token,
                label=f"kv set {key}",
            )
        except CollaboratorError as exc:
            raise PersistenceFailed(f"Failed to save '{key}': {exc}") from exc

    async def save_record(self, job: Job, token: CancellationToken) -> None:
        await self._set(job_key(job.id), json.dumps(job.to_record(), ensure_ascii=False), job.owner_id, token)

    async def save_text(self, job: Job, token: CancellationToken) -> None:
        await self._set(job_key(job.id, "text"), job.extracted_text or "", job.owner_id, token)

    async def save_markdown(self, job: Job, token: CancellationToken) -> None:
        await self._set(job_key(job.id, "markdown"), job.markdown_text or "", job.owner_id, token)

    async def save_raw_analysis(self, job: Job, token: CancellationToken) -> None:
        await self._set(job_key(job.id, "raw"), job.raw_analysis_text or "", job.owner_id, token)

    async def save_status(
        self,
        job: Job,
        status: JobStatus | None = None,
        steps: tuple[ProgressStep, ...] | None = None,
    ) -> None:
        # Terminal status must land even for cancelled jobs, so no token here.
        await self._set(
            job_key(job.id, "status"),
            json.dumps(job.to_status_record(status, steps), ensure_ascii=False),
            job.owner_id,
            CancellationToken(),
        )
        job.status_persisted = True

    async def _get(self, key: str, owner: str) -> str | None:
        return await self._kv.get(key, owner)

    async def load_record(self, job_id: str, owner: str) -> dict[str, Any] | None:
        value = await self._get(job_key(job_id), owner)
        return json.loads(value) if value else None

    async def load_status(self, job_id: str, owner: str) -> dict[str, Any] | None:
        value = await self._get(job_key(job_id, "status"), owner)
        return json.loads(value) if value else None

    async def load_side(self, job_id: str, owner: str, suffix: str) -> str | None:
        return await self._get(job_key(job_id, suffix), owner)
