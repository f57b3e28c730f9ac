from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from app.core.config import RetrySettings, settings
from app.pipeline.errors import TRANSIENT_ERRORS, CallTimedOut, PipelineCancelled

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    attempts: int = 1
    backoff_initial_s: float = 0.0
    backoff_max_s: float = 0.0
    timeout_s: float = 0.0

    @classmethod
    def from_settings(cls, value: RetrySettings) -> "RetryPolicy":
        return cls(
            attempts=value.attempts,
            backoff_initial_s=value.backoff_initial_s,
            backoff_max_s=value.backoff_max_s,
            timeout_s=value.timeout_s,
        )


@dataclass(frozen=True)
class RetryPolicies:
    convert: RetryPolicy = RetryPolicy()
    storage: RetryPolicy = RetryPolicy()
    ocr: RetryPolicy = RetryPolicy()
    llm: RetryPolicy = RetryPolicy()

    @classmethod
    def from_settings(cls) -> "RetryPolicies":
        return cls(
            convert=RetryPolicy.from_settings(settings.convert_retry),
            storage=RetryPolicy.from_settings(settings.storage_retry),
            ocr=RetryPolicy.from_settings(settings.ocr_retry),
            llm=RetryPolicy.from_settings(settings.llm_retry),
        )


class CancellationToken:
    """Cooperative cancellation shared by every suspension point of one job."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason = "Job was cancelled"

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        if reason:
            self._reason = reason
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise PipelineCancelled(self._reason)

    async def run(self, awaitable: Awaitable[T]) -> T:
        """Await ``awaitable`` unless the token trips first, then cancel it."""
        if self._event.is_set():
            if asyncio.iscoroutine(awaitable):
                awaitable.close()
            raise PipelineCancelled(self._reason)
        task = asyncio.ensure_future(awaitable)
        waiter = asyncio.ensure_future(self._event.wait())
        try:
            done, _ = await asyncio.wait({task, waiter}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            task.cancel()
            await asyncio.wait({task})
            raise
        finally:
            waiter.cancel()

        if task in done:
            return task.result()

        task.cancel()
        await asyncio.wait({task})
        if not task.cancelled() and task.exception() is not None:
            logger.debug("cancelled_call_raised error=%s", task.exception())
        raise PipelineCancelled(self._reason)

    async def sleep(self, seconds: float) -> None:
        self.raise_if_cancelled()
        if seconds <= 0:
            return
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return
        raise PipelineCancelled(self._reason)


async def _with_timeout(awaitable: Awaitable[T], timeout_s: float, label: str) -> T:
    if timeout_s <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_s)
    except asyncio.TimeoutError as exc:
        raise CallTimedOut(label, timeout_s) from exc


async def call_with_policy(
    operation: Callable[[], Awaitable[T]],
    *,
    policy: RetryPolicy,
    token: CancellationToken,
    label: str,
) -> T:
    """Run ``operation`` with bounded retries, exponential backoff and cancellation.

    Only transient collaborator errors (service unavailable, rate limited,
    store unavailable, per-attempt timeout) are retried. The last error is
    re-raised once attempts are exhausted.
    """
    retrying = AsyncRetrying(
        stop=stop_after_attempt(max(1, policy.attempts)),
        wait=wait_exponential(multiplier=policy.backoff_initial_s, max=policy.backoff_max_s),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        before_sleep=before_sleep_log(logger, logging.INFO),
        sleep=token.sleep,
        reraise=True,
    )
    async for attempt in retrying:
        with attempt:
            token.raise_if_cancelled()
            result = await token.run(_with_timeout(operation(), policy.timeout_s, label))
    return result
