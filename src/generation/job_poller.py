"""Polling of asynchronous generation jobs until they reach a terminal state."""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional

from common.cancellation import CancellationToken
from common.clock import AsyncioClock, Clock, Ticker
from common.config import PollingBudget, settings
from common.schemas import (
    ErrorKind,
    GenerationJob,
    GenerationResult,
    JobState,
    JobStatusResult,
    ProviderJobStatus,
    StatusUpdate,
)
from common.utils import DateTimeUtils, ResultUtils
from providers.base import ProviderClient, classify_provider_error

logger = logging.getLogger(__name__)

StatusSink = Callable[[StatusUpdate], Optional[Awaitable[None]]]

PROGRESS_STATUSES = frozenset(
    {ProviderJobStatus.IN_PROGRESS.value, ProviderJobStatus.IN_QUEUE.value}
)
COMPLETED_STATUSES = frozenset(
    {ProviderJobStatus.COMPLETED.value, ProviderJobStatus.COMPLETED_NO_IMAGE.value}
)


def is_transient_status(status: str) -> bool:
    """
    Determine if a provider status should be retried.

    Only NOT_FOUND is transient (the provider may not have registered the
    job yet). Every other non-progress status is terminal.

    Args:
        status: Provider status string

    Returns:
        True if polling should continue despite the status, False otherwise
    """
    return status == ProviderJobStatus.NOT_FOUND.value


class JobPoller:
    """
    Drives one GenerationJob from submission to a terminal state.

    Checks are strictly serial: the next check is scheduled only after the
    previous one returned. Exactly one StatusUpdate is emitted per check, and
    nothing is emitted after cancellation or a terminal state.

    Example:
        ```python
        poller = JobPoller(job, client, sink=on_status)
        poller.start()
        ...
        poller.cancel()
        ```
    """

    def __init__(
        self,
        job: GenerationJob,
        client: ProviderClient,
        sink: Optional[StatusSink] = None,
        clock: Optional[Clock] = None,
        budget: Optional[PollingBudget] = None,
    ):
        """
        Initialize the poller.

        Args:
            job: Job to drive; the poller takes exclusive ownership of it
            client: Provider client used for status checks
            sink: Callable receiving every StatusUpdate (sync or async)
            clock: Clock for the poll interval (event loop clock by default)
            budget: Polling budget override (settings for the job kind by default)
        """
        self._job = job
        self._client = client
        self._sink = sink
        self._clock = clock or AsyncioClock()
        self.budget = budget or settings.polling_budget(job.kind)
        self._token = CancellationToken(f"poll:{job.id}")
        self._ticker: Optional[Ticker] = None
        self._task: Optional[asyncio.Task] = None
        self._started = False

    @property
    def job_id(self) -> str:
        return self._job.id

    @property
    def state(self) -> JobState:
        return self._job.state

    @property
    def ticker(self) -> Optional[Ticker]:
        return self._ticker

    @property
    def task(self) -> Optional[asyncio.Task]:
        return self._task

    def snapshot(self) -> GenerationJob:
        """Return a deep copy of the job for readers outside the poller."""
        return self._job.model_copy(deep=True)

    def start(self) -> asyncio.Task:
        """
        Schedule run() on the running event loop.

        Returns:
            The polling task (the same task on repeated calls)
        """
        if self._task is None:
            self._task = asyncio.create_task(self.run(), name=f"poll-{self._job.id}")
        return self._task

    def cancel(self) -> bool:
        """
        Cancel polling.

        Stops the ticker immediately and moves the job to CANCELLED. A check
        already in flight completes, but its result is discarded.

        Returns:
            True if the job was cancelled, False if it was already terminal
        """
        if self._job.state.is_terminal:
            return False

        self._job.state = JobState.CANCELLED
        self._job.error_kind = ErrorKind.CANCELLED
        self._job.updated_at = DateTimeUtils.get_current_utc_datetime()
        self._token.cancel("job cancelled")
        logger.info(
            f"🛑 Cancelled {self._job.kind.value} job {self._job.id} "
            f"after {self._job.attempts} status checks"
        )
        return True

    async def run(self) -> GenerationJob:
        """
        Poll until the job reaches a terminal state.

        Returns:
            Snapshot of the job in its final state
        """
        if self._started:
            raise RuntimeError(f"Poller for job {self._job.id} already started")
        self._started = True

        if self._job.state.is_terminal:
            return self.snapshot()

        self._job.state = JobState.POLLING
        self._job.updated_at = DateTimeUtils.get_current_utc_datetime()
        logger.info(
            f"⏳ Polling {self._job.kind.value} job {self._job.id} "
            f"(interval: {self.budget.interval_seconds}s, "
            f"max attempts: {self.budget.max_attempts}, "
            f"max not found: {self.budget.max_not_found})"
        )

        self._ticker = self._clock.every(
            self.budget.interval_seconds, immediate=True, token=self._token
        )
        try:
            async for _ in self._ticker:
                await self._check_once()
                if self._job.state.is_terminal:
                    break
        finally:
            self._ticker.stop()

        return self.snapshot()

    async def _check_once(self) -> None:
        job = self._job
        job.attempts += 1

        try:
            response = await self._client.check_job_status(job.id, job.kind)
        except Exception as e:
            if self._token.is_cancelled():
                logger.debug(f"Discarding failed check for cancelled job {job.id}: {e}")
                return
            error_kind = classify_provider_error(e)
            logger.error(
                f"❌ Status check {job.attempts} failed for job {job.id}: {e}",
                exc_info=True,
            )
            await self._finish(
                JobState.FAILED,
                f"Status check failed: {e}",
                error=str(e) or type(e).__name__,
                error_kind=error_kind,
            )
            return

        if self._token.is_cancelled():
            logger.debug(
                f"Discarding {response.status} result for cancelled job {job.id}"
            )
            return

        await self._apply(response)

    async def _apply(self, response: JobStatusResult) -> None:
        job = self._job
        status = response.status
        label = job.kind.value.capitalize()

        if status in COMPLETED_STATUSES:
            urls = []
            if status == ProviderJobStatus.COMPLETED.value:
                urls = ResultUtils.extract_artifact_urls(
                    response.artifact_urls, response.result
                )
            job.result = GenerationResult(artifact_urls=urls, raw=response.result)
            if urls:
                await self._finish(
                    JobState.COMPLETED,
                    response.message or f"{label} generation completed",
                )
            else:
                await self._finish(
                    JobState.COMPLETED_EMPTY,
                    f"{label} generation completed without any result",
                    error=response.error
                    or "Provider result did not contain any artifact URLs",
                )
            return

        if status in PROGRESS_STATUSES:
            job.not_found_streak = 0
            verb = "queued" if status == ProviderJobStatus.IN_QUEUE.value else "in progress"
            await self._progress(
                f"{label} generation {verb} "
                f"(check {job.attempts}/{self.budget.max_attempts})"
            )
            return

        if is_transient_status(status):
            job.not_found_streak += 1
            if job.not_found_streak > self.budget.max_not_found:
                message = f"Job not found after {job.not_found_streak} attempts"
                logger.warning(f"⚠️  {message}: {job.id}")
                await self._finish(
                    JobState.FAILED,
                    message,
                    error=message,
                    error_kind=ErrorKind.TRANSIENT_NOT_FOUND,
                )
                return
            await self._progress(
                f"{label} job not found yet, retrying "
                f"({job.not_found_streak}/{self.budget.max_not_found})"
            )
            return

        error_kind = (
            ErrorKind.NETWORK_ERROR
            if status == ProviderJobStatus.NETWORK_ERROR.value
            else ErrorKind.PROVIDER_ERROR
        )
        error = response.error or f"Unexpected provider status: {status}"
        logger.error(f"❌ Job {job.id} failed with status {status}: {error}")
        await self._finish(
            JobState.FAILED,
            response.message or f"{label} generation failed",
            error=error,
            error_kind=error_kind,
        )

    async def _progress(self, message: str) -> None:
        if self._job.attempts >= self.budget.max_attempts:
            await self._finish(
                JobState.TIMED_OUT,
                f"{self._job.kind.value.capitalize()} generation timed out "
                f"after {self._job.attempts} status checks",
                error="Polling budget exhausted before the job finished",
                error_kind=ErrorKind.TIMEOUT,
            )
            return

        logger.debug(f"Job {self._job.id}: {message}")
        await self._emit(message)

    async def _finish(
        self,
        state: JobState,
        message: str,
        error: Optional[str] = None,
        error_kind: Optional[ErrorKind] = None,
    ) -> None:
        job = self._job
        if job.state.is_terminal:
            logger.warning(
                f"⚠️  Ignoring transition of job {job.id} to {state.value}: "
                f"already {job.state.value}"
            )
            return

        job.state = state
        job.updated_at = DateTimeUtils.get_current_utc_datetime()
        if error:
            job.last_error = error
        if error_kind:
            job.error_kind = error_kind
        if self._ticker is not None:
            self._ticker.stop()

        if state == JobState.COMPLETED:
            logger.info(
                f"✅ Job {job.id} completed after {job.attempts} checks "
                f"({len(job.result.artifact_urls)} artifacts)"
            )
        else:
            logger.info(f"Job {job.id} finished as {state.value}: {message}")

        await self._emit(message, error=error, error_kind=error_kind)

    async def _emit(
        self,
        message: str,
        error: Optional[str] = None,
        error_kind: Optional[ErrorKind] = None,
    ) -> None:
        if self._sink is None:
            return

        job = self._job
        update = StatusUpdate(
            job_id=job.id,
            kind=job.kind,
            prompt=job.prompt,
            state=job.state,
            attempts=job.attempts,
            message=message,
            result_urls=list(job.result.artifact_urls) if job.result else None,
            error=error,
            error_kind=error_kind,
        )
        try:
            result = self._sink(update)
            if inspect.isawaitable(result):
                await result
        except Exception as e:
            logger.error(
                f"❌ Status sink raised for job {job.id}: {e}", exc_info=True
            )
