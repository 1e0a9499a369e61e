"""In-memory provider client for running the core without a real provider.

Unscripted jobs walk IN_QUEUE -> IN_PROGRESS -> COMPLETED with a placeholder
URL; translations are streamed word by word. Responses can be scripted per
job id and per source text, and every call is recorded.
"""

import asyncio
import logging
from collections import defaultdict, deque
from typing import Any, AsyncIterator, Deque, Dict, Iterable, List, Optional, Tuple, Union

from common.cancellation import CancellationToken
from common.clock import Clock
from common.schemas import (
    JobKind,
    JobStatusResult,
    ProviderJobStatus,
    SubmitJobResult,
    TranslationChunk,
)
from common.utils import JobIdUtils
from providers.base import ProviderClient

logger = logging.getLogger(__name__)

ScriptedResponse = Union[JobStatusResult, Exception]


class MockProviderClient(ProviderClient):
    """Scripted provider client with call recording."""

    def __init__(
        self,
        auto_complete_after: int = 3,
        chunk_delay: float = 0.0,
        clock: Optional[Clock] = None,
    ):
        """
        Initialize the mock client.

        Args:
            auto_complete_after: Checks after which an unscripted job completes
            chunk_delay: Seconds to wait before each translation chunk
            clock: Clock used for chunk delays (asyncio.sleep when None)
        """
        self.auto_complete_after = auto_complete_after
        self.chunk_delay = chunk_delay
        self._clock = clock
        self._scripts: Dict[str, Deque[ScriptedResponse]] = {}
        self._check_counts: Dict[str, int] = defaultdict(int)
        self._translations: Dict[str, str] = {}
        self._translation_errors: Dict[str, str] = {}
        self.submitted: List[Tuple[JobKind, str, Dict[str, Any]]] = []
        self.status_checks: List[str] = []
        self.translate_calls: List[str] = []

    def script_job(self, job_id: str, responses: Iterable[ScriptedResponse]) -> None:
        """
        Script status responses for a job.

        Responses are consumed in order; the last one repeats once the
        script runs out. Exceptions are raised from check_job_status().
        """
        self._scripts[job_id] = deque(responses)

    def set_translation(self, text: str, translated: str) -> None:
        self._translations[text] = translated

    def fail_translation(self, text: str, error: str) -> None:
        """Make translations of text stream one chunk and then an error chunk."""
        self._translation_errors[text] = error

    async def submit_job(
        self, kind: JobKind, prompt: str, params: Optional[Dict[str, Any]] = None
    ) -> SubmitJobResult:
        if not prompt or not prompt.strip():
            return SubmitJobResult(error="Prompt is required for generation requests")

        job_id = JobIdUtils.generate_correlation_id()
        self.submitted.append((JobKind(kind), prompt, dict(params or {})))
        logger.info(f"Mock mode: accepted {JobKind(kind).value} job {job_id}")
        return SubmitJobResult(job_id=job_id, message="Generation request submitted.")

    async def check_job_status(self, job_id: str, kind: JobKind) -> JobStatusResult:
        self.status_checks.append(job_id)
        self._check_counts[job_id] += 1

        script = self._scripts.get(job_id)
        if script:
            response = script.popleft() if len(script) > 1 else script[0]
            if isinstance(response, Exception):
                raise response
            return response

        count = self._check_counts[job_id]
        if count >= self.auto_complete_after:
            extension = "mp4" if JobKind(kind) == JobKind.VIDEO else "png"
            return JobStatusResult(
                status=ProviderJobStatus.COMPLETED.value,
                artifact_urls=[f"https://mock.local/{JobKind(kind).value}/{job_id}.{extension}"],
                message="Mock generation completed.",
            )
        if count == 1:
            return JobStatusResult(status=ProviderJobStatus.IN_QUEUE.value)
        return JobStatusResult(status=ProviderJobStatus.IN_PROGRESS.value)

    async def translate(
        self, text: str, target_language: str, cancel_token: CancellationToken
    ) -> AsyncIterator[TranslationChunk]:
        self.translate_calls.append(text)
        translated = self._translations.get(text, f"[{target_language}] {text}")
        words = translated.split()
        error = self._translation_errors.get(text)
        if error is not None:
            words = words[:1]

        for word in words:
            if not await self._pause(cancel_token):
                return
            yield TranslationChunk(text_delta=word + " ")

        if error is not None and not cancel_token.is_cancelled():
            yield TranslationChunk(error=error)

    async def _pause(self, cancel_token: CancellationToken) -> bool:
        if cancel_token.is_cancelled():
            return False
        if self.chunk_delay <= 0:
            await asyncio.sleep(0)
        elif self._clock is not None:
            await self._clock.sleep(self.chunk_delay, cancel_token)
        else:
            await asyncio.sleep(self.chunk_delay)
        return not cancel_token.is_cancelled()
