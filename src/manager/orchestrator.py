"""Orchestrator facade used by the chat UI for generation jobs and live translation."""

import asyncio
from collections import OrderedDict
from typing import Any, Callable, Dict, List, Optional, Union

from common.clock import AsyncioClock, Clock
from common.config import settings
from common.logging_config import setup_service_logging
from common.schemas import (
    GenerationJob,
    JobKind,
    SessionSnapshot,
    StatusUpdate,
    TranscriptUpdate,
    TranslationUpdate,
)
from generation.job_poller import JobPoller
from manager.event_hub import EventHub, EventTopic
from providers.base import ProviderClient
from translator.translation_session import TranslationSession

service_logger = setup_service_logging("orchestrator")
logger = service_logger.logger


class JobSubmissionError(Exception):
    """The provider refused or failed to accept a generation request."""

    def __init__(self, kind: JobKind, message: str):
        self.kind = kind
        super().__init__(message)


class ChatOrchestrator:
    """
    Entry point for the UI collaborator.

    Owns the registry of active job pollers and the live translation session.
    It only reads snapshots and relays callbacks; job and session state are
    mutated exclusively by their poller/session.
    """

    def __init__(
        self,
        client: ProviderClient,
        clock: Optional[Clock] = None,
        event_hub: Optional[EventHub] = None,
        target_language: Optional[str] = None,
        finished_history: Optional[int] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            client: Provider client shared by pollers and the translation session
            clock: Clock for poll intervals and debounce timers
            event_hub: Event hub for subscriptions (a private one by default)
            target_language: Translation target language (settings by default)
            finished_history: Finished job snapshots kept for get_job()
                (settings.finished_job_history by default)
        """
        self.client = client
        self._clock = clock or AsyncioClock()
        self.events = event_hub or EventHub()
        self._pollers: Dict[str, JobPoller] = {}
        self.finished_history = finished_history or settings.finished_job_history
        self._finished: "OrderedDict[str, GenerationJob]" = OrderedDict()
        self._session = TranslationSession(
            client,
            on_transcript=self._publish_transcript,
            on_translation=self._publish_translation,
            clock=self._clock,
            target_language=target_language,
        )

    # Subscriptions

    def subscribe_status(
        self, callback: Callable[[StatusUpdate], Any]
    ) -> Callable[[], None]:
        return self.events.subscribe(EventTopic.JOB_STATUS, callback)

    def subscribe_transcript(
        self, callback: Callable[[TranscriptUpdate], Any]
    ) -> Callable[[], None]:
        return self.events.subscribe(EventTopic.TRANSCRIPT_UPDATED, callback)

    def subscribe_translation(
        self, callback: Callable[[TranslationUpdate], Any]
    ) -> Callable[[], None]:
        return self.events.subscribe(EventTopic.TRANSLATION_UPDATED, callback)

    # Generation jobs

    async def start_generation_job(
        self,
        kind: Union[JobKind, str],
        prompt: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> str:
        """
        Submit a generation request and start polling it.

        Args:
            kind: Job kind (image or video)
            prompt: Generation prompt
            params: Provider-specific parameters

        Returns:
            Provider-assigned job id

        Raises:
            JobSubmissionError: If the provider did not accept the request
        """
        kind = JobKind(kind)
        params = dict(params or {})

        try:
            submission = await self.client.submit_job(kind, prompt, params)
        except Exception as e:
            logger.error(f"❌ Failed to submit {kind.value} job: {e}", exc_info=True)
            raise JobSubmissionError(kind, f"Submission failed: {e}") from e

        if submission.error or not submission.job_id:
            message = submission.error or "Provider did not return a job id"
            logger.error(f"❌ Provider refused {kind.value} job: {message}")
            raise JobSubmissionError(kind, message)

        job = GenerationJob(id=submission.job_id, kind=kind, prompt=prompt, params=params)
        poller = JobPoller(job, self.client, sink=self._publish_status, clock=self._clock)
        self._pollers[job.id] = poller

        task = poller.start()
        task.add_done_callback(lambda t, job_id=job.id: self._on_poller_done(job_id, t))

        service_logger.bind(job_id=job.id, kind=kind.value).info("🚀 Started polling")
        return job.id

    def cancel_generation_job(self, job_id: str) -> bool:
        """
        Cancel polling for a job.

        Returns:
            True if the job was active and is now cancelled, False otherwise
        """
        poller = self._pollers.pop(job_id, None)
        if poller is None:
            service_logger.bind(job_id=job_id).warning(
                "Cancel requested for unknown or finished job"
            )
            return False

        cancelled = poller.cancel()
        self._remember_finished(poller.snapshot())
        return cancelled

    def get_job(self, job_id: str) -> Optional[GenerationJob]:
        """Return a snapshot of an active or finished job."""
        poller = self._pollers.get(job_id)
        if poller is not None:
            return poller.snapshot()
        job = self._finished.get(job_id)
        return job.model_copy(deep=True) if job else None

    def active_job_ids(self) -> List[str]:
        return list(self._pollers)

    async def wait_for_job(self, job_id: str) -> Optional[GenerationJob]:
        """Wait for a job's poller to finish and return its final snapshot."""
        poller = self._pollers.get(job_id)
        if poller is not None and poller.task is not None:
            await asyncio.wait({poller.task})
        return self.get_job(job_id)

    # Live translation

    def feed_interim_speech(self, text: str) -> None:
        self._session.on_interim_result(text)

    def feed_final_speech(self, text: str) -> None:
        self._session.on_final_result(text)

    def end_speech_session(self) -> None:
        self._session.on_recognition_ended()

    def reset_translation_session(self) -> None:
        self._session.reset()

    def translation_snapshot(self) -> SessionSnapshot:
        return self._session.snapshot()

    async def wait_for_translation(self) -> None:
        await self._session.wait_until_idle()

    async def aclose(self) -> None:
        """Cancel every active job, reset the translation session and wait for pollers."""
        tasks = [poller.task for poller in self._pollers.values() if poller.task]
        for job_id in list(self._pollers):
            self.cancel_generation_job(job_id)
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        await self._session.aclose()
        await self.events.drain()
        logger.info("✅ Orchestrator closed")

    # Internal

    def _publish_status(self, update: StatusUpdate) -> None:
        self.events.publish(EventTopic.JOB_STATUS, update)

    def _publish_transcript(self, update: TranscriptUpdate) -> None:
        self.events.publish(EventTopic.TRANSCRIPT_UPDATED, update)

    def _publish_translation(self, update: TranslationUpdate) -> None:
        self.events.publish(EventTopic.TRANSLATION_UPDATED, update)

    def _remember_finished(self, job: GenerationJob) -> None:
        self._finished[job.id] = job
        self._finished.move_to_end(job.id)
        while len(self._finished) > self.finished_history:
            evicted_id, _ = self._finished.popitem(last=False)
            logger.debug(f"Evicted finished job {evicted_id} from history")

    def _on_poller_done(self, job_id: str, task: asyncio.Task) -> None:
        poller = self._pollers.pop(job_id, None)
        if poller is not None:
            self._remember_finished(poller.snapshot())
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            service_logger.bind(job_id=job_id).error(
                f"❌ Poller crashed: {error}", exc_info=error
            )
