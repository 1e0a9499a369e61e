"""Unit tests for JobPoller state machine and polling budgets."""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

from common.config import PollingBudget
from common.schemas import (
    ErrorKind,
    GenerationJob,
    JobKind,
    JobState,
    JobStatusResult,
    ProviderJobStatus,
)
from generation.job_poller import JobPoller, is_transient_status
from providers.base import ProviderNetworkError, TranslationStreamError, classify_provider_error


def make_status(value: ProviderJobStatus, **kwargs) -> JobStatusResult:
    return JobStatusResult(status=value.value, **kwargs)


def make_job(kind: JobKind = JobKind.IMAGE, job_id: str = "job-1") -> GenerationJob:
    return GenerationJob(id=job_id, kind=kind, prompt="a red fox in snow")


def make_poller(job, client, clock, budget, updates):
    return JobPoller(job, client, sink=updates.append, clock=clock, budget=budget)


class TestStatusClassification:
    """Test cases for status and error classification."""

    def test_only_not_found_is_transient(self):
        """Should retry NOT_FOUND and nothing else."""
        assert is_transient_status("NOT_FOUND") is True
        for value in ("ERROR", "COMPLETED", "IN_PROGRESS", "PROXY_REQUEST_ERROR", "WEIRD"):
            assert is_transient_status(value) is False

    def test_classifies_transport_errors_as_network_errors(self):
        """Should map transport exceptions to NETWORK_ERROR."""
        assert classify_provider_error(ProviderNetworkError("dns")) == ErrorKind.NETWORK_ERROR
        assert classify_provider_error(ConnectionError("reset")) == ErrorKind.NETWORK_ERROR
        assert classify_provider_error(asyncio.TimeoutError()) == ErrorKind.NETWORK_ERROR

    def test_classifies_other_errors_as_provider_errors(self):
        """Should map anything else to PROVIDER_ERROR."""
        assert classify_provider_error(ValueError("bad json")) == ErrorKind.PROVIDER_ERROR

    def test_classifies_broken_streams(self):
        """Should map translation stream failures to STREAM_ERROR."""
        assert classify_provider_error(TranslationStreamError("cut")) == ErrorKind.STREAM_ERROR


@pytest.mark.unit
@pytest.mark.asyncio
class TestJobPollerCompletion:
    """Test cases for successful and empty completion."""

    async def test_completes_after_three_progress_checks(self, manual_clock, image_budget):
        """Image job: 3x IN_PROGRESS then COMPLETED yields exactly 4 updates."""
        # Arrange
        client = MagicMock()
        client.check_job_status = AsyncMock(
            side_effect=[
                make_status(ProviderJobStatus.IN_PROGRESS),
                make_status(ProviderJobStatus.IN_PROGRESS),
                make_status(ProviderJobStatus.IN_PROGRESS),
                make_status(
                    ProviderJobStatus.COMPLETED,
                    artifact_urls=["https://cdn.example.com/fox.png"],
                ),
            ]
        )
        updates = []
        poller = make_poller(make_job(), client, manual_clock, image_budget, updates)

        # Act
        task = poller.start()
        await manual_clock.advance(3.0 * 3)
        job = await task

        # Assert
        assert job.state == JobState.COMPLETED
        assert job.result.artifact_urls == ["https://cdn.example.com/fox.png"]
        assert len(updates) == 4
        assert [u.attempts for u in updates] == [1, 2, 3, 4]
        assert [u.state for u in updates[:3]] == [JobState.POLLING] * 3
        assert updates[-1].state == JobState.COMPLETED
        assert updates[-1].result_urls == ["https://cdn.example.com/fox.png"]
        assert client.check_job_status.await_count == 4

    async def test_first_check_is_immediate(self, manual_clock, image_budget):
        """Should check once before any interval elapses."""
        # Arrange
        client = MagicMock()
        client.check_job_status = AsyncMock(return_value=make_status(ProviderJobStatus.IN_QUEUE))
        updates = []
        poller = make_poller(make_job(), client, manual_clock, image_budget, updates)

        # Act
        poller.start()
        await manual_clock.settle()

        # Assert
        assert client.check_job_status.await_count == 1
        assert "queued" in updates[0].message

        # Checks are spaced by the interval
        await manual_clock.advance(2.9)
        assert client.check_job_status.await_count == 1
        await manual_clock.advance(0.2)
        assert client.check_job_status.await_count == 2
        poller.cancel()
        await manual_clock.settle()

    async def test_completed_without_artifacts_is_completed_empty(
        self, manual_clock, image_budget
    ):
        """COMPLETED without any URL should end in COMPLETED_EMPTY."""
        # Arrange
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.COMPLETED, result={"images": []})
        )
        updates = []
        poller = make_poller(make_job(), client, manual_clock, image_budget, updates)

        # Act
        job = await poller.run()

        # Assert
        assert job.state == JobState.COMPLETED_EMPTY
        assert job.last_error
        assert len(updates) == 1
        assert updates[0].state == JobState.COMPLETED_EMPTY

    async def test_completed_no_image_status_is_completed_empty(
        self, manual_clock, image_budget
    ):
        """COMPLETED_NO_IMAGE should end in COMPLETED_EMPTY."""
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(
                ProviderJobStatus.COMPLETED_NO_IMAGE, error="no image url"
            )
        )
        poller = make_poller(make_job(), client, manual_clock, image_budget, [])

        job = await poller.run()

        assert job.state == JobState.COMPLETED_EMPTY
        assert job.last_error == "no image url"

    async def test_extracts_urls_from_raw_video_result(self, manual_clock, video_budget):
        """Should fall back to the raw payload when no URLs were extracted by the client."""
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(
                ProviderJobStatus.COMPLETED,
                result={"video": {"url": "https://cdn.example.com/clip.mp4"}},
            )
        )
        poller = make_poller(
            make_job(JobKind.VIDEO), client, manual_clock, video_budget, []
        )

        job = await poller.run()

        assert job.state == JobState.COMPLETED
        assert job.result.artifact_urls == ["https://cdn.example.com/clip.mp4"]


@pytest.mark.unit
@pytest.mark.asyncio
class TestJobPollerNotFound:
    """Test cases for NOT_FOUND handling."""

    async def test_video_fails_at_sixteenth_consecutive_not_found(
        self, manual_clock, video_budget
    ):
        """16 consecutive NOT_FOUND should fail the video job on the 16th check."""
        # Arrange
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.NOT_FOUND)
        )
        updates = []
        poller = make_poller(
            make_job(JobKind.VIDEO), client, manual_clock, video_budget, updates
        )

        # Act
        task = poller.start()
        await manual_clock.advance(5.0 * 20)
        job = await task

        # Assert
        assert job.state == JobState.FAILED
        assert job.attempts == 16
        assert job.not_found_streak == 16
        assert job.error_kind == ErrorKind.TRANSIENT_NOT_FOUND
        assert "not found after 16 attempts" in job.last_error.lower()
        assert client.check_job_status.await_count == 16
        assert len(updates) == 16
        assert updates[-1].state == JobState.FAILED

    async def test_image_fails_at_thirteenth_consecutive_not_found(
        self, manual_clock, image_budget
    ):
        """Image threshold is 12: the 13th consecutive NOT_FOUND fails the job."""
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.NOT_FOUND)
        )
        poller = make_poller(make_job(), client, manual_clock, image_budget, [])

        task = poller.start()
        await manual_clock.advance(3.0 * 20)
        job = await task

        assert job.state == JobState.FAILED
        assert job.attempts == 13

    async def test_streak_resets_on_progress_status(self, manual_clock, image_budget):
        """Any non-NOT_FOUND status should reset the not-found streak."""
        # Arrange
        responses = (
            [make_status(ProviderJobStatus.NOT_FOUND)] * 12
            + [make_status(ProviderJobStatus.IN_QUEUE)]
            + [make_status(ProviderJobStatus.NOT_FOUND)] * 12
            + [make_status(ProviderJobStatus.COMPLETED, artifact_urls=["u"])]
        )
        client = MagicMock()
        client.check_job_status = AsyncMock(side_effect=responses)
        updates = []
        poller = make_poller(make_job(), client, manual_clock, image_budget, updates)

        # Act
        task = poller.start()
        await manual_clock.advance(3.0 * 30)
        job = await task

        # Assert
        assert job.state == JobState.COMPLETED
        assert job.attempts == 26
        assert job.not_found_streak == 12
        assert updates[12].state == JobState.POLLING


@pytest.mark.unit
@pytest.mark.asyncio
class TestJobPollerFailures:
    """Test cases for terminal failures and timeouts."""

    async def test_error_status_fails_immediately(self, manual_clock, image_budget):
        """ERROR should fail the job without retrying."""
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.ERROR, error="NSFW content")
        )
        updates = []
        poller = make_poller(make_job(), client, manual_clock, image_budget, updates)

        job = await poller.run()

        assert job.state == JobState.FAILED
        assert job.last_error == "NSFW content"
        assert job.error_kind == ErrorKind.PROVIDER_ERROR
        assert client.check_job_status.await_count == 1
        assert updates[0].error == "NSFW content"
        assert updates[0].prompt == "a red fox in snow"

    async def test_unknown_status_fails_immediately(self, manual_clock, image_budget):
        """Unknown statuses are terminal."""
        client = MagicMock()
        client.check_job_status = AsyncMock(return_value=JobStatusResult(status="PAUSED"))
        poller = make_poller(make_job(), client, manual_clock, image_budget, [])

        job = await poller.run()

        assert job.state == JobState.FAILED
        assert "PAUSED" in job.last_error

    async def test_network_error_status_is_not_retried(self, manual_clock, image_budget):
        """NETWORK_ERROR reported by the client should fail as a network error."""
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.NETWORK_ERROR, error="offline")
        )
        poller = make_poller(make_job(), client, manual_clock, image_budget, [])

        job = await poller.run()

        assert job.state == JobState.FAILED
        assert job.error_kind == ErrorKind.NETWORK_ERROR
        assert client.check_job_status.await_count == 1

    async def test_raised_exception_fails_without_escaping(
        self, manual_clock, image_budget
    ):
        """Exceptions from the client become a FAILED state, not a crash."""
        client = MagicMock()
        client.check_job_status = AsyncMock(side_effect=ProviderNetworkError("timeout"))
        updates = []
        poller = make_poller(make_job(), client, manual_clock, image_budget, updates)

        job = await poller.run()

        assert job.state == JobState.FAILED
        assert job.error_kind == ErrorKind.NETWORK_ERROR
        assert len(updates) == 1
        assert updates[0].state == JobState.FAILED

    async def test_image_times_out_after_thirty_checks(self, manual_clock, image_budget):
        """Image job never exceeds 30 checks and ends TIMED_OUT."""
        # Arrange
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.IN_PROGRESS)
        )
        updates = []
        poller = make_poller(make_job(), client, manual_clock, image_budget, updates)

        # Act
        task = poller.start()
        await manual_clock.advance(3.0 * 40)
        job = await task

        # Assert
        assert job.state == JobState.TIMED_OUT
        assert job.error_kind == ErrorKind.TIMEOUT
        assert client.check_job_status.await_count == 30
        assert len(updates) == 30
        assert updates[-1].state == JobState.TIMED_OUT
        assert manual_clock.pending_timers == []

    async def test_video_times_out_after_sixty_checks(self, manual_clock, video_budget):
        """Video job never exceeds 60 checks."""
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.IN_QUEUE)
        )
        poller = make_poller(make_job(JobKind.VIDEO), client, manual_clock, video_budget, [])

        task = poller.start()
        await manual_clock.advance(5.0 * 70)
        job = await task

        assert job.state == JobState.TIMED_OUT
        assert client.check_job_status.await_count == 60

    async def test_sink_errors_do_not_stop_polling(self, manual_clock):
        """A failing sink is logged and polling continues."""
        client = MagicMock()
        client.check_job_status = AsyncMock(
            side_effect=[
                make_status(ProviderJobStatus.IN_PROGRESS),
                make_status(ProviderJobStatus.COMPLETED, artifact_urls=["u"]),
            ]
        )
        sink = MagicMock(side_effect=RuntimeError("ui crashed"))
        poller = JobPoller(
            make_job(),
            client,
            sink=sink,
            clock=manual_clock,
            budget=PollingBudget(interval_seconds=1.0, max_attempts=5, max_not_found=2),
        )

        task = poller.start()
        await manual_clock.advance(1.0)
        job = await task

        assert job.state == JobState.COMPLETED
        assert sink.call_count == 2

    async def test_async_sink_is_awaited(self, manual_clock, image_budget):
        """Async sinks should be awaited for each update."""
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.COMPLETED, artifact_urls=["u"])
        )
        sink = AsyncMock()
        poller = JobPoller(make_job(), client, sink=sink, clock=manual_clock, budget=image_budget)

        await poller.run()

        sink.assert_awaited_once()


@pytest.mark.unit
@pytest.mark.asyncio
class TestJobPollerCancellation:
    """Test cases for cancellation."""

    async def test_cancel_stops_ticker_and_updates(self, manual_clock, image_budget):
        """Cancelling mid-poll emits nothing further and leaves no pending timer."""
        # Arrange
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.IN_PROGRESS)
        )
        updates = []
        poller = make_poller(make_job(), client, manual_clock, image_budget, updates)
        task = poller.start()
        await manual_clock.advance(3.0)
        assert len(updates) == 2

        # Act
        assert poller.cancel() is True
        await manual_clock.advance(30.0)
        job = await task

        # Assert
        assert job.state == JobState.CANCELLED
        assert len(updates) == 2
        assert client.check_job_status.await_count == 2
        assert poller.ticker.active is False
        assert manual_clock.pending_timers == []

    async def test_cancel_discards_in_flight_result(self, manual_clock, image_budget):
        """A check that returns after cancellation must not change the job."""
        # Arrange
        gate = asyncio.Event()

        async def slow_check(job_id, kind):
            await gate.wait()
            return make_status(ProviderJobStatus.COMPLETED, artifact_urls=["late"])

        client = MagicMock()
        client.check_job_status = slow_check
        updates = []
        poller = make_poller(make_job(), client, manual_clock, image_budget, updates)
        task = poller.start()
        await manual_clock.settle()

        # Act
        poller.cancel()
        gate.set()
        job = await task

        # Assert
        assert job.state == JobState.CANCELLED
        assert job.result is None
        assert updates == []

    async def test_cancel_after_terminal_is_refused(self, manual_clock, image_budget):
        """Terminal states are never exited."""
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.COMPLETED, artifact_urls=["u"])
        )
        poller = make_poller(make_job(), client, manual_clock, image_budget, [])
        await poller.run()

        assert poller.cancel() is False
        assert poller.state == JobState.COMPLETED

    async def test_cancel_before_start_never_checks(self, manual_clock, image_budget):
        """A poller cancelled before running issues no checks."""
        client = MagicMock()
        client.check_job_status = AsyncMock()
        poller = make_poller(make_job(), client, manual_clock, image_budget, [])

        poller.cancel()
        job = await poller.run()

        assert job.state == JobState.CANCELLED
        client.check_job_status.assert_not_awaited()

    async def test_run_twice_raises(self, manual_clock, image_budget):
        """A poller drives its job once."""
        client = MagicMock()
        client.check_job_status = AsyncMock(
            return_value=make_status(ProviderJobStatus.ERROR)
        )
        poller = make_poller(make_job(), client, manual_clock, image_budget, [])
        await poller.run()

        with pytest.raises(RuntimeError):
            await poller.run()

    async def test_snapshot_is_a_copy(self, manual_clock, image_budget):
        """Snapshots must not alias the poller's job."""
        client = MagicMock()
        poller = make_poller(make_job(), client, manual_clock, image_budget, [])

        snapshot = poller.snapshot()
        snapshot.attempts = 99

        assert poller.snapshot().attempts == 0
