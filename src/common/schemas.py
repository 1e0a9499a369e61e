"""Shared Pydantic schemas for generation jobs and live translation."""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from common.utils import DateTimeUtils


class JobKind(str, Enum):
    """Kind of asynchronous generation job. Determines the polling budget."""

    IMAGE = "image"
    VIDEO = "video"


class JobState(str, Enum):
    """Lifecycle state of a generation job."""

    SUBMITTED = "submitted"
    POLLING = "polling"
    COMPLETED = "completed"
    COMPLETED_EMPTY = "completed_empty"
    FAILED = "failed"
    TIMED_OUT = "timed_out"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self not in (JobState.SUBMITTED, JobState.POLLING)


class ProviderJobStatus(str, Enum):
    """Status values reported by the provider for a queued job."""

    COMPLETED = "COMPLETED"
    IN_PROGRESS = "IN_PROGRESS"
    IN_QUEUE = "IN_QUEUE"
    NOT_FOUND = "NOT_FOUND"
    ERROR = "ERROR"
    COMPLETED_NO_IMAGE = "COMPLETED_NO_IMAGE"
    PROXY_REQUEST_ERROR = "PROXY_REQUEST_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"


class ErrorKind(str, Enum):
    """Classification of failures surfaced by the polling and translation engines."""

    TRANSIENT_NOT_FOUND = "transient_not_found"
    PROVIDER_ERROR = "provider_error"
    NETWORK_ERROR = "network_error"
    TIMEOUT = "timeout"
    CANCELLED = "cancelled"
    STREAM_ERROR = "stream_error"
    ABORTED = "aborted"


class GenerationResult(BaseModel):
    """Artifacts produced by a completed generation job."""

    artifact_urls: List[str] = Field(
        default_factory=list, description="Image or video URLs, in provider order"
    )
    raw: Optional[Dict[str, Any]] = Field(
        None, description="Raw provider payload, kept for debugging"
    )


class GenerationJob(BaseModel):
    """
    A single asynchronous image/video generation request.

    Owned and mutated exclusively by its JobPoller. Everyone else works
    with snapshots.
    """

    id: str = Field(..., description="Provider-assigned job identifier")
    kind: JobKind = Field(..., description="Job kind (image or video)")
    prompt: str = Field(default="", description="Prompt the job was submitted with")
    params: Dict[str, Any] = Field(
        default_factory=dict, description="Provider-specific submission parameters"
    )
    state: JobState = Field(default=JobState.SUBMITTED)
    attempts: int = Field(default=0, description="Status checks issued so far")
    not_found_streak: int = Field(
        default=0, description="Consecutive NOT_FOUND responses"
    )
    result: Optional[GenerationResult] = None
    last_error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    created_at: datetime = Field(
        default_factory=DateTimeUtils.get_current_utc_datetime
    )
    updated_at: datetime = Field(
        default_factory=DateTimeUtils.get_current_utc_datetime
    )

    class Config:
        json_schema_extra = {
            "example": {
                "id": "d1c6a2a4-5f7e-4f0e-8d7b-1f2a3b4c5d6e",
                "kind": "image",
                "prompt": "a lighthouse at dusk, oil painting",
                "params": {"num_images": 1},
                "state": "polling",
                "attempts": 3,
                "not_found_streak": 0,
                "result": None,
                "last_error": None,
            }
        }


class SubmitJobResult(BaseModel):
    """Provider response to a job submission."""

    job_id: Optional[str] = Field(None, description="Job id, when accepted")
    error: Optional[str] = Field(None, description="Error message, when refused")
    message: Optional[str] = None


class JobStatusResult(BaseModel):
    """Provider response to a status check."""

    status: str = Field(..., description="Provider status, see ProviderJobStatus")
    artifact_urls: List[str] = Field(default_factory=list)
    result: Optional[Dict[str, Any]] = Field(
        None, description="Raw provider result payload"
    )
    error: Optional[str] = None
    message: Optional[str] = None


class StatusUpdate(BaseModel):
    """Event emitted after every status check and every state transition."""

    job_id: str
    kind: JobKind
    prompt: str = ""
    state: JobState
    attempts: int
    message: str
    result_urls: Optional[List[str]] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    timestamp: datetime = Field(
        default_factory=DateTimeUtils.get_current_utc_datetime
    )

    class Config:
        json_schema_extra = {
            "example": {
                "job_id": "d1c6a2a4-5f7e-4f0e-8d7b-1f2a3b4c5d6e",
                "kind": "image",
                "prompt": "a lighthouse at dusk, oil painting",
                "state": "completed",
                "attempts": 4,
                "message": "Image generation completed",
                "result_urls": ["https://cdn.example.com/out/1.png"],
                "error": None,
            }
        }


class SegmentOrigin(str, Enum):
    """Whether recognized text is confirmed by the recognizer or provisional."""

    FINAL = "final"
    INTERIM = "interim"


class TranslationSegment(BaseModel):
    """A recognized speech segment queued for translation."""

    text: str = Field(..., description="Trimmed recognized text")
    origin: SegmentOrigin
    dispatched_at: Optional[float] = Field(
        None, description="Clock time of the last translation attempt for this text"
    )


class TranslationChunk(BaseModel):
    """One element of a streamed translation."""

    text_delta: Optional[str] = None
    error: Optional[str] = None


class TranslationStatus(str, Enum):
    """Status carried by a translation update."""

    STREAMING = "streaming"
    COMPLETED = "completed"
    REUSED = "reused"
    ABORTED = "aborted"
    FAILED = "failed"


class TranslationUpdate(BaseModel):
    """Translation progress for a single dispatch, keyed by correlation id."""

    correlation_id: str
    source_text: str
    origin: SegmentOrigin
    status: TranslationStatus
    text: str = Field(default="", description="Translated text of this dispatch so far")
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = Field(
        None, description="Set for failed and aborted dispatches"
    )
    accumulated_translation: str = ""


class TranscriptUpdate(BaseModel):
    """Live transcript after an interim or final recognition event."""

    text: str
    origin: SegmentOrigin
    accumulated_transcript: str = ""
    pending_interim_text: str = ""


class SessionPhase(str, Enum):
    """Phase of the live translation session."""

    IDLE = "idle"
    DEBOUNCING = "debouncing"
    TRANSLATING = "translating"


class SessionSnapshot(BaseModel):
    """Read-only view of a translation session."""

    phase: SessionPhase
    accumulated_transcript: List[str] = Field(default_factory=list)
    accumulated_translation: List[str] = Field(default_factory=list)
    pending_interim_text: str = ""
    interim_translation: str = ""
    active_correlation_id: Optional[str] = None
    queued_finals: int = 0
