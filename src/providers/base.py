"""Provider client contract consumed by the polling and translation engines.

Concrete clients live outside this package (HTTP proxies, SDK wrappers).
They translate provider responses into the schemas below and either return
an explicit error status or raise one of the exceptions defined here.
"""

import asyncio
from abc import ABC, abstractmethod
from typing import Any, AsyncIterator, Dict, Optional

from common.cancellation import CancellationToken
from common.schemas import (
    ErrorKind,
    JobKind,
    JobStatusResult,
    SubmitJobResult,
    TranslationChunk,
)


class ProviderError(Exception):
    """Base exception for provider client failures."""


class ProviderNetworkError(ProviderError):
    """The request never produced a provider response (connection, DNS, timeout)."""


class TranslationStreamError(ProviderError):
    """A translation stream broke off or reported an error chunk."""


NETWORK_ERRORS = (ProviderNetworkError, ConnectionError, TimeoutError, asyncio.TimeoutError)


def classify_provider_error(error: Exception) -> ErrorKind:
    """
    Classify an exception raised by a provider client call.

    Args:
        error: Exception raised by the provider client

    Returns:
        STREAM_ERROR for broken translation streams, NETWORK_ERROR for
        transport failures, PROVIDER_ERROR otherwise
    """
    if isinstance(error, TranslationStreamError):
        return ErrorKind.STREAM_ERROR
    if isinstance(error, NETWORK_ERRORS):
        return ErrorKind.NETWORK_ERROR
    return ErrorKind.PROVIDER_ERROR


class ProviderClient(ABC):
    """Abstract client for generation jobs and streamed translation."""

    @abstractmethod
    async def submit_job(
        self, kind: JobKind, prompt: str, params: Optional[Dict[str, Any]] = None
    ) -> SubmitJobResult:
        """Submit a generation request and return the provider job id or an error."""

    @abstractmethod
    async def check_job_status(self, job_id: str, kind: JobKind) -> JobStatusResult:
        """Check the status of a previously submitted job."""

    @abstractmethod
    def translate(
        self, text: str, target_language: str, cancel_token: CancellationToken
    ) -> AsyncIterator[TranslationChunk]:
        """
        Stream a translation of text.

        Implementations are async generators. They should stop yielding once
        cancel_token is cancelled; consumers ignore anything yielded after.
        """
