"""Cooperative cancellation for poll sequences and translation calls."""

import asyncio
import logging
from typing import Callable, List, Optional

logger = logging.getLogger(__name__)


class OperationCancelledError(Exception):
    """Raised by raise_if_cancelled() once a token has been cancelled."""

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        super().__init__(reason or "Operation cancelled")


class CancellationToken:
    """
    One-shot cancellation signal for a single logical operation.

    Consumers either poll is_cancelled() at their suspension points or
    register a callback. cancel() is idempotent: callbacks run exactly once,
    in registration order, and a callback registered after cancellation
    runs immediately.

    Example:
        ```python
        token = CancellationToken()
        token.add_callback(ticker.stop)

        async for chunk in client.translate(text, "en", token):
            if token.is_cancelled():
                break
        ```
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._cancelled = False
        self._reason: Optional[str] = None
        self._callbacks: List[Callable[[], None]] = []
        self._event: Optional[asyncio.Event] = None

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def is_cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: Optional[str] = None) -> bool:
        """
        Cancel the operation.

        Args:
            reason: Optional human-readable reason, kept for logging

        Returns:
            True if this call cancelled the token, False if it was already cancelled
        """
        if self._cancelled:
            return False

        self._cancelled = True
        self._reason = reason
        logger.debug(f"Cancellation requested for {self.name or 'operation'}: {reason}")

        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            self._run_callback(callback)

        if self._event is not None:
            self._event.set()
        return True

    def add_callback(self, callback: Callable[[], None]) -> Callable[[], None]:
        """
        Register a callback to run on cancellation.

        Args:
            callback: Zero-argument callable

        Returns:
            Callable that unregisters the callback (no-op once it has run)
        """
        if self._cancelled:
            self._run_callback(callback)
            return lambda: None

        self._callbacks.append(callback)

        def remove() -> None:
            if callback in self._callbacks:
                self._callbacks.remove(callback)

        return remove

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise OperationCancelledError(self._reason)

    async def wait(self) -> None:
        """Wait until the token is cancelled."""
        if self._cancelled:
            return
        if self._event is None:
            self._event = asyncio.Event()
        await self._event.wait()

    def _run_callback(self, callback: Callable[[], None]) -> None:
        try:
            callback()
        except Exception as e:
            callback_name = getattr(callback, "__name__", str(callback))
            logger.error(
                f"❌ Error in cancellation callback {callback_name}: {e}",
                exc_info=True,
            )

    def __repr__(self) -> str:
        return (
            f"CancellationToken(name={self.name!r}, cancelled={self._cancelled})"
        )
