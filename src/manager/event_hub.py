"""In-process event hub delivering status, transcript and translation updates."""

import asyncio
import inspect
import logging
from collections import defaultdict
from enum import Enum
from typing import Any, Callable, Dict, List, Set

logger = logging.getLogger(__name__)


class EventTopic(str, Enum):
    """Topics published by the orchestrator."""

    JOB_STATUS = "job.status"
    TRANSCRIPT_UPDATED = "transcript.updated"
    TRANSLATION_UPDATED = "translation.updated"


class EventHub:
    """
    Fan-out of events to subscribers.

    Sync subscribers run inline, in subscription order. Async subscribers are
    scheduled as tasks on the running loop. A failing subscriber is logged
    and never affects the publisher or the other subscribers.
    """

    def __init__(self):
        self._subscribers: Dict[EventTopic, List[Callable[[Any], Any]]] = defaultdict(list)
        self._pending_tasks: Set[asyncio.Task] = set()

    def subscribe(
        self, topic: EventTopic, callback: Callable[[Any], Any]
    ) -> Callable[[], None]:
        """
        Register a subscriber for a topic.

        Args:
            topic: Topic to subscribe to
            callback: Callable receiving each event (sync or async)

        Returns:
            Callable that removes the subscription
        """
        topic = EventTopic(topic)
        self._subscribers[topic].append(callback)
        logger.debug(
            f"Subscribed to {topic.value} (total: {len(self._subscribers[topic])})"
        )

        def unsubscribe() -> None:
            if callback in self._subscribers[topic]:
                self._subscribers[topic].remove(callback)

        return unsubscribe

    def subscriber_count(self, topic: EventTopic) -> int:
        return len(self._subscribers[EventTopic(topic)])

    def publish(self, topic: EventTopic, event: Any) -> int:
        """
        Deliver an event to every subscriber of a topic.

        Args:
            topic: Topic of the event
            event: Event payload

        Returns:
            Number of subscribers the event was handed to without error
        """
        delivered = 0
        for callback in list(self._subscribers[EventTopic(topic)]):
            try:
                result = callback(event)
                if inspect.isawaitable(result):
                    task = asyncio.ensure_future(result)
                    self._pending_tasks.add(task)
                    task.add_done_callback(self._on_task_done)
                delivered += 1
            except Exception as e:
                callback_name = getattr(callback, "__name__", str(callback))
                logger.error(
                    f"❌ Subscriber {callback_name} failed for {EventTopic(topic).value}: {e}",
                    exc_info=True,
                )
        return delivered

    async def drain(self) -> None:
        """Wait for async subscriber tasks scheduled so far."""
        if self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._pending_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"❌ Async subscriber failed: {error}", exc_info=error)
