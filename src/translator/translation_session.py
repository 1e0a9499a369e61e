"""Live transcription/translation session.

Turns a stream of speech recognition events into debounced, deduplicated,
single-flight translation calls:

- interim text must stay unchanged for the debounce window before it is
  translated;
- final text is translated immediately and supersedes any in-flight
  interim translation of a different text;
- finals are translated one at a time, in order;
- identical text dispatched within the cooldown window reuses the previous
  output instead of issuing a new call.
"""

import asyncio
import logging
from collections import deque
from typing import Callable, Deque, List, Optional, Set

from common.cancellation import CancellationToken, OperationCancelledError
from common.clock import AsyncioClock, Clock, Timer
from common.config import settings
from common.schemas import (
    ErrorKind,
    SegmentOrigin,
    SessionPhase,
    SessionSnapshot,
    TranscriptUpdate,
    TranslationSegment,
    TranslationStatus,
    TranslationUpdate,
)
from common.utils import JobIdUtils, StringUtils
from providers.base import ProviderClient, TranslationStreamError, classify_provider_error
from translator.cooldown import CooldownCache

logger = logging.getLogger(__name__)

TranscriptSink = Callable[[TranscriptUpdate], None]
TranslationSink = Callable[[TranslationUpdate], None]


class _Dispatch:
    """A translation call owned by the session."""

    def __init__(
        self,
        segment: TranslationSegment,
        correlation_id: str,
        token: CancellationToken,
        epoch: int,
    ):
        self.segment = segment
        self.correlation_id = correlation_id
        self.token = token
        self.epoch = epoch
        self.task: Optional[asyncio.Task] = None
        self.parts: List[str] = []
        self.followers = 0  # duplicate finals waiting for this output

    @property
    def text(self) -> str:
        return "".join(self.parts).strip()


class TranslationSession:
    """
    Owns transcript buffers, the debounce timer and the single in-flight
    translation of one live session.

    Recognition callbacks (on_interim_result, on_final_result,
    on_recognition_ended, reset) are synchronous and must be called from
    the event loop thread. No exception raised by the provider crosses the
    session boundary: failures are reported as FAILED translation updates.
    """

    def __init__(
        self,
        client: ProviderClient,
        on_transcript: Optional[TranscriptSink] = None,
        on_translation: Optional[TranslationSink] = None,
        clock: Optional[Clock] = None,
        target_language: Optional[str] = None,
        debounce_seconds: Optional[float] = None,
        cooldown_seconds: Optional[float] = None,
    ):
        self._client = client
        self._on_transcript = on_transcript
        self._on_translation = on_translation
        self._clock = clock or AsyncioClock()
        self.target_language = target_language or settings.translation_target_language
        self.debounce_seconds = (
            settings.translation_debounce_seconds
            if debounce_seconds is None
            else debounce_seconds
        )
        self._cooldown = CooldownCache(
            settings.translation_cooldown_seconds
            if cooldown_seconds is None
            else cooldown_seconds,
            self._clock,
        )

        self._phase = SessionPhase.IDLE
        self._transcript: List[str] = []
        self._translation: List[str] = []
        self._pending_interim = ""
        self._interim_translation = ""
        self._debounce_timer: Optional[Timer] = None
        self._active: Optional[_Dispatch] = None
        self._final_queue: Deque[TranslationSegment] = deque()
        self._interim_candidate: Optional[TranslationSegment] = None
        self._epoch = 0
        self._tasks: Set[asyncio.Task] = set()

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def accumulated_transcript(self) -> List[str]:
        return list(self._transcript)

    @property
    def accumulated_translation(self) -> List[str]:
        return list(self._translation)

    @property
    def pending_interim_text(self) -> str:
        return self._pending_interim

    @property
    def active_token(self) -> Optional[CancellationToken]:
        return self._active.token if self._active else None

    @property
    def debounce_timer(self) -> Optional[Timer]:
        return self._debounce_timer

    def snapshot(self) -> SessionSnapshot:
        return SessionSnapshot(
            phase=self._phase,
            accumulated_transcript=list(self._transcript),
            accumulated_translation=list(self._translation),
            pending_interim_text=self._pending_interim,
            interim_translation=self._interim_translation,
            active_correlation_id=self._active.correlation_id if self._active else None,
            queued_finals=len(self._final_queue),
        )

    # Recognition events

    def on_interim_result(self, text: str) -> None:
        """Buffer interim text and (re)arm the debounce timer."""
        normalized = StringUtils.normalize_text(text)
        self._pending_interim = normalized
        self._cancel_debounce()
        self._emit_transcript(normalized, SegmentOrigin.INTERIM)

        if not normalized:
            self._interim_candidate = None
            self._refresh_phase()
            return

        self._debounce_timer = self._clock.after(
            self.debounce_seconds, lambda: self._on_debounce_fired(normalized)
        )
        self._refresh_phase()

    def on_final_result(self, text: str) -> None:
        """Append confirmed text to the transcript and translate it immediately."""
        normalized = StringUtils.normalize_text(text)
        self._cancel_debounce()
        self._pending_interim = ""
        self._interim_candidate = None

        if not normalized:
            self._refresh_phase()
            return

        self._transcript.append(normalized)
        self._emit_transcript(normalized, SegmentOrigin.FINAL)
        self._request_translation(
            TranslationSegment(text=normalized, origin=SegmentOrigin.FINAL)
        )

    def on_recognition_ended(self) -> None:
        """Flush a leftover interim segment as final once the recognizer stops."""
        self._cancel_debounce()
        if self._pending_interim:
            logger.debug(
                f"Recognition ended, finalizing interim text: "
                f"{StringUtils.truncate_for_logging(self._pending_interim)}"
            )
            self.on_final_result(self._pending_interim)
        else:
            self._refresh_phase()

    def reset(self) -> None:
        """
        End the session: cancel the in-flight translation, then clear
        timers, queues and buffers.
        """
        self._epoch += 1
        self._abort_active("session reset")
        self._cancel_debounce()
        self._final_queue.clear()
        self._interim_candidate = None
        self._transcript.clear()
        self._translation.clear()
        self._pending_interim = ""
        self._interim_translation = ""
        self._cooldown.clear()
        self._phase = SessionPhase.IDLE
        logger.info("🔄 Translation session reset")

    async def wait_until_idle(self) -> None:
        """Wait until no translation task is running, aborted ones included."""
        while self._tasks:
            await asyncio.wait(set(self._tasks))

    async def aclose(self) -> None:
        """Reset the session and wait for every translation task to finish."""
        self.reset()
        await self.wait_until_idle()

    # Dispatch

    def _on_debounce_fired(self, text: str) -> None:
        self._debounce_timer = None
        if not text or self._pending_interim != text:
            self._refresh_phase()
            return
        self._request_translation(
            TranslationSegment(text=text, origin=SegmentOrigin.INTERIM)
        )

    def _request_translation(self, segment: TranslationSegment) -> None:
        active = self._active

        if active is not None and active.segment.text == segment.text:
            if segment.origin == SegmentOrigin.FINAL:
                if active.segment.origin == SegmentOrigin.INTERIM:
                    active.segment = segment
                    logger.debug(
                        f"Promoted in-flight interim translation {active.correlation_id} to final"
                    )
                else:
                    active.followers += 1
                    logger.debug(
                        f"Duplicate final attached to in-flight translation {active.correlation_id}"
                    )
            self._refresh_phase()
            return

        if (
            active is not None
            and segment.origin == SegmentOrigin.FINAL
            and active.segment.origin == SegmentOrigin.INTERIM
        ):
            # A final always supersedes an interim of different text, even when
            # the final itself is answered from the cooldown cache.
            self._abort_active("superseded by final result")
            active = None

        entry = self._cooldown.lookup(segment.text)
        if entry is not None and entry.output is not None:
            self._reuse(segment, entry.output)
            self._refresh_phase()
            return

        if active is None:
            self._dispatch(segment)
        elif segment.origin == SegmentOrigin.FINAL:
            self._final_queue.append(segment)
            logger.debug(
                f"Queued final segment behind {active.correlation_id} "
                f"({len(self._final_queue)} queued)"
            )
        elif active.segment.origin == SegmentOrigin.INTERIM:
            self._abort_active("superseded by newer interim result")
            self._dispatch(segment)
        else:
            self._interim_candidate = segment

        self._refresh_phase()

    def _dispatch(self, segment: TranslationSegment) -> None:
        correlation_id = JobIdUtils.generate_correlation_id()
        segment = segment.model_copy(update={"dispatched_at": self._clock.now()})
        dispatch = _Dispatch(
            segment,
            correlation_id,
            CancellationToken(f"translate:{correlation_id}"),
            self._epoch,
        )
        self._cooldown.record_dispatch(segment.text, correlation_id)
        self._active = dispatch
        self._phase = SessionPhase.TRANSLATING

        logger.info(
            f"🌐 Translating {segment.origin.value} segment to {self.target_language} "
            f"[{correlation_id}]: {StringUtils.truncate_for_logging(segment.text)}"
        )
        dispatch.task = asyncio.get_running_loop().create_task(
            self._run_dispatch(dispatch), name=f"translate-{correlation_id}"
        )
        self._tasks.add(dispatch.task)
        dispatch.task.add_done_callback(self._tasks.discard)

    async def _run_dispatch(self, dispatch: _Dispatch) -> None:
        stream = None
        try:
            stream = self._client.translate(
                dispatch.segment.text, self.target_language, dispatch.token
            )
            async for chunk in stream:
                dispatch.token.raise_if_cancelled()
                if chunk.error:
                    raise TranslationStreamError(chunk.error)
                if chunk.text_delta:
                    dispatch.parts.append(chunk.text_delta)
                    self._emit_translation(dispatch, TranslationStatus.STREAMING)
        except OperationCancelledError as e:
            logger.debug(f"Translation {dispatch.correlation_id} stopped: {e.reason}")
        except Exception as e:
            if self._is_current(dispatch):
                self._fail(dispatch, e)
            else:
                logger.debug(
                    f"Ignoring error from aborted translation {dispatch.correlation_id}: {e}"
                )
        else:
            if self._is_current(dispatch):
                self._complete(dispatch)
            else:
                logger.debug(f"Dropped output of aborted translation {dispatch.correlation_id}")
        finally:
            aclose = getattr(stream, "aclose", None)
            if aclose is not None:
                try:
                    await aclose()
                except Exception as e:
                    logger.debug(f"Error closing translation stream: {e}")
            if self._active is dispatch:
                self._active = None
                self._pump()

    def _pump(self) -> None:
        while self._active is None and self._final_queue:
            segment = self._final_queue.popleft()
            entry = self._cooldown.lookup(segment.text)
            if entry is not None and entry.output is not None:
                self._reuse(segment, entry.output)
            else:
                self._dispatch(segment)

        candidate = self._interim_candidate
        if self._active is None and candidate is not None:
            self._interim_candidate = None
            if candidate.text == self._pending_interim:
                self._request_translation(candidate)
                return

        self._refresh_phase()

    def _is_current(self, dispatch: _Dispatch) -> bool:
        return (
            self._active is dispatch
            and dispatch.epoch == self._epoch
            and not dispatch.token.is_cancelled()
        )

    def _complete(self, dispatch: _Dispatch) -> None:
        output = dispatch.text
        self._cooldown.record_output(dispatch.segment.text, dispatch.correlation_id, output)

        if dispatch.segment.origin == SegmentOrigin.FINAL:
            self._translation.append(output)
        else:
            self._interim_translation = output

        logger.info(f"✅ Translation {dispatch.correlation_id} completed")
        self._emit_translation(dispatch, TranslationStatus.COMPLETED)

        for _ in range(dispatch.followers):
            self._reuse(dispatch.segment, output)

    def _fail(self, dispatch: _Dispatch, error: Exception) -> None:
        self._cooldown.evict(dispatch.segment.text, dispatch.correlation_id)
        logger.error(
            f"❌ Translation {dispatch.correlation_id} failed: {error}",
            exc_info=not isinstance(error, TranslationStreamError),
        )
        self._emit_translation(
            dispatch,
            TranslationStatus.FAILED,
            error=str(error) or type(error).__name__,
            error_kind=classify_provider_error(error),
        )

    def _abort_active(self, reason: str) -> None:
        dispatch = self._active
        if dispatch is None:
            return
        dispatch.token.cancel(reason)
        self._active = None
        # The provider may be blocked between chunks without watching the token.
        if dispatch.task is not None and dispatch.task is not asyncio.current_task():
            dispatch.task.cancel()
        self._cooldown.evict(dispatch.segment.text, dispatch.correlation_id)
        logger.debug(f"Aborted translation {dispatch.correlation_id}: {reason}")
        self._emit_translation(
            dispatch, TranslationStatus.ABORTED, error_kind=ErrorKind.ABORTED
        )

    def _reuse(self, segment: TranslationSegment, output: str) -> None:
        if segment.origin == SegmentOrigin.FINAL:
            self._translation.append(output)
        else:
            self._interim_translation = output

        logger.debug(
            f"Reusing cached translation for: {StringUtils.truncate_for_logging(segment.text)}"
        )
        self._send_translation(
            TranslationUpdate(
                correlation_id=JobIdUtils.generate_correlation_id(),
                source_text=segment.text,
                origin=segment.origin,
                status=TranslationStatus.REUSED,
                text=output,
                accumulated_translation=self._joined_translation(),
            )
        )

    def _cancel_debounce(self) -> None:
        if self._debounce_timer is not None:
            self._debounce_timer.cancel()
            self._debounce_timer = None

    def _refresh_phase(self) -> None:
        if self._active is not None:
            self._phase = SessionPhase.TRANSLATING
        elif self._debounce_timer is not None and self._debounce_timer.active:
            self._phase = SessionPhase.DEBOUNCING
        else:
            self._phase = SessionPhase.IDLE

    # Sinks

    def _joined_translation(self) -> str:
        return " ".join(part for part in self._translation if part)

    def _emit_transcript(self, text: str, origin: SegmentOrigin) -> None:
        if self._on_transcript is None:
            return
        update = TranscriptUpdate(
            text=text,
            origin=origin,
            accumulated_transcript=" ".join(self._transcript),
            pending_interim_text=self._pending_interim,
        )
        try:
            self._on_transcript(update)
        except Exception as e:
            logger.error(f"❌ Transcript sink raised: {e}", exc_info=True)

    def _emit_translation(
        self,
        dispatch: _Dispatch,
        status: TranslationStatus,
        error: Optional[str] = None,
        error_kind: Optional[ErrorKind] = None,
    ) -> None:
        self._send_translation(
            TranslationUpdate(
                correlation_id=dispatch.correlation_id,
                source_text=dispatch.segment.text,
                origin=dispatch.segment.origin,
                status=status,
                text=dispatch.text,
                error=error,
                error_kind=error_kind,
                accumulated_translation=self._joined_translation(),
            )
        )

    def _send_translation(self, update: TranslationUpdate) -> None:
        if self._on_translation is None:
            return
        try:
            self._on_translation(update)
        except Exception as e:
            logger.error(f"❌ Translation sink raised: {e}", exc_info=True)
