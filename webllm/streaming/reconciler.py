"""
Streaming response reconciler.

Two imperfect sources describe the same reply while it is generated: the
intercepted network stream (fast but lossy, and absent for some sites) and
the rendered DOM (authoritative but polled). Each tick both are read and
whatever extends the text already sent is emitted. When the reply is done
the DOM gets the final word through a single replace event.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..browser.faults import DriverFault, classify_driver_error
from ..browser.observer import DomSnapshot
from ..continuity import embed_conversation_id
from ..logging_config import logger
from ..schemas import StreamEventKind
from ..settings import settings
from .accumulator import StreamAccumulator
from .classifiers import FragmentClassifier
from .poller import PeriodicPoller

END_STREAM_FINISHED = "stream_finished"
END_UI_IDLE = "ui_idle"
END_STABLE = "stable"
END_TIMEOUT = "timeout"
END_PAGE_GONE = "page_gone"
END_ERROR = "error"


@dataclass(frozen=True)
class StreamEvent:
    kind: StreamEventKind
    text: str


@dataclass
class ReconcilerTiming:
    poll_interval: float = 0.1
    stability_polls: int = 20
    ui_settle: float = 0.3
    ui_check_after_quiet_polls: int = 50
    timeout: float = 120.0
    transient_pause: float = 0.5

    @classmethod
    def from_settings(cls) -> "ReconcilerTiming":
        return cls(
            poll_interval=settings.poll_interval_seconds,
            stability_polls=settings.stability_polls,
            ui_settle=settings.ui_settle_seconds,
            ui_check_after_quiet_polls=settings.ui_check_after_quiet_polls,
            timeout=settings.reconcile_timeout_seconds,
            transient_pause=settings.transient_retry_pause_seconds,
        )


class StreamReconciler:
    def __init__(
        self,
        observer: Any,
        classifier: FragmentClassifier,
        *,
        locator_to_id: Callable[[str], str | None],
        timing: ReconcilerTiming | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.observer = observer
        self.classifier = classifier
        self.locator_to_id = locator_to_id
        self.timing = timing or ReconcilerTiming.from_settings()
        self._sleep = sleep
        self._clock = clock
        self.acc = StreamAccumulator()
        self.end_reason: str | None = None
        self.conversation_id: str | None = None
        self.page_lost = False
        self._last_observed: tuple[Any, ...] | None = None

    def _merge(self, snap: DomSnapshot | None) -> list[StreamEvent]:
        events: list[StreamEvent] = []
        observations = [("thinking", self.acc.stream_thinking), ("answer", self.acc.stream_answer)]
        if snap is not None:
            observations.insert(1, ("thinking", snap.thinking))
            observations.append(("answer", snap.answer))
        for channel, observed in observations:
            delta = self.acc.advance(channel, observed)
            if delta:
                events.append(StreamEvent(channel, delta))
        return events

    def _sources_moved(self, snap: DomSnapshot) -> bool:
        """
        Whether either source changed since the last poll, even when the
        change could not be emitted because the sources disagree.
        """
        observed = (self.acc.stream_thinking, self.acc.stream_answer, snap.thinking, snap.answer)
        moved = observed != self._last_observed
        self._last_observed = observed
        return moved

    async def _read_sources(self) -> DomSnapshot:
        chunk = await self.observer.drain_stream()
        if chunk:
            self.acc.absorb(self.classifier.feed(self.acc, chunk))
        return await self.observer.snapshot()

    def _handle_fault(self, exc: Exception) -> DriverFault:
        """
        Decide what a driver failure means for the loop; raises when nothing
        has been produced yet and the failure is not recoverable.
        """
        fault = classify_driver_error(exc)
        if fault is DriverFault.TRANSIENT:
            logger.debug("Transient driver error while polling: %s", exc)
        elif fault in (DriverFault.PAGE_GONE, DriverFault.SESSION_DEAD):
            logger.warning("Page lost while polling reply: %s", exc)
            self.page_lost = True
            self.end_reason = END_PAGE_GONE
        elif self.acc.has_content:
            logger.warning("Stopping reply polling after error: %s", exc)
            self.end_reason = END_ERROR
        else:
            raise exc
        return fault

    async def _ui_idle_confirmed(self, poller: PeriodicPoller) -> tuple[bool, DomSnapshot | None]:
        await poller.pause(self.timing.ui_settle)
        try:
            snap = await self._read_sources()
        except Exception as exc:
            self._handle_fault(exc)
            return False, None
        return (not snap.generating and snap.can_send), snap

    async def events(self) -> AsyncIterator[StreamEvent]:
        timing = self.timing
        poller = PeriodicPoller(
            timing.poll_interval,
            max_elapsed=timing.timeout,
            sleep=self._sleep,
            clock=self._clock,
        )
        quiet = 0

        async for _ in poller.ticks():
            try:
                snap = await self._read_sources()
            except Exception as exc:
                if self._handle_fault(exc) is DriverFault.TRANSIENT:
                    await poller.pause(timing.transient_pause)
                    continue
                break

            produced = self._merge(snap)
            for event in produced:
                yield event
            moved = self._sources_moved(snap)
            quiet = 0 if produced or moved else quiet + 1

            if self.acc.stream_finished:
                self.end_reason = END_STREAM_FINISHED
                break

            ready_for_ui_check = self.acc.has_content or quiet >= timing.ui_check_after_quiet_polls
            if ready_for_ui_check and not snap.generating and snap.can_send:
                idle, confirm = await self._ui_idle_confirmed(poller)
                for event in self._merge(confirm):
                    yield event
                if confirm is not None and self._sources_moved(confirm):
                    quiet = 0
                if self.end_reason is not None:
                    break
                if idle:
                    self.end_reason = END_UI_IDLE
                    break

            if quiet >= timing.stability_polls and self.acc.has_content:
                self.end_reason = END_STABLE
                break

        if self.end_reason is None:
            self.end_reason = END_TIMEOUT
            logger.warning("Reply polling timed out after %.1fs", poller.elapsed)

        self.acc.absorb(self.classifier.finish(self.acc))
        for event in self._merge(None):
            yield event

        final = await self._final_snapshot()
        if final is not None and final.answer and final.answer != self.acc.answer:
            logger.info(
                "DOM text differs from streamed text (%s vs %s chars), replacing",
                len(final.answer),
                len(self.acc.answer),
            )
            self.acc.answer = final.answer
            yield StreamEvent("replace", final.answer)

        self.conversation_id = self._conversation_id()
        if self.conversation_id:
            yield StreamEvent("answer", embed_conversation_id(self.conversation_id))

    async def _final_snapshot(self) -> DomSnapshot | None:
        if self.page_lost:
            return None
        try:
            return await self.observer.snapshot()
        except Exception as exc:
            logger.debug("Final snapshot failed: %s", exc)
            return None

    def _conversation_id(self) -> str | None:
        try:
            url = self.observer.current_url()
        except Exception as exc:
            logger.debug("Unable to read page URL: %s", exc)
            return None
        if not url:
            return None
        return self.locator_to_id(url)


__all__ = [
    "StreamEvent",
    "StreamReconciler",
    "ReconcilerTiming",
    "END_STREAM_FINISHED",
    "END_UI_IDLE",
    "END_STABLE",
    "END_TIMEOUT",
    "END_PAGE_GONE",
    "END_ERROR",
]
