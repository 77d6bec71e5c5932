"""Progress narration for long-running extraction steps.

``ProgressTracker`` keeps an ordered log of ``ProgressUpdate`` records and can
run a canned, time-indexed message schedule on an asyncio timer while the real
work happens elsewhere. The schedule logic itself lives in
``TimedMessageScheduler.tick`` so it can be driven by a fake clock.

``TimeoutMonitor`` runs alongside a tracker and surfaces escalating warnings
when an operation takes longer than expected.

Everything here runs on a single event loop; timer callbacks and
``send_update`` callers never interleave mid-update, so no locking is needed.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable, Sequence
from enum import StrEnum
from typing import Any

from schemas.extraction import ProgressUpdate, ScheduleEntry, TimeoutWarning


logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL_MS = 500
DEFAULT_WINDOW_MS = 3000
DEFAULT_WARNING_WINDOW_MS = 1000

Clock = Callable[[], float]
UpdateObserver = Callable[[ProgressUpdate], None]


class TrackerState(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    STOPPED = "stopped"


class TimedMessageScheduler:
    """Pick the schedule entry to announce for a given elapsed time.

    An entry is eligible while ``delay_ms <= elapsed < delay_ms + window_ms``.
    Entries are checked in schedule order and the first eligible one wins.
    An entry is never announced twice in a row, and an entry whose window was
    skipped entirely is never announced late.
    """

    def __init__(
        self, schedule: Sequence[ScheduleEntry], window_ms: int = DEFAULT_WINDOW_MS
    ) -> None:
        self.schedule: tuple[ScheduleEntry, ...] = tuple(schedule)
        self.window_ms = window_ms
        self.last_fired_index: int | None = None

    def tick(self, elapsed_ms: int) -> ScheduleEntry | None:
        for index, entry in enumerate(self.schedule):
            if entry.delay_ms <= elapsed_ms < entry.delay_ms + self.window_ms:
                if index == self.last_fired_index:
                    return None
                self.last_fired_index = index
                return entry
        return None


class ProgressTracker:
    """Ordered progress log with an optional timed message schedule."""

    def __init__(
        self,
        on_update: UpdateObserver | None = None,
        *,
        clock: Clock = time.monotonic,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        window_ms: int = DEFAULT_WINDOW_MS,
    ) -> None:
        self.clock = clock
        self._on_update = on_update
        self._poll_interval_ms = poll_interval_ms
        self._window_ms = window_ms
        self._started_at = clock()
        self._updates: list[ProgressUpdate] = []
        self._scheduler: TimedMessageScheduler | None = None
        self._timer: asyncio.Task[None] | None = None
        self._state = TrackerState.IDLE

    @property
    def state(self) -> TrackerState:
        return self._state

    def send_update(
        self,
        stage: str,
        progress: int | None,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> ProgressUpdate:
        update = ProgressUpdate(
            stage=stage,
            progress=progress,
            message=message,
            elapsed_ms=self.get_elapsed(),
            metadata=metadata,
        )
        self._updates.append(update)
        if self._on_update is not None:
            self._on_update(update)
        logger.info("[Progress %s%%] %s: %s", progress, stage, message)
        return update

    def start_timed_messages(self, schedule: Sequence[ScheduleEntry]) -> None:
        """Announce ``schedule`` entries as time passes.

        Must be called from a running event loop. A timer that is already
        running is cancelled first.
        """
        self.stop_timed_messages()
        self._scheduler = TimedMessageScheduler(schedule, self._window_ms)
        self._timer = asyncio.get_running_loop().create_task(
            self._run_timer(), name="progress-tracker-timer"
        )
        self._state = TrackerState.RUNNING

    def stop_timed_messages(self) -> None:
        if self._timer is None:
            return
        self._timer.cancel()
        self._timer = None
        self._scheduler = None
        self._state = TrackerState.STOPPED

    def tick(self) -> ScheduleEntry | None:
        """Run one scheduler step against the current clock reading."""
        if self._scheduler is None:
            return None
        entry = self._scheduler.tick(self.get_elapsed())
        if entry is not None:
            self.send_update(entry.stage, entry.progress, entry.message)
        return entry

    def get_elapsed(self) -> int:
        return round((self.clock() - self._started_at) * 1000)

    def get_updates(self) -> list[ProgressUpdate]:
        return list(self._updates)

    async def _run_timer(self) -> None:
        interval = self._poll_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                self.tick()
            except Exception:
                logger.exception("Progress observer failed; timed messages continue")


class TimeoutMonitor:
    """Announce each warning once, shortly after its threshold passes.

    Warnings go through ``tracker.send_update`` with ``progress=None`` so the
    progress bar stays where it is. The monitor owns its own timer, separate
    from the tracker's schedule timer.
    """

    def __init__(
        self,
        tracker: ProgressTracker,
        warnings: Sequence[TimeoutWarning],
        *,
        poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
        window_ms: int = DEFAULT_WARNING_WINDOW_MS,
    ) -> None:
        self._tracker = tracker
        self._warnings = tuple(warnings)
        self._poll_interval_ms = poll_interval_ms
        self._window_ms = window_ms
        self._started_at = tracker.clock()
        self._fired: set[int] = set()
        self._timer: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._timer is not None

    def check(self) -> list[TimeoutWarning]:
        elapsed = round((self._tracker.clock() - self._started_at) * 1000)
        fired: list[TimeoutWarning] = []
        for index, warning in enumerate(self._warnings):
            if index in self._fired:
                continue
            if warning.after_ms <= elapsed < warning.after_ms + self._window_ms:
                self._fired.add(index)
                self._tracker.send_update(warning.stage, None, warning.message)
                fired.append(warning)
        return fired

    def start(self) -> None:
        self.stop()
        self._timer = asyncio.get_running_loop().create_task(
            self._run_timer(), name="timeout-monitor-timer"
        )

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    async def _run_timer(self) -> None:
        interval = self._poll_interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                self.check()
            except Exception:
                logger.exception("Timeout warning observer failed")
