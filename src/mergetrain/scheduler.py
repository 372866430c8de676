from __future__ import annotations

import logging
import threading
import time
from typing import Callable

from mergetrain.models import PassResult
from mergetrain.observability import log_event, log_warning_event


LOGGER = logging.getLogger("mergetrain.scheduler")


def _wait_on_event(stop_event: threading.Event, seconds: float) -> bool:
    return stop_event.wait(seconds)


class PollScheduler:
    """Runs merge-train passes on a fixed cadence, one at a time.

    The cadence is anchored at start-up. A pass that runs past one or more
    ticks causes those ticks to be dropped, never queued, and a pass that
    raises is logged and does not stop the loop.
    """

    def __init__(
        self,
        run_pass: Callable[[], PassResult],
        *,
        interval_seconds: float,
        clock: Callable[[], float] = time.monotonic,
        wait: Callable[[threading.Event, float], bool] = _wait_on_event,
    ) -> None:
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        self._run_pass = run_pass
        self._interval = interval_seconds
        self._clock = clock
        self._wait = wait
        self._pass_lock = threading.Lock()
        self._pass_count = 0

    @property
    def is_running(self) -> bool:
        return self._pass_lock.locked()

    @property
    def pass_count(self) -> int:
        return self._pass_count

    def run_once(self) -> bool:
        if not self._pass_lock.acquire(blocking=False):
            log_event(LOGGER, "pass_skipped_overlap")
            return False
        try:
            self._pass_count += 1
            pass_number = self._pass_count
            started_at = self._clock()
            log_event(LOGGER, "pass_started", pass_number=pass_number)
            try:
                result = self._run_pass()
            except Exception as exc:  # noqa: BLE001
                log_warning_event(
                    LOGGER,
                    "pass_failed",
                    pass_number=pass_number,
                    error_type=type(exc).__name__,
                    error=str(exc),
                )
                return True
            log_event(
                LOGGER,
                "pass_completed",
                pass_number=pass_number,
                candidate_count=len(result.candidates),
                decision_count=len(result.decisions),
                stopped_early_at=result.stopped_early_at,
                duration_seconds=round(self._clock() - started_at, 3),
            )
            return True
        finally:
            self._pass_lock.release()

    def run(self, *, once: bool = False, stop_event: threading.Event | None = None) -> None:
        stop = stop_event or threading.Event()
        started_at = self._clock()
        tick = 0
        log_event(LOGGER, "scheduler_started", interval_seconds=self._interval, once=once)
        while not stop.is_set():
            self.run_once()
            if once:
                break

            now = self._clock()
            next_tick = int((now - started_at) // self._interval) + 1
            skipped = next_tick - tick - 1
            if skipped > 0:
                log_event(LOGGER, "pass_ticks_skipped", count=skipped)
            tick = next_tick
            delay = max(0.0, started_at + tick * self._interval - now)
            if self._wait(stop, delay):
                break
        log_event(LOGGER, "scheduler_stopped", pass_count=self._pass_count)
