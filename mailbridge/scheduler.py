"""Poll timing with exponential backoff on consecutive session failures."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import Callable

from .models import CycleOutcome

logger = logging.getLogger(__name__)

MAX_CONSECUTIVE_ERRORS = 5


@dataclass(frozen=True)
class BackoffPolicy:
    """Map a consecutive-failure count to the delay before the next cycle."""

    base_ms: int
    cap_ms: int = 600_000

    def delay_ms(self, failures: int) -> int:
        if failures <= 0:
            return self.base_ms
        return min(self.base_ms * 2 ** (failures - 1), self.cap_ms)


class PollScheduler:
    """Run cycles back to back, sleeping between them, until stopped."""

    def __init__(self, policy: BackoffPolicy, stop_event: threading.Event | None = None) -> None:
        self.policy = policy
        self.failures = 0
        self.stop_event = stop_event or threading.Event()

    @property
    def stopped(self) -> bool:
        return self.stop_event.is_set()

    def next_delay_ms(self) -> int:
        return self.policy.delay_ms(self.failures)

    def record(self, outcome: CycleOutcome) -> None:
        if outcome.session_ok:
            self.failures = 0
            return
        self.failures += 1
        if self.failures >= MAX_CONSECUTIVE_ERRORS:
            logger.error("Too many consecutive errors (%d). Waiting longer...", self.failures)

    def run_once(self, cycle: Callable[[], CycleOutcome]) -> CycleOutcome:
        try:
            outcome = cycle()
        except Exception as exc:
            logger.exception("Unexpected error during poll cycle")
            outcome = CycleOutcome.session_failure(str(exc))
        self.record(outcome)
        return outcome

    def run(self, cycle: Callable[[], CycleOutcome]) -> None:
        """Run the first cycle immediately, then keep going until :meth:`stop`."""
        while not self.stopped:
            self.run_once(cycle)
            if self.stopped:
                break
            delay = self.next_delay_ms()
            logger.info("Next check in %d seconds", round(delay / 1000))
            if self.stop_event.wait(delay / 1000):
                break
        logger.info("Poll scheduler stopped")

    def stop(self) -> None:
        """Cancel the pending wait; an in-flight cycle runs to completion."""
        self.stop_event.set()
