"""
Run control: status transitions, cancellation and deadlines.

The slot loop calls ``RunControl.checkpoint()`` between slot positions; it is
the only place a run can be interrupted.
"""
import threading
import time
from typing import Callable, Optional

from rostering.errors import GenerationCancelled, GenerationTimeout
from rostering.models.schedule import ScheduleStatus


class CancellationToken:
    """Thread-safe flag the caller sets to abort a run between slots."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()


class RunBudget:
    """Wall-clock budget measured with an injectable monotonic clock."""

    def __init__(self, seconds: Optional[float], clock: Callable[[], float] = time.monotonic):
        self.seconds = seconds
        self.clock = clock
        self.started = clock()

    @property
    def elapsed(self) -> float:
        return self.clock() - self.started

    @property
    def expired(self) -> bool:
        return self.seconds is not None and self.elapsed > self.seconds


class RunControl:
    """Tracks the status of a single run and enforces legal transitions."""

    def __init__(
        self,
        budget: RunBudget,
        cancel_token: Optional[CancellationToken] = None,
    ):
        self.status = ScheduleStatus.PENDING
        self.budget = budget
        self.cancel_token = cancel_token

    def transition(self, target: ScheduleStatus) -> None:
        if not self.status.can_transition(target):
            raise ValueError(f"Illegal status transition {self.status.value} -> {target.value}")
        self.status = target

    def checkpoint(self, position: int, total: int) -> None:
        """
        Raise if the run must stop before the next slot position.

        Raises:
            GenerationCancelled: the caller cancelled the run
            GenerationTimeout: the deadline expired
        """
        detail = {"slots_resolved": position, "slots_total": total}
        if self.cancel_token is not None and self.cancel_token.cancelled:
            raise GenerationCancelled("Generation cancelled by caller", detail=detail)
        if self.budget.expired:
            detail["deadline_seconds"] = self.budget.seconds
            raise GenerationTimeout(
                f"Generation exceeded {self.budget.seconds}s deadline", detail=detail
            )
