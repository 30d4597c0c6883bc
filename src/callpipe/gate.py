"""Counting admission gate bounding calls in flight."""

from __future__ import annotations

from collections import deque
from collections.abc import Callable
from enum import Enum

from loguru import logger

from callpipe.errors import InvariantError
from callpipe.parser import Command


class Admission(Enum):
    PROCEED = "proceed"
    QUEUED = "queued"


class InFlightGate:
    """Bound the number of outstanding calls.

    A ceiling of 0 admits everything. Commands refused while the gate is full
    wait in a FIFO and are handed to `dispatch` from `release()`. `on_pause`
    and `on_resume` tell the line source to stop and restart reading; they are
    only called on a state change.
    """

    def __init__(
        self,
        ceiling: int = 0,
        *,
        dispatch: Callable[[Command], None] | None = None,
        on_pause: Callable[[], None] | None = None,
        on_resume: Callable[[], None] | None = None,
    ) -> None:
        if ceiling < 0:
            raise ValueError("ceiling must be >= 0")
        self.ceiling = ceiling
        self.count = 0
        self.peak = 0
        self._pending: deque[Command] = deque()
        self._dispatch = dispatch
        self._on_pause = on_pause
        self._on_resume = on_resume
        self._paused = False
        self._draining = False

    def bind(self, dispatch: Callable[[Command], None]) -> None:
        self._dispatch = dispatch

    @property
    def full(self) -> bool:
        return self.ceiling > 0 and self.count >= self.ceiling

    @property
    def paused(self) -> bool:
        return self._paused

    @property
    def pending(self) -> int:
        return len(self._pending)

    @property
    def idle(self) -> bool:
        """True when nothing is in flight and nothing waits."""
        return self.count == 0 and not self._pending

    def admit(self, command: Command) -> Admission:
        if self._pending or self.full:
            self._pending.append(command)
            logger.debug("gate.queue target={} pending={}", command.target, len(self._pending))
            self._pause()
            return Admission.QUEUED
        self._acquire()
        return Admission.PROCEED

    def release(self) -> None:
        """Account for one completed call and dispatch waiting commands."""
        if self.count <= 0:
            raise InvariantError("release without a call in flight")
        self.count -= 1
        if self._draining:
            # a dispatch below completed synchronously, the outer loop keeps going
            return

        self._draining = True
        try:
            while self._pending and not self.full:
                command = self._pending.popleft()
                self._acquire()
                logger.debug("gate.dequeue target={} pending={}", command.target, len(self._pending))
                if self._dispatch is None:
                    raise InvariantError("gate has no dispatcher bound")
                self._dispatch(command)
        finally:
            self._draining = False

        if not self._pending and not self.full:
            self._resume()

    def _acquire(self) -> None:
        self.count += 1
        self.peak = max(self.peak, self.count)
        if self.full:
            self._pause()

    def _pause(self) -> None:
        if self._paused:
            return
        self._paused = True
        if self._on_pause is not None:
            self._on_pause()

    def _resume(self) -> None:
        if not self._paused:
            return
        self._paused = False
        if self._on_resume is not None:
            self._on_resume()
