"""
Quiescence detection for a crawl run.
"""

import asyncio
import logging
from enum import Enum


class CrawlState(Enum):
    """Lifecycle of a crawl run."""
    RUNNING = "running"
    DRAINING = "draining"
    CLOSED = "closed"


class CompletionTracker:
    """
    Counts tasks that are queued or being processed.

    task_added() is called before a task enters the frontier and
    task_finished() only after its worker has enqueued all of its children,
    so the count can only reach zero when no work is left anywhere.
    Reaching zero moves the run to DRAINING; close() moves it to CLOSED once.
    """

    def __init__(self):
        self.logger = logging.getLogger(__name__)
        self._in_flight = 0
        self._state = CrawlState.RUNNING
        self._drained = asyncio.Event()

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def state(self) -> CrawlState:
        return self._state

    def task_added(self):
        if self._state is not CrawlState.RUNNING:
            raise RuntimeError(f"cannot add tasks to a run that is {self._state.value}")
        self._in_flight += 1

    def task_finished(self):
        if self._in_flight <= 0:
            raise RuntimeError("task_finished() called with no task in flight")

        self._in_flight -= 1
        if self._in_flight == 0 and self._state is CrawlState.RUNNING:
            self._state = CrawlState.DRAINING
            self._drained.set()
            self.logger.debug("No tasks in flight, draining")

    async def wait_drained(self):
        """Block until the in-flight count drops to zero."""
        await self._drained.wait()

    def close(self) -> bool:
        """
        Mark the run closed.

        Returns:
            True only for the call that performed the transition
        """
        if self._state is CrawlState.CLOSED:
            return False
        self._state = CrawlState.CLOSED
        self._drained.set()
        return True
