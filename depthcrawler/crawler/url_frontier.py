"""
URL Frontier implementation for feeding crawl tasks to the worker pool.

The frontier is a bounded in-memory queue. Enqueue never waits: when the
queue is saturated the task is rejected and the caller reports the loss.
Workers block in dequeue() until a task arrives or the frontier is closed.
"""

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, Dict, Optional


@dataclass(frozen=True)
class CrawlTask:
    """Represents a URL crawling task."""
    url: str
    depth: int

    def __post_init__(self):
        if self.depth < 0:
            raise ValueError(f"depth must be non-negative, got {self.depth}")


class URLFrontier:
    """
    Bounded queue of CrawlTasks shared by all workers.
    """

    def __init__(self, capacity: int = 1000):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")

        self.capacity = capacity
        self.logger = logging.getLogger(__name__)

        self._tasks: Deque[CrawlTask] = deque()
        self._not_empty = asyncio.Condition()
        self._closed = False

        self.stats = {
            'total_enqueued': 0,
            'total_dequeued': 0,
            'total_overflow': 0,
        }

    async def enqueue(self, task: CrawlTask) -> bool:
        """
        Add a task to the frontier without waiting for space.

        Returns:
            True if the task was queued, False if the frontier is full or closed
        """
        async with self._not_empty:
            if self._closed:
                return False

            if len(self._tasks) >= self.capacity:
                self.stats['total_overflow'] += 1
                self.logger.warning(f"URL queue full, dropping {task.url}")
                return False

            self._tasks.append(task)
            self.stats['total_enqueued'] += 1
            self._not_empty.notify()

        self.logger.debug(f"Added URL to frontier: {task.url} (depth {task.depth})")
        return True

    async def dequeue(self) -> Optional[CrawlTask]:
        """
        Wait for the next task.

        Returns:
            The next CrawlTask, or None once the frontier is closed and empty
        """
        async with self._not_empty:
            await self._not_empty.wait_for(lambda: self._tasks or self._closed)

            if not self._tasks:
                return None

            task = self._tasks.popleft()
            self.stats['total_dequeued'] += 1
            return task

    async def close(self):
        """Stop accepting tasks and wake every waiting worker."""
        async with self._not_empty:
            self._closed = True
            self._not_empty.notify_all()
        self.logger.debug("URL frontier closed")

    @property
    def closed(self) -> bool:
        return self._closed

    def qsize(self) -> int:
        return len(self._tasks)

    def get_stats(self) -> Dict[str, int]:
        """Get frontier statistics."""
        return {**self.stats, 'total_queued': len(self._tasks)}
