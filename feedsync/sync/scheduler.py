# feedsync/sync/scheduler.py
# Cancellable delayed tasks.
# Every timer in the sync layer (retry backoff, timestamp polling, batch sweeps)
# is created through a Scheduler so that closing the owner cancels all of them.

from __future__ import annotations

import asyncio
import logging
from typing import Callable, Optional

logger = logging.getLogger(__name__)


class DelayedTask:
    """Handle for a callback scheduled on a Scheduler."""

    def __init__(self, scheduler: "Scheduler", callback: Callable[[], None], interval: Optional[float] = None):
        self._scheduler = scheduler
        self.callback = callback
        self.interval = interval
        self.due: float = 0.0
        self._handle: Optional[asyncio.TimerHandle] = None
        self._cancelled = False
        self._done = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def done(self) -> bool:
        return self._done

    @property
    def active(self) -> bool:
        return not (self._cancelled or self._done)

    def cancel(self) -> None:
        if not self.active:
            return
        self._cancelled = True
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        self._scheduler._discard(self)

    def _run(self) -> None:
        if self.interval is None:
            self._done = True
            self._scheduler._discard(self)
        self.callback()


class Scheduler:
    """Base class: tracks outstanding tasks and cancels them on close()."""

    def __init__(self):
        self._tasks: set[DelayedTask] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        return len(self._tasks)

    @property
    def closed(self) -> bool:
        return self._closed

    def call_later(self, delay: float, callback: Callable[[], None]) -> DelayedTask:
        task = DelayedTask(self, callback)
        self._schedule(task, delay)
        return task

    def call_every(self, interval: float, callback: Callable[[], None]) -> DelayedTask:
        if interval <= 0:
            raise ValueError("interval must be positive")
        task = DelayedTask(self, callback, interval=interval)
        self._schedule(task, interval)
        return task

    def close(self) -> None:
        """Cancel every outstanding task. The scheduler refuses new work afterwards."""
        for task in list(self._tasks):
            task.cancel()
        self._closed = True

    def _schedule(self, task: DelayedTask, delay: float) -> None:
        if self._closed:
            raise RuntimeError("scheduler is closed")
        self._tasks.add(task)
        self._arm(task, max(0.0, delay))

    def _discard(self, task: DelayedTask) -> None:
        self._tasks.discard(task)

    def _fire(self, task: DelayedTask) -> None:
        if not task.active:
            return
        if task.interval is not None:
            # Re-arm first so the callback may cancel its own periodic task
            self._arm(task, task.interval)
        task._run()

    def _arm(self, task: DelayedTask, delay: float) -> None:
        raise NotImplementedError


class AsyncioScheduler(Scheduler):
    """Scheduler backed by the running asyncio event loop."""

    def __init__(self, loop: Optional[asyncio.AbstractEventLoop] = None):
        super().__init__()
        self._loop = loop

    def _arm(self, task: DelayedTask, delay: float) -> None:
        loop = self._loop or asyncio.get_running_loop()
        task.due = loop.time() + delay
        task._handle = loop.call_later(delay, self._fire, task)


class ManualScheduler(Scheduler):
    """Deterministic scheduler driven by advance(); used in tests and replays."""

    def __init__(self, start: float = 0.0):
        super().__init__()
        self.now = start

    def _arm(self, task: DelayedTask, delay: float) -> None:
        task.due = self.now + delay

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing due tasks in order. Returns the number fired."""
        target = self.now + seconds
        fired = 0
        while True:
            due = [t for t in self._tasks if t.active and t.due <= target]
            if not due:
                break
            task = min(due, key=lambda t: t.due)
            self.now = task.due
            self._fire(task)
            fired += 1
        self.now = target
        logger.debug("manual scheduler advanced to %.3f, fired %d", self.now, fired)
        return fired
