# feedsync/sync/stable_timestamp.py
"""
Stable "now" for time-filtered pagination.

Cursor-based pages of "events ending after T" are only valid while T stays put,
so feeds filter against a timestamp floored to a coarse grid (15 minutes) that
is re-checked once a minute and only republished when a new grid cell starts.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from feedsync.constants import STABLE_GRID_MINUTES, STABLE_POLL_SECONDS
from feedsync.sync.scheduler import DelayedTask, Scheduler

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def create_stable_timestamp(now: Optional[datetime] = None, grid_minutes: int = STABLE_GRID_MINUTES) -> datetime:
    """Floor `now` to the start of its grid cell."""
    now = now or utc_now()
    rounded = (now.minute // grid_minutes) * grid_minutes
    return now.replace(minute=rounded, second=0, microsecond=0)


def to_epoch_ms(value: datetime) -> int:
    return int(value.timestamp() * 1000)


class StableTimestamp:
    """Published stable timestamp plus the polling timer that refreshes it."""

    def __init__(
        self,
        clock: Clock = utc_now,
        grid_minutes: int = STABLE_GRID_MINUTES,
        poll_interval: float = STABLE_POLL_SECONDS,
    ):
        self._clock = clock
        self.grid_minutes = grid_minutes
        self.poll_interval = poll_interval
        self._value = create_stable_timestamp(clock(), grid_minutes)
        self._listeners: list[Callable[[datetime], None]] = []
        self._timer: Optional[DelayedTask] = None

    @property
    def value(self) -> datetime:
        return self._value

    @property
    def grid(self) -> timedelta:
        return timedelta(minutes=self.grid_minutes)

    @property
    def running(self) -> bool:
        return self._timer is not None and self._timer.active

    def get_stable_timestamp(self) -> datetime:
        return self._value

    def as_epoch_ms(self) -> int:
        return to_epoch_ms(self._value)

    def subscribe(self, listener: Callable[[datetime], None]) -> Callable[[], None]:
        """Register a change listener; returns the function that removes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def check_for_update(self, now: Optional[datetime] = None) -> bool:
        """Publish a new value if a full grid interval has passed since the current one."""
        now = now or self._clock()
        if now - self._value < self.grid:
            return False
        candidate = create_stable_timestamp(now, self.grid_minutes)
        if candidate <= self._value:
            return False
        self._publish(candidate)
        return True

    def refresh(self) -> datetime:
        """Force a recompute, e.g. when a feed screen regains focus. Never moves backward."""
        candidate = create_stable_timestamp(self._clock(), self.grid_minutes)
        if candidate > self._value:
            self._publish(candidate)
        return self._value

    def start(self, scheduler: Scheduler) -> None:
        if self.running:
            return
        self.check_for_update()
        self._timer = scheduler.call_every(self.poll_interval, self.check_for_update)

    def stop(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _publish(self, value: datetime) -> None:
        logger.debug("stable timestamp %s -> %s", self._value.isoformat(), value.isoformat())
        self._value = value
        for listener in list(self._listeners):
            listener(value)
