# feedsync/sync/user_sync.py
# Retry wrapper for the sign-up race: the identity provider reports the user
# before the backend has provisioned its record, so the first queries fail with
# USER_NOT_FOUND. Those failures are hidden behind exponential backoff; every
# other failure is surfaced unchanged.

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Mapping, Optional

from feedsync.constants import (
    INITIAL_PAGE_SIZE,
    SYNC_MAX_RETRIES,
    SYNC_RETRY_BASE_SECONDS,
    SYNC_RETRY_MAX_SECONDS,
)
from feedsync.errors import ErrorKind, QueryError
from feedsync.sync.reactive import SKIP, PaginatedResult, PaginationStatus, ReactiveSource
from feedsync.sync.scheduler import DelayedTask, Scheduler
from feedsync.sync.stable_query import StablePaginatedQuery, StableQuery, is_loading

logger = logging.getLogger(__name__)


def backoff_delay(
    attempt: int,
    base: float = SYNC_RETRY_BASE_SECONDS,
    cap: float = SYNC_RETRY_MAX_SECONDS,
) -> float:
    """1s, 2s, 4s, 8s, 16s, then capped."""
    return min(base * (2 ** attempt), cap)


def is_user_not_found(error: BaseException) -> bool:
    return isinstance(error, QueryError) and error.kind is ErrorKind.USER_NOT_FOUND


class RetryPhase(Enum):
    IDLE = "idle"
    RETRYING = "retrying"
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RetryState:
    attempt: int = 0
    phase: RetryPhase = RetryPhase.IDLE
    last_error: Optional[BaseException] = None


def on_sync_error(state: RetryState, error: BaseException, max_retries: int) -> RetryState:
    if state.attempt >= max_retries:
        return RetryState(attempt=state.attempt, phase=RetryPhase.EXHAUSTED, last_error=error)
    return RetryState(attempt=state.attempt, phase=RetryPhase.RETRYING, last_error=error)


def on_backoff_elapsed(state: RetryState) -> RetryState:
    return RetryState(attempt=state.attempt + 1, phase=RetryPhase.IDLE, last_error=None)


class _UserAwareBase:
    def __init__(
        self,
        source: ReactiveSource,
        query: str,
        args: Any,
        scheduler: Scheduler,
        *,
        max_retries: int = SYNC_MAX_RETRIES,
        base_delay: float = SYNC_RETRY_BASE_SECONDS,
        max_delay: float = SYNC_RETRY_MAX_SECONDS,
        pump: bool = True,
    ):
        self.source = source
        self.query = query
        self.scheduler = scheduler
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._pump_enabled = pump
        self._args = args
        self._retry = RetryState()
        self._error: Optional[BaseException] = None
        self._subscription = None
        self._pump_task: Optional[asyncio.Task] = None
        self._timer: Optional[DelayedTask] = None
        self._listeners: list[Callable[[], None]] = []
        self._closed = False

    # --- public state ---

    @property
    def args(self) -> Any:
        return self._args

    @property
    def retry_state(self) -> RetryState:
        return self._retry

    @property
    def subscription(self):
        return self._subscription

    @property
    def is_skipped(self) -> bool:
        return self._args is SKIP or self._retry.phase is not RetryPhase.IDLE

    @property
    def is_user_syncing(self) -> bool:
        if self._retry.phase is RetryPhase.RETRYING:
            return True
        return self._retry.phase is RetryPhase.IDLE and 0 < self._retry.attempt < self.max_retries

    @property
    def sync_error(self) -> Optional[BaseException]:
        if self._retry.phase is RetryPhase.EXHAUSTED:
            return self._retry.last_error
        return None

    @property
    def error(self) -> Optional[BaseException]:
        return self._error

    def on_change(self, listener: Callable[[], None]) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    # --- lifecycle ---

    def start(self) -> None:
        self._subscribe()

    def set_args(self, args: Any) -> None:
        """New arguments start a new retry session."""
        if args == self._args:
            return
        self._args = args
        self._cancel_timer()
        self._retry = RetryState()
        self._error = None
        self._subscribe()
        self._notify()

    def close(self) -> None:
        self._closed = True
        self._cancel_timer()
        self._unsubscribe()
        self._listeners.clear()

    # --- emissions and errors ---

    def observe(self, emission: Any) -> Any:
        value = self._slot.observe(emission)
        if not is_loading(emission):
            self._error = None
            if self._retry != RetryState():
                logger.info("query %s settled after %d sync retries", self.query, self._retry.attempt)
                self._retry = RetryState()
        self._notify()
        return value

    def handle_error(self, error: BaseException) -> None:
        """Absorb a USER_NOT_FOUND failure into the retry cycle; re-raise anything else."""
        if is_user_not_found(error):
            self._handle_sync_error(error)
            return
        self._error = error
        self._notify()
        raise error

    def _handle_sync_error(self, error: BaseException) -> None:
        if self._retry.phase is not RetryPhase.IDLE:
            return
        self._unsubscribe()
        self._retry = on_sync_error(self._retry, error, self.max_retries)
        if self._retry.phase is RetryPhase.EXHAUSTED:
            logger.error(
                f"query {self.query}: user still not synced after {self.max_retries} retries: {error}"
            )
        else:
            delay = backoff_delay(self._retry.attempt, self.base_delay, self.max_delay)
            self._cancel_timer()
            self._timer = self.scheduler.call_later(delay, self._on_backoff_elapsed)
            logger.warning(
                f"query {self.query}: user not synced (attempt {self._retry.attempt + 1}), "
                f"retrying in {delay:.1f}s"
            )
        self._notify()

    def _on_backoff_elapsed(self) -> None:
        self._timer = None
        if self._closed:
            return
        self._retry = on_backoff_elapsed(self._retry)
        self._subscribe()
        self._notify()

    # --- subscription plumbing ---

    def _open(self, args: Mapping[str, Any]):
        raise NotImplementedError

    def _subscribe(self) -> None:
        self._unsubscribe()
        if self._closed or self.is_skipped:
            return
        try:
            self._subscription = self._open(self._args)
        except QueryError as e:
            if not is_user_not_found(e):
                raise
            self._handle_sync_error(e)
            return
        if self._pump_enabled:
            self._pump_task = asyncio.get_running_loop().create_task(self._pump(self._subscription))

    def _unsubscribe(self) -> None:
        if self._pump_task is not None:
            self._pump_task.cancel()
            self._pump_task = None
        if self._subscription is not None:
            self._subscription.close()
            self._subscription = None

    async def _pump(self, subscription) -> None:
        try:
            async for emission in subscription:
                if subscription is not self._subscription:
                    return
                self.observe(emission)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if subscription is not self._subscription:
                return
            if is_user_not_found(e):
                self._handle_sync_error(e)
            else:
                # surfaced through snapshot() of the owner
                logger.warning(f"query {self.query} failed: {type(e).__name__}: {e}")
                self._error = e
                self._notify()

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _notify(self) -> None:
        for listener in list(self._listeners):
            listener()

    def _raise_if_failed(self) -> None:
        if self._error is not None:
            raise self._error


@dataclass(frozen=True)
class UserAwareValue:
    value: Any
    is_user_syncing: bool
    sync_error: Optional[BaseException]


class UserAwareQuery(_UserAwareBase):
    """Single-value query with stable results and user-sync retries."""

    def __init__(self, source: ReactiveSource, query: str, args: Any, scheduler: Scheduler, **kwargs):
        super().__init__(source, query, args, scheduler, **kwargs)
        self._slot = StableQuery()

    @property
    def current(self) -> Any:
        return self._slot.current

    def _open(self, args: Mapping[str, Any]):
        return self.source.subscribe(self.query, args)

    def snapshot(self) -> UserAwareValue:
        self._raise_if_failed()
        return UserAwareValue(
            value=self._slot.current,
            is_user_syncing=self.is_user_syncing,
            sync_error=self.sync_error,
        )


@dataclass(frozen=True)
class UserAwarePage:
    results: tuple
    status: PaginationStatus
    load_more: Callable[[int], None]
    is_user_syncing: bool
    sync_error: Optional[BaseException]


class UserAwarePaginatedQuery(_UserAwareBase):
    """Paginated query with stable results and user-sync retries."""

    def __init__(
        self,
        source: ReactiveSource,
        query: str,
        args: Any,
        scheduler: Scheduler,
        *,
        initial_num_items: int = INITIAL_PAGE_SIZE,
        **kwargs,
    ):
        super().__init__(source, query, args, scheduler, **kwargs)
        self.initial_num_items = initial_num_items
        self._slot = StablePaginatedQuery()

    @property
    def current(self) -> PaginatedResult:
        return self._slot.current

    @property
    def latest(self) -> PaginatedResult:
        return self._slot.latest

    def load_more(self, num_items: int) -> None:
        if self.is_skipped:
            return
        self._slot.load_more(num_items)

    def _open(self, args: Mapping[str, Any]):
        return self.source.subscribe_paginated(self.query, args, self.initial_num_items)

    def snapshot(self) -> UserAwarePage:
        self._raise_if_failed()
        page = self._slot.current
        return UserAwarePage(
            results=tuple(page.results),
            status=page.status,
            load_more=self.load_more,
            is_user_syncing=self.is_user_syncing,
            sync_error=self.sync_error,
        )
