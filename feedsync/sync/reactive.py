# feedsync/sync/reactive.py
# Boundary with the remote reactive store.
# The store's client library is external; this module fixes the shape the sync
# layer expects from it and provides a queue-backed bridge for callback clients.

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Callable, Mapping, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class _Loading:
    """Emitted by a subscription while the server recomputes its result."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "LOADING"

    def __bool__(self) -> bool:
        return False


LOADING = _Loading()


class _Skip:
    def __repr__(self) -> str:
        return "SKIP"


# Passed instead of query args to keep a query unsubscribed
SKIP = _Skip()


class PaginationStatus(str, Enum):
    LOADING_FIRST_PAGE = "LoadingFirstPage"
    LOADING_MORE = "LoadingMore"
    CAN_LOAD_MORE = "CanLoadMore"
    EXHAUSTED = "Exhausted"

    @property
    def is_loading(self) -> bool:
        return self in (PaginationStatus.LOADING_FIRST_PAGE, PaginationStatus.LOADING_MORE)


def _no_more(num_items: int) -> None:
    return None


@dataclass(frozen=True)
class PaginatedResult:
    """One emission of a paginated subscription: every page loaded so far."""
    results: Sequence[Any]
    status: PaginationStatus
    load_more: Callable[[int], None] = field(default=_no_more, compare=False, repr=False)

    @classmethod
    def loading_first_page(cls) -> "PaginatedResult":
        return cls(results=(), status=PaginationStatus.LOADING_FIRST_PAGE)


class Subscription(Protocol):
    def __aiter__(self) -> AsyncIterator[Any]: ...

    def close(self) -> None: ...


class PaginatedSubscription(Subscription, Protocol):
    def load_more(self, num_items: int) -> None: ...


class ReactiveSource(Protocol):
    """What the backend client must offer."""

    def subscribe(self, query: str, args: Mapping[str, Any]) -> Subscription: ...

    def subscribe_paginated(
        self, query: str, args: Mapping[str, Any], initial_num_items: int
    ) -> PaginatedSubscription: ...


class _Closed:
    pass


_CLOSED = _Closed()


class QueueSubscription:
    """Subscription fed by push()/fail(); iteration ends after close()."""

    def __init__(self, query: str, args: Mapping[str, Any]):
        self.query = query
        self.args = dict(args)
        self._queue: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def push(self, emission: Any) -> None:
        if not self.closed:
            self._queue.put_nowait(emission)

    def fail(self, error: BaseException) -> None:
        if not self.closed:
            self._queue.put_nowait(error)

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[Any]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            if isinstance(item, BaseException):
                raise item
            yield item


class QueuePaginatedSubscription(QueueSubscription):
    def __init__(self, query: str, args: Mapping[str, Any], initial_num_items: int):
        super().__init__(query, args)
        self.initial_num_items = initial_num_items
        self.load_more_requests: list[int] = []
        self.on_load_more: Optional[Callable[[int], None]] = None

    def load_more(self, num_items: int) -> None:
        if self.closed:
            return
        self.load_more_requests.append(num_items)
        if self.on_load_more is not None:
            self.on_load_more(num_items)

    def push_page(self, results: Sequence[Any], status: PaginationStatus) -> None:
        self.push(PaginatedResult(results=tuple(results), status=status, load_more=self.load_more))


class QueueSource:
    """ReactiveSource whose subscriptions are driven by an adapter (or a test)."""

    def __init__(self):
        self.subscriptions: list[QueueSubscription] = []

    def subscribe(self, query: str, args: Mapping[str, Any]) -> QueueSubscription:
        sub = QueueSubscription(query, args)
        self.subscriptions.append(sub)
        logger.debug("subscribed %s %s", query, sub.args)
        return sub

    def subscribe_paginated(
        self, query: str, args: Mapping[str, Any], initial_num_items: int
    ) -> QueuePaginatedSubscription:
        sub = QueuePaginatedSubscription(query, args, initial_num_items)
        self.subscriptions.append(sub)
        logger.debug("subscribed paginated %s %s", query, sub.args)
        return sub

    @property
    def latest(self) -> QueueSubscription:
        return self.subscriptions[-1]

    @property
    def open_subscriptions(self) -> list[QueueSubscription]:
        return [s for s in self.subscriptions if not s.closed]
