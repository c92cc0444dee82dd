# feedsync/sync/stable_query.py
"""
Keep the last settled query result visible while new arguments load.

A reactive subscription emits LOADING (or a paginated result whose status is
LoadingFirstPage/LoadingMore) every time its arguments change. Rendering that
directly makes a feed flash empty. The slot here remembers the last settled
emission and hands it back until the next one settles.

The slot does not know which arguments produced a value: after switching to a
different resource the previous resource's data stays visible until the new
result settles.
"""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass
from typing import Any, AsyncIterator, Generic, Optional, TypeVar, Union

from feedsync.sync.reactive import LOADING, PaginatedResult, PaginationStatus

T = TypeVar("T")


@dataclass(frozen=True)
class Settled(Generic[T]):
    value: T


@dataclass(frozen=True)
class Pending(Generic[T]):
    last_settled: Optional[T] = None


SlotState = Union[Settled, Pending]


def is_loading(emission: Any) -> bool:
    if emission is LOADING or emission is None:
        return True
    if isinstance(emission, PaginatedResult):
        return emission.status.is_loading
    return False


def carry_forward(state: SlotState, emission: Any) -> SlotState:
    """Pure slot transition for one emission."""
    if not is_loading(emission):
        return Settled(emission)
    if isinstance(state, Settled):
        return Pending(state.value)
    return state


def visible_value(state: SlotState) -> Any:
    if isinstance(state, Settled):
        return state.value
    return state.last_settled


def carry_forward_page(state: SlotState, result: PaginatedResult) -> PaginatedResult:
    """Page to show after `result`: the last settled page while one loads, `result` before any settled."""
    settled = visible_value(carry_forward(state, result))
    if settled is None:
        # Nothing settled yet: loading is the only honest answer
        return result
    return settled


class StableQuery:
    """Single-value form. `current` is None only before the first settled emission."""

    def __init__(self):
        self._state: SlotState = Pending()

    @property
    def state(self) -> SlotState:
        return self._state

    @property
    def current(self) -> Any:
        return visible_value(self._state)

    @property
    def is_loading_new(self) -> bool:
        return isinstance(self._state, Pending) and self._state.last_settled is not None

    def observe(self, emission: Any) -> Any:
        self._state = carry_forward(self._state, emission)
        return self.current

    async def stream(self, emissions: AsyncIterator[Any]) -> AsyncIterator[Any]:
        async for emission in emissions:
            yield self.observe(emission)


class StablePaginatedQuery:
    """Paginated form. Accumulated results never shrink while a page loads."""

    def __init__(self):
        self._state: SlotState = Pending()
        self._latest: PaginatedResult = PaginatedResult.loading_first_page()
        self._page: PaginatedResult = self._latest

    @property
    def state(self) -> SlotState:
        return self._state

    @property
    def latest(self) -> PaginatedResult:
        """Last raw emission, loading statuses included."""
        return self._latest

    @property
    def current(self) -> PaginatedResult:
        return dataclasses.replace(self._page, load_more=self.load_more)

    @property
    def is_loading_new(self) -> bool:
        return isinstance(self._state, Pending) and self._state.last_settled is not None

    @property
    def status(self) -> PaginationStatus:
        return self.current.status

    def observe(self, result: PaginatedResult) -> PaginatedResult:
        self._latest = result
        self._page = carry_forward_page(self._state, result)
        self._state = carry_forward(self._state, result)
        return self.current

    def load_more(self, num_items: int) -> None:
        """Ask the live subscription for more; the cursor only moves forward."""
        self._latest.load_more(num_items)

    async def stream(self, emissions: AsyncIterator[PaginatedResult]) -> AsyncIterator[PaginatedResult]:
        async for result in emissions:
            yield self.observe(result)
