# tests/unit/test_stable_query.py
# Unit tests for the settled/pending slot and the paginated query wrapper

import pytest

from feedsync.sync.reactive import LOADING, PaginatedResult, PaginationStatus, QueueSource
from feedsync.sync.stable_query import (
    Pending,
    Settled,
    StablePaginatedQuery,
    StableQuery,
    carry_forward,
    carry_forward_page,
    visible_value,
)


def page(results, status=PaginationStatus.CAN_LOAD_MORE):
    return PaginatedResult(results=tuple(results), status=status)


class TestCarryForward:

    def test_loading_after_settled_keeps_value(self):
        assert carry_forward(Settled("A"), LOADING) == Pending("A")

    def test_repeated_loading_keeps_same_pending(self):
        state = Pending("A")
        assert carry_forward(state, LOADING) is state

    def test_settled_emission_replaces(self):
        assert carry_forward(Pending("A"), "B") == Settled("B")

    def test_nothing_before_first_settle(self):
        assert visible_value(carry_forward(Pending(), LOADING)) is None

    def test_falsy_value_is_settled(self):
        # an empty list is a real answer, not a loading marker
        assert carry_forward(Pending("A"), []) == Settled([])


class TestCarryForwardPage:

    def test_loading_before_any_settle_is_passed_through(self):
        first = PaginatedResult.loading_first_page()
        assert carry_forward_page(Pending(), first) is first

    def test_loading_more_keeps_settled_page(self):
        settled = page(range(50))
        shown = carry_forward_page(Settled(settled), page(range(50), PaginationStatus.LOADING_MORE))
        assert shown is settled
        assert shown.status is PaginationStatus.CAN_LOAD_MORE

    def test_reload_keeps_pending_page(self):
        settled = page(range(75), PaginationStatus.EXHAUSTED)
        assert carry_forward_page(Pending(settled), page((), PaginationStatus.LOADING_FIRST_PAGE)) is settled

    def test_settled_result_wins(self):
        fresh = page(range(10), PaginationStatus.EXHAUSTED)
        assert carry_forward_page(Pending(page(range(75))), fresh) is fresh


class TestStableQuery:

    def test_sequence_a_loading_b(self):
        query = StableQuery()
        assert [query.observe(e) for e in ["A", LOADING, "B"]] == ["A", "A", "B"]

    def test_loading_only_yields_none(self):
        query = StableQuery()
        assert [query.observe(e) for e in [LOADING, LOADING]] == [None, None]
        assert not query.is_loading_new

    def test_is_loading_new_while_refetching(self):
        query = StableQuery()
        query.observe("A")
        query.observe(LOADING)
        assert query.is_loading_new
        query.observe("B")
        assert not query.is_loading_new

    def test_previous_resource_data_stays_visible(self):
        # args switched from user 1 to user 2: old data shows until the new result settles
        query = StableQuery()
        query.observe({"user": 1})
        query.observe(LOADING)
        assert query.current == {"user": 1}

    @pytest.mark.asyncio
    async def test_stream_over_subscription(self):
        source = QueueSource()
        sub = source.subscribe("events:get", {"id": 1})
        for emission in ["A", LOADING, LOADING, "B"]:
            sub.push(emission)
        sub.close()

        query = StableQuery()
        seen = [value async for value in query.stream(sub.__aiter__())]
        assert seen == ["A", "A", "A", "B"]


class TestStablePaginatedQuery:

    def test_loading_more_keeps_accumulated_results(self):
        query = StablePaginatedQuery()
        query.observe(page(range(50)))
        shown = query.observe(page(range(50), PaginationStatus.LOADING_MORE))
        assert len(shown.results) == 50
        assert shown.status == PaginationStatus.CAN_LOAD_MORE
        shown = query.observe(page(range(75)))
        assert len(shown.results) == 75

    def test_reload_from_first_page_does_not_flash_empty(self):
        query = StablePaginatedQuery()
        query.observe(page(range(50)))
        shown = query.observe(PaginatedResult.loading_first_page())
        assert len(shown.results) == 50
        assert query.is_loading_new

    def test_loading_first_page_before_anything_settles(self):
        query = StablePaginatedQuery()
        assert query.status == PaginationStatus.LOADING_FIRST_PAGE
        assert query.current.results == ()

    def test_results_never_shrink_across_loading(self):
        query = StablePaginatedQuery()
        lengths = []
        for emission in [
            PaginatedResult.loading_first_page(),
            page(range(50)),
            page(range(50), PaginationStatus.LOADING_MORE),
            page(range(75)),
            page((), PaginationStatus.LOADING_FIRST_PAGE),
            page(range(75), PaginationStatus.EXHAUSTED),
        ]:
            lengths.append(len(query.observe(emission).results))
        assert lengths == [0, 50, 50, 75, 75, 75]

    def test_load_more_goes_to_latest_subscription(self):
        requests = []
        query = StablePaginatedQuery()
        query.observe(PaginatedResult((1, 2), PaginationStatus.CAN_LOAD_MORE, load_more=requests.append))
        query.current.load_more(25)
        assert requests == [25]

    def test_load_more_during_reload_targets_new_subscription(self):
        old, new = [], []
        query = StablePaginatedQuery()
        query.observe(PaginatedResult((1, 2), PaginationStatus.CAN_LOAD_MORE, load_more=old.append))
        query.observe(PaginatedResult((), PaginationStatus.LOADING_FIRST_PAGE, load_more=new.append))
        query.current.load_more(25)
        assert old == []
        assert new == [25]

    def test_latest_reports_raw_loading_status(self):
        query = StablePaginatedQuery()
        query.observe(page(range(50)))
        query.observe(page((), PaginationStatus.LOADING_FIRST_PAGE))
        assert query.current.status is PaginationStatus.CAN_LOAD_MORE
        assert query.latest.status is PaginationStatus.LOADING_FIRST_PAGE
