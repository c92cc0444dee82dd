# tests/unit/test_feed_service.py
# Feed session scenarios: cache seeding, stable pagination, auto-loading and sync retries

from datetime import datetime, timezone

import pytest

from feedsync.db.storage import InMemoryKeyValueStore
from feedsync.errors import UserNotFoundError, ValidationError
from feedsync.repositories.offline_cache import OfflineFeedCache
from feedsync.services.feed_service import (
    DISCOVER_FEED_QUERY,
    MY_FEED_QUERY,
    FeedSession,
    FeedType,
    feed_id_for,
    sweep_stale_caches,
    warm_cache,
)
from feedsync.sync.reactive import SKIP, PaginatedResult, PaginationStatus, QueueSource
from feedsync.sync.scheduler import ManualScheduler
from feedsync.sync.stable_timestamp import StableTimestamp, to_epoch_ms

NOW_MS = 1_700_000_000_000


def at(hour, minute):
    return datetime(2025, 3, 14, hour, minute, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


def events(start, stop):
    return [{"id": f"evt_{i}"} for i in range(start, stop)]


def emit(sub, results, status=PaginationStatus.CAN_LOAD_MORE):
    return PaginatedResult(results=tuple(results), status=status, load_more=sub.load_more)


def make_session(store=None, user_id="u1", feed_type=FeedType.USER, **kwargs):
    clock = FakeClock(at(10, 5))
    source = QueueSource()
    scheduler = ManualScheduler()
    cache = OfflineFeedCache(store if store is not None else InMemoryKeyValueStore())
    timestamp = StableTimestamp(clock=clock)
    session = FeedSession(
        cache, source, timestamp, scheduler,
        feed_type=feed_type, user_id=user_id, pump=False, **kwargs,
    )
    return session, source, scheduler, cache, clock


class TestFeedIds:

    def test_feed_ids(self):
        assert feed_id_for(FeedType.DISCOVER) == "discover"
        assert feed_id_for(FeedType.USER, "42") == "user_42"
        assert feed_id_for(FeedType.PAST, "42") == "user_42_past"
        assert feed_id_for(FeedType.USER, None) == ""

    def test_unknown_filter_is_rejected(self):
        with pytest.raises(ValidationError):
            make_session(filter="tomorrow")

    def test_past_feed_defaults_to_past_filter(self):
        session, *_ = make_session(feed_type=FeedType.PAST)
        assert session.filter == "past"
        assert session.query.args["filter"] == "past"

    def test_past_feed_rejects_upcoming_filter(self):
        with pytest.raises(ValidationError):
            make_session(feed_type=FeedType.PAST, filter="upcoming")


class TestFeedSession:

    @pytest.mark.asyncio
    async def test_query_args_carry_stable_timestamp(self):
        session, source, *_ = make_session()
        await session.open()
        assert source.latest.query == MY_FEED_QUERY
        assert source.latest.args == {"stableTimestamp": to_epoch_ms(at(10, 0)), "filter": "upcoming"}
        await session.close()

    @pytest.mark.asyncio
    async def test_discover_feed_has_no_filter_arg(self):
        session, source, *_ = make_session(feed_type=FeedType.DISCOVER, user_id=None)
        await session.open()
        assert source.latest.query == DISCOVER_FEED_QUERY
        assert "filter" not in source.latest.args
        await session.close()

    @pytest.mark.asyncio
    async def test_user_feed_without_user_stays_skipped(self):
        session, source, *_ = make_session(user_id=None)
        await session.open()
        assert session.query.args is SKIP
        assert source.subscriptions == []
        assert session.items == []
        await session.close()

    @pytest.mark.asyncio
    async def test_end_to_end_offline_first_feed(self):
        store = InMemoryKeyValueStore()
        cache = OfflineFeedCache(store)
        await cache.save("user_u1", events(0, 30), 1)

        session, source, scheduler, cache, clock = make_session(store=store)
        await session.open()

        # cached items render while the first live page loads
        assert session.is_loading_first_page
        assert session.items == events(0, 30)
        assert session.last_updated is not None

        sub = source.latest
        session.observe(emit(sub, events(0, 50)))
        assert session.items == events(0, 50)
        assert sub.load_more_requests == [25]
        assert session.is_auto_loading_pages

        # the page being fetched never shrinks the visible list
        session.observe(emit(sub, events(0, 50), PaginationStatus.LOADING_MORE))
        assert session.items == events(0, 50)
        assert sub.load_more_requests == [25]

        session.observe(emit(sub, events(0, 75), PaginationStatus.EXHAUSTED))
        assert session.is_done
        assert not session.is_auto_loading_pages
        await session.flush()

        saved = await cache.load("user_u1")
        assert saved.items == events(0, 75)
        assert saved.last_synced_timestamp == to_epoch_ms(at(10, 0))

        # crossing a grid boundary resubscribes with the new timestamp
        clock.now = at(10, 16)
        session.stable_timestamp.check_for_update()
        new_sub = source.latest
        assert new_sub is not sub
        assert new_sub.args["stableTimestamp"] == to_epoch_ms(at(10, 15))
        assert sub.closed

        # the reload does not flash an empty feed
        session.observe(emit(new_sub, (), PaginationStatus.LOADING_FIRST_PAGE))
        assert session.items == events(0, 75)

        await session.close()
        assert new_sub.closed

    @pytest.mark.asyncio
    async def test_auto_loading_resumes_after_timestamp_tick(self):
        session, source, scheduler, cache, clock = make_session()
        await session.open()
        old_sub = source.latest
        session.observe(emit(old_sub, events(0, 50)))
        assert old_sub.load_more_requests == [25]

        clock.now = at(10, 16)
        session.stable_timestamp.check_for_update()
        new_sub = source.latest
        assert new_sub is not old_sub

        # the reload keeps showing the old page but must not page the new subscription
        session.observe(emit(new_sub, (), PaginationStatus.LOADING_FIRST_PAGE))
        assert new_sub.load_more_requests == []

        # same length as before the tick, still a fresh cursor
        session.observe(emit(new_sub, events(0, 50)))
        assert new_sub.load_more_requests == [25]
        assert session.is_auto_loading_pages
        await session.flush()
        assert (await cache.load("user_u1")).last_synced_timestamp == to_epoch_ms(at(10, 15))
        await session.close()

    @pytest.mark.asyncio
    async def test_same_grid_slot_does_not_resubscribe(self):
        session, source, scheduler, cache, clock = make_session()
        await session.open()
        sub = source.latest
        clock.now = at(10, 14)
        session.stable_timestamp.check_for_update()
        assert source.latest is sub
        await session.close()

    @pytest.mark.asyncio
    async def test_user_not_found_is_hidden_then_recovers(self):
        session, source, scheduler, *_ = make_session()
        await session.open()

        session.query.handle_error(UserNotFoundError())
        assert session.is_user_syncing
        assert session.sync_error is None
        assert session.items == []

        scheduler.advance(1)
        session.observe(emit(source.latest, events(0, 10), PaginationStatus.EXHAUSTED))
        assert not session.is_user_syncing
        assert session.items == events(0, 10)
        await session.close()

    @pytest.mark.asyncio
    async def test_offline_shows_cache_and_stops_auto_loading(self):
        session, source, *_ = make_session()
        await session.open()
        sub = source.latest
        session.observe(emit(sub, events(0, 50)))
        await session.flush()

        session.set_offline(True)
        assert not session.is_auto_loading_pages
        assert session.items == events(0, 50)

        session.set_offline(False)
        assert sub.load_more_requests == [25, 25]
        await session.close()

    @pytest.mark.asyncio
    async def test_unchanged_results_are_not_saved_twice(self):
        store = InMemoryKeyValueStore()
        session, source, *_ = make_session(store=store)
        await session.open()
        sub = source.latest
        session.observe(emit(sub, events(0, 5), PaginationStatus.EXHAUSTED))
        await session.flush()
        first = await store.get_item("soonlist_feed_cache_user_u1")

        session.observe(emit(sub, events(0, 5), PaginationStatus.EXHAUSTED))
        await session.flush()
        assert await store.get_item("soonlist_feed_cache_user_u1") == first
        await session.close()


class TestCacheMaintenance:

    @pytest.mark.asyncio
    async def test_warm_cache_skips_fresh_cache(self):
        cache = OfflineFeedCache(InMemoryKeyValueStore(), clock=lambda: NOW_MS)
        assert await warm_cache(cache, "discover", events(0, 3), 1) is True
        assert await warm_cache(cache, "discover", events(0, 9), 2) is False
        assert (await cache.load("discover")).total_items == 3

    @pytest.mark.asyncio
    async def test_warm_cache_ignores_empty_input(self):
        cache = OfflineFeedCache(InMemoryKeyValueStore())
        assert await warm_cache(cache, "", events(0, 3), 1) is False
        assert await warm_cache(cache, "discover", [], 1) is False

    @pytest.mark.asyncio
    async def test_sweep_clears_stale_caches_except_kept_prefix(self):
        clock = FakeClock(NOW_MS)
        cache = OfflineFeedCache(InMemoryKeyValueStore(), clock=clock)
        for feed in ("discover", "user_a", "user_b"):
            await cache.save(feed, events(0, 1), 1)

        clock.now = NOW_MS + 121 * 60 * 1000
        cleared = await sweep_stale_caches(cache, keep_prefix="user_a", max_age_minutes=120)
        assert cleared == ["discover", "user_b"]
        assert await cache.load("user_a") is not None
