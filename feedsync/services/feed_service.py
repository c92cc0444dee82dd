# feedsync/services/feed_service.py
# Feed session: what a feed screen does between mount and unmount.
# Seeds items from the offline cache, follows the live paginated query,
# keeps loading pages while online and writes every good page set back.

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from feedsync.constants import FEED_FILTERS, INITIAL_PAGE_SIZE, LOAD_MORE_PAGE_SIZE
from feedsync.errors import ValidationError
from feedsync.repositories.offline_cache import OfflineFeedCache, now_ms
from feedsync.schemas.cache import CachedFeedPage
from feedsync.sync.reactive import SKIP, PaginatedResult, PaginationStatus, ReactiveSource
from feedsync.sync.scheduler import Scheduler
from feedsync.sync.stable_timestamp import StableTimestamp, to_epoch_ms
from feedsync.sync.user_sync import UserAwarePaginatedQuery

logger = logging.getLogger(__name__)

MY_FEED_QUERY = "feeds:getMyFeed"
DISCOVER_FEED_QUERY = "feeds:getDiscoverFeed"


class FeedType(str, Enum):
    USER = "user"
    DISCOVER = "discover"
    PAST = "past"


def feed_id_for(feed_type: FeedType, user_id: Optional[str] = None) -> str:
    """Cache key of a feed; empty when a user feed has no user yet."""
    feed_type = FeedType(feed_type)
    if feed_type is FeedType.DISCOVER:
        return "discover"
    if not user_id:
        return ""
    if feed_type is FeedType.PAST:
        return f"user_{user_id}_past"
    return f"user_{user_id}"


class FeedSession:
    def __init__(
        self,
        cache: OfflineFeedCache,
        source: ReactiveSource,
        stable_timestamp: StableTimestamp,
        scheduler: Scheduler,
        feed_type: FeedType = FeedType.USER,
        user_id: Optional[str] = None,
        filter: Optional[str] = None,
        initial_num_items: int = INITIAL_PAGE_SIZE,
        page_size: int = LOAD_MORE_PAGE_SIZE,
        pump: bool = True,
        **retry_options: Any,
    ):
        feed_type = FeedType(feed_type)
        if filter is None:
            filter = "past" if feed_type is FeedType.PAST else "upcoming"
        if filter not in FEED_FILTERS:
            raise ValidationError(f"Unknown feed filter: {filter}")
        if feed_type is FeedType.PAST and filter != "past":
            raise ValidationError(f"Past feed cannot use filter: {filter}")
        self.cache = cache
        self.stable_timestamp = stable_timestamp
        self.feed_type = feed_type
        self.user_id = user_id
        self.filter = filter
        self.page_size = page_size
        self.feed_id = feed_id_for(self.feed_type, user_id)

        self.is_offline = False
        self.is_auto_loading_pages = False
        self._cached_items: Optional[list[Any]] = None
        self._last_updated: Optional[int] = None
        self._requested_more_at: Optional[int] = None
        self._last_saved: Optional[tuple] = None
        self._pending_saves: set[asyncio.Task] = set()
        self._unsubscribe_timestamp = None
        self._opened = False

        query = DISCOVER_FEED_QUERY if self.feed_type is FeedType.DISCOVER else MY_FEED_QUERY
        self.query = UserAwarePaginatedQuery(
            source,
            query,
            self._query_args(stable_timestamp.value),
            scheduler,
            initial_num_items=initial_num_items,
            pump=pump,
            **retry_options,
        )
        self.query.on_change(self._on_live_change)

    def _query_args(self, timestamp: datetime) -> Any:
        if self.feed_type is not FeedType.DISCOVER and not self.user_id:
            return SKIP
        args = {"stableTimestamp": to_epoch_ms(timestamp)}
        if self.feed_type is not FeedType.DISCOVER:
            args["filter"] = self.filter
        return args

    # --- lifecycle ---

    async def open(self) -> None:
        """Seed from the cache, then subscribe to the live feed."""
        if self._opened:
            return
        self._opened = True
        if self.feed_id:
            cached = await self.cache.load(self.feed_id)
            if cached is not None:
                self._cached_items = list(cached.items)
                self._last_updated = cached.last_updated
                logger.debug(f"feed {self.feed_id}: seeded {len(cached.items)} cached items")
        self._unsubscribe_timestamp = self.stable_timestamp.subscribe(self._on_timestamp)
        self.query.start()

    async def flush(self) -> None:
        """Wait for in-flight cache writes."""
        while self._pending_saves:
            await asyncio.gather(*list(self._pending_saves))

    async def close(self) -> None:
        if self._unsubscribe_timestamp is not None:
            self._unsubscribe_timestamp()
            self._unsubscribe_timestamp = None
        self.query.close()
        for task in list(self._pending_saves):
            task.cancel()
        self._pending_saves.clear()

    # --- inputs ---

    def observe(self, result: PaginatedResult) -> PaginatedResult:
        """Feed one live emission through the session (used when not pumping)."""
        return self.query.observe(result)

    def set_offline(self, offline: bool) -> None:
        was_offline = self.is_offline
        self.is_offline = offline
        if offline:
            self.is_auto_loading_pages = False
        elif was_offline:
            logger.info(f"feed {self.feed_id}: back online")
            self._requested_more_at = None
            self._on_live_change()

    def load_more(self, num_items: Optional[int] = None) -> None:
        self.query.load_more(num_items or self.page_size)

    # --- outputs ---

    @property
    def live(self) -> PaginatedResult:
        return self.query.current

    @property
    def status(self) -> PaginationStatus:
        return self.live.status

    @property
    def is_loading_first_page(self) -> bool:
        return self.status is PaginationStatus.LOADING_FIRST_PAGE

    @property
    def is_loading_more(self) -> bool:
        return self.status is PaginationStatus.LOADING_MORE

    @property
    def is_done(self) -> bool:
        return self.status is PaginationStatus.EXHAUSTED

    @property
    def last_updated(self) -> Optional[int]:
        return self._last_updated

    @property
    def is_user_syncing(self) -> bool:
        return self.query.is_user_syncing

    @property
    def sync_error(self) -> Optional[BaseException]:
        return self.query.sync_error

    @property
    def items(self) -> Optional[list[Any]]:
        """Cached items while offline or before the first live page; live results otherwise."""
        if self.is_offline or (self.is_loading_first_page and self._cached_items is not None):
            return self._cached_items
        return list(self.query.snapshot().results)

    # --- internals ---

    def _on_timestamp(self, value: datetime) -> None:
        args = self._query_args(value)
        if args == self.query.args:
            return
        self.query.set_args(args)
        # a new subscription pages from zero and has nothing saved yet
        self._requested_more_at = None
        self._last_saved = None

    def _on_live_change(self) -> None:
        if self.query.error is not None:
            return
        if self.query.latest.status.is_loading:
            return
        page = self.query.current

        results = tuple(page.results)
        if self.feed_id and results and results != self._last_saved:
            self._last_saved = results
            self._schedule_save(list(results))

        if not self.feed_id:
            return
        if not self.is_offline and page.status is PaginationStatus.CAN_LOAD_MORE:
            if self._requested_more_at != len(results):
                self._requested_more_at = len(results)
                self.is_auto_loading_pages = True
                self.query.load_more(self.page_size)
        elif page.status is PaginationStatus.EXHAUSTED or self.is_offline:
            self.is_auto_loading_pages = False

    def _schedule_save(self, items: list[Any]) -> None:
        task = asyncio.get_running_loop().create_task(self._save(items))
        self._pending_saves.add(task)
        task.add_done_callback(self._pending_saves.discard)

    async def _save(self, items: list[Any]) -> None:
        saved = await self.cache.save(self.feed_id, items, self.stable_timestamp.as_epoch_ms())
        if saved:
            self._cached_items = items
            self._last_updated = now_ms()


async def warm_cache(
    cache: OfflineFeedCache,
    feed_id: str,
    page: list[Any],
    synced_timestamp: int,
    max_age_minutes: float = 60,
) -> bool:
    """Save a first page for offline use unless a fresh cache already exists."""
    if not feed_id or not page:
        return False
    existing: Optional[CachedFeedPage] = await cache.load(feed_id)
    if existing is not None and cache.is_fresh(existing, max_age_minutes):
        logger.info(f"feed {feed_id}: cache is fresh, skipping warming")
        return False
    saved = await cache.save(feed_id, page, synced_timestamp)
    if saved:
        logger.info(f"feed {feed_id}: cache warmed with {len(page)} events")
    return saved


async def sweep_stale_caches(
    cache: OfflineFeedCache,
    keep_prefix: Optional[str] = None,
    max_age_minutes: float = 120,
) -> list[str]:
    """Clear caches older than the window, except feeds starting with `keep_prefix`."""
    cleared: list[str] = []
    for meta in await cache.get_cache_metadata():
        if keep_prefix and meta.feed_id.startswith(keep_prefix):
            continue
        if cache.is_fresh(meta, max_age_minutes):
            continue
        await cache.clear(meta.feed_id)
        cleared.append(meta.feed_id)
        logger.info(f"Cleared old cache for {meta.feed_id}")
    return cleared
