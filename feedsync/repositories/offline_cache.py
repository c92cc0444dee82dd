# feedsync/repositories/offline_cache.py
# Repository for the offline feed cache.
# One record per feed, always replaced wholesale with the last good page set.

from __future__ import annotations

import json
import logging
import math
import time
from datetime import datetime
from typing import Any, Callable, Optional, Sequence, Union

from feedsync.constants import (
    CACHE_PREFIX,
    CACHE_SCHEMA_VERSION,
    CACHE_TRIM_KEEP_RATIO,
    MAX_CACHE_BYTES,
)
from feedsync.db.storage import KeyValueStore
from feedsync.errors import StorageError
from feedsync.observability.tracing import get_tracer
from feedsync.schemas.cache import CachedFeedPage, CacheMetadata
from feedsync.sync.stable_timestamp import to_epoch_ms
from feedsync.utils.logger import log_exception, log_info

logger = logging.getLogger(__name__)
tracer = get_tracer(__name__)

# Failures that degrade to "no cache" instead of reaching the caller.
# pydantic's ValidationError and json.JSONDecodeError are ValueErrors.
CACHE_FAILURES = (StorageError, OSError, ValueError, TypeError)


def now_ms() -> int:
    return int(time.time() * 1000)


def serialized_size(text: str) -> int:
    return len(text.encode("utf-8"))


def truncate_items_to_size(page: CachedFeedPage, max_bytes: int) -> CachedFeedPage:
    """Drop the oldest 10% of items (the tail) until the record fits or no items remain."""
    items = list(page.items)
    candidate = page
    while serialized_size(candidate.to_json()) > max_bytes and items:
        items = items[: math.floor(len(items) * CACHE_TRIM_KEEP_RATIO)]
        candidate = page.model_copy(update={"items": items, "total_items": len(items)})
    return candidate


class OfflineFeedCache:
    """Versioned, size-bounded cache of the most recent page set of each feed."""

    def __init__(
        self,
        store: KeyValueStore,
        prefix: str = CACHE_PREFIX,
        max_bytes: int = MAX_CACHE_BYTES,
        schema_version: int = CACHE_SCHEMA_VERSION,
        clock: Callable[[], int] = now_ms,
    ):
        self.store = store
        self.prefix = prefix
        self.max_bytes = max_bytes
        self.schema_version = schema_version
        self._clock = clock

    def key_for(self, feed_id: str) -> str:
        return f"{self.prefix}{feed_id}"

    async def save(
        self,
        feed_id: str,
        items: Sequence[Any],
        synced_timestamp: Union[int, datetime],
    ) -> bool:
        """Replace the cached record for `feed_id`. Returns False if nothing could be written."""
        if isinstance(synced_timestamp, datetime):
            synced_timestamp = to_epoch_ms(synced_timestamp)

        with tracer.start_as_current_span("feed_cache.save") as span:
            span.set_attribute("feed_id", feed_id)
            try:
                page = CachedFeedPage(
                    feed_id=feed_id,
                    items=list(items),
                    last_updated=self._clock(),
                    last_synced_timestamp=synced_timestamp,
                    total_items=len(items),
                    schema_version=self.schema_version,
                )
                serialized = page.to_json()
                if serialized_size(serialized) > self.max_bytes:
                    logger.warning(f"Feed cache for {feed_id} exceeds size limit, truncating...")
                    page = truncate_items_to_size(page, self.max_bytes)
                    serialized = page.to_json()
                    log_info(f"feed cache {feed_id}: kept {page.total_items} of {len(items)} items")

                await self.store.set_item(self.key_for(feed_id), serialized)
                span.set_attribute("total_items", page.total_items)
                return True
            except CACHE_FAILURES as e:
                log_exception(e, f"saving feed cache for {feed_id}")
                logger.error(f"Failed to save feed cache for {feed_id}: {e}")
                return False

    async def load(self, feed_id: str) -> Optional[CachedFeedPage]:
        """Return the cached record, or None if absent, unreadable or from another schema version."""
        with tracer.start_as_current_span("feed_cache.load") as span:
            span.set_attribute("feed_id", feed_id)
            try:
                raw = await self.store.get_item(self.key_for(feed_id))
                if not raw:
                    return None

                data = json.loads(raw)
                if not isinstance(data, dict):
                    raise ValueError("cache record is not a JSON object")

                if data.get("schemaVersion") != self.schema_version:
                    logger.info(f"Cache schema mismatch for {feed_id}, clearing...")
                    await self.clear(feed_id)
                    return None

                return CachedFeedPage.model_validate(data)
            except CACHE_FAILURES as e:
                log_exception(e, f"loading feed cache for {feed_id}")
                logger.error(f"Failed to load feed cache for {feed_id}: {e}")
                return None

    async def clear(self, feed_id: str) -> None:
        try:
            await self.store.remove_item(self.key_for(feed_id))
        except CACHE_FAILURES as e:
            log_exception(e, f"clearing feed cache for {feed_id}")

    async def clear_all(self) -> int:
        """Remove every cached feed. Returns how many records were removed."""
        try:
            keys = [k for k in await self.store.get_all_keys() if k.startswith(self.prefix)]
            if keys:
                await self.store.multi_remove(keys)
            return len(keys)
        except CACHE_FAILURES as e:
            log_exception(e, "clearing all feed caches")
            return 0

    def is_fresh(self, cache: Union[CachedFeedPage, CacheMetadata], max_age_minutes: float = 60) -> bool:
        age = self._clock() - cache.last_updated
        return age < max_age_minutes * 60 * 1000

    async def get_cache_metadata(self) -> list[CacheMetadata]:
        try:
            keys = [k for k in await self.store.get_all_keys() if k.startswith(self.prefix)]
            metadata: list[CacheMetadata] = []
            for key in sorted(keys):
                raw = await self.store.get_item(key)
                if not raw:
                    continue
                try:
                    last_updated = int(json.loads(raw).get("lastUpdated") or 0)
                except (ValueError, TypeError, AttributeError):
                    last_updated = 0
                metadata.append(
                    CacheMetadata(
                        feed_id=key[len(self.prefix):],
                        size=serialized_size(raw),
                        last_updated=last_updated,
                    )
                )
            return metadata
        except CACHE_FAILURES as e:
            log_exception(e, "reading feed cache metadata")
            return []

    async def get_total_cache_size(self) -> int:
        return sum(m.size for m in await self.get_cache_metadata())
