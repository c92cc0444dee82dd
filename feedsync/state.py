# feedsync/state.py
# Application-wide state, built once at startup and passed to whoever needs it.
# Tests construct their own instances instead of sharing a module singleton.

from __future__ import annotations

import logging
from typing import Optional

from feedsync.config import Settings, settings
from feedsync.db.storage import KeyValueStore, create_store
from feedsync.repositories.offline_cache import OfflineFeedCache
from feedsync.services.batch_service import BatchTracker
from feedsync.services.feed_service import FeedSession, FeedType
from feedsync.sync.reactive import ReactiveSource
from feedsync.sync.scheduler import AsyncioScheduler, Scheduler
from feedsync.sync.stable_timestamp import StableTimestamp

logger = logging.getLogger(__name__)


class AppState:
    def __init__(
        self,
        cfg: Settings = None,
        store: Optional[KeyValueStore] = None,
        scheduler: Optional[Scheduler] = None,
        stable_timestamp: Optional[StableTimestamp] = None,
    ):
        self.settings = cfg or settings
        self.store = store if store is not None else create_store(self.settings)
        self.scheduler = scheduler or AsyncioScheduler()
        self.cache = OfflineFeedCache(
            self.store,
            prefix=self.settings.FEED_CACHE_PREFIX,
            max_bytes=self.settings.FEED_CACHE_MAX_BYTES,
        )
        self.stable_timestamp = stable_timestamp or StableTimestamp(
            grid_minutes=self.settings.STABLE_TIMESTAMP_GRID_MINUTES,
            poll_interval=self.settings.STABLE_TIMESTAMP_POLL_SECONDS,
        )
        self.batches = BatchTracker(retention_seconds=self.settings.BATCH_RETENTION_SECONDS)
        self.filter = "upcoming"
        self.has_completed_onboarding = False
        self.has_seen_onboarding = False
        self.started = False

    def start(self) -> None:
        """Start the timers owned by the app state (timestamp polling, batch sweep)."""
        if self.started:
            return
        self.stable_timestamp.start(self.scheduler)
        self.batches.start_sweeping(self.scheduler)
        self.started = True
        logger.info("app state started")

    def feed_session(
        self,
        source: ReactiveSource,
        feed_type: FeedType = FeedType.USER,
        user_id: Optional[str] = None,
        **kwargs,
    ) -> FeedSession:
        """Build a feed session wired to the shared cache, timestamp and scheduler."""
        options = {
            "max_retries": self.settings.SYNC_MAX_RETRIES,
            "base_delay": self.settings.SYNC_RETRY_BASE_SECONDS,
            "max_delay": self.settings.SYNC_RETRY_MAX_SECONDS,
        }
        # the past feed always queries "past"; the shared filter drives the others
        if FeedType(feed_type) is not FeedType.PAST:
            options["filter"] = self.filter
        options.update(kwargs)
        return FeedSession(
            self.cache,
            source,
            self.stable_timestamp,
            self.scheduler,
            feed_type=feed_type,
            user_id=user_id,
            **options,
        )

    def reset(self) -> None:
        """Back to first-launch defaults."""
        self.filter = "upcoming"
        self.has_completed_onboarding = False
        self.has_seen_onboarding = False
        self.batches.reset()
        self.stable_timestamp.refresh()

    def reset_for_logout(self) -> None:
        """Same as reset() but keeps the fact that onboarding was seen."""
        seen = self.has_seen_onboarding
        self.reset()
        self.has_seen_onboarding = seen

    def close(self) -> None:
        self.stable_timestamp.stop()
        self.batches.close()
        self.scheduler.close()
        self.started = False
        logger.info("app state closed")
