# feedsync/constants.py
# Fixed values shared by the cache, the feed session and the batch tracker

CACHE_PREFIX: str = "soonlist_feed_cache_"
CACHE_SCHEMA_VERSION: int = 1
MAX_CACHE_BYTES: int = 5 * 1024 * 1024

# Fraction of items kept on each trimming pass (drops the oldest 10%)
CACHE_TRIM_KEEP_RATIO: float = 0.9

STABLE_GRID_MINUTES: int = 15
STABLE_POLL_SECONDS: float = 60.0

SYNC_MAX_RETRIES: int = 5
SYNC_RETRY_BASE_SECONDS: float = 1.0
SYNC_RETRY_MAX_SECONDS: float = 16.0

MAX_BATCH_SIZE: int = 20

# Pagination sizes used by the feed screens
INITIAL_PAGE_SIZE: int = 50
LOAD_MORE_PAGE_SIZE: int = 25

FEED_FILTERS: tuple[str, ...] = ("upcoming", "past")

# Retry-After hint sent with storage outages
STORAGE_RETRY_AFTER_SECONDS: int = 5
