from arq import cron
from arq.connections import RedisSettings
from opentelemetry import trace

from feedsync.config import settings
from feedsync.db.storage import RedisKeyValueStore
from feedsync.observability.tracing import init_otel
from feedsync.repositories.offline_cache import OfflineFeedCache
from feedsync.services.feed_service import sweep_stale_caches


async def sweep_caches(ctx, keep_prefix: str = None) -> dict:
    """Periodic cleanup: drop feed caches nobody refreshed within the stale window."""
    cache: OfflineFeedCache = ctx["feed_cache"]
    r = ctx["redis"]
    tracer = trace.get_tracer("worker")
    await r.incr("jobs:started")
    try:
        with tracer.start_as_current_span("sweep_caches"):
            cleared = await sweep_stale_caches(
                cache,
                keep_prefix=keep_prefix,
                max_age_minutes=settings.STALE_CACHE_MINUTES,
            )
            await r.incr("jobs:finished")
            return {"cleared": cleared}
    except Exception:
        await r.incr("jobs:failed")
        raise


class WorkerSettings:
    functions = [sweep_caches]
    redis_settings = RedisSettings.from_dsn(settings.REDIS_URL)
    cron_jobs = [
        cron(sweep_caches, minute={0, 15, 30, 45}),
    ]

    @staticmethod
    async def startup(ctx):
        init_otel(service_name="feedsync-worker")
        ctx["feed_store"] = RedisKeyValueStore(url=settings.REDIS_URL, namespace=settings.FEED_CACHE_PREFIX)
        ctx["feed_cache"] = OfflineFeedCache(
            ctx["feed_store"],
            prefix=settings.FEED_CACHE_PREFIX,
            max_bytes=settings.FEED_CACHE_MAX_BYTES,
        )

    @staticmethod
    async def shutdown(ctx):
        await ctx["feed_store"].close()
