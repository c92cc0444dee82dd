# feedsync/routers/cache.py
# FastAPI router over the offline feed cache

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from feedsync.errors import NotFoundError
from feedsync.repositories.offline_cache import OfflineFeedCache
from feedsync.routers.deps import get_app_state, get_cache
from feedsync.schemas.cache import (
    CachedFeedPage,
    CacheIndexResponse,
    CacheSaveRequest,
    CacheSaveResponse,
)
from feedsync.schemas.common import StatusResponse
from feedsync.services.feed_service import warm_cache
from feedsync.state import AppState

router = APIRouter(tags=["Cache"])


@router.get("/cache", response_model=CacheIndexResponse)
async def list_caches(cache: OfflineFeedCache = Depends(get_cache)) -> CacheIndexResponse:
    """Metadata of every cached feed plus their combined size."""
    feeds = await cache.get_cache_metadata()
    return CacheIndexResponse(feeds=feeds, total_size=sum(f.size for f in feeds))


@router.get("/cache/{feed_id}", response_model=CachedFeedPage, response_model_by_alias=True)
async def load_cache(feed_id: str, cache: OfflineFeedCache = Depends(get_cache)) -> CachedFeedPage:
    page = await cache.load(feed_id)
    if page is None:
        raise NotFoundError(f"No cached feed for {feed_id}")
    return page


@router.put("/cache/{feed_id}", response_model=CacheSaveResponse)
async def save_cache(
    feed_id: str,
    body: CacheSaveRequest,
    state: AppState = Depends(get_app_state),
) -> CacheSaveResponse:
    """Replace the cached page set of a feed."""
    synced = body.synced_timestamp
    if synced is None:
        synced = state.stable_timestamp.as_epoch_ms()
    saved = await state.cache.save(feed_id, body.items, synced)
    total = 0
    if saved:
        page = await state.cache.load(feed_id)
        total = page.total_items if page else 0
    return CacheSaveResponse(feed_id=feed_id, saved=saved, total_items=total)


@router.post("/cache/{feed_id}/warm", response_model=CacheSaveResponse)
async def warm_feed_cache(
    feed_id: str,
    body: CacheSaveRequest,
    state: AppState = Depends(get_app_state),
) -> CacheSaveResponse:
    """Store a first page for offline use unless a fresh copy is already cached."""
    synced = body.synced_timestamp
    if synced is None:
        synced = state.stable_timestamp.as_epoch_ms()
    saved = await warm_cache(
        state.cache,
        feed_id,
        body.items,
        synced,
        max_age_minutes=state.settings.FEED_CACHE_FRESH_MINUTES,
    )
    return CacheSaveResponse(feed_id=feed_id, saved=saved, total_items=len(body.items) if saved else 0)


@router.delete("/cache/{feed_id}", response_model=StatusResponse)
async def clear_cache(feed_id: str, cache: OfflineFeedCache = Depends(get_cache)) -> StatusResponse:
    await cache.clear(feed_id)
    return StatusResponse(success=True, message=f"cleared {feed_id}")


@router.delete("/cache", response_model=StatusResponse, status_code=status.HTTP_200_OK)
async def clear_all_caches(cache: OfflineFeedCache = Depends(get_cache)) -> StatusResponse:
    removed = await cache.clear_all()
    return StatusResponse(success=True, message=f"cleared {removed} feeds")
