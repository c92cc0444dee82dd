from __future__ import annotations

from fastapi import Request

from feedsync.repositories.offline_cache import OfflineFeedCache
from feedsync.state import AppState


def get_app_state(request: Request) -> AppState:
    return request.app.state.feedsync


def get_cache(request: Request) -> OfflineFeedCache:
    return get_app_state(request).cache
