# feedsync/routers/session.py
# Stable timestamp and sign-out endpoints

from __future__ import annotations

from fastapi import APIRouter, Depends

from feedsync.routers.deps import get_app_state
from feedsync.schemas.cache import StableTimestampResponse
from feedsync.schemas.common import StatusResponse
from feedsync.state import AppState

router = APIRouter(tags=["Session"])


def _timestamp_response(state: AppState) -> StableTimestampResponse:
    ts = state.stable_timestamp
    return StableTimestampResponse(
        timestamp=ts.value.isoformat(),
        epoch_ms=ts.as_epoch_ms(),
        grid_minutes=ts.grid_minutes,
    )


@router.get("/timestamp", response_model=StableTimestampResponse)
async def get_stable_timestamp(state: AppState = Depends(get_app_state)) -> StableTimestampResponse:
    """Current filter boundary for upcoming/past feeds."""
    return _timestamp_response(state)


@router.post("/timestamp/refresh", response_model=StableTimestampResponse)
async def refresh_stable_timestamp(state: AppState = Depends(get_app_state)) -> StableTimestampResponse:
    state.stable_timestamp.refresh()
    return _timestamp_response(state)


@router.post("/session/reset", response_model=StatusResponse)
async def reset_session(clear_cache: bool = True, state: AppState = Depends(get_app_state)) -> StatusResponse:
    """Sign-out: reset app state and, by default, drop every cached feed."""
    state.reset_for_logout()
    removed = await state.cache.clear_all() if clear_cache else 0
    return StatusResponse(success=True, message=f"session reset, {removed} cached feeds removed")
