# feedsync/routers/batches.py
# Batch upload progress API

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from feedsync.errors import NotFoundError
from feedsync.routers.deps import get_app_state
from feedsync.schemas.batch import (
    BatchCreateRequest,
    BatchStatusUpdate,
    BatchUploadState,
    ImageStatusUpdate,
    ProcessedIncrement,
)
from feedsync.schemas.common import StatusResponse
from feedsync.services.batch_service import BatchTracker, generate_batch_id, generate_temp_id
from feedsync.state import AppState

router = APIRouter(tags=["Batches"])


def get_tracker(state: AppState = Depends(get_app_state)) -> BatchTracker:
    return state.batches


def _require(batch: BatchUploadState | None, batch_id: str) -> BatchUploadState:
    if batch is None:
        raise NotFoundError(f"Batch {batch_id} not found")
    return batch


@router.post("/batches", response_model=BatchUploadState, status_code=status.HTTP_201_CREATED)
async def create_batch(req: BatchCreateRequest, tracker: BatchTracker = Depends(get_tracker)) -> BatchUploadState:
    temp_ids = list(req.temp_ids)
    if not temp_ids and req.image_count:
        temp_ids = [generate_temp_id() for _ in range(req.image_count)]
    return tracker.create_batch(req.batch_id or generate_batch_id(), temp_ids)


@router.get("/batches/active", response_model=BatchUploadState)
async def get_active_batch(tracker: BatchTracker = Depends(get_tracker)) -> BatchUploadState:
    return _require(tracker.get_active_batch(), "active")


@router.get("/batches/{batch_id}", response_model=BatchUploadState)
async def get_batch(batch_id: str, tracker: BatchTracker = Depends(get_tracker)) -> BatchUploadState:
    return _require(tracker.get(batch_id), batch_id)


@router.patch("/batches/{batch_id}", response_model=BatchUploadState)
async def update_batch_status(
    batch_id: str, body: BatchStatusUpdate, tracker: BatchTracker = Depends(get_tracker)
) -> BatchUploadState:
    _require(tracker.get(batch_id), batch_id)
    return tracker.update_batch_status(batch_id, body.status)


@router.patch("/batches/{batch_id}/images/{temp_id}", response_model=BatchUploadState)
async def update_image_status(
    batch_id: str,
    temp_id: str,
    body: ImageStatusUpdate,
    tracker: BatchTracker = Depends(get_tracker),
) -> BatchUploadState:
    batch = _require(tracker.get(batch_id), batch_id)
    if not any(img.temp_id == temp_id for img in batch.images):
        raise NotFoundError(f"Image {temp_id} not found in batch {batch_id}")
    return tracker.update_image_status(batch_id, temp_id, body.status, body.error)


@router.post("/batches/{batch_id}/processed", response_model=BatchUploadState)
async def increment_processed(
    batch_id: str, body: ProcessedIncrement, tracker: BatchTracker = Depends(get_tracker)
) -> BatchUploadState:
    _require(tracker.get(batch_id), batch_id)
    return tracker.increment_processed(batch_id, body.success)


@router.post("/batches/{batch_id}/complete", response_model=BatchUploadState)
async def complete_batch(batch_id: str, tracker: BatchTracker = Depends(get_tracker)) -> BatchUploadState:
    _require(tracker.get(batch_id), batch_id)
    return tracker.complete_batch(batch_id)


@router.delete("/batches/{batch_id}", response_model=StatusResponse)
async def clear_batch(batch_id: str, tracker: BatchTracker = Depends(get_tracker)) -> StatusResponse:
    _require(tracker.get(batch_id), batch_id)
    tracker.clear_batch(batch_id)
    return StatusResponse(success=True, message=f"cleared {batch_id}")
