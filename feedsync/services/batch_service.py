# feedsync/services/batch_service.py
"""
Progress tracking for images submitted together for event extraction.

Reducers take the current mapping of batches and return a new mapping; the
input is never modified. Unknown batch or image ids leave the mapping as is.
Statuses only move forward: a request to move backward is ignored and logged.
"""

from __future__ import annotations

import logging
import secrets
import string
import time
from types import MappingProxyType
from typing import Iterable, Mapping, Optional, Sequence, TypeVar

from feedsync.constants import MAX_BATCH_SIZE
from feedsync.errors import ValidationError
from feedsync.schemas.batch import (
    BATCH_STATUS_RANK,
    IMAGE_STATUS_RANK,
    BatchImage,
    BatchStatus,
    BatchUploadState,
    ImageStatus,
)
from feedsync.sync.scheduler import DelayedTask, Scheduler

logger = logging.getLogger(__name__)

Batches = Mapping[str, BatchUploadState]
T = TypeVar("T")

EMPTY: Batches = MappingProxyType({})


def now_ms() -> int:
    return int(time.time() * 1000)


def _random_suffix(length: int = 9) -> str:
    alphabet = string.ascii_lowercase + string.digits
    return "".join(secrets.choice(alphabet) for _ in range(length))


def generate_batch_id() -> str:
    return f"batch_{now_ms()}_{_random_suffix()}"


def generate_temp_id() -> str:
    return f"temp_{now_ms()}_{_random_suffix()}"


def validate_image_count(count: int) -> None:
    if count == 0:
        raise ValidationError("No images provided")
    if count > MAX_BATCH_SIZE:
        raise ValidationError(
            f"Maximum {MAX_BATCH_SIZE} images allowed at once. You provided {count} images.",
            details={"max": MAX_BATCH_SIZE, "count": count},
        )


def chunk(items: Sequence[T], size: int) -> list[list[T]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")
    return [list(items[i:i + size]) for i in range(0, len(items), size)]


def _replace(batches: Batches, batch: BatchUploadState) -> Batches:
    updated = dict(batches)
    updated[batch.batch_id] = batch
    return MappingProxyType(updated)


def _moves_forward(current: BatchStatus, target: BatchStatus) -> bool:
    if current.is_terminal:
        return False
    return BATCH_STATUS_RANK[target] >= BATCH_STATUS_RANK[current]


# --- reducers ---

def create_batch(
    batches: Batches,
    batch_id: str,
    images: Iterable[BatchImage],
    started_at: Optional[int] = None,
) -> Batches:
    images = tuple(images)
    batch = BatchUploadState(
        batch_id=batch_id,
        images=images,
        total_count=len(images),
        started_at=started_at if started_at is not None else now_ms(),
    )
    return _replace(batches, batch)


def update_batch_status(batches: Batches, batch_id: str, status: BatchStatus) -> Batches:
    batch = batches.get(batch_id)
    if batch is None or batch.status == status:
        return batches
    if not _moves_forward(batch.status, status):
        logger.warning(f"batch {batch_id}: ignoring {batch.status.value} -> {status.value}")
        return batches
    update = {"status": status}
    if status.is_terminal:
        update["completed_at"] = now_ms()
    return _replace(batches, batch.model_copy(update=update))


def update_image_status(
    batches: Batches,
    batch_id: str,
    temp_id: str,
    status: ImageStatus,
    error: Optional[str] = None,
) -> Batches:
    batch = batches.get(batch_id)
    if batch is None:
        return batches
    for index, image in enumerate(batch.images):
        if image.temp_id == temp_id:
            break
    else:
        return batches

    if image.status.is_terminal or IMAGE_STATUS_RANK[status] < IMAGE_STATUS_RANK[image.status]:
        logger.warning(
            f"batch {batch_id}: ignoring image {temp_id} {image.status.value} -> {status.value}"
        )
        return batches

    images = list(batch.images)
    images[index] = image.model_copy(update={"status": status, "error": error})
    return _replace(batches, batch.model_copy(update={"images": tuple(images)}))


def increment_processed(batches: Batches, batch_id: str, success: bool) -> Batches:
    """Count one finished image. The batch completes once every image is counted."""
    batch = batches.get(batch_id)
    if batch is None:
        return batches
    if batch.total_count and batch.processed_count >= batch.total_count:
        logger.warning(f"batch {batch_id}: all {batch.total_count} images already processed")
        return batches

    update = {
        "processed_count": batch.processed_count + 1,
        "success_count": batch.success_count + (1 if success else 0),
        "error_count": batch.error_count + (0 if success else 1),
    }
    if not batch.status.is_terminal:
        if update["processed_count"] >= batch.total_count:
            update["status"] = BatchStatus.COMPLETE
            update["completed_at"] = now_ms()
        elif BATCH_STATUS_RANK[batch.status] < BATCH_STATUS_RANK[BatchStatus.PROCESSING]:
            update["status"] = BatchStatus.PROCESSING
    return _replace(batches, batch.model_copy(update=update))


def complete_batch(batches: Batches, batch_id: str) -> Batches:
    batch = batches.get(batch_id)
    if batch is None or batch.status.is_terminal:
        return batches
    return _replace(
        batches,
        batch.model_copy(update={"status": BatchStatus.COMPLETE, "completed_at": now_ms()}),
    )


def clear_batch(batches: Batches, batch_id: str) -> Batches:
    if batch_id not in batches:
        return batches
    updated = dict(batches)
    del updated[batch_id]
    return MappingProxyType(updated)


class BatchTracker:
    """Holds the current batch mapping and which batch the UI is following."""

    def __init__(self, retention_seconds: float = 300.0, clock=now_ms):
        self.batches: Batches = EMPTY
        self.active_batch_id: Optional[str] = None
        self.retention_seconds = retention_seconds
        self._clock = clock
        self._sweeper: Optional[DelayedTask] = None

    def get(self, batch_id: str) -> Optional[BatchUploadState]:
        return self.batches.get(batch_id)

    def create_batch(self, batch_id: str, temp_ids: Sequence[str]) -> BatchUploadState:
        validate_image_count(len(temp_ids))
        images = [BatchImage(temp_id=t) for t in temp_ids]
        self.batches = create_batch(self.batches, batch_id, images, started_at=self._clock())
        self.active_batch_id = batch_id
        logger.info(f"batch {batch_id} created with {len(images)} images")
        return self.batches[batch_id]

    def update_batch_status(self, batch_id: str, status: BatchStatus) -> Optional[BatchUploadState]:
        self.batches = update_batch_status(self.batches, batch_id, status)
        return self.get(batch_id)

    def update_image_status(
        self, batch_id: str, temp_id: str, status: ImageStatus, error: Optional[str] = None
    ) -> Optional[BatchUploadState]:
        self.batches = update_image_status(self.batches, batch_id, temp_id, status, error)
        return self.get(batch_id)

    def increment_processed(self, batch_id: str, success: bool) -> Optional[BatchUploadState]:
        self.batches = increment_processed(self.batches, batch_id, success)
        batch = self.get(batch_id)
        if batch is not None and batch.status == BatchStatus.COMPLETE:
            self._release_active(batch_id)
        return batch

    def complete_batch(self, batch_id: str) -> Optional[BatchUploadState]:
        self.batches = complete_batch(self.batches, batch_id)
        self._release_active(batch_id)
        return self.get(batch_id)

    def clear_batch(self, batch_id: str) -> None:
        self.batches = clear_batch(self.batches, batch_id)
        self._release_active(batch_id)

    def get_active_batch(self) -> Optional[BatchUploadState]:
        if self.active_batch_id is None:
            return None
        return self.batches.get(self.active_batch_id)

    def sweep_completed(self, max_age: Optional[float] = None) -> int:
        """Drop finished batches older than `max_age` seconds (the retention window by default)."""
        if max_age is None:
            max_age = self.retention_seconds
        cutoff = self._clock() - int(max_age * 1000)
        expired = [
            b.batch_id for b in self.batches.values()
            if b.status.is_terminal and b.completed_at is not None and b.completed_at <= cutoff
        ]
        for batch_id in expired:
            self.clear_batch(batch_id)
        if expired:
            logger.debug(f"swept {len(expired)} finished batches")
        return len(expired)

    def start_sweeping(self, scheduler: Scheduler, interval: float = 60.0) -> None:
        if self._sweeper is not None and self._sweeper.active:
            return
        self._sweeper = scheduler.call_every(interval, self.sweep_completed)

    def reset(self) -> None:
        self.batches = EMPTY
        self.active_batch_id = None

    def close(self) -> None:
        if self._sweeper is not None:
            self._sweeper.cancel()
            self._sweeper = None
        self.reset()

    def _release_active(self, batch_id: str) -> None:
        if self.active_batch_id == batch_id:
            self.active_batch_id = None
