from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class ImageStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ImageStatus.SUCCESS, ImageStatus.ERROR)


class BatchStatus(str, Enum):
    IDLE = "idle"
    UPLOADING = "uploading"
    PROCESSING = "processing"
    COMPLETE = "complete"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (BatchStatus.COMPLETE, BatchStatus.ERROR)


# Position in the forward-only lifecycle; terminal states share the last rank
IMAGE_STATUS_RANK = {
    ImageStatus.PENDING: 0,
    ImageStatus.PROCESSING: 1,
    ImageStatus.SUCCESS: 2,
    ImageStatus.ERROR: 2,
}

BATCH_STATUS_RANK = {
    BatchStatus.IDLE: 0,
    BatchStatus.UPLOADING: 1,
    BatchStatus.PROCESSING: 2,
    BatchStatus.COMPLETE: 3,
    BatchStatus.ERROR: 3,
}


class BatchImage(BaseModel):
    temp_id: str
    status: ImageStatus = ImageStatus.PENDING
    error: Optional[str] = None

    class Config:
        frozen = True


class BatchUploadState(BaseModel):
    batch_id: str
    images: tuple[BatchImage, ...] = ()
    total_count: int = 0
    processed_count: int = 0
    success_count: int = 0
    error_count: int = 0
    status: BatchStatus = BatchStatus.IDLE
    started_at: Optional[int] = None
    completed_at: Optional[int] = None

    class Config:
        frozen = True

    @property
    def progress(self) -> int:
        """Percent of images with a final result."""
        if self.total_count == 0:
            return 0
        return round(self.processed_count * 100 / self.total_count)


# --- Request bodies ---

class BatchCreateRequest(BaseModel):
    batch_id: Optional[str] = None
    temp_ids: list[str] = Field(default_factory=list)
    image_count: Optional[int] = Field(
        None, description="Generate this many temp ids when temp_ids is empty"
    )


class BatchStatusUpdate(BaseModel):
    status: BatchStatus


class ImageStatusUpdate(BaseModel):
    status: ImageStatus
    error: Optional[str] = None


class ProcessedIncrement(BaseModel):
    success: bool
