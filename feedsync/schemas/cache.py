from __future__ import annotations

from typing import Any, Optional

from pydantic import BaseModel, Field


class CachedFeedPage(BaseModel):
    """Persisted snapshot of one feed. JSON keys are camelCase to match stored records."""
    feed_id: str = Field(alias="feedId")
    items: list[Any] = Field(default_factory=list)
    last_updated: int = Field(alias="lastUpdated")
    last_synced_timestamp: int = Field(alias="lastSyncedTimestamp")
    total_items: int = Field(alias="totalItems")
    schema_version: int = Field(alias="schemaVersion")

    class Config:
        populate_by_name = True

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class CacheMetadata(BaseModel):
    feed_id: str = Field(alias="feedId")
    size: int
    last_updated: int = Field(alias="lastUpdated")

    class Config:
        populate_by_name = True


class CacheIndexResponse(BaseModel):
    feeds: list[CacheMetadata]
    total_size: int


class CacheSaveRequest(BaseModel):
    items: list[Any]
    synced_timestamp: Optional[int] = Field(
        None, description="Epoch ms of the stable timestamp the page was fetched with"
    )


class CacheSaveResponse(BaseModel):
    feed_id: str
    saved: bool
    total_items: int = 0


class StableTimestampResponse(BaseModel):
    timestamp: str
    epoch_ms: int
    grid_minutes: int
