from typing import Optional

from pydantic import BaseModel, Field


class SyncOptions(BaseModel):
    limited: bool = False
    limit: int = Field(default=100, ge=1)
    use_bulk: bool = False


class SyncResult(BaseModel):
    sync_log_id: Optional[int] = None
    product_count: int = 0
    original_product_count: Optional[int] = None
    created: int = 0
    updated: int = 0
    deleted: int = 0
    failed: int = 0
    skipped: int = 0
    duplicates_removed: Optional[int] = None
    message: str = ""

    @property
    def succeeded(self) -> int:
        return self.created + self.updated + self.deleted


class CleanupResult(BaseModel):
    total_scanned: int = 0
    duplicate_groups: int = 0
    deleted: int = 0
    errors: int = 0


class SyncTriggerResponse(BaseModel):
    status: str
    config_id: int
