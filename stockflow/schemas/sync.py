from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class SyncType(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"
    MANUAL = "manual"


class SyncStrategy(str, Enum):
    SMART = "smart"
    FULL = "full"
    INVENTORY = "inventory"
    CRITICAL = "critical"
    ACTIVE = "active"


class SyncRequest(BaseModel):
    sync_type: SyncType = SyncType.MANUAL
    strategy: SyncStrategy = SyncStrategy.SMART
    modified_since: Optional[datetime] = None
    dry_run: bool = False


class SyncRunRead(BaseModel):
    id: int
    sync_type: str
    strategy: Optional[str] = None
    status: str
    dry_run: bool
    started_at: datetime
    finished_at: Optional[datetime] = None
    last_checkpoint_at: Optional[datetime] = None
    duration_ms: Optional[int] = None
    items_processed: int
    items_updated: int
    items_new: int
    items_skipped: int
    items_failed: int
    pages_fetched: int
    errors: List[str] = Field(default_factory=list)
    error_message: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SyncResult(BaseModel):
    run_id: int
    status: str
    sync_type: str
    strategy: str
    dry_run: bool
    items_processed: int
    items_updated: int
    items_new: int
    items_skipped: int
    items_failed: int
    pages_fetched: int
    vendors_synced: int = 0
    change_rate: float
    efficiency_gain: float
    items_per_second: float
    duration_ms: int
    would_update: List[str] = Field(default_factory=list)
    would_create: List[str] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)


class SyncStatus(BaseModel):
    has_running_sync: bool
    running_run: Optional[SyncRunRead] = None
    last_run: Optional[SyncRunRead] = None


class SyncTriggerResponse(BaseModel):
    run_id: int
    status: str = "running"


class SyncStats(BaseModel):
    days: int
    total: int
    completed: int
    failed: int
    running: int
    average_duration_ms: Optional[float] = None
    total_items_processed: int
