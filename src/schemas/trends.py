from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field, model_validator

from src.shared.base import BaseSchema, RequestSchema

CampsCategory = Literal["CERTAINTY", "AUTONOMY", "MEANING", "PROGRESS", "SOCIAL_INCLUSION"]
ScopeType = Literal["employee", "team", "organization"]
LagKind = Literal["week", "month", "quarter", "year"]
SnapshotType = Literal["daily", "weekly", "monthly"]
ProcessingStatus = Literal["pending", "completed", "failed"]
TrendRunStatus = Literal["completed", "failed", "skipped"]
TrendRunTrigger = Literal["startup", "scheduled", "manual", "on_demand"]
TrendGranularity = Literal["daily", "weekly", "monthly"]

CAMPS_CATEGORIES: tuple[CampsCategory, ...] = (
    "CERTAINTY",
    "AUTONOMY",
    "MEANING",
    "PROGRESS",
    "SOCIAL_INCLUSION",
)
LAG_KINDS: tuple[LagKind, ...] = ("week", "month", "quarter", "year")


class TrendSnapshot(BaseSchema):
    id: str
    run_id: Optional[str] = None
    snapshot_type: SnapshotType
    scope_type: ScopeType
    entity_id: Optional[str] = None
    team_id: Optional[str] = None
    category: CampsCategory
    record_date: datetime
    current_value: float
    previous_week_value: Optional[float] = None
    previous_month_value: Optional[float] = None
    previous_quarter_value: Optional[float] = None
    previous_year_value: Optional[float] = None
    week_delta: Optional[float] = None
    month_delta: Optional[float] = None
    quarter_delta: Optional[float] = None
    year_delta: Optional[float] = None
    contributing_count: Optional[int] = None
    data_points: Optional[int] = None
    created_at: Optional[datetime] = None


class ProcessingLog(BaseSchema):
    id: str
    snapshot_type: SnapshotType
    processing_date: datetime
    start_date: datetime
    end_date: datetime
    status: ProcessingStatus
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    version: int = 0


class TrendSnapshotFilters(RequestSchema):
    scope_type: ScopeType
    entity_id: Optional[str] = Field(default=None, min_length=1, max_length=128)
    category: Optional[CampsCategory] = None
    date_from: datetime
    date_to: datetime
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=100, ge=1, le=500)

    @model_validator(mode="after")
    def _check_scope_and_range(self) -> "TrendSnapshotFilters":
        if self.scope_type != "organization" and not self.entity_id:
            raise ValueError("entity_id is required for employee and team scopes")
        if self.date_from > self.date_to:
            raise ValueError("date_from cannot be after date_to")
        return self


class TrendSnapshotListResponse(BaseSchema):
    scope_type: ScopeType
    entity_id: Optional[str] = None
    granularity: TrendGranularity
    items: List[TrendSnapshot]


class ProcessingLogListResponse(BaseSchema):
    items: List[ProcessingLog]


class TrendRunRequest(RequestSchema):
    snapshot_type: SnapshotType = "weekly"
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    force: bool = False
    run_in_background: bool = False

    @model_validator(mode="after")
    def _check_window_pair(self) -> "TrendRunRequest":
        if (self.window_start is None) != (self.window_end is None):
            raise ValueError("window_start and window_end must be provided together")
        return self


class TrendRunResult(BaseSchema):
    run_id: Optional[str] = None
    snapshot_type: SnapshotType
    status: TrendRunStatus
    window_start: datetime
    window_end: datetime
    snapshots_written: int = 0
    items_failed: int = 0
    items_skipped: int = 0
    all_items_succeeded: bool = True
    log_finalized: bool = True
    message: Optional[str] = None


class TrendRunAccepted(BaseSchema):
    snapshot_type: SnapshotType
    status: Literal["accepted"] = "accepted"
    window_start: datetime
    window_end: datetime
    force: bool
