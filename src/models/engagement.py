from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from src.schemas.trends import (
    CampsCategory,
    LagKind,
    ProcessingStatus,
    ScopeType,
    SnapshotType,
)

RATING_MIN = 1
RATING_MAX = 10


class EngagementRatingRecord(BaseModel):
    id: str
    employee_id: str
    category: CampsCategory
    rating: int = Field(ge=RATING_MIN, le=RATING_MAX)
    rating_date: datetime
    created_at: Optional[datetime] = None


# Teams and employees reference each other by id only.
class TeamRecord(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    manager_id: Optional[str] = None


class EmployeeRecord(BaseModel):
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    team_id: Optional[str] = None
    manager_id: Optional[str] = None


class TrendSnapshotPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    run_id: Optional[str] = None
    snapshot_type: SnapshotType = "weekly"
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

    def previous_value(self, lag: LagKind) -> Optional[float]:
        return getattr(self, f"previous_{lag}_value")

    def delta(self, lag: LagKind) -> Optional[float]:
        return getattr(self, f"{lag}_delta")


class TrendSnapshotRecord(TrendSnapshotPayload):
    id: str
    created_at: Optional[datetime] = None


class ProcessingLogRecord(BaseModel):
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
