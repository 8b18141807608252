from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional, Tuple

from src.core.supabase import SupabaseClient
from src.models.engagement import TrendSnapshotPayload, TrendSnapshotRecord
from src.schemas.trends import CampsCategory, ScopeType, SnapshotType, TrendSnapshotFilters

SNAPSHOT_COLUMNS = (
    "id,run_id,snapshot_type,scope_type,entity_id,team_id,category,record_date,current_value,"
    "previous_week_value,previous_month_value,previous_quarter_value,previous_year_value,"
    "week_delta,month_delta,quarter_delta,year_delta,contributing_count,data_points,created_at"
)
MAX_HISTORY_ROWS = 500


class TrendSnapshotsRepository:
    def __init__(self) -> None:
        self.client = SupabaseClient()

    @staticmethod
    def _to_iso_utc(dt: datetime) -> str:
        return dt.astimezone(timezone.utc).isoformat()

    @staticmethod
    def _entity_filter(entity_id: Optional[str]) -> Tuple[str, str]:
        if entity_id is None:
            return ("entity_id", "is.null")
        return ("entity_id", f"eq.{entity_id}")

    def insert_snapshot(self, payload: TrendSnapshotPayload) -> TrendSnapshotRecord:
        rows = self.client.insert(
            table="trend_snapshots",
            payload=payload.model_dump(mode="json"),
        )
        return TrendSnapshotRecord.model_validate(rows[0])

    def list_snapshot_history(
        self,
        scope_type: ScopeType,
        entity_id: Optional[str],
        category: CampsCategory,
        snapshot_type: SnapshotType,
        start: datetime,
        end_exclusive: datetime,
    ) -> List[TrendSnapshotRecord]:
        rows, _ = self.client.select(
            table="trend_snapshots",
            select=SNAPSHOT_COLUMNS,
            filters=[
                ("snapshot_type", f"eq.{snapshot_type}"),
                ("scope_type", f"eq.{scope_type}"),
                self._entity_filter(entity_id),
                ("category", f"eq.{category}"),
                ("record_date", f"gte.{self._to_iso_utc(start)}"),
                ("record_date", f"lt.{self._to_iso_utc(end_exclusive)}"),
            ],
            order="record_date.desc,created_at.desc",
            limit=MAX_HISTORY_ROWS,
        )
        return [TrendSnapshotRecord.model_validate(row) for row in rows]

    def list_snapshots(
        self, filters: TrendSnapshotFilters
    ) -> tuple[List[TrendSnapshotRecord], int]:
        query_filters: List[Tuple[str, str]] = [
            ("scope_type", f"eq.{filters.scope_type}"),
            self._entity_filter(filters.entity_id if filters.scope_type != "organization" else None),
            ("record_date", f"gte.{self._to_iso_utc(filters.date_from)}"),
            ("record_date", f"lte.{self._to_iso_utc(filters.date_to)}"),
        ]
        if filters.category:
            query_filters.append(("category", f"eq.{filters.category}"))
        offset = (filters.page - 1) * filters.page_size
        rows, total_count = self.client.select(
            table="trend_snapshots",
            select=SNAPSHOT_COLUMNS,
            filters=query_filters,
            order="record_date.asc,category.asc",
            limit=filters.page_size,
            offset=offset,
            count="exact",
        )
        estimated_total = max(offset + len(rows), len(rows))
        return [TrendSnapshotRecord.model_validate(row) for row in rows], (
            total_count if total_count is not None else estimated_total
        )
