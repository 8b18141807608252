from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple

from src.core.supabase import SupabaseClient
from src.models.engagement import ProcessingLogRecord
from src.schemas.trends import SnapshotType

LOG_COLUMNS = (
    "id,snapshot_type,processing_date,start_date,end_date,status,error_message,"
    "created_at,completed_at,version"
)


class ProcessingLogRepository:
    def __init__(self) -> None:
        self.client = SupabaseClient()

    @staticmethod
    def _to_iso_utc(dt: datetime) -> str:
        return dt.astimezone(timezone.utc).isoformat()

    def find_latest_completed_log(self, snapshot_type: SnapshotType) -> Optional[ProcessingLogRecord]:
        rows, _ = self.client.select(
            table="analytics_processing_log",
            select=LOG_COLUMNS,
            filters=[
                ("snapshot_type", f"eq.{snapshot_type}"),
                ("status", "eq.completed"),
            ],
            order="processing_date.desc",
            limit=1,
        )
        return ProcessingLogRecord.model_validate(rows[0]) if rows else None

    def find_pending_log(
        self, snapshot_type: SnapshotType, start_date: datetime
    ) -> Optional[ProcessingLogRecord]:
        rows, _ = self.client.select(
            table="analytics_processing_log",
            select=LOG_COLUMNS,
            filters=[
                ("snapshot_type", f"eq.{snapshot_type}"),
                ("start_date", f"eq.{self._to_iso_utc(start_date)}"),
                ("status", "eq.pending"),
            ],
            limit=1,
        )
        return ProcessingLogRecord.model_validate(rows[0]) if rows else None

    def create_log(self, payload: Dict[str, Any]) -> ProcessingLogRecord:
        rows = self.client.insert(table="analytics_processing_log", payload=payload)
        if not rows:
            raise RuntimeError("Processing log insert returned no row")
        return ProcessingLogRecord.model_validate(rows[0])

    def update_log(
        self,
        log_id: str,
        expected_version: int,
        payload: Dict[str, Any],
    ) -> Optional[ProcessingLogRecord]:
        rows = self.client.update(
            table="analytics_processing_log",
            payload={**payload, "version": expected_version + 1},
            filters=[("id", f"eq.{log_id}"), ("version", f"eq.{expected_version}")],
        )
        if not rows:
            return None
        return ProcessingLogRecord.model_validate(rows[0])

    def list_logs(
        self,
        snapshot_type: Optional[SnapshotType] = None,
        limit: int = 25,
    ) -> List[ProcessingLogRecord]:
        filters: List[Tuple[str, str]] = []
        if snapshot_type:
            filters.append(("snapshot_type", f"eq.{snapshot_type}"))
        rows, _ = self.client.select(
            table="analytics_processing_log",
            select=LOG_COLUMNS,
            filters=filters,
            order="processing_date.desc",
            limit=limit,
        )
        return [ProcessingLogRecord.model_validate(row) for row in rows]
