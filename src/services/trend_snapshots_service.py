from __future__ import annotations

from typing import List, Optional, Tuple

from src.analytics.comparison_windows import choose_granularity
from src.core.errors import NotFoundError
from src.repositories.processing_log_repository import ProcessingLogRepository
from src.repositories.trend_snapshots_repository import TrendSnapshotsRepository
from src.schemas.trends import (
    ProcessingLog,
    SnapshotType,
    TrendSnapshot,
    TrendSnapshotFilters,
    TrendSnapshotListResponse,
)


class TrendSnapshotsService:
    def __init__(
        self,
        snapshots_repository: TrendSnapshotsRepository,
        log_repository: ProcessingLogRepository,
    ) -> None:
        self.snapshots_repository = snapshots_repository
        self.log_repository = log_repository

    def get_snapshots(self, filters: TrendSnapshotFilters) -> Tuple[TrendSnapshotListResponse, int]:
        records, total_count = self.snapshots_repository.list_snapshots(filters)
        response = TrendSnapshotListResponse(
            scope_type=filters.scope_type,
            entity_id=filters.entity_id if filters.scope_type != "organization" else None,
            granularity=choose_granularity(filters.date_from, filters.date_to),
            items=[TrendSnapshot.model_validate(record.model_dump()) for record in records],
        )
        return response, total_count

    def get_runs(self, snapshot_type: Optional[SnapshotType] = None, limit: int = 25) -> List[ProcessingLog]:
        records = self.log_repository.list_logs(snapshot_type=snapshot_type, limit=limit)
        return [ProcessingLog.model_validate(record.model_dump()) for record in records]

    def get_latest_completed_run(self, snapshot_type: SnapshotType = "weekly") -> ProcessingLog:
        record = self.log_repository.find_latest_completed_log(snapshot_type)
        if record is None:
            raise NotFoundError(f"No completed {snapshot_type} trend run found")
        return ProcessingLog.model_validate(record.model_dump())

