from __future__ import annotations

import os
from datetime import datetime, timezone
from itertools import count
from threading import Lock
from types import SimpleNamespace
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Tuple

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")

from src.core.errors import ConflictError  # noqa: E402
from src.main import create_app  # noqa: E402
from src.models.engagement import (  # noqa: E402
    EmployeeRecord,
    EngagementRatingRecord,
    ProcessingLogRecord,
    TeamRecord,
    TrendSnapshotPayload,
    TrendSnapshotRecord,
)
from src.schemas.trends import TrendSnapshotFilters  # noqa: E402
from src.services.run_coordinator import RunCoordinator  # noqa: E402
from src.services.scope_aggregator import ScopeAggregator  # noqa: E402
from src.services.trend_batch_executor import TrendBatchExecutor  # noqa: E402
from src.services.trend_calculation_service import TrendCalculationService  # noqa: E402


class StubRatingsRepository:
    def __init__(
        self,
        teams: Optional[List[TeamRecord]] = None,
        employees: Optional[List[EmployeeRecord]] = None,
    ) -> None:
        self.teams = teams or []
        self.employees = employees or []
        self.ratings: List[EngagementRatingRecord] = []
        self.failing: Set[Tuple[str, str]] = set()
        self._ids = count(1)

    def add_rating(self, employee_id: str, category: str, rating: int, rating_date: datetime) -> None:
        self.ratings.append(
            EngagementRatingRecord(
                id=f"rating-{next(self._ids)}",
                employee_id=employee_id,
                category=category,
                rating=rating,
                rating_date=rating_date,
            )
        )

    def find_latest_rating(
        self, employee_id: str, category: str, as_of: datetime
    ) -> Optional[EngagementRatingRecord]:
        if (employee_id, category) in self.failing:
            raise RuntimeError(f"ratings unavailable for {employee_id}/{category}")
        matches = [
            rating
            for rating in self.ratings
            if rating.employee_id == employee_id
            and rating.category == category
            and rating.rating_date <= as_of
        ]
        return max(matches, key=lambda rating: rating.rating_date, default=None)

    def list_teams(self) -> List[TeamRecord]:
        return list(self.teams)

    def list_employees(self) -> List[EmployeeRecord]:
        return list(self.employees)

    def list_employees_of_team(self, team_id: str) -> List[EmployeeRecord]:
        return [employee for employee in self.employees if employee.team_id == team_id]


class StubSnapshotsRepository:
    def __init__(self) -> None:
        self.rows: List[TrendSnapshotRecord] = []
        self.history_limit: Optional[int] = None
        self._ids = count(1)
        self._lock = Lock()

    def insert_snapshot(self, payload: TrendSnapshotPayload) -> TrendSnapshotRecord:
        with self._lock:
            record = TrendSnapshotRecord(
                id=f"snapshot-{next(self._ids)}",
                created_at=datetime.now(timezone.utc),
                **payload.model_dump(),
            )
            self.rows.append(record)
        return record

    def seed(self, rows: Iterable[TrendSnapshotPayload]) -> None:
        for row in rows:
            self.insert_snapshot(row)

    def list_snapshot_history(
        self,
        scope_type: str,
        entity_id: Optional[str],
        category: str,
        snapshot_type: str,
        start: datetime,
        end_exclusive: datetime,
    ) -> List[TrendSnapshotRecord]:
        matches = [
            row
            for row in self.rows
            if row.snapshot_type == snapshot_type
            and row.scope_type == scope_type
            and row.entity_id == entity_id
            and row.category == category
            and start <= row.record_date < end_exclusive
        ]
        # Same ordering and cap as the PostgREST query.
        matches.sort(key=lambda row: row.record_date, reverse=True)
        return matches[: self.history_limit] if self.history_limit is not None else matches

    def list_snapshots(self, filters: TrendSnapshotFilters) -> Tuple[List[TrendSnapshotRecord], int]:
        matches = [
            row
            for row in self.rows
            if row.scope_type == filters.scope_type
            and (filters.scope_type == "organization" or row.entity_id == filters.entity_id)
            and (filters.category is None or row.category == filters.category)
            and filters.date_from <= row.record_date <= filters.date_to
        ]
        offset = (filters.page - 1) * filters.page_size
        return matches[offset : offset + filters.page_size], len(matches)

    def for_scope(self, scope_type: str, entity_id: Optional[str] = None) -> List[TrendSnapshotRecord]:
        return [row for row in self.rows if row.scope_type == scope_type and row.entity_id == entity_id]


class StubProcessingLogRepository:
    def __init__(self) -> None:
        self.logs: List[ProcessingLogRecord] = []
        self.fail_create = False
        self.fail_update = False
        self._ids = count(1)
        self._lock = Lock()

    def find_latest_completed_log(self, snapshot_type: str) -> Optional[ProcessingLogRecord]:
        completed = [
            log for log in self.logs if log.snapshot_type == snapshot_type and log.status == "completed"
        ]
        return max(completed, key=lambda log: log.processing_date, default=None)

    def find_pending_log(self, snapshot_type: str, start_date: datetime) -> Optional[ProcessingLogRecord]:
        for log in self.logs:
            if log.snapshot_type == snapshot_type and log.start_date == start_date and log.status == "pending":
                return log
        return None

    def create_log(self, payload: Dict[str, Any]) -> ProcessingLogRecord:
        if self.fail_create:
            raise RuntimeError("database unavailable")
        with self._lock:
            record = ProcessingLogRecord(id=f"log-{next(self._ids)}", **payload)
            # Mirrors the partial unique index on pending rows.
            if self.find_pending_log(record.snapshot_type, record.start_date) is not None:
                raise ConflictError("duplicate key value violates unique constraint")
            self.logs.append(record)
        return record

    def update_log(
        self, log_id: str, expected_version: int, payload: Dict[str, Any]
    ) -> Optional[ProcessingLogRecord]:
        if self.fail_update:
            raise RuntimeError("database unavailable")
        with self._lock:
            for index, log in enumerate(self.logs):
                if log.id == log_id and log.version == expected_version:
                    updated = ProcessingLogRecord.model_validate(
                        {**log.model_dump(), **payload, "version": expected_version + 1}
                    )
                    self.logs[index] = updated
                    return updated
        return None

    def list_logs(self, snapshot_type: Optional[str] = None, limit: int = 25) -> List[ProcessingLogRecord]:
        logs = [log for log in self.logs if snapshot_type is None or log.snapshot_type == snapshot_type]
        return sorted(logs, key=lambda log: log.processing_date, reverse=True)[:limit]


def executor_settings(**overrides: Any) -> SimpleNamespace:
    values = {
        "trend_batch_size": 5,
        "trend_max_workers": 1,
        "trend_batch_pause_seconds": 0,
        "trend_lag_tolerance_days": 7,
        "trend_include_organization": True,
    }
    values.update(overrides)
    return SimpleNamespace(**values)


@pytest.fixture()
def ratings_repository() -> StubRatingsRepository:
    return StubRatingsRepository()


@pytest.fixture()
def snapshots_repository() -> StubSnapshotsRepository:
    return StubSnapshotsRepository()


@pytest.fixture()
def log_repository() -> StubProcessingLogRepository:
    return StubProcessingLogRepository()


@pytest.fixture()
def build_trend_service(
    ratings_repository: StubRatingsRepository,
    snapshots_repository: StubSnapshotsRepository,
    log_repository: StubProcessingLogRepository,
) -> Callable[..., TrendCalculationService]:
    def build(**settings_overrides: Any) -> TrendCalculationService:
        coordinator = RunCoordinator(repository=log_repository)
        coordinator.settings = SimpleNamespace(trend_stale_pending_minutes=180)
        executor = TrendBatchExecutor(
            ratings_repository=ratings_repository,
            snapshots_repository=snapshots_repository,
            aggregator=ScopeAggregator(repository=ratings_repository),
        )
        executor.settings = executor_settings(**settings_overrides)
        return TrendCalculationService(coordinator=coordinator, executor=executor)

    return build


@pytest.fixture()
def client() -> TestClient:
    app = create_app()
    return TestClient(app)


@pytest.fixture(autouse=True)
def _release_active_windows():
    yield
    RunCoordinator._active_windows.clear()
