from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import List, Optional, Union

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query

from src.api.dependencies import get_trend_calculation_service, get_trend_snapshots_service
from src.core.config import get_settings
from src.core.errors import BadRequestError
from src.schemas.trends import (
    CampsCategory,
    ProcessingLog,
    ScopeType,
    SnapshotType,
    TrendRunAccepted,
    TrendRunRequest,
    TrendRunResult,
    TrendSnapshotFilters,
    TrendSnapshotListResponse,
)
from src.services.trend_calculation_service import TrendCalculationService
from src.services.trend_snapshots_service import TrendSnapshotsService
from src.shared.response import ResponseEnvelope, build_meta, build_pagination
from src.shared.time import ensure_utc, last_completed_week, validate_window

router = APIRouter(prefix="/trends", tags=["trends"])

DEFAULT_LOOKBACK_DAYS = 90


def _validate_manual_run_token(x_trend_run_token: Optional[str]) -> None:
    configured = (get_settings().trend_manual_run_token or "").strip()
    if not configured:
        raise BadRequestError("Trend manual run endpoint is disabled")
    if not x_trend_run_token or x_trend_run_token != configured:
        raise BadRequestError("Invalid trend manual run token")


@router.get("/snapshots")
def trend_snapshots(
    scope_type: ScopeType = Query(),
    entity_id: Optional[str] = Query(default=None),
    category: Optional[CampsCategory] = Query(default=None),
    date_from: Optional[datetime] = Query(default=None),
    date_to: Optional[datetime] = Query(default=None),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=100, ge=1, le=500),
    service: TrendSnapshotsService = Depends(get_trend_snapshots_service),
) -> ResponseEnvelope[TrendSnapshotListResponse]:
    resolved_to = ensure_utc(date_to) if date_to else datetime.now(timezone.utc)
    resolved_from = ensure_utc(date_from) if date_from else resolved_to - timedelta(days=DEFAULT_LOOKBACK_DAYS)
    try:
        filters = TrendSnapshotFilters(
            scope_type=scope_type,
            entity_id=entity_id,
            category=category,
            date_from=resolved_from,
            date_to=resolved_to,
            page=page,
            page_size=page_size,
        )
    except ValueError as exc:
        raise BadRequestError(str(exc)) from exc
    data, total_count = service.get_snapshots(filters)
    return ResponseEnvelope(
        data=data,
        pagination=build_pagination(page=page, page_size=page_size, total_items=total_count),
        meta=build_meta(source="trend_snapshots", time_window=data.granularity),
    )


@router.get("/runs")
def trend_runs(
    snapshot_type: Optional[SnapshotType] = Query(default=None),
    limit: int = Query(default=25, ge=1, le=200),
    service: TrendSnapshotsService = Depends(get_trend_snapshots_service),
) -> ResponseEnvelope[List[ProcessingLog]]:
    data = service.get_runs(snapshot_type=snapshot_type, limit=limit)
    return ResponseEnvelope(
        data=data,
        meta=build_meta(source="analytics_processing_log", time_window=""),
    )


@router.get("/runs/latest")
def trend_runs_latest(
    snapshot_type: SnapshotType = Query(default="weekly"),
    service: TrendSnapshotsService = Depends(get_trend_snapshots_service),
) -> ResponseEnvelope[ProcessingLog]:
    data = service.get_latest_completed_run(snapshot_type)
    return ResponseEnvelope(
        data=data,
        meta=build_meta(
            source="analytics_processing_log",
            time_window=snapshot_type,
            generated_at=data.completed_at or data.processing_date,
        ),
    )


@router.post("/runs")
def trend_runs_create(
    request: TrendRunRequest,
    background_tasks: BackgroundTasks,
    service: TrendCalculationService = Depends(get_trend_calculation_service),
    x_trend_run_token: Optional[str] = Header(default=None),
) -> ResponseEnvelope[Union[TrendRunResult, TrendRunAccepted]]:
    _validate_manual_run_token(x_trend_run_token)
    if request.window_start is None:
        window_start, window_end = last_completed_week()
    else:
        window_start, window_end = request.window_start, request.window_end

    if request.run_in_background:
        # Reject a bad window now rather than inside the background task.
        window_start, window_end = validate_window(window_start, window_end)
        background_tasks.add_task(
            service.run_window_in_background,
            request.snapshot_type,
            window_start,
            window_end,
            request.force,
        )
        accepted = TrendRunAccepted(
            snapshot_type=request.snapshot_type,
            window_start=window_start,
            window_end=window_end,
            force=request.force,
        )
        return ResponseEnvelope(
            data=accepted,
            meta=build_meta(source="trend_run", time_window=request.snapshot_type, data_status="accepted"),
        )

    result = service.run_window(
        request.snapshot_type,
        window_start,
        window_end,
        force=request.force,
        trigger="on_demand",
    )
    return ResponseEnvelope(
        data=result,
        meta=build_meta(source="trend_run", time_window=request.snapshot_type, data_status=result.status),
    )
