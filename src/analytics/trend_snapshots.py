from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable, Dict, Optional, Sequence

from src.analytics.comparison_windows import DEFAULT_LAG_TOLERANCE, lag_anchor, nearest_snapshot
from src.models.engagement import TrendSnapshotPayload, TrendSnapshotRecord
from src.schemas.trends import LAG_KINDS, CampsCategory, LagKind, ScopeType, SnapshotType

LagLookup = Callable[[LagKind], Optional[float]]


def compute_delta(current: Optional[float], previous: Optional[float]) -> Optional[float]:
    # None means "no baseline"; 0.0 means "no change".
    if current is None or previous is None:
        return None
    return current - previous


def compose_snapshot(
    *,
    scope_type: ScopeType,
    entity_id: Optional[str],
    category: CampsCategory,
    record_date: datetime,
    current_value: float,
    contributing_count: Optional[int],
    data_points: Optional[int],
    lookup_lag: LagLookup,
    team_id: Optional[str] = None,
    snapshot_type: SnapshotType = "weekly",
    run_id: Optional[str] = None,
) -> TrendSnapshotPayload:
    fields: Dict[str, Optional[float]] = {}
    for lag in LAG_KINDS:
        previous = lookup_lag(lag)
        fields[f"previous_{lag}_value"] = previous
        fields[f"{lag}_delta"] = compute_delta(current_value, previous)
    return TrendSnapshotPayload(
        run_id=run_id,
        snapshot_type=snapshot_type,
        scope_type=scope_type,
        entity_id=entity_id,
        team_id=team_id,
        category=category,
        record_date=record_date,
        current_value=current_value,
        contributing_count=contributing_count,
        data_points=data_points,
        **fields,
    )


def history_lag_lookup(
    history: Sequence[TrendSnapshotRecord],
    record_date: datetime,
    tolerance: timedelta = DEFAULT_LAG_TOLERANCE,
) -> LagLookup:
    def lookup(lag: LagKind) -> Optional[float]:
        match = nearest_snapshot(
            history,
            lag_anchor(record_date, lag),
            before=record_date,
            tolerance=tolerance,
        )
        return match.current_value if match else None

    return lookup
