from __future__ import annotations

from datetime import datetime, timedelta
from typing import Dict, Iterable, Optional, Tuple

from src.models.engagement import TrendSnapshotRecord
from src.schemas.trends import LAG_KINDS, LagKind, TrendGranularity
from src.shared.time import subtract_months, subtract_years

DAILY_MAX_DAYS = 30
WEEKLY_MAX_DAYS = 365
DEFAULT_LAG_TOLERANCE = timedelta(days=7)
RECORD_DATE_RESOLUTION = timedelta(microseconds=1)


def lag_anchor(record_date: datetime, lag: LagKind) -> datetime:
    if lag == "week":
        return record_date - timedelta(days=7)
    if lag == "month":
        return subtract_months(record_date, 1)
    if lag == "quarter":
        return subtract_months(record_date, 3)
    return subtract_years(record_date, 1)


def lag_anchors(record_date: datetime) -> Dict[LagKind, datetime]:
    return {lag: lag_anchor(record_date, lag) for lag in LAG_KINDS}


def choose_granularity(date_from: datetime, date_to: datetime) -> TrendGranularity:
    span_days = (date_to - date_from).days
    if span_days <= DAILY_MAX_DAYS:
        return "daily"
    if span_days <= WEEKLY_MAX_DAYS:
        return "weekly"
    return "monthly"


def lag_candidate_range(
    record_date: datetime,
    lag: LagKind,
    tolerance: timedelta = DEFAULT_LAG_TOLERANCE,
) -> Tuple[datetime, datetime]:
    """Half-open range of record dates that can match ``lag`` for ``record_date``.

    Covers ``anchor ± tolerance`` with the upper bound kept inclusive, and never
    reaches ``record_date`` itself: a snapshot is never its own baseline.
    """
    anchor = lag_anchor(record_date, lag)
    return anchor - tolerance, min(anchor + tolerance + RECORD_DATE_RESOLUTION, record_date)


def nearest_snapshot(
    history: Iterable[TrendSnapshotRecord],
    anchor: datetime,
    *,
    before: datetime,
    tolerance: timedelta = DEFAULT_LAG_TOLERANCE,
) -> Optional[TrendSnapshotRecord]:
    """Snapshot closest to ``anchor`` within ``tolerance``, strictly older than ``before``.

    Ties go to the earlier record date. Returns None rather than reaching for
    an older snapshot outside the tolerance window.
    """
    best: Optional[TrendSnapshotRecord] = None
    best_key: Optional[Tuple[float, datetime]] = None
    for snapshot in history:
        if snapshot.record_date >= before:
            continue
        distance = abs((snapshot.record_date - anchor).total_seconds())
        if distance > tolerance.total_seconds():
            continue
        key = (distance, snapshot.record_date)
        if best_key is None or key < best_key:
            best, best_key = snapshot, key
    return best
