from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from src.core.config import get_settings
from src.core.errors import AppError, ProcessingLogError
from src.schemas.trends import SnapshotType, TrendRunResult, TrendRunTrigger
from src.services.run_coordinator import RunCoordinator
from src.services.trend_batch_executor import TrendBatchExecutor
from src.shared.time import last_completed_week, validate_window

logger = logging.getLogger(__name__)


class TrendCalculationService:
    """Single entry point for every trend run, whatever triggered it."""

    def __init__(self, coordinator: RunCoordinator, executor: TrendBatchExecutor) -> None:
        self.coordinator = coordinator
        self.executor = executor
        self.settings = get_settings()

    @staticmethod
    def _now_utc() -> datetime:
        return datetime.now(timezone.utc)

    def run_window(
        self,
        snapshot_type: SnapshotType,
        window_start: Optional[datetime],
        window_end: Optional[datetime],
        force: bool = False,
        trigger: TrendRunTrigger = "manual",
    ) -> TrendRunResult:
        start, end = validate_window(window_start, window_end, now=self._now_utc())
        logger.info(
            "Starting %s trend run (%s%s) for %s..%s",
            snapshot_type,
            trigger,
            ", forced" if force else "",
            start.isoformat(),
            end.isoformat(),
        )

        try:
            gate = self.coordinator.begin_run(snapshot_type, start, end, force=force)
        except ProcessingLogError as exc:
            return TrendRunResult(
                snapshot_type=snapshot_type,
                status="failed",
                window_start=start,
                window_end=end,
                all_items_succeeded=False,
                log_finalized=False,
                message=exc.message,
            )

        if gate.skipped:
            covered_by = gate.covered_by
            return TrendRunResult(
                run_id=covered_by.id if covered_by else None,
                snapshot_type=snapshot_type,
                status="skipped",
                window_start=start,
                window_end=end,
                message="Window already covered by a completed run",
            )

        handle = gate.handle
        try:
            outcome = self.executor.execute(handle.run_id, snapshot_type, start, end)
        except Exception as exc:
            logger.error(
                "Trend run %s failed for %s..%s: %s",
                handle.run_id,
                start.isoformat(),
                end.isoformat(),
                exc,
                exc_info=True,
            )
            finalized = self.coordinator.fail_run(handle, str(exc))
            return TrendRunResult(
                run_id=handle.run_id,
                snapshot_type=snapshot_type,
                status="failed",
                window_start=start,
                window_end=end,
                all_items_succeeded=False,
                log_finalized=finalized,
                message=str(exc),
            )

        finalized = self.coordinator.complete_run(handle)
        logger.info(
            "Trend run %s completed: %d snapshots written, %d skipped, %d failed",
            handle.run_id,
            outcome.snapshots_written,
            outcome.items_skipped,
            outcome.items_failed,
        )
        return TrendRunResult(
            run_id=handle.run_id,
            snapshot_type=snapshot_type,
            status="completed",
            window_start=start,
            window_end=end,
            snapshots_written=outcome.snapshots_written,
            items_failed=outcome.items_failed,
            items_skipped=outcome.items_skipped,
            all_items_succeeded=outcome.all_items_succeeded,
            log_finalized=finalized,
            message=None if outcome.all_items_succeeded else "Some items failed; see logs",
        )

    def run_window_in_background(
        self,
        snapshot_type: SnapshotType,
        window_start: Optional[datetime],
        window_end: Optional[datetime],
        force: bool = False,
    ) -> None:
        try:
            result = self.run_window(
                snapshot_type, window_start, window_end, force=force, trigger="on_demand"
            )
        except AppError as exc:
            logger.error("Background trend run rejected: %s", exc.message)
            return
        logger.info("Background trend run %s finished with status %s", result.run_id, result.status)

    def run_last_completed_week(
        self,
        trigger: TrendRunTrigger,
        force: bool = False,
        now: Optional[datetime] = None,
    ) -> TrendRunResult:
        window_start, window_end = last_completed_week(now or self._now_utc())
        return self.run_window("weekly", window_start, window_end, force=force, trigger=trigger)

    def run_startup_check(self) -> TrendRunResult:
        return self.run_last_completed_week("startup")

    def run_scheduled_week(self) -> TrendRunResult:
        return self.run_last_completed_week("scheduled")
