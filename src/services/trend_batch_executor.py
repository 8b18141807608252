from __future__ import annotations

import logging
import time
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from datetime import datetime, timedelta
from functools import partial
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from src.analytics.comparison_windows import lag_candidate_range
from src.analytics.trend_snapshots import LagLookup, compose_snapshot, history_lag_lookup
from src.core.config import get_settings
from src.core.errors import InvalidScopeError
from src.models.engagement import EmployeeRecord, TeamRecord
from src.repositories.engagement_ratings_repository import EngagementRatingsRepository
from src.repositories.trend_snapshots_repository import TrendSnapshotsRepository
from src.schemas.trends import CAMPS_CATEGORIES, CampsCategory, LagKind, SnapshotType
from src.services.scope_aggregator import ScopeAggregator, ScopeRef

logger = logging.getLogger(__name__)


@dataclass
class BatchOutcome:
    snapshots_written: int = 0
    items_skipped: int = 0
    items_failed: int = 0

    def merge(self, other: "BatchOutcome") -> None:
        self.snapshots_written += other.snapshots_written
        self.items_skipped += other.items_skipped
        self.items_failed += other.items_failed

    @property
    def all_items_succeeded(self) -> bool:
        return self.items_failed == 0


@dataclass(frozen=True)
class BatchContext:
    run_id: Optional[str]
    snapshot_type: SnapshotType
    record_date: datetime


WorkItem = Tuple[str, Callable[[], BatchOutcome]]


class TrendBatchExecutor:
    """Writes one snapshot per (scope, category) for every team, employee and the organization.

    Failures are isolated per (scope, category): an exception is logged and
    counted, and the remaining categories and scopes carry on. Work items run
    in batches of ``trend_batch_size`` on at most ``trend_max_workers``
    threads; ``trend_max_workers=1`` processes items strictly in order.
    """

    def __init__(
        self,
        ratings_repository: EngagementRatingsRepository,
        snapshots_repository: TrendSnapshotsRepository,
        aggregator: ScopeAggregator,
    ) -> None:
        self.ratings_repository = ratings_repository
        self.snapshots_repository = snapshots_repository
        self.aggregator = aggregator
        self.settings = get_settings()

    def execute(
        self,
        run_id: Optional[str],
        snapshot_type: SnapshotType,
        window_start: datetime,
        window_end: datetime,
    ) -> BatchOutcome:
        context = BatchContext(run_id=run_id, snapshot_type=snapshot_type, record_date=window_end)
        teams = self.ratings_repository.list_teams()
        employees = self.ratings_repository.list_employees()
        logger.info(
            "Calculating %s trends for %s..%s: %d teams, %d employees",
            snapshot_type,
            window_start.date().isoformat(),
            window_end.date().isoformat(),
            len(teams),
            len(employees),
        )

        items: List[WorkItem] = []
        for team in teams:
            items.append((f"team:{team.id}", partial(self._process_team, team, context)))
        for employee in employees:
            items.append(
                (f"employee:{employee.id}", partial(self._process_employee, employee, context))
            )
        if self.settings.trend_include_organization:
            items.append(
                ("organization", partial(self._process_organization, employees, context))
            )

        outcome = self._run_items(items)
        logger.info(
            "Finished %s trends for %s: %d snapshots written, %d skipped, %d failed",
            snapshot_type,
            window_end.date().isoformat(),
            outcome.snapshots_written,
            outcome.items_skipped,
            outcome.items_failed,
        )
        return outcome

    def _run_items(self, items: Sequence[WorkItem]) -> BatchOutcome:
        outcome = BatchOutcome()
        batch_size = max(self.settings.trend_batch_size, 1)
        max_workers = max(self.settings.trend_max_workers, 1)
        batches = [items[start : start + batch_size] for start in range(0, len(items), batch_size)]

        if max_workers == 1:
            for index, batch in enumerate(batches):
                for label, work in batch:
                    outcome.merge(self._run_isolated(label, work))
                self._pause_between(index, len(batches))
            return outcome

        with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="trend-batch") as pool:
            for index, batch in enumerate(batches):
                futures: Dict[Future[BatchOutcome], str] = {
                    pool.submit(self._run_isolated, label, work): label for label, work in batch
                }
                # Join the whole batch before starting the next one.
                for future in as_completed(futures):
                    outcome.merge(future.result())
                self._pause_between(index, len(batches))
        return outcome

    def _pause_between(self, index: int, batch_count: int) -> None:
        pause = self.settings.trend_batch_pause_seconds
        if pause > 0 and index < batch_count - 1:
            time.sleep(pause)

    @staticmethod
    def _run_isolated(label: str, work: Callable[[], BatchOutcome]) -> BatchOutcome:
        try:
            return work()
        except Exception as exc:
            logger.error("Trend calculation failed for %s: %s", label, exc, exc_info=True)
            return BatchOutcome(items_failed=len(CAMPS_CATEGORIES))

    def _process_team(self, team: TeamRecord, context: BatchContext) -> BatchOutcome:
        if not team.id:
            return self._reject_scope(ScopeRef(scope_type="team"), team.name)
        members = self.ratings_repository.list_employees_of_team(team.id)
        member_ids = tuple(member.id for member in members if member.id)
        if len(member_ids) != len(members):
            logger.warning(
                "Team %s has %d member rows without an id; they are left out",
                team.id,
                len(members) - len(member_ids),
            )
        scope = ScopeRef(scope_type="team", entity_id=team.id, team_id=team.id, member_ids=member_ids)
        return self._process_scope(scope, context)

    def _process_employee(self, employee: EmployeeRecord, context: BatchContext) -> BatchOutcome:
        if not employee.id:
            return self._reject_scope(ScopeRef(scope_type="employee"), employee.name)
        scope = ScopeRef(
            scope_type="employee",
            entity_id=employee.id,
            team_id=employee.team_id,
            member_ids=(employee.id,),
        )
        return self._process_scope(scope, context)

    def _process_organization(
        self, employees: Sequence[EmployeeRecord], context: BatchContext
    ) -> BatchOutcome:
        member_ids = tuple(employee.id for employee in employees if employee.id)
        return self._process_scope(ScopeRef(scope_type="organization", member_ids=member_ids), context)

    @staticmethod
    def _reject_scope(scope: ScopeRef, name: Optional[str]) -> BatchOutcome:
        logger.error("Skipping %s %r: reference has no id", scope.scope_type, name)
        return BatchOutcome(items_failed=len(CAMPS_CATEGORIES))

    def _process_scope(self, scope: ScopeRef, context: BatchContext) -> BatchOutcome:
        outcome = BatchOutcome()
        try:
            self.aggregator.validate_scope(scope)
        except InvalidScopeError as exc:
            logger.error("Skipping %s: %s", scope.label, exc.message)
            outcome.items_failed += len(CAMPS_CATEGORIES)
            return outcome

        for category in CAMPS_CATEGORIES:
            try:
                written = self._process_category(scope, category, context)
            except Exception as exc:
                logger.error(
                    "Trend calculation failed for %s in %s: %s",
                    scope.label,
                    category,
                    exc,
                    exc_info=True,
                )
                outcome.items_failed += 1
                continue
            if written:
                outcome.snapshots_written += 1
            else:
                outcome.items_skipped += 1
        return outcome

    def _process_category(
        self, scope: ScopeRef, category: CampsCategory, context: BatchContext
    ) -> bool:
        value = self.aggregator.compute_value(scope, category, context.record_date)
        if value is None:
            logger.debug(
                "No ratings for %s in %s as of %s",
                scope.label,
                category,
                context.record_date.isoformat(),
            )
            return False

        is_group = scope.scope_type != "employee"
        payload = compose_snapshot(
            scope_type=scope.scope_type,
            entity_id=scope.entity_id,
            team_id=scope.team_id,
            category=category,
            record_date=context.record_date,
            current_value=value.value,
            contributing_count=value.contributing_count if is_group else None,
            data_points=value.data_points if is_group else None,
            lookup_lag=self._lag_lookup(scope, category, context),
            snapshot_type=context.snapshot_type,
            run_id=context.run_id,
        )
        self.snapshots_repository.insert_snapshot(payload)
        logger.debug(
            "Saved %s trend for %s in %s: value=%.2f",
            context.snapshot_type,
            scope.label,
            category,
            value.value,
        )
        return True

    def _lag_lookup(
        self, scope: ScopeRef, category: CampsCategory, context: BatchContext
    ) -> LagLookup:
        # One bounded query per lag so the row cap never drops older anchors.
        tolerance = timedelta(days=self.settings.trend_lag_tolerance_days)

        def lookup(lag: LagKind) -> Optional[float]:
            start, end_exclusive = lag_candidate_range(context.record_date, lag, tolerance)
            history = self.snapshots_repository.list_snapshot_history(
                scope.scope_type,
                scope.entity_id,
                category,
                context.snapshot_type,
                start,
                end_exclusive,
            )
            return history_lag_lookup(history, context.record_date, tolerance)(lag)

        return lookup
