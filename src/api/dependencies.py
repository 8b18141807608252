from __future__ import annotations

from functools import lru_cache

from src.repositories.engagement_ratings_repository import EngagementRatingsRepository
from src.repositories.processing_log_repository import ProcessingLogRepository
from src.repositories.trend_snapshots_repository import TrendSnapshotsRepository
from src.services.run_coordinator import RunCoordinator
from src.services.scope_aggregator import ScopeAggregator
from src.services.trend_batch_executor import TrendBatchExecutor
from src.services.trend_calculation_service import TrendCalculationService
from src.services.trend_snapshots_service import TrendSnapshotsService


@lru_cache
def get_engagement_ratings_repository() -> EngagementRatingsRepository:
    return EngagementRatingsRepository()


@lru_cache
def get_trend_snapshots_repository() -> TrendSnapshotsRepository:
    return TrendSnapshotsRepository()


@lru_cache
def get_processing_log_repository() -> ProcessingLogRepository:
    return ProcessingLogRepository()


def get_trend_calculation_service() -> TrendCalculationService:
    ratings_repository = get_engagement_ratings_repository()
    return TrendCalculationService(
        coordinator=RunCoordinator(repository=get_processing_log_repository()),
        executor=TrendBatchExecutor(
            ratings_repository=ratings_repository,
            snapshots_repository=get_trend_snapshots_repository(),
            aggregator=ScopeAggregator(repository=ratings_repository),
        ),
    )


def get_trend_snapshots_service() -> TrendSnapshotsService:
    return TrendSnapshotsService(
        snapshots_repository=get_trend_snapshots_repository(),
        log_repository=get_processing_log_repository(),
    )
