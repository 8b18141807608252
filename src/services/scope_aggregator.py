from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence, Tuple

from src.core.errors import InvalidScopeError
from src.repositories.engagement_ratings_repository import EngagementRatingsRepository
from src.schemas.trends import CampsCategory, ScopeType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScopeRef:
    scope_type: ScopeType
    entity_id: Optional[str] = None
    team_id: Optional[str] = None
    member_ids: Tuple[str, ...] = ()

    @property
    def label(self) -> str:
        if self.scope_type == "organization":
            return "organization"
        return f"{self.scope_type}:{self.entity_id}"


@dataclass(frozen=True)
class ScopeValue:
    value: float
    contributing_count: int
    data_points: int


class ScopeAggregator:
    """Point-in-time values for an employee, a team or the whole organization.

    Every value is built from each employee's most recent rating at or before
    ``as_of``. Team and organization values are plain means over the members
    that have a rating; members without one are left out entirely.
    """

    def __init__(self, repository: EngagementRatingsRepository) -> None:
        self.repository = repository

    @staticmethod
    def validate_scope(scope: ScopeRef) -> None:
        if scope.scope_type in {"employee", "team"} and not scope.entity_id:
            raise InvalidScopeError(scope.scope_type, f"{scope.scope_type} reference has no id")
        if scope.scope_type == "organization" and scope.entity_id is not None:
            raise InvalidScopeError(scope.scope_type, "organization scope does not take an entity id")

    def compute_value(
        self,
        scope: ScopeRef,
        category: CampsCategory,
        as_of: datetime,
    ) -> Optional[ScopeValue]:
        self.validate_scope(scope)
        if scope.scope_type == "employee":
            return self.compute_employee_value(str(scope.entity_id), category, as_of)
        return self.compute_group_value(scope.member_ids, category, as_of)

    def compute_employee_value(
        self,
        employee_id: str,
        category: CampsCategory,
        as_of: datetime,
    ) -> Optional[ScopeValue]:
        rating = self.repository.find_latest_rating(employee_id, category, as_of)
        if rating is None:
            return None
        return ScopeValue(value=float(rating.rating), contributing_count=1, data_points=1)

    def compute_group_value(
        self,
        member_ids: Sequence[str],
        category: CampsCategory,
        as_of: datetime,
    ) -> Optional[ScopeValue]:
        ratings = []
        for employee_id in dict.fromkeys(member_ids):
            rating = self.repository.find_latest_rating(employee_id, category, as_of)
            if rating is not None:
                ratings.append(rating.rating)
        if not ratings:
            return None
        return ScopeValue(
            value=sum(ratings) / len(ratings),
            contributing_count=len(ratings),
            data_points=len(ratings),
        )
