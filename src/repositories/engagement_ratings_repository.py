from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from src.core.supabase import SupabaseClient
from src.models.engagement import EmployeeRecord, EngagementRatingRecord, TeamRecord
from src.schemas.trends import CampsCategory

RATING_COLUMNS = "id,employee_id,category,rating,rating_date,created_at"
EMPLOYEE_COLUMNS = "id,name,email,team_id,manager_id"
TEAM_COLUMNS = "id,name,manager_id"


class EngagementRatingsRepository:
    """Read-only access to ratings, teams and employees."""

    def __init__(self) -> None:
        self.client = SupabaseClient()

    @staticmethod
    def _to_iso_utc(dt: datetime) -> str:
        return dt.astimezone(timezone.utc).isoformat()

    def find_latest_rating(
        self,
        employee_id: str,
        category: CampsCategory,
        as_of: datetime,
    ) -> Optional[EngagementRatingRecord]:
        rows, _ = self.client.select(
            table="engagement_ratings",
            select=RATING_COLUMNS,
            filters=[
                ("employee_id", f"eq.{employee_id}"),
                ("category", f"eq.{category}"),
                ("rating_date", f"lte.{self._to_iso_utc(as_of)}"),
            ],
            order="rating_date.desc,created_at.desc",
            limit=1,
        )
        return EngagementRatingRecord.model_validate(rows[0]) if rows else None

    def list_teams(self) -> List[TeamRecord]:
        rows = self.client.select_all(table="teams", select=TEAM_COLUMNS)
        return [TeamRecord.model_validate(row) for row in rows]

    def list_employees(self) -> List[EmployeeRecord]:
        rows = self.client.select_all(table="employees", select=EMPLOYEE_COLUMNS)
        return [EmployeeRecord.model_validate(row) for row in rows]

    def list_employees_of_team(self, team_id: str) -> List[EmployeeRecord]:
        rows = self.client.select_all(
            table="employees",
            select=EMPLOYEE_COLUMNS,
            filters=[("team_id", f"eq.{team_id}")],
        )
        return [EmployeeRecord.model_validate(row) for row in rows]
