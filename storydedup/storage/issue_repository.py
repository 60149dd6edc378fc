"""Repository for Issue CRUD and status queries."""

from __future__ import annotations

from storydedup.core.database import IssueDB, get_session
from storydedup.core.models import Issue, IssueStatus
from storydedup.storage.base import BaseRepository


class IssueRepository(BaseRepository[Issue]):
    """Repository for publication issues."""

    def get_by_status(self, status: IssueStatus, limit: int = 50) -> list[Issue]:
        """Get issues with a given status, most recent date first."""
        return self.get_many(
            filters={"status": status.value},
            order_by="date",
            descending=True,
            limit=limit,
        )

    def mark_status(self, issue_id: str, status: IssueStatus) -> Issue | None:
        """Update the status of an issue.

        Args:
            issue_id: Issue id.
            status: New status.

        Returns:
            The updated issue or None if not found.
        """
        with get_session() as session:
            orm_obj = session.get(IssueDB, issue_id)
            if orm_obj is None:
                return None
            orm_obj.status = status.value
            session.flush()
            return self._orm_to_pydantic(orm_obj)
