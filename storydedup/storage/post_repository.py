"""Repository for Post queries used by the detection engine."""

from __future__ import annotations

from datetime import date, timedelta

from sqlalchemy import select

from storydedup.core.database import IssueDB, PostDB, get_session
from storydedup.core.logger import get_logger
from storydedup.core.models import IssueStatus, Post
from storydedup.storage.base import BaseRepository

logger = get_logger(__name__)


class PostRepository(BaseRepository[Post]):
    """Repository for ingested posts with batch and lookback queries."""

    def get_by_issue(self, issue_id: str, limit: int = 500) -> list[Post]:
        """Get the current batch of posts for an issue.

        Args:
            issue_id: Issue id.
            limit: Maximum number of posts.

        Returns:
            Posts ordered by creation time, oldest first. A batch that
            reaches ``limit`` is cut off and logged as a warning.
        """
        posts = self.get_many(
            filters={"issue_id": issue_id},
            order_by="created_at",
            descending=False,
            limit=limit,
        )
        if len(posts) >= limit:
            logger.warning("issue_batch_truncated", issue_id=issue_id, limit=limit)
        return posts

    def get_sent_since(
        self,
        lookback_days: int,
        exclude_issue_id: str | None = None,
        today: date | None = None,
    ) -> list[Post]:
        """Get posts belonging to issues sent within the lookback window.

        Args:
            lookback_days: Window size in days. ``0`` returns nothing.
            exclude_issue_id: Issue to leave out (normally the current one).
            today: Reference date, defaults to the current date.

        Returns:
            Posts from ``sent`` issues dated on or after the cutoff.
        """
        if lookback_days <= 0:
            return []
        reference = today or date.today()
        cutoff = (reference - timedelta(days=lookback_days)).isoformat()

        with get_session() as session:
            stmt = (
                select(PostDB)
                .join(IssueDB, IssueDB.id == PostDB.issue_id)
                .where(IssueDB.status == IssueStatus.SENT.value)
                .where(IssueDB.date >= cutoff)
            )
            if exclude_issue_id is not None:
                stmt = stmt.where(IssueDB.id != exclude_issue_id)
            stmt = stmt.order_by(IssueDB.date.desc(), PostDB.id.asc())
            results = session.execute(stmt).scalars().all()
            posts = [self._orm_to_pydantic(obj) for obj in results]

        logger.debug(
            "historical_posts_loaded",
            lookback_days=lookback_days,
            cutoff=cutoff,
            count=len(posts),
        )
        return posts
