"""Repository for duplicate groups and their members.

Writes are delete-then-recreate per issue inside one transaction, so
exactly the latest run's groups exist for an issue and a failed or
aborted write leaves the previous run untouched.
"""

from __future__ import annotations

from sqlalchemy import delete, select

from storydedup.core.database import (
    DuplicateGroupDB,
    DuplicatePostDB,
    get_session,
    pydantic_to_orm,
)
from storydedup.core.exceptions import PersistenceError
from storydedup.core.logger import get_logger
from storydedup.core.models import DuplicateGroup, DuplicatePost
from storydedup.storage.base import BaseRepository

logger = get_logger(__name__)


class DuplicateGroupRepository(BaseRepository[DuplicateGroup]):
    """Persistence adapter and audit queries for duplicate groups."""

    def replace_for_issue(
        self,
        issue_id: str,
        groups: list[DuplicateGroup],
        members: list[DuplicatePost],
    ) -> None:
        """Replace every group and member row stored for an issue.

        Args:
            issue_id: Issue whose rows are replaced.
            groups: Groups from the current run.
            members: Membership rows from the current run.

        Raises:
            PersistenceError: If a row belongs to another issue or the
                transaction fails. Nothing is written in that case.
        """
        foreign = [g.id for g in groups if g.issue_id != issue_id]
        foreign += [m.id for m in members if m.issue_id != issue_id]
        if foreign:
            raise PersistenceError(
                "Rows do not belong to the issue being written",
                {"issue_id": issue_id, "row_ids": foreign},
            )

        with get_session() as session:
            removed_members = session.execute(
                delete(DuplicatePostDB).where(DuplicatePostDB.issue_id == issue_id),
            ).rowcount
            removed_groups = session.execute(
                delete(DuplicateGroupDB).where(DuplicateGroupDB.issue_id == issue_id),
            ).rowcount
            session.add_all([pydantic_to_orm(g) for g in groups])
            session.flush()
            session.add_all([pydantic_to_orm(m) for m in members])
            session.flush()

        logger.info(
            "duplicate_groups_replaced",
            issue_id=issue_id,
            removed_groups=removed_groups,
            removed_members=removed_members,
            groups=len(groups),
            members=len(members),
        )

    def get_groups_for_issue(self, issue_id: str) -> list[DuplicateGroup]:
        """Get all groups stored for an issue, ordered by method then id."""
        with get_session() as session:
            stmt = (
                select(DuplicateGroupDB)
                .where(DuplicateGroupDB.issue_id == issue_id)
                .order_by(DuplicateGroupDB.detection_method, DuplicateGroupDB.id)
            )
            results = session.execute(stmt).scalars().all()
            return [self._orm_to_pydantic(obj) for obj in results]

    def get_members_for_group(self, group_id: str) -> list[DuplicatePost]:
        """Get the duplicate members of one group."""
        with get_session() as session:
            stmt = (
                select(DuplicatePostDB)
                .where(DuplicatePostDB.group_id == group_id)
                .order_by(DuplicatePostDB.post_id)
            )
            results = session.execute(stmt).scalars().all()
            return [_member_from_orm(obj) for obj in results]

    def get_members_for_issue(self, issue_id: str) -> list[DuplicatePost]:
        """Get every duplicate member row stored for an issue."""
        with get_session() as session:
            stmt = (
                select(DuplicatePostDB)
                .where(DuplicatePostDB.issue_id == issue_id)
                .order_by(DuplicatePostDB.group_id, DuplicatePostDB.post_id)
            )
            results = session.execute(stmt).scalars().all()
            return [_member_from_orm(obj) for obj in results]


def _member_from_orm(orm_obj: DuplicatePostDB) -> DuplicatePost:
    return DuplicatePost.model_validate({
        column.name: getattr(orm_obj, column.name)
        for column in orm_obj.__table__.columns
    })
