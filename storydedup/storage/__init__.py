"""Storage layer: repositories for posts, issues and duplicate groups.

Usage::

    from storydedup.storage import PostRepository, DuplicateGroupRepository
    posts = PostRepository().get_by_issue(issue_id)
    groups = DuplicateGroupRepository().get_groups_for_issue(issue_id)
"""

from storydedup.storage.base import BaseRepository
from storydedup.storage.duplicate_repository import DuplicateGroupRepository
from storydedup.storage.issue_repository import IssueRepository
from storydedup.storage.post_repository import PostRepository

__all__ = [
    "BaseRepository",
    "PostRepository",
    "IssueRepository",
    "DuplicateGroupRepository",
]
