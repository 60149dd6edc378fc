"""Turn stage candidate groups into persisted groups, members and stats."""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import timezone

from storydedup.core.logger import get_logger
from storydedup.core.models import (
    DedupStats,
    DetectionMethod,
    DuplicateGroup,
    DuplicatePost,
    Post,
)
from storydedup.dedup.base import CandidateGroup

logger = get_logger(__name__)

_GROUP_NAMESPACE = uuid.uuid5(uuid.NAMESPACE_URL, "storydedup:duplicate-group")


def _clamp(score: float) -> float:
    return min(1.0, max(0.0, float(score)))


def _date_key(post: Post) -> tuple[int, float]:
    if post.publication_date is None:
        return (1, 0.0)
    published = post.publication_date
    if published.tzinfo is None:
        published = published.replace(tzinfo=timezone.utc)
    return (0, published.timestamp())


def primary_sort_key(post: Post) -> tuple:
    """Longest full text first, then earliest publication date, then lowest id.

    Posts without a publication date sort after dated ones.
    """
    return (-len(post.full_text or ""), *_date_key(post), post.id)


@dataclass
class ResolvedGroup:
    """A resolved group with its member rows and primary position."""

    group: DuplicateGroup
    members: list[DuplicatePost]
    primary_index: int | None


class GroupResolver:
    """Bookkeeping over the disjoint groups produced by the stages.

    Groups from different stages never overlap, since each stage only sees
    unclaimed posts. The resolver picks primaries, assigns stable ids and
    counts duplicates per method.
    """

    def select_primary(self, posts: list[Post], indices: list[int]) -> int:
        """Return the position of the group's representative post."""
        return min(indices, key=lambda i: primary_sort_key(posts[i]))

    def group_id(self, issue_id: str, method: DetectionMethod, post_ids: list[str]) -> str:
        """Stable id so re-runs over the same input produce the same rows."""
        key = f"{issue_id}:{method.value}:{','.join(sorted(post_ids))}"
        return str(uuid.uuid5(_GROUP_NAMESPACE, key))

    def resolve_group(
        self,
        issue_id: str,
        posts: list[Post],
        candidate: CandidateGroup,
    ) -> ResolvedGroup:
        """Build the group row and its member rows.

        Args:
            issue_id: Issue being processed.
            posts: Full batch.
            candidate: One stage's proposed group.

        Returns:
            The resolved group. Historical groups have no primary and
            every post becomes a member.
        """
        indices = sorted(candidate.indices)
        post_ids = [posts[i].id for i in indices]
        group_id = self.group_id(issue_id, candidate.method, post_ids)

        primary_index = self.select_primary(posts, indices) if candidate.has_primary else None
        group = DuplicateGroup(
            id=group_id,
            issue_id=issue_id,
            topic_signature=candidate.topic_signature,
            primary_post_id=posts[primary_index].id if primary_index is not None else None,
            detection_method=candidate.method,
            explanation=candidate.explanation,
            similarity_score=_clamp(candidate.score),
        )

        members = []
        for i in indices:
            if i == primary_index:
                continue
            members.append(DuplicatePost(
                id=str(uuid.uuid5(_GROUP_NAMESPACE, f"{group_id}:{posts[i].id}")),
                group_id=group_id,
                issue_id=issue_id,
                post_id=posts[i].id,
                detection_method=candidate.method,
                similarity_score=_clamp(candidate.member_scores.get(i, candidate.score)),
            ))

        logger.debug(
            "group_resolved",
            group_id=group_id,
            method=candidate.method.value,
            primary_post_id=group.primary_post_id,
            members=len(members),
        )
        return ResolvedGroup(group=group, members=members, primary_index=primary_index)

    def summarize(
        self,
        posts: list[Post],
        members: list[DuplicatePost],
    ) -> tuple[list[Post], DedupStats]:
        """Compute the unique posts (input order kept) and run counters."""
        duplicate_ids = {m.post_id for m in members}
        unique_posts = [post for post in posts if post.id not in duplicate_ids]

        per_method = {method: 0 for method in DetectionMethod}
        for member in members:
            per_method[member.detection_method] += 1

        stats = DedupStats(
            total_posts=len(posts),
            historical_duplicates=per_method[DetectionMethod.HISTORICAL],
            exact_duplicates=per_method[DetectionMethod.EXACT],
            title_duplicates=per_method[DetectionMethod.TITLE],
            semantic_duplicates=per_method[DetectionMethod.SEMANTIC],
            duplicate_posts=len(duplicate_ids),
            total_unique=len(unique_posts),
        )
        return unique_posts, stats
