"""Detection orchestrator: runs the four stages over one issue's posts."""

from __future__ import annotations

from collections.abc import Callable
from typing import Protocol

from storydedup.core.config import DedupConfig, RetryConfig, get_config
from storydedup.core.exceptions import PersistenceError, StoryDedupError
from storydedup.core.logger import bound_context, get_logger
from storydedup.core.models import (
    DedupResult,
    DuplicateGroup,
    DuplicatePost,
    MatchConfig,
    Post,
    PostState,
)
from storydedup.dedup.base import BaseMatcher, CandidateGroup, FailurePolicy, StageContext
from storydedup.dedup.exact import ExactMatcher
from storydedup.dedup.historical import HistoricalMatcher, HistoricalSource
from storydedup.dedup.resolver import GroupResolver
from storydedup.dedup.semantic import ClaudeGroupingBackend, GroupingBackend, SemanticGrouper
from storydedup.dedup.title import TitleSimilarityMatcher
from storydedup.storage import DuplicateGroupRepository, PostRepository

logger = get_logger(__name__)

PersistGroups = Callable[[str, list[DuplicateGroup], list[DuplicatePost]], object]


class GroupAudit(Protocol):
    """Read-only view over persisted groups."""

    def get_groups_for_issue(self, issue_id: str) -> list[DuplicateGroup]: ...

    def get_members_for_group(self, group_id: str) -> list[DuplicatePost]: ...


_STATE_ORDER = {
    PostState.UNCHECKED: 0,
    PostState.HISTORICAL_CHECKED: 1,
    PostState.EXACT_CHECKED: 2,
    PostState.TITLE_CHECKED: 3,
    PostState.SEMANTIC_CHECKED: 4,
    PostState.UNIQUE: 5,
    PostState.PRIMARY: 5,
    PostState.DUPLICATE: 5,
}


class PostTracker:
    """Forward-only per-post state machine for one run.

    A post leaves the pipeline the moment a stage claims it as primary or
    duplicate; later stages never see it again.
    """

    def __init__(self, size: int) -> None:
        self._states = [PostState.UNCHECKED] * size

    def state(self, index: int) -> PostState:
        return self._states[index]

    def transition(self, index: int, new_state: PostState) -> None:
        """Move a post forward.

        Raises:
            StoryDedupError: On a backward move or any move out of a
                terminal state.
        """
        current = self._states[index]
        if current.is_terminal or _STATE_ORDER[new_state] <= _STATE_ORDER[current]:
            raise StoryDedupError(
                "Illegal post state transition",
                {"index": index, "from": current.value, "to": new_state.value},
            )
        self._states[index] = new_state

    def unclaimed(self) -> list[int]:
        return [i for i, state in enumerate(self._states) if not state.is_terminal]

    def advance_unclaimed(self, new_state: PostState) -> None:
        for i in self.unclaimed():
            self.transition(i, new_state)

    def snapshot(self, posts: list[Post]) -> dict[str, PostState]:
        return {post.id: self._states[i] for i, post in enumerate(posts)}


class DuplicateDetector:
    """Run historical, exact, title and semantic stages in order.

    Every stage runs under its failure policy. All four matchers fail
    open, so a broken stage leaves its posts for later stages and, in the
    end, unique. Only persistence failures reach the caller.

    Args:
        fetch_historical_posts: Lookback query for Stage 0.
        grouping_backend: Language-model grouping for Stage 3.
        persist: ``persist(issue_id, groups, members)``, called once per run.
        audit: Query surface over persisted groups.
        settings: Dedup settings (defaults to the loaded config).
        retry: Retry policy for the lookback query.
    """

    def __init__(
        self,
        fetch_historical_posts: HistoricalSource | None = None,
        grouping_backend: GroupingBackend | None = None,
        persist: PersistGroups | None = None,
        audit: GroupAudit | None = None,
        settings: DedupConfig | None = None,
        retry: RetryConfig | None = None,
    ) -> None:
        settings = settings or get_config().dedup
        self._stages: list[tuple[BaseMatcher, PostState]] = [
            (
                HistoricalMatcher(fetch_historical_posts, settings, retry),
                PostState.HISTORICAL_CHECKED,
            ),
            (ExactMatcher(settings), PostState.EXACT_CHECKED),
            (TitleSimilarityMatcher(settings), PostState.TITLE_CHECKED),
            (SemanticGrouper(grouping_backend, settings), PostState.SEMANTIC_CHECKED),
        ]
        self._resolver = GroupResolver()
        self._persist = persist
        self._audit = audit

    def detect_duplicates(
        self,
        issue_id: str,
        posts: list[Post],
        config: MatchConfig | None = None,
    ) -> DedupResult:
        """Detect duplicate stories in one issue's batch.

        Args:
            issue_id: Issue being processed.
            posts: The issue's posts, in ingestion order.
            config: Run parameters (defaults from dedup.yaml).

        Returns:
            DedupResult with unique posts, groups, members and stats.

        Raises:
            PersistenceError: If persisting the groups failed. The error's
                ``result`` still carries the in-memory outcome.
        """
        config = config or MatchConfig.from_settings()
        posts = self._drop_repeated_ids(posts)
        context = StageContext(issue_id=issue_id, config=config)

        with bound_context(issue_id=issue_id):
            logger.info(
                "detection_started",
                posts=len(posts),
                lookback_days=config.historical_lookback_days,
                threshold=config.strictness_threshold,
                match_descriptions=config.match_descriptions,
            )
            tracker = PostTracker(len(posts))
            groups: list[DuplicateGroup] = []
            members: list[DuplicatePost] = []

            for stage, checked_state in self._stages:
                candidates = tracker.unclaimed()
                for candidate in self._run_stage(stage, posts, candidates, context):
                    resolved = self._resolver.resolve_group(issue_id, posts, candidate)
                    for i in candidate.indices:
                        tracker.transition(
                            i,
                            PostState.PRIMARY if i == resolved.primary_index else PostState.DUPLICATE,
                        )
                    groups.append(resolved.group)
                    members.extend(resolved.members)
                tracker.advance_unclaimed(checked_state)
            tracker.advance_unclaimed(PostState.UNIQUE)

            unique_posts, stats = self._resolver.summarize(posts, members)
            result = DedupResult(
                issue_id=issue_id,
                unique_posts=unique_posts,
                groups=groups,
                members=members,
                stats=stats,
                post_states=tracker.snapshot(posts),
            )

            if self._persist is not None:
                self._save(issue_id, result)

            logger.info("detection_completed", **stats.model_dump(), groups=len(groups))
            return result

    def get_groups_for_issue(self, issue_id: str) -> list[DuplicateGroup]:
        """Groups persisted by the latest run for an issue."""
        return self._require_audit().get_groups_for_issue(issue_id)

    def get_duplicate_members_for_group(self, group_id: str) -> list[DuplicatePost]:
        """Duplicate members of a persisted group. The primary is not listed."""
        return self._require_audit().get_members_for_group(group_id)

    def _require_audit(self) -> GroupAudit:
        if self._audit is None:
            raise PersistenceError("Detector has no group store configured")
        return self._audit

    def _run_stage(
        self,
        stage: BaseMatcher,
        posts: list[Post],
        candidates: list[int],
        context: StageContext,
    ) -> list[CandidateGroup]:
        if not candidates:
            return []
        try:
            groups = stage.match(posts, candidates, context)
            self._check_groups(stage, groups, candidates)
        except Exception as e:
            if stage.failure_policy == FailurePolicy.FAIL_CLOSED:
                raise
            logger.error(
                "stage_failed_open",
                issue_id=context.issue_id,
                stage=stage.name,
                candidates=len(candidates),
                error=str(e),
                error_type=type(e).__name__,
            )
            return []

        logger.info(
            "stage_completed",
            stage=stage.name,
            candidates=len(candidates),
            groups=len(groups),
            claimed=sum(len(g.indices) for g in groups),
        )
        return groups

    @staticmethod
    def _check_groups(
        stage: BaseMatcher,
        groups: list[CandidateGroup],
        candidates: list[int],
    ) -> None:
        """Reject output that would claim a post twice or a post already resolved."""
        allowed = set(candidates)
        seen: set[int] = set()
        for group in groups:
            minimum = 2 if group.has_primary else 1
            indices = set(group.indices)
            if len(indices) != len(group.indices) or len(indices) < minimum:
                raise StoryDedupError(
                    "Stage produced a malformed group",
                    {"stage": stage.name, "indices": group.indices},
                )
            if not indices <= allowed or indices & seen:
                raise StoryDedupError(
                    "Stage claimed a post outside its candidates",
                    {"stage": stage.name, "indices": sorted(indices - allowed or indices & seen)},
                )
            seen |= indices

    @staticmethod
    def _drop_repeated_ids(posts: list[Post]) -> list[Post]:
        seen: set[str] = set()
        kept = []
        for post in posts:
            if post.id in seen:
                logger.warning("duplicate_post_id_ignored", post_id=post.id)
                continue
            seen.add(post.id)
            kept.append(post)
        return kept

    def _save(self, issue_id: str, result: DedupResult) -> None:
        try:
            self._persist(issue_id, result.groups, result.members)
        except Exception as e:
            logger.error(
                "persist_groups_failed",
                issue_id=issue_id,
                groups=len(result.groups),
                members=len(result.members),
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PersistenceError(
                f"Failed to persist duplicate groups for issue {issue_id}",
                {"issue_id": issue_id, "original_error": str(e)},
                result=result,
            ) from e


def build_detector(persist: bool = True) -> DuplicateDetector:
    """Wire the detector to the database repositories and Claude.

    Args:
        persist: Write groups to the database at the end of each run.
    """
    posts = PostRepository()
    groups = DuplicateGroupRepository()
    return DuplicateDetector(
        fetch_historical_posts=lambda days, exclude: posts.get_sent_since(
            days, exclude_issue_id=exclude,
        ),
        grouping_backend=ClaudeGroupingBackend(template=get_config().dedup.semantic.template),
        persist=groups.replace_for_issue if persist else None,
        audit=groups,
    )
