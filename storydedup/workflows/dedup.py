"""Per-issue dedup workflow: load the batch, detect duplicates, persist."""

from __future__ import annotations

from storydedup.core.exceptions import PersistenceError
from storydedup.core.models import DedupResult, MatchConfig, Post
from storydedup.dedup.detector import DuplicateDetector, build_detector
from storydedup.storage.post_repository import PostRepository
from storydedup.workflows.base import BaseWorkflow, WorkflowResult


class IssueDedupWorkflow(BaseWorkflow):
    """Run duplicate detection for one issue.

    Steps:
        1. load_batch (critical) - Posts ingested for the issue
        2. detect_duplicates (critical) - All four stages plus persistence

    A persistence failure still fails the workflow. The in-memory outcome
    of the last run stays available as ``last_outcome`` either way.
    """

    name = "issue_dedup"

    def __init__(
        self,
        issue_id: str,
        match_config: MatchConfig | None = None,
        detector: DuplicateDetector | None = None,
        post_repo: PostRepository | None = None,
    ) -> None:
        super().__init__()
        self._issue_id = issue_id
        self._match_config = match_config or MatchConfig.from_settings()
        self._detector = detector or build_detector()
        self._post_repo = post_repo or PostRepository()
        self.last_outcome: DedupResult | None = None

    def execute(self) -> WorkflowResult:
        result = WorkflowResult(workflow_name=self.name)
        result.data["issue_id"] = self._issue_id
        result.data["match_config"] = self._match_config.model_dump()

        posts: list[Post] = self._run_step(
            "load_batch",
            lambda: self._post_repo.get_by_issue(self._issue_id),
            critical=True,
        ) or []
        result.posts_loaded = len(posts)

        outcome: DedupResult | None = self._run_step(
            "detect_duplicates",
            lambda: self._detect(posts),
            critical=True,
        )
        if outcome is not None:
            self._fill(result, outcome)
        return result

    def _detect(self, posts: list[Post]) -> DedupResult:
        try:
            self.last_outcome = self._detector.detect_duplicates(
                self._issue_id, posts, self._match_config,
            )
        except PersistenceError as e:
            self.last_outcome = e.result
            raise
        return self.last_outcome

    @staticmethod
    def _fill(result: WorkflowResult, outcome: DedupResult) -> None:
        result.groups_created = len(outcome.groups)
        result.duplicates = outcome.stats.duplicate_posts
        result.unique_posts = outcome.stats.total_unique
        result.data["unique_post_ids"] = outcome.unique_post_ids
        result.data["stats"] = outcome.stats.model_dump()
