"""Tests for the step runner and the per-issue dedup workflow."""

from unittest.mock import MagicMock

import pytest

from storydedup.core.exceptions import PersistenceError, WorkflowError
from storydedup.core.models import MatchConfig
from storydedup.dedup.detector import DuplicateDetector
from storydedup.workflows import IssueDedupWorkflow
from storydedup.workflows.base import BaseWorkflow, WorkflowResult

from tests.conftest import ISSUE_ID


class _StepsWorkflow(BaseWorkflow):
    name = "steps"

    def __init__(self, steps):
        super().__init__()
        self._steps = steps

    def execute(self) -> WorkflowResult:
        result = WorkflowResult(workflow_name=self.name)
        for name, fn, critical in self._steps:
            self._run_step(name, fn, critical=critical)
        return result


def _fail():
    raise RuntimeError("boom")


class TestBaseWorkflow:
    def test_non_critical_failure_continues(self):
        done = MagicMock()
        result = _StepsWorkflow([("a", _fail, False), ("b", done, False)]).run()

        assert result.success is True
        done.assert_called_once()
        assert [e["step"] for e in result.errors] == ["a"]

    def test_critical_failure_aborts(self):
        never = MagicMock()
        result = _StepsWorkflow([("a", _fail, True), ("b", never, False)]).run()

        assert result.success is False
        never.assert_not_called()
        assert result.errors[0]["type"] == "RuntimeError"

    def test_critical_step_raises_workflow_error(self):
        workflow = _StepsWorkflow([])
        with pytest.raises(WorkflowError):
            workflow._run_step("x", _fail, critical=True)


class TestIssueDedupWorkflow:
    @pytest.fixture
    def detector(self, settings, no_retry, historical_posts):
        return DuplicateDetector(
            fetch_historical_posts=MagicMock(return_value=historical_posts),
            persist=MagicMock(),
            settings=settings,
            retry=no_retry,
        )

    def test_runs_detection_on_loaded_batch(self, detector, scenario_posts, match_config):
        post_repo = MagicMock()
        post_repo.get_by_issue.return_value = scenario_posts

        workflow = IssueDedupWorkflow(ISSUE_ID, match_config, detector=detector, post_repo=post_repo)
        result = workflow.run()

        assert result.success is True
        post_repo.get_by_issue.assert_called_once_with(ISSUE_ID)
        assert result.posts_loaded == 5
        assert result.groups_created == 3
        assert result.duplicates == 3
        assert result.unique_posts == 2
        assert sorted(result.data["unique_post_ids"]) == ["p0", "p3"]
        assert workflow.last_outcome is not None

    def test_load_failure_aborts(self, detector, match_config):
        post_repo = MagicMock()
        post_repo.get_by_issue.side_effect = PersistenceError("db gone")

        result = IssueDedupWorkflow(
            ISSUE_ID, match_config, detector=detector, post_repo=post_repo,
        ).run()

        assert result.success is False
        assert result.errors[0]["step"] == "load_batch"

    def test_persistence_failure_keeps_outcome(self, settings, no_retry, scenario_posts):
        detector = DuplicateDetector(
            persist=MagicMock(side_effect=RuntimeError("disk full")),
            settings=settings,
            retry=no_retry,
        )
        post_repo = MagicMock()
        post_repo.get_by_issue.return_value = scenario_posts

        workflow = IssueDedupWorkflow(
            ISSUE_ID, MatchConfig(), detector=detector, post_repo=post_repo,
        )
        result = workflow.run()

        assert result.success is False
        assert result.errors[-1]["step"] == "detect_duplicates"
        assert workflow.last_outcome is not None
        assert workflow.last_outcome.stats.total_unique == 3
