"""End-to-end tests for the detection orchestrator."""

from unittest.mock import MagicMock

import pytest
from structlog.testing import capture_logs

from storydedup.core.exceptions import PersistenceError, StoryDedupError, TransientError
from storydedup.core.models import DetectionMethod, MatchConfig, PostState
from storydedup.dedup.base import BaseMatcher, CandidateGroup, FailurePolicy
from storydedup.dedup.detector import DuplicateDetector, PostTracker

from tests.conftest import ISSUE_ID, make_post


@pytest.fixture
def detector(settings, no_retry, historical_posts):
    return DuplicateDetector(
        fetch_historical_posts=MagicMock(return_value=historical_posts),
        grouping_backend=MagicMock(return_value={"groups": []}),
        persist=MagicMock(),
        settings=settings,
        retry=no_retry,
    )


def _assert_invariants(result, posts):
    assert set(result.post_states) == {p.id for p in posts}
    assert all(state.is_terminal for state in result.post_states.values())
    member_ids = [m.post_id for m in result.members]
    assert len(member_ids) == len(set(member_ids))
    for group in result.groups:
        members = result.members_of(group.id)
        assert group.primary_post_id not in {m.post_id for m in members}
        assert 0.0 <= group.similarity_score <= 1.0
        assert all(0.0 <= m.similarity_score <= 1.0 for m in members)
    assert {p.id for p in result.unique_posts}.isdisjoint(member_ids)


class TestPostTracker:
    def test_forward_transitions(self):
        tracker = PostTracker(2)
        tracker.transition(0, PostState.HISTORICAL_CHECKED)
        tracker.transition(0, PostState.TITLE_CHECKED)
        tracker.transition(1, PostState.DUPLICATE)
        assert tracker.unclaimed() == [0]

    def test_backward_transition_raises(self):
        tracker = PostTracker(1)
        tracker.transition(0, PostState.EXACT_CHECKED)
        with pytest.raises(StoryDedupError):
            tracker.transition(0, PostState.HISTORICAL_CHECKED)

    def test_terminal_state_is_final(self):
        tracker = PostTracker(1)
        tracker.transition(0, PostState.PRIMARY)
        with pytest.raises(StoryDedupError):
            tracker.transition(0, PostState.DUPLICATE)


class TestDetectDuplicatesScenario:
    def test_five_post_batch(self, detector, scenario_posts, match_config):
        result = detector.detect_duplicates(ISSUE_ID, scenario_posts, match_config)

        assert {p.id for p in result.unique_posts} == {"p0", "p3"}
        by_method = {g.detection_method: g for g in result.groups}
        assert set(by_method) == {
            DetectionMethod.HISTORICAL, DetectionMethod.EXACT, DetectionMethod.TITLE,
        }

        exact = by_method[DetectionMethod.EXACT]
        assert exact.primary_post_id == "p0"
        assert [m.post_id for m in result.members_of(exact.id)] == ["p2"]

        title = by_method[DetectionMethod.TITLE]
        assert title.primary_post_id == "p3"
        assert [m.post_id for m in result.members_of(title.id)] == ["p1"]

        historical = by_method[DetectionMethod.HISTORICAL]
        assert historical.primary_post_id is None
        assert [m.post_id for m in result.members_of(historical.id)] == ["p4"]

        assert result.post_states == {
            "p0": PostState.PRIMARY,
            "p1": PostState.DUPLICATE,
            "p2": PostState.DUPLICATE,
            "p3": PostState.PRIMARY,
            "p4": PostState.DUPLICATE,
        }
        assert result.stats.historical_duplicates == 1
        assert result.stats.exact_duplicates == 1
        assert result.stats.title_duplicates == 1
        assert result.stats.semantic_duplicates == 0
        assert result.stats.total_unique == 2
        _assert_invariants(result, scenario_posts)

    def test_semantic_stage_not_called_when_nothing_remains(
        self, settings, no_retry, historical_posts, scenario_posts, match_config,
    ):
        backend = MagicMock()
        detector = DuplicateDetector(
            fetch_historical_posts=MagicMock(return_value=historical_posts),
            grouping_backend=backend,
            settings=settings,
            retry=no_retry,
        )
        detector.detect_duplicates(ISSUE_ID, scenario_posts, match_config)
        backend.assert_not_called()

    def test_runs_are_deterministic(self, detector, scenario_posts, match_config):
        first = detector.detect_duplicates(ISSUE_ID, scenario_posts, match_config)
        second = detector.detect_duplicates(ISSUE_ID, list(scenario_posts), match_config)

        def rows(result):
            return (
                [g.model_dump(exclude={"created_at"}) for g in result.groups],
                [m.model_dump() for m in result.members],
                result.unique_post_ids,
            )

        assert rows(first) == rows(second)

    def test_persists_once_with_result_rows(self, detector, scenario_posts, match_config):
        result = detector.detect_duplicates(ISSUE_ID, scenario_posts, match_config)
        detector._persist.assert_called_once_with(ISSUE_ID, result.groups, result.members)


class TestSemanticFallThrough:
    def test_residual_posts_grouped_semantically(self, settings, no_retry, match_config):
        posts = [
            make_post("r0", "Storm batters northern coast", full_text="Winds hit the coast hard."),
            make_post("r1", "Thousands without power after gale", full_text="Gale cut power."),
            make_post("r2", "Museum opens new wing", full_text="Modern art wing."),
        ]
        backend = MagicMock(return_value={"groups": [
            {"primary_index": 1, "duplicate_indices": [0], "confidence": 0.88},
        ]})
        detector = DuplicateDetector(grouping_backend=backend, settings=settings, retry=no_retry)

        result = detector.detect_duplicates(ISSUE_ID, posts, match_config)

        assert [g.detection_method for g in result.groups] == [DetectionMethod.SEMANTIC]
        # Primary follows the comparator, not the model's suggestion.
        assert result.groups[0].primary_post_id == "r0"
        assert result.unique_post_ids == ["r0", "r2"]
        assert result.stats.semantic_duplicates == 1
        _assert_invariants(result, posts)

    def test_semantic_double_timeout_completes_with_all_unique(
        self, settings, no_retry, match_config,
    ):
        posts = [make_post("r0", "Storm batters coast"), make_post("r1", "Museum opens wing")]
        backend = MagicMock(side_effect=TransientError("timeout"))
        detector = DuplicateDetector(grouping_backend=backend, settings=settings, retry=no_retry)

        with capture_logs() as logs:
            result = detector.detect_duplicates(ISSUE_ID, posts, match_config)

        assert backend.call_count == 2
        assert result.unique_post_ids == ["r0", "r1"]
        assert result.groups == []
        assert all(state is PostState.UNIQUE for state in result.post_states.values())
        assert any(
            log["event"] == "semantic_batch_failed_open" and log["log_level"] == "error"
            for log in logs
        )

    def test_out_of_range_semantic_index_completes(self, settings, no_retry, match_config):
        posts = [make_post("r0", "Storm batters coast"), make_post("r1", "Museum opens wing")]
        backend = MagicMock(return_value={"groups": [{"primary_index": 0, "duplicate_indices": [2]}]})
        detector = DuplicateDetector(grouping_backend=backend, settings=settings, retry=no_retry)

        result = detector.detect_duplicates(ISSUE_ID, posts, match_config)

        assert result.unique_post_ids == ["r0", "r1"]
        assert result.groups == []


class _BrokenMatcher(BaseMatcher):
    method = DetectionMethod.EXACT

    def match(self, posts, candidates, context):
        raise RuntimeError("boom")


class _GreedyMatcher(BaseMatcher):
    method = DetectionMethod.TITLE

    def match(self, posts, candidates, context):
        return [CandidateGroup(method=self.method, indices=[0, 99], score=1.0)]


class TestFailurePolicies:
    def test_failing_stage_fails_open(self, settings, no_retry, match_config):
        posts = [make_post("a", "Same title"), make_post("b", "Same title")]
        detector = DuplicateDetector(settings=settings, retry=no_retry)
        detector._stages[1] = (_BrokenMatcher(settings), PostState.EXACT_CHECKED)

        with capture_logs() as logs:
            result = detector.detect_duplicates(ISSUE_ID, posts, match_config)

        # The title stage still groups the identical titles.
        assert [g.detection_method for g in result.groups] == [DetectionMethod.TITLE]
        assert any(log["event"] == "stage_failed_open" for log in logs)

    def test_stage_claiming_unknown_posts_is_discarded(self, settings, no_retry, match_config):
        posts = [make_post("a", "One"), make_post("b", "Two")]
        detector = DuplicateDetector(settings=settings, retry=no_retry)
        detector._stages[2] = (_GreedyMatcher(settings), PostState.TITLE_CHECKED)

        result = detector.detect_duplicates(ISSUE_ID, posts, match_config)

        assert result.groups == []
        assert result.unique_post_ids == ["a", "b"]

    def test_fail_closed_stage_propagates(self, settings, no_retry, match_config):
        broken = _BrokenMatcher(settings)
        broken.failure_policy = FailurePolicy.FAIL_CLOSED
        detector = DuplicateDetector(settings=settings, retry=no_retry)
        detector._stages[1] = (broken, PostState.EXACT_CHECKED)

        with pytest.raises(RuntimeError):
            detector.detect_duplicates(ISSUE_ID, [make_post("a", "x")], match_config)


class TestPersistenceFailure:
    def test_error_carries_in_memory_result(self, settings, no_retry, scenario_posts, match_config):
        persist = MagicMock(side_effect=RuntimeError("disk full"))
        detector = DuplicateDetector(persist=persist, settings=settings, retry=no_retry)

        with capture_logs() as logs:
            with pytest.raises(PersistenceError) as exc_info:
                detector.detect_duplicates(ISSUE_ID, scenario_posts, match_config)

        result = exc_info.value.result
        assert result is not None
        assert {p.id for p in result.unique_posts} == {"p0", "p3", "p4"}
        failure = next(log for log in logs if log["event"] == "persist_groups_failed")
        assert failure["issue_id"] == ISSUE_ID


class TestInputHandling:
    def test_empty_batch(self, detector, match_config):
        result = detector.detect_duplicates(ISSUE_ID, [], match_config)
        assert result.unique_posts == []
        assert result.groups == []
        assert result.stats.total_posts == 0

    def test_repeated_post_ids_are_collapsed(self, settings, no_retry, match_config):
        post = make_post("a", "Only story")
        detector = DuplicateDetector(settings=settings, retry=no_retry)

        result = detector.detect_duplicates(ISSUE_ID, [post, post], match_config)

        assert result.unique_post_ids == ["a"]
        assert result.groups == []

    def test_identical_titles_grouped_by_exact_stage_at_any_threshold(
        self, settings, no_retry,
    ):
        posts = [make_post("a", "Fed raises rates"), make_post("b", "FED RAISES RATES.")]
        detector = DuplicateDetector(settings=settings, retry=no_retry)

        result = detector.detect_duplicates(
            ISSUE_ID, posts, MatchConfig(strictness_threshold=1.0),
        )

        assert [g.detection_method for g in result.groups] == [DetectionMethod.EXACT]

    def test_audit_queries_require_a_store(self, settings, no_retry):
        detector = DuplicateDetector(settings=settings, retry=no_retry)
        with pytest.raises(PersistenceError):
            detector.get_groups_for_issue(ISSUE_ID)

    def test_audit_queries_delegate(self, settings, no_retry):
        audit = MagicMock()
        audit.get_groups_for_issue.return_value = ["g"]
        audit.get_members_for_group.return_value = ["m"]
        detector = DuplicateDetector(audit=audit, settings=settings, retry=no_retry)

        assert detector.get_groups_for_issue(ISSUE_ID) == ["g"]
        assert detector.get_duplicate_members_for_group("g1") == ["m"]
        audit.get_members_for_group.assert_called_once_with("g1")
