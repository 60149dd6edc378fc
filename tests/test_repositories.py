"""Repository tests against a temporary SQLite database."""

from datetime import date

import pytest
from structlog.testing import capture_logs

from storydedup.core.exceptions import PersistenceError
from storydedup.core.models import (
    DetectionMethod,
    DuplicateGroup,
    DuplicatePost,
    Issue,
    IssueStatus,
)
from storydedup.dedup.detector import DuplicateDetector
from storydedup.storage import DuplicateGroupRepository, IssueRepository, PostRepository

from tests.conftest import ISSUE_ID, make_post

pytestmark = pytest.mark.usefixtures("temp_db")

TODAY = date(2026, 10, 19)


def _group(group_id: str, issue_id: str = ISSUE_ID, primary: str | None = "p0") -> DuplicateGroup:
    return DuplicateGroup(
        id=group_id,
        issue_id=issue_id,
        topic_signature="sig",
        primary_post_id=primary,
        detection_method=DetectionMethod.EXACT,
        explanation="same title",
        similarity_score=1.0,
    )


def _member(member_id: str, group_id: str, post_id: str, issue_id: str = ISSUE_ID) -> DuplicatePost:
    return DuplicatePost(
        id=member_id,
        group_id=group_id,
        issue_id=issue_id,
        post_id=post_id,
        detection_method=DetectionMethod.EXACT,
        similarity_score=0.99,
    )


class TestDuplicateGroupRepository:
    def test_replace_is_idempotent(self):
        repo = DuplicateGroupRepository()
        groups = [_group("g1")]
        members = [_member("m1", "g1", "p2")]

        repo.replace_for_issue(ISSUE_ID, groups, members)
        repo.replace_for_issue(ISSUE_ID, groups, members)

        assert [g.id for g in repo.get_groups_for_issue(ISSUE_ID)] == ["g1"]
        assert [m.post_id for m in repo.get_members_for_issue(ISSUE_ID)] == ["p2"]

    def test_replace_drops_previous_run(self):
        repo = DuplicateGroupRepository()
        repo.replace_for_issue(ISSUE_ID, [_group("old")], [_member("m-old", "old", "p9")])

        repo.replace_for_issue(ISSUE_ID, [_group("new")], [_member("m-new", "new", "p2")])

        assert [g.id for g in repo.get_groups_for_issue(ISSUE_ID)] == ["new"]
        assert repo.get_members_for_group("old") == []
        assert [m.post_id for m in repo.get_members_for_group("new")] == ["p2"]

    def test_other_issues_are_untouched(self):
        repo = DuplicateGroupRepository()
        repo.replace_for_issue("other", [_group("g-other", "other")], [])

        repo.replace_for_issue(ISSUE_ID, [], [])

        assert [g.id for g in repo.get_groups_for_issue("other")] == ["g-other"]

    def test_failed_write_keeps_previous_rows(self):
        repo = DuplicateGroupRepository()
        repo.replace_for_issue(ISSUE_ID, [_group("g1")], [_member("m1", "g1", "p2")])

        # Same post twice in one issue violates the unique constraint.
        bad_members = [_member("m2", "g2", "p3"), _member("m3", "g2", "p3")]
        with pytest.raises(PersistenceError):
            repo.replace_for_issue(ISSUE_ID, [_group("g2")], bad_members)

        assert [g.id for g in repo.get_groups_for_issue(ISSUE_ID)] == ["g1"]
        assert [m.id for m in repo.get_members_for_issue(ISSUE_ID)] == ["m1"]

    def test_rejects_rows_of_another_issue(self):
        repo = DuplicateGroupRepository()
        with pytest.raises(PersistenceError):
            repo.replace_for_issue(ISSUE_ID, [_group("g1", issue_id="other")], [])

    def test_historical_group_roundtrip(self):
        repo = DuplicateGroupRepository()
        group = _group("g-hist", primary=None).model_copy(
            update={"detection_method": DetectionMethod.HISTORICAL},
        )

        repo.replace_for_issue(ISSUE_ID, [group], [_member("m1", "g-hist", "p4")])

        stored = repo.get_groups_for_issue(ISSUE_ID)[0]
        assert stored.primary_post_id is None
        assert stored.detection_method is DetectionMethod.HISTORICAL


class TestPostRepository:
    def _seed(self):
        issues = IssueRepository()
        issues.create_many([
            Issue(id="sent-recent", date="2026-10-17", status=IssueStatus.SENT),
            Issue(id="sent-old", date="2026-10-01", status=IssueStatus.SENT),
            Issue(id="draft-recent", date="2026-10-18", status=IssueStatus.DRAFT),
            Issue(id=ISSUE_ID, date="2026-10-19", status=IssueStatus.DRAFT),
        ])
        PostRepository().create_many([
            make_post("recent", "Recent story", issue_id="sent-recent"),
            make_post("old", "Old story", issue_id="sent-old"),
            make_post("draft", "Draft story", issue_id="draft-recent"),
            make_post("current", "Current story", issue_id=ISSUE_ID),
        ])

    def test_get_sent_since_filters_window_and_status(self):
        self._seed()
        posts = PostRepository().get_sent_since(3, exclude_issue_id=ISSUE_ID, today=TODAY)
        assert [p.id for p in posts] == ["recent"]

    def test_get_sent_since_zero_lookback(self):
        self._seed()
        assert PostRepository().get_sent_since(0, today=TODAY) == []

    def test_get_by_issue(self):
        self._seed()
        assert [p.id for p in PostRepository().get_by_issue(ISSUE_ID)] == ["current"]

    def test_get_by_issue_warns_when_limit_reached(self):
        self._seed()
        PostRepository().create(make_post("current-2", "Another story", issue_id=ISSUE_ID))

        with capture_logs() as logs:
            posts = PostRepository().get_by_issue(ISSUE_ID, limit=2)
            PostRepository().get_by_issue(ISSUE_ID, limit=3)

        assert len(posts) == 2
        truncated = [log for log in logs if log["event"] == "issue_batch_truncated"]
        assert [(log["issue_id"], log["limit"]) for log in truncated] == [(ISSUE_ID, 2)]


class TestIssueRepository:
    def test_mark_status(self):
        repo = IssueRepository()
        repo.create(Issue(id="i1", date="2026-10-19"))

        updated = repo.mark_status("i1", IssueStatus.SENT)

        assert updated.status is IssueStatus.SENT
        assert repo.get_by_id("i1").status is IssueStatus.SENT
        assert [i.id for i in repo.get_by_status(IssueStatus.SENT)] == ["i1"]
        assert repo.mark_status("missing", IssueStatus.SENT) is None


class TestDetectorPersistence:
    def test_rerun_replaces_rows(self, settings, no_retry, scenario_posts, match_config):
        repo = DuplicateGroupRepository()
        detector = DuplicateDetector(
            persist=repo.replace_for_issue, audit=repo, settings=settings, retry=no_retry,
        )

        first = detector.detect_duplicates(ISSUE_ID, scenario_posts, match_config)
        detector.detect_duplicates(ISSUE_ID, scenario_posts, match_config)

        stored = detector.get_groups_for_issue(ISSUE_ID)
        assert sorted(g.id for g in stored) == sorted(g.id for g in first.groups)
        assert len(repo.get_members_for_issue(ISSUE_ID)) == len(first.members)
        for group in stored:
            members = detector.get_duplicate_members_for_group(group.id)
            assert group.primary_post_id not in {m.post_id for m in members}
