"""Shared fixtures: post factory, settings without backoff, temp SQLite."""

from datetime import datetime, timezone

import pytest

from storydedup.core.config import (
    DedupConfig,
    ExactMatchSettings,
    MatchDefaults,
    RetryConfig,
    SemanticSettings,
    get_config,
)
from storydedup.core.database import get_engine, get_session_factory, init_db
from storydedup.core.models import MatchConfig, Post

ISSUE_ID = "issue-current"


def make_post(
    post_id: str,
    title: str,
    *,
    issue_id: str = ISSUE_ID,
    description: str = "",
    full_text: str | None = None,
    published: datetime | None = None,
) -> Post:
    """Build a Post with a fixed id."""
    return Post(
        id=post_id,
        issue_id=issue_id,
        feed_id="feed-1",
        title=title,
        description=description,
        full_text=full_text,
        source_url=f"https://example.com/{post_id}",
        publication_date=published,
    )


@pytest.fixture
def settings() -> DedupConfig:
    """Dedup settings with semantic retries that never sleep."""
    return DedupConfig(
        defaults=MatchDefaults(),
        similarity_metric="sequence",
        match_content_hash=True,
        exact=ExactMatchSettings(),
        semantic=SemanticSettings(
            enabled=True,
            min_posts=2,
            batch_size=40,
            max_workers=2,
            max_text_chars=1500,
            default_confidence=0.8,
            max_attempts=2,
            backoff_min_sec=0,
            backoff_max_sec=0,
        ),
    )


@pytest.fixture
def no_retry() -> RetryConfig:
    return RetryConfig(max_attempts=1, wait_exponential_min=0, wait_exponential_max=0)


@pytest.fixture
def match_config() -> MatchConfig:
    return MatchConfig(historical_lookback_days=3, strictness_threshold=0.8)


@pytest.fixture
def scenario_posts() -> list[Post]:
    """Five posts: 0/2 identical titles, 1/3 fuzzy titles, 4 already sent."""
    return [
        make_post(
            "p0",
            "State budget deal reached after marathon session",
            full_text="Lawmakers agreed on the state budget late on Tuesday after a long session. " * 4,
            published=datetime(2026, 10, 18, 9, 0, tzinfo=timezone.utc),
        ),
        make_post(
            "p1",
            "City council approves new downtown parking garage",
            full_text="The council voted 7-2 for the garage.",
            published=datetime(2026, 10, 18, 8, 0, tzinfo=timezone.utc),
        ),
        make_post(
            "p2",
            "State budget deal reached after marathon session",
            full_text="Budget agreed.",
            published=datetime(2026, 10, 18, 7, 0, tzinfo=timezone.utc),
        ),
        make_post(
            "p3",
            "City council approves new downtown parking garage plan",
            full_text="Council backs a garage plan downtown after months of debate.",
            published=datetime(2026, 10, 18, 10, 0, tzinfo=timezone.utc),
        ),
        make_post(
            "p4",
            "Local bakery wins national award",
            full_text="A family bakery on Main Street took first prize.",
        ),
    ]


@pytest.fixture
def historical_posts() -> list[Post]:
    return [
        make_post(
            "h1",
            "Local bakery wins national award!",
            issue_id="issue-previous",
            full_text="Last week the bakery won the award.",
        ),
    ]


@pytest.fixture
def temp_db(tmp_path, monkeypatch):
    """Point the engine at a fresh file-backed SQLite database."""
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    get_config.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()
    init_db()
    yield
    get_engine().dispose()
    get_config.cache_clear()
    get_engine.cache_clear()
    get_session_factory.cache_clear()
