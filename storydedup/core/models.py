"""Domain models and enums for the story deduplication engine."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from storydedup.core.config import get_config
from storydedup.core.exceptions import ConfigError


# ============================================================
# Enums
# ============================================================


class IssueStatus(StrEnum):
    """Publication issue lifecycle status."""

    DRAFT = "draft"
    IN_REVIEW = "in_review"
    SCHEDULED = "scheduled"
    SENT = "sent"
    FAILED = "failed"


class DetectionMethod(StrEnum):
    """Stage that formed a duplicate group."""

    HISTORICAL = "historical"
    EXACT = "exact"
    TITLE = "title"
    SEMANTIC = "semantic"


class PostState(StrEnum):
    """Per-post progress through a detection run.

    States only move forward. ``UNIQUE``, ``PRIMARY`` and ``DUPLICATE``
    are terminal.
    """

    UNCHECKED = "unchecked"
    HISTORICAL_CHECKED = "historical_checked"
    EXACT_CHECKED = "exact_checked"
    TITLE_CHECKED = "title_checked"
    SEMANTIC_CHECKED = "semantic_checked"
    UNIQUE = "unique"
    PRIMARY = "primary"
    DUPLICATE = "duplicate"

    @property
    def is_terminal(self) -> bool:
        return self in (PostState.UNIQUE, PostState.PRIMARY, PostState.DUPLICATE)


class ClaudeTask(StrEnum):
    """Claude API task type for model/parameter selection."""

    SEMANTIC_GROUPING = "semantic_grouping"


# ============================================================
# Base models
# ============================================================


def _utcnow() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


class BaseEntity(BaseModel):
    """Base model with UUID id and ORM compatibility."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(default_factory=lambda: str(uuid.uuid4()))


class TimestampMixin(BaseModel):
    """Mixin that adds a created_at timestamp."""

    created_at: datetime = Field(default_factory=_utcnow)


# ============================================================
# Domain models
# ============================================================


class Issue(BaseEntity, TimestampMixin):
    """A publication issue (one batch of stories sent to readers)."""

    date: str = ""
    status: IssueStatus = IssueStatus.DRAFT


class Post(BaseEntity, TimestampMixin):
    """An ingested source post. Read-only to the engine."""

    model_config = ConfigDict(from_attributes=True, frozen=True)

    issue_id: str = ""
    feed_id: str = ""
    title: str
    description: str = ""
    full_text: str | None = None
    source_url: str = ""
    publication_date: datetime | None = None


class DuplicateGroup(BaseEntity, TimestampMixin):
    """One real-world story and the post chosen to represent it.

    Historical groups have no ``primary_post_id``: the story was already
    told in a previous issue, so none of its current posts is kept.
    """

    issue_id: str
    topic_signature: str = ""
    primary_post_id: str | None = None
    detection_method: DetectionMethod
    explanation: str = ""
    similarity_score: float = Field(default=1.0, ge=0.0, le=1.0)


class DuplicatePost(BaseEntity):
    """Membership edge: ``post_id`` is a duplicate inside ``group_id``."""

    group_id: str
    issue_id: str
    post_id: str
    detection_method: DetectionMethod
    similarity_score: float = Field(default=1.0, ge=0.0, le=1.0)


class MatchConfig(BaseModel):
    """Run parameters for one detection run."""

    model_config = ConfigDict(frozen=True)

    historical_lookback_days: int = Field(default=3, ge=0)
    strictness_threshold: float = Field(default=0.80, gt=0.0, le=1.0)
    match_descriptions: bool = False

    @classmethod
    def build(cls, **values: Any) -> MatchConfig:
        """Validate run parameters, raising ConfigError on bad input."""
        try:
            return cls(**values)
        except ValidationError as e:
            raise ConfigError(
                "Invalid match configuration",
                {"errors": e.errors(include_url=False)},
            ) from e

    @classmethod
    def from_settings(cls) -> MatchConfig:
        """Build from the ``defaults`` block of dedup.yaml."""
        defaults = get_config().dedup.defaults
        return cls.build(**defaults.model_dump())


class DedupStats(BaseModel):
    """Per-run counters. Duplicate counts exclude group primaries."""

    total_posts: int = 0
    historical_duplicates: int = 0
    exact_duplicates: int = 0
    title_duplicates: int = 0
    semantic_duplicates: int = 0
    duplicate_posts: int = 0
    total_unique: int = 0


class DedupResult(BaseModel):
    """Outcome of ``detect_duplicates`` for one issue."""

    issue_id: str
    unique_posts: list[Post] = Field(default_factory=list)
    groups: list[DuplicateGroup] = Field(default_factory=list)
    members: list[DuplicatePost] = Field(default_factory=list)
    stats: DedupStats = Field(default_factory=DedupStats)
    post_states: dict[str, PostState] = Field(default_factory=dict)

    @field_validator("post_states")
    @classmethod
    def _all_terminal(cls, value: dict[str, PostState]) -> dict[str, PostState]:
        unresolved = [pid for pid, state in value.items() if not state.is_terminal]
        if unresolved:
            raise ValueError(f"posts left unresolved: {unresolved}")
        return value

    @property
    def unique_post_ids(self) -> list[str]:
        return [post.id for post in self.unique_posts]

    def members_of(self, group_id: str) -> list[DuplicatePost]:
        """Return the duplicate members of one group."""
        return [m for m in self.members if m.group_id == group_id]
