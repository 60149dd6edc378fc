"""Database engine, ORM models, and session management."""

from __future__ import annotations

from collections.abc import Generator
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any

from sqlalchemy import (
    DateTime,
    Float,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine
from sqlalchemy.orm import (
    DeclarativeBase,
    Mapped,
    Session,
    mapped_column,
    sessionmaker,
)

from storydedup.core.config import PROJECT_ROOT, get_config
from storydedup.core.exceptions import PersistenceError
from storydedup.core.logger import get_logger

logger = get_logger(__name__)


def _utcnow() -> datetime:
    """Return current UTC time with timezone info."""
    return datetime.now(timezone.utc)


# ============================================================
# Declarative Base
# ============================================================


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all ORM models."""


# ============================================================
# ORM Models
# ============================================================


class IssueDB(Base):
    """ORM model for publication issues."""

    __tablename__ = "issues"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    date: Mapped[str] = mapped_column(String(10), default="")
    status: Mapped[str] = mapped_column(String(20), default="draft")
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_issue_date", "date"),
        Index("ix_issue_status", "status"),
    )


class PostDB(Base):
    """ORM model for ingested source posts."""

    __tablename__ = "posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    issue_id: Mapped[str] = mapped_column(String(36), default="")
    feed_id: Mapped[str] = mapped_column(String(100), default="")
    title: Mapped[str] = mapped_column(String(500))
    description: Mapped[str] = mapped_column(Text, default="")
    full_text: Mapped[str | None] = mapped_column(Text, nullable=True)
    source_url: Mapped[str] = mapped_column(String(1000), default="")
    publication_date: Mapped[datetime | None] = mapped_column(
        DateTime, nullable=True,
    )
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_post_issue_id", "issue_id"),
        Index("ix_post_feed_id", "feed_id"),
    )


class DuplicateGroupDB(Base):
    """ORM model for duplicate groups (one row per story per issue-run)."""

    __tablename__ = "duplicate_groups"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    issue_id: Mapped[str] = mapped_column(String(36))
    topic_signature: Mapped[str] = mapped_column(String(500), default="")
    primary_post_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    detection_method: Mapped[str] = mapped_column(String(20))
    explanation: Mapped[str] = mapped_column(Text, default="")
    similarity_score: Mapped[float] = mapped_column(Float, default=1.0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_group_issue_id", "issue_id"),
        Index("ix_group_method", "detection_method"),
    )


class DuplicatePostDB(Base):
    """ORM model for duplicate-group membership."""

    __tablename__ = "duplicate_posts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    group_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("duplicate_groups.id", ondelete="CASCADE"),
    )
    issue_id: Mapped[str] = mapped_column(String(36))
    post_id: Mapped[str] = mapped_column(String(36))
    detection_method: Mapped[str] = mapped_column(String(20))
    similarity_score: Mapped[float] = mapped_column(Float, default=1.0)

    __table_args__ = (
        UniqueConstraint("issue_id", "post_id", name="uq_duplicate_post_issue"),
        Index("ix_duplicate_group_id", "group_id"),
    )


# ============================================================
# Engine & Session Management
# ============================================================


def _resolve_db_url(url: str) -> str:
    """Resolve relative SQLite paths to absolute paths from project root.

    Args:
        url: Database URL string.

    Returns:
        Resolved URL with absolute path for SQLite.
    """
    if url.startswith("sqlite:///") and not url.startswith("sqlite:////"):
        relative_path = url.replace("sqlite:///", "")
        absolute_path = PROJECT_ROOT / relative_path
        absolute_path.parent.mkdir(parents=True, exist_ok=True)
        return f"sqlite:///{absolute_path}"
    return url


@lru_cache(maxsize=1)
def get_engine() -> Engine:
    """Get the singleton SQLAlchemy engine.

    Returns:
        SQLAlchemy Engine instance.
    """
    config = get_config()
    raw_url = config.database_url or config.database.url
    db_url = _resolve_db_url(raw_url)
    engine = create_engine(db_url, echo=config.database.echo)
    logger.info("database_engine_created", url=db_url)
    return engine


@lru_cache(maxsize=1)
def get_session_factory() -> sessionmaker[Session]:
    """Get the singleton session factory.

    Returns:
        SQLAlchemy sessionmaker instance.
    """
    return sessionmaker(bind=get_engine(), expire_on_commit=False)


def init_db() -> None:
    """Create all database tables.

    Raises:
        PersistenceError: If table creation fails.
    """
    try:
        Base.metadata.create_all(get_engine())
        logger.info("database_initialized")
    except Exception as e:
        raise PersistenceError(
            "Failed to initialize database",
            {"error": str(e)},
        ) from e


@contextmanager
def get_session() -> Generator[Session, None, None]:
    """Provide a transactional database session.

    Automatically commits on success, rolls back on error.

    Yields:
        SQLAlchemy Session instance.

    Raises:
        PersistenceError: If a database operation fails.
    """
    factory = get_session_factory()
    session = factory()
    try:
        yield session
        session.commit()
    except Exception as e:
        session.rollback()
        raise PersistenceError(
            "Session error",
            {"error": str(e)},
        ) from e
    finally:
        session.close()


# ============================================================
# Conversion Helpers
# ============================================================

# Lazy-initialized Pydantic -> ORM type mapping
_ORM_MAP: dict[type, type[Base]] = {}


def _get_orm_map() -> dict[type, type[Base]]:
    """Lazy-initialize the Pydantic-to-ORM type mapping."""
    if not _ORM_MAP:
        from storydedup.core.models import (
            DuplicateGroup,
            DuplicatePost,
            Issue,
            Post,
        )

        _ORM_MAP.update({
            Issue: IssueDB,
            Post: PostDB,
            DuplicateGroup: DuplicateGroupDB,
            DuplicatePost: DuplicatePostDB,
        })
    return _ORM_MAP


def pydantic_to_orm(model: Any) -> Base:
    """Convert a Pydantic domain model to its corresponding ORM model.

    Enum values are stored as their string value.

    Args:
        model: A Pydantic BaseEntity instance.

    Returns:
        The corresponding SQLAlchemy ORM instance.

    Raises:
        PersistenceError: If the model type has no ORM mapping.
    """
    orm_map = _get_orm_map()
    orm_class = orm_map.get(type(model))
    if orm_class is None:
        raise PersistenceError(
            f"No ORM mapping for {type(model).__name__}",
            {"model_type": type(model).__name__},
        )

    data = model.model_dump(mode="python")
    columns = {column.name for column in orm_class.__table__.columns}
    data = {key: value for key, value in data.items() if key in columns}
    return orm_class(**data)
