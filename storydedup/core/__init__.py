"""Core infrastructure module - shared across the engine.

Usage::

    from storydedup.core import get_config, setup_logging, get_logger, ClaudeClient
    from storydedup.core import init_db, get_session
    from storydedup.core.models import Post, DuplicateGroup, MatchConfig
"""

from storydedup.core.claude_client import ClaudeClient, ClaudeResponse
from storydedup.core.config import (
    AppConfig,
    ClaudeModelConfig,
    DatabaseConfig,
    DedupConfig,
    ExactMatchSettings,
    LoggingConfig,
    MatchDefaults,
    RetryConfig,
    SemanticSettings,
    get_config,
)
from storydedup.core.database import (
    Base,
    DuplicateGroupDB,
    DuplicatePostDB,
    IssueDB,
    PostDB,
    get_engine,
    get_session,
    get_session_factory,
    init_db,
    pydantic_to_orm,
)
from storydedup.core.exceptions import (
    APIError,
    ClaudeAPIError,
    ConfigError,
    GroupingResponseError,
    GroupingValidationError,
    PersistenceError,
    RateLimitError,
    StoryDedupError,
    TransientError,
    WorkflowError,
)
from storydedup.core.logger import bound_context, get_logger, setup_logging
from storydedup.core.models import (
    BaseEntity,
    ClaudeTask,
    DedupResult,
    DedupStats,
    DetectionMethod,
    DuplicateGroup,
    DuplicatePost,
    Issue,
    IssueStatus,
    MatchConfig,
    Post,
    PostState,
    TimestampMixin,
)
from storydedup.core.prompts import render_prompt

__all__ = [
    # config
    "AppConfig",
    "ClaudeModelConfig",
    "DatabaseConfig",
    "DedupConfig",
    "ExactMatchSettings",
    "LoggingConfig",
    "MatchDefaults",
    "RetryConfig",
    "SemanticSettings",
    "get_config",
    # logger
    "setup_logging",
    "get_logger",
    "bound_context",
    # exceptions
    "StoryDedupError",
    "ConfigError",
    "APIError",
    "ClaudeAPIError",
    "TransientError",
    "RateLimitError",
    "GroupingValidationError",
    "GroupingResponseError",
    "PersistenceError",
    "WorkflowError",
    # models - enums
    "IssueStatus",
    "DetectionMethod",
    "PostState",
    "ClaudeTask",
    # models - base
    "BaseEntity",
    "TimestampMixin",
    # models - domain
    "Issue",
    "Post",
    "DuplicateGroup",
    "DuplicatePost",
    "MatchConfig",
    "DedupStats",
    "DedupResult",
    # database
    "Base",
    "IssueDB",
    "PostDB",
    "DuplicateGroupDB",
    "DuplicatePostDB",
    "get_engine",
    "get_session_factory",
    "init_db",
    "get_session",
    "pydantic_to_orm",
    # claude client
    "ClaudeClient",
    "ClaudeResponse",
    # prompts
    "render_prompt",
]
