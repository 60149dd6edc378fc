"""Application configuration using pydantic-settings with YAML integration."""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from storydedup.core.exceptions import ConfigError
from storydedup.core.logger import get_logger

logger = get_logger(__name__)

# storydedup/core/config.py -> storydedup/core -> storydedup -> project root
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
CONFIG_DIR = PROJECT_ROOT / "config"


def _load_yaml(filename: str) -> dict[str, Any]:
    """Load a YAML file from the config directory.

    Args:
        filename: Name of the YAML file to load.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        ConfigError: If the file cannot be loaded or parsed.
    """
    filepath = CONFIG_DIR / filename
    try:
        with open(filepath, encoding="utf-8") as f:
            data = yaml.safe_load(f)
        return data or {}
    except FileNotFoundError as e:
        raise ConfigError(
            f"Config file not found: {filepath}",
            {"file": filename},
        ) from e
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Invalid YAML: {filepath}",
            {"file": filename, "error": str(e)},
        ) from e


# ============================================================
# Sub-config models (from settings.yaml)
# ============================================================


class AppInfo(BaseModel):
    """Application metadata."""

    name: str = "storydedup"
    version: str = "0.1.0"
    env: str = "development"


class ClaudeModelConfig(BaseModel):
    """Claude AI model configuration, keyed by task."""

    default_model: str = "claude-sonnet-4-6"
    models: dict[str, str] = Field(default_factory=lambda: {
        "semantic_grouping": "claude-sonnet-4-6",
    })
    max_tokens: dict[str, int] = Field(default_factory=lambda: {
        "semantic_grouping": 1000,
    })
    temperature: dict[str, float] = Field(default_factory=lambda: {
        "semantic_grouping": 0.3,
    })
    timeout_sec: float = 60.0


class DatabaseConfig(BaseModel):
    """Database configuration."""

    url: str = "sqlite:///data/db/storydedup.db"
    echo: bool = False


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"
    file: str = "logs/app.log"


class RetryConfig(BaseModel):
    """Retry configuration for external calls."""

    max_attempts: int = 2
    wait_exponential_min: float = 1.0
    wait_exponential_max: float = 10.0


# ============================================================
# Dedup config (from dedup.yaml)
# ============================================================


class MatchDefaults(BaseModel):
    """Default run parameters used when the caller passes no MatchConfig."""

    historical_lookback_days: int = 3
    strictness_threshold: float = 0.80
    match_descriptions: bool = False


class ExactMatchSettings(BaseModel):
    """Stage 1 near-verbatim thresholds."""

    title_threshold: float = 0.98
    description_threshold: float = 0.95


class SemanticSettings(BaseModel):
    """Stage 3 language-model grouping settings."""

    enabled: bool = True
    min_posts: int = 2
    batch_size: int = 40
    max_workers: int = 2
    max_text_chars: int = 1500
    default_confidence: float = 0.8
    max_attempts: int = 2
    backoff_min_sec: float = 1.0
    backoff_max_sec: float = 8.0
    template: str = "semantic_grouping.j2"


class DedupConfig(BaseModel):
    """Duplicate-detection engine configuration."""

    defaults: MatchDefaults = Field(default_factory=MatchDefaults)
    similarity_metric: str = "sequence"
    match_content_hash: bool = True
    exact: ExactMatchSettings = Field(default_factory=ExactMatchSettings)
    semantic: SemanticSettings = Field(default_factory=SemanticSettings)


# ============================================================
# Root configuration
# ============================================================


class AppConfig(BaseSettings):
    """Root application configuration.

    Loads secrets from .env file (environment variables) and
    structured settings from YAML config files.
    """

    model_config = SettingsConfigDict(
        env_file=str(PROJECT_ROOT / ".env"),
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- Environment variables (from .env) ---
    anthropic_api_key: str = ""
    database_url: str = ""
    log_level: str = ""

    # --- YAML-loaded sub-configs ---
    app: AppInfo = Field(default_factory=AppInfo)
    claude: ClaudeModelConfig = Field(default_factory=ClaudeModelConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    dedup: DedupConfig = Field(default_factory=DedupConfig)

    def model_post_init(self, __context: Any) -> None:
        """Load YAML configurations after env vars are initialized."""
        self._load_yaml_configs()

    def _load_yaml_configs(self) -> None:
        """Load all YAML configuration files into sub-config models."""
        settings = _load_yaml("settings.yaml")
        if "app" in settings:
            self.app = AppInfo(**settings["app"])
        if "claude" in settings:
            self.claude = ClaudeModelConfig(**settings["claude"])
        if "database" in settings:
            self.database = DatabaseConfig(**settings["database"])
        if "logging" in settings:
            self.logging = LoggingConfig(**settings["logging"])
        if "retry" in settings:
            self.retry = RetryConfig(**settings["retry"])

        dedup_data = _load_yaml("dedup.yaml")
        self.dedup = DedupConfig(**dedup_data)

        if self.log_level:
            self.logging.level = self.log_level


@lru_cache(maxsize=1)
def get_config() -> AppConfig:
    """Get the singleton application configuration.

    Returns:
        The AppConfig singleton instance.

    Note:
        Call ``get_config.cache_clear()`` to reload configuration in tests.
    """
    config = AppConfig()
    logger.info(
        "configuration_loaded",
        app=config.app.name,
        env=config.app.env,
    )
    return config
