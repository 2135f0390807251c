"""Configuration: environment settings, retry policy and rating thresholds."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError, model_validator

from gitanalyzer.constants import (
    DEFAULT_BASE_BACKOFF_SECONDS,
    DEFAULT_CONCURRENCY,
    DEFAULT_DATABASE_PATH,
    DEFAULT_MAX_BACKOFF_SECONDS,
    DEFAULT_MAX_COMMITS_PER_REPO,
    DEFAULT_MAX_RATE_LIMIT_CYCLES,
    DEFAULT_MAX_RETRIES,
    RECENCY_WINDOW_SIZE,
)
from gitanalyzer.errors import ConfigError

DEFAULT_RATING_CONFIG_PATH = Path(__file__).resolve().parents[2] / "configs" / "rating.yaml"

_TRUE_VALUES = frozenset({"1", "true", "yes", "on"})
_FALSE_VALUES = frozenset({"0", "false", "no", "off", ""})


def _env_int(name: str, default: int, minimum: int = 1) -> int:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        value = int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got {raw!r}"
        raise ConfigError(msg) from None
    if value < minimum:
        msg = f"{name} must be >= {minimum}, got {value}"
        raise ConfigError(msg)
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    msg = f"{name} must be a boolean, got {raw!r}"
    raise ConfigError(msg)


class AnalyzerSettings:
    """Configuration for a run, loaded from environment variables.

    Prefix: GITANALYZER_ for analyzer-specific settings.
    Falls back to shared env vars (GITHUB_TOKEN, LITELLM_URL) for the
    external services.
    """

    github_token: str
    litellm_url: str
    litellm_api_key: str
    model: str
    database_path: str
    max_commits_per_repo: int
    include_forks: bool
    concurrency_limit: int
    log_level: str
    log_service: str
    rating_config_path: Path

    def __init__(self) -> None:
        self.github_token = os.environ.get("GITHUB_TOKEN", "")
        self.litellm_url = os.environ.get("LITELLM_URL", "http://localhost:4000")
        self.litellm_api_key = os.environ.get("LITELLM_MASTER_KEY", "")
        self.model = os.environ.get("GITANALYZER_MODEL", "anthropic/claude-sonnet-4-20250514")
        self.database_path = os.environ.get("GITANALYZER_DATABASE", DEFAULT_DATABASE_PATH)
        self.max_commits_per_repo = _env_int("GITANALYZER_MAX_COMMITS_PER_REPO", DEFAULT_MAX_COMMITS_PER_REPO)
        self.include_forks = _env_bool("GITANALYZER_INCLUDE_FORKS", False)
        self.concurrency_limit = _env_int("GITANALYZER_CONCURRENCY", DEFAULT_CONCURRENCY)
        self.log_level = os.environ.get("GITANALYZER_LOG_LEVEL", "info")
        self.log_service = os.environ.get("GITANALYZER_LOG_SERVICE", "gitanalyzer")
        self.rating_config_path = Path(os.environ.get("GITANALYZER_RATING_CONFIG", str(DEFAULT_RATING_CONFIG_PATH)))

    def require_github_token(self) -> str:
        if not self.github_token:
            msg = "GITHUB_TOKEN environment variable not set"
            raise ConfigError(msg)
        return self.github_token


class RetryPolicy(BaseModel):
    """Retry budgets and backoff shape used by the call orchestrator."""

    max_retries: int = Field(default=DEFAULT_MAX_RETRIES, ge=0)
    max_rate_limit_cycles: int = Field(default=DEFAULT_MAX_RATE_LIMIT_CYCLES, ge=0)
    base_backoff_seconds: float = Field(default=DEFAULT_BASE_BACKOFF_SECONDS, ge=0.0)
    max_backoff_seconds: float = Field(default=DEFAULT_MAX_BACKOFF_SECONDS, ge=0.0)
    jitter: float = Field(default=0.25, ge=0.0, le=1.0)


class RatingWeights(BaseModel):
    """Weights of the proficiency components; they must sum to 1."""

    frequency: float = 0.15
    recency: float = 0.15
    complexity: float = 0.20
    quality: float = 0.20
    consistency: float = 0.10
    llm: float = 0.20

    @model_validator(mode="after")
    def _check_sum(self) -> RatingWeights:
        total = self.frequency + self.recency + self.complexity + self.quality + self.consistency + self.llm
        if abs(total - 1.0) > 1e-6:
            msg = f"rating weights must sum to 1.0, got {total:.4f}"
            raise ValueError(msg)
        return self


class RatingConfig(BaseModel):
    """Thresholds for the rating engine and trend classification.

    Recency decays linearly: 100 within ``recent_window_days``, falling to
    ``recency_floor`` at ``staleness_days`` and staying there.
    """

    weights: RatingWeights = Field(default_factory=RatingWeights)

    frequency_steepness: float = Field(default=5.0, gt=0.0)

    recent_window_days: int = Field(default=30, ge=0)
    staleness_days: int = Field(default=365, gt=0)
    recency_floor: float = Field(default=10.0, ge=0.0, le=100.0)

    consistency_bins: int = Field(default=12, ge=2)
    single_observation_consistency: float = Field(default=50.0, ge=0.0, le=100.0)

    confidence_scale: float = Field(default=5.0, gt=0.0)
    spread_floor: float = Field(default=0.6, ge=0.0, le=1.0)
    missing_llm_confidence_factor: float = Field(default=0.8, ge=0.0, le=1.0)

    trend_recent_days: int = Field(default=90, gt=0)
    trend_history_days: int = Field(default=365, gt=0)
    improving_ratio: float = Field(default=1.5, gt=0.0)
    declining_ratio: float = Field(default=0.5, gt=0.0)

    recency_window_size: int = Field(default=RECENCY_WINDOW_SIZE, gt=0)

    @model_validator(mode="after")
    def _check_windows(self) -> RatingConfig:
        if self.staleness_days <= self.recent_window_days:
            msg = "staleness_days must be greater than recent_window_days"
            raise ValueError(msg)
        if self.trend_history_days <= self.trend_recent_days:
            msg = "trend_history_days must be greater than trend_recent_days"
            raise ValueError(msg)
        if self.declining_ratio >= self.improving_ratio:
            msg = "declining_ratio must be lower than improving_ratio"
            raise ValueError(msg)
        return self


def load_rating_config(path: Path | str | None = None) -> RatingConfig:
    """Load rating thresholds from YAML, falling back to defaults.

    Raises:
        ConfigError: If the file exists but is not valid YAML or fails
            validation.
    """
    p = Path(path) if path is not None else DEFAULT_RATING_CONFIG_PATH
    if not p.exists():
        return RatingConfig()
    try:
        with open(p, encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        return RatingConfig.model_validate(data)
    except (yaml.YAMLError, ValidationError) as exc:
        msg = f"invalid rating config {p}: {exc}"
        raise ConfigError(msg) from exc
