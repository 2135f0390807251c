"""Domain models: commits, observations, evidence, ratings and profiles."""

from __future__ import annotations

from datetime import UTC, datetime  # noqa: TC003
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field, field_validator

from gitanalyzer.constants import DEFAULT_MAX_COMMITS_PER_REPO, MILLI


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


# --- Users and commits ---


def qualify_repository(owner: str, name: str) -> str:
    """Full ``owner/name`` form of a repository; bare names belong to *owner*."""
    return name if "/" in name else f"{owner}/{name}"


class UserInfo(BaseModel):
    """Public account details of the analyzed user."""

    model_config = ConfigDict(frozen=True)

    login: str
    name: str | None = None
    bio: str | None = None
    company: str | None = None
    location: str | None = None
    public_repos: int = 0
    followers: int = 0
    following: int = 0
    created_at: datetime | None = None

    @field_validator("created_at")
    @classmethod
    def _normalize_tz(cls, v: datetime | None) -> datetime | None:
        return _as_utc(v) if v is not None else None


class FileChange(BaseModel):
    """A single file touched by a commit, with its patch text."""

    model_config = ConfigDict(frozen=True)

    filename: str
    status: str = "modified"
    additions: int = 0
    deletions: int = 0
    patch: str = ""
    language: str | None = None


class CommitRecord(BaseModel):
    """A commit authored by the analyzed user. Immutable once fetched."""

    model_config = ConfigDict(frozen=True)

    sha: str
    repository: str
    authored_at: datetime
    message: str = ""
    diff_ref: str = ""
    additions: int = 0
    deletions: int = 0
    files: tuple[FileChange, ...] = ()
    truncated: bool = False

    @field_validator("authored_at")
    @classmethod
    def _normalize_tz(cls, v: datetime) -> datetime:
        return _as_utc(v)

    @property
    def lines_changed(self) -> int:
        return self.additions + self.deletions

    def with_files(self, files: list[FileChange] | tuple[FileChange, ...]) -> CommitRecord:
        """Return a copy carrying the fetched diff payload."""
        additions = self.additions or sum(f.additions for f in files)
        deletions = self.deletions or sum(f.deletions for f in files)
        return self.model_copy(update={"files": tuple(files), "additions": additions, "deletions": deletions})


class CommitBatch(BaseModel):
    """A contiguous run of commits from one repository sent in one analyzer call."""

    model_config = ConfigDict(frozen=True)

    index: int
    repository: str
    commits: tuple[CommitRecord, ...]
    estimated_tokens: int
    oversized: bool = False

    @property
    def shas(self) -> list[str]:
        return [c.sha for c in self.commits]


# --- Observations ---


class SkillCategory(StrEnum):
    """Broad class of a skill."""

    LANGUAGE = "language"
    FRAMEWORK = "framework"
    LIBRARY = "library"
    TOOL = "tool"
    PRACTICE = "practice"
    DOMAIN = "domain"
    CONCEPT = "concept"


class SkillKey(BaseModel):
    """Identity of a skill: normalized name plus category."""

    model_config = ConfigDict(frozen=True)

    name: str
    category: SkillCategory

    def sort_key(self) -> tuple[str, str]:
        return (self.name, self.category.value)

    def __str__(self) -> str:
        return f"{self.name} ({self.category.value})"


class SkillObservation(BaseModel):
    """One skill-relevant signal the analyzer extracted from one commit."""

    model_config = ConfigDict(frozen=True)

    key: SkillKey
    commit_sha: str
    repository: str = ""
    observed_at: datetime
    complexity: float = Field(default=5.0, ge=0.0, le=10.0)
    quality: float = Field(default=5.0, ge=0.0, le=10.0)
    has_tests: bool = False
    has_docs: bool = False
    proficiency_signal: float | None = Field(default=None, ge=0.0, le=100.0)
    signal_confidence: float = Field(default=0.5, ge=0.0, le=1.0)
    lines_changed: int = Field(default=0, ge=0)
    evidence: str = ""

    @field_validator("observed_at")
    @classmethod
    def _normalize_tz(cls, v: datetime) -> datetime:
        return _as_utc(v)


class DetectedPattern(BaseModel):
    """A design pattern or anti-pattern noticed in a batch."""

    model_config = ConfigDict(frozen=True)

    name: str
    kind: str = ""
    quality_impact: float = Field(default=0.0, ge=-1.0, le=1.0)


class BatchAnalysis(BaseModel):
    """Structured analyzer output for one batch."""

    model_config = ConfigDict(frozen=True)

    batch_index: int
    observations: tuple[SkillObservation, ...] = ()
    code_quality: float = Field(default=5.0, ge=0.0, le=10.0)
    testing_coverage: float = Field(default=0.0, ge=0.0, le=1.0)
    documentation_quality: float = Field(default=5.0, ge=0.0, le=10.0)
    patterns: tuple[DetectedPattern, ...] = ()
    domain_signals: tuple[str, ...] = ()


# --- Evidence ---


class SkillEvidence(BaseModel):
    """Accumulated observations for one skill.

    Sums are integer milli-points and every collection is kept sorted, so the
    value depends only on the set of folded observations, never on the order
    they arrived in.  New values are produced by
    ``gitanalyzer.analysis.aggregator.fold_observation``.
    """

    model_config = ConfigDict(frozen=True)

    key: SkillKey
    commit_count: int = 0
    complexity_milli: int = 0
    quality_milli: int = 0
    signal_milli: int = 0
    signal_weight_milli: int = 0
    tests_count: int = 0
    docs_count: int = 0
    lines_changed: int = 0
    first_seen: datetime | None = None
    last_seen: datetime | None = None
    recent_timestamps: tuple[datetime, ...] = ()
    daily_activity: dict[str, int] = Field(default_factory=dict)
    commit_shas: tuple[str, ...] = ()
    repositories: tuple[str, ...] = ()

    @property
    def sum_complexity(self) -> float:
        return self.complexity_milli / MILLI

    @property
    def sum_quality(self) -> float:
        return self.quality_milli / MILLI

    @property
    def mean_complexity(self) -> float:
        return self.sum_complexity / self.commit_count if self.commit_count else 0.0

    @property
    def mean_quality(self) -> float:
        return self.sum_quality / self.commit_count if self.commit_count else 0.0

    @property
    def signal_mean(self) -> float | None:
        """Confidence-weighted mean of the per-observation proficiency signals."""
        if self.signal_weight_milli <= 0:
            return None
        return self.signal_milli / self.signal_weight_milli


# --- Ratings ---


class SkillTrend(StrEnum):
    """Recent activity density relative to historical density."""

    IMPROVING = "improving"
    STABLE = "stable"
    DECLINING = "declining"
    DORMANT = "dormant"


class RatingComponents(BaseModel):
    """Per-component scores on a 0..100 scale."""

    model_config = ConfigDict(frozen=True)

    frequency: float = 0.0
    recency: float = 0.0
    complexity: float = 0.0
    quality: float = 0.0
    consistency: float = 0.0
    llm: float | None = None


class SkillRating(BaseModel):
    """Rating derived from a skill's final evidence."""

    model_config = ConfigDict(frozen=True)

    key: SkillKey
    proficiency_score: int = Field(ge=1, le=100)
    confidence: float = Field(ge=0.0, le=1.0)
    trend: SkillTrend
    components: RatingComponents
    evidence: SkillEvidence


# --- Profile ---


class ExperienceLevel(StrEnum):
    """Overall experience derived from the score distribution."""

    JUNIOR = "junior"
    MID = "mid"
    SENIOR = "senior"
    STAFF = "staff"
    PRINCIPAL = "principal"


class StrengthWeakness(BaseModel):
    """A notable strength or weakness with supporting evidence."""

    area: str
    description: str
    evidence: list[str] = Field(default_factory=list)
    score: int = 0


class CodingStyle(BaseModel):
    """Coding-style percentages across the analyzed commits."""

    test_coverage_pct: float = 0.0
    documentation_pct: float = 0.0
    convention_adherence_pct: float = 0.0
    refactors_regularly: bool = False


class Coverage(BaseModel):
    """How much of the commit history actually reached the evidence."""

    total_commits: int = 0
    analyzed_commits: int = 0
    total_batches: int = 0
    degraded_batches: int = 0
    degraded_commits: list[str] = Field(default_factory=list)
    skipped_commits: list[str] = Field(default_factory=list)

    @property
    def reduced(self) -> bool:
        return bool(self.degraded_batches or self.skipped_commits)


class ProfileSummary(BaseModel):
    """Aggregate view over all ratings of a user."""

    primary_languages: list[str] = Field(default_factory=list)
    primary_domains: list[str] = Field(default_factory=list)
    strengths: list[StrengthWeakness] = Field(default_factory=list)
    weaknesses: list[StrengthWeakness] = Field(default_factory=list)
    experience_level: ExperienceLevel = ExperienceLevel.JUNIOR
    coding_style: CodingStyle = Field(default_factory=CodingStyle)
    coverage: Coverage = Field(default_factory=Coverage)
    reduced_coverage: bool = False


class ProfileResult(BaseModel):
    """The produced contract: the account, the repositories covered, the summary
    and the ratings ordered by score.
    """

    username: str
    user: UserInfo | None = None
    repositories: list[str] = Field(default_factory=list)
    fingerprint: str
    analyzed_at: datetime
    total_commits_analyzed: int = 0
    ratings: list[SkillRating] = Field(default_factory=list)
    summary: ProfileSummary = Field(default_factory=ProfileSummary)


class AnalysisRequest(BaseModel):
    """Normalized analysis request."""

    username: str
    repositories: list[str] | None = None
    max_commits_per_repo: int = Field(default=DEFAULT_MAX_COMMITS_PER_REPO, gt=0)
    include_forks: bool = False
    bypass_cache: bool = False

    @field_validator("username")
    @classmethod
    def _strip_username(cls, v: str) -> str:
        v = v.strip()
        if not v:
            msg = "username must not be empty"
            raise ValueError(msg)
        return v


class CacheEntry(BaseModel):
    """A stored profile computation keyed by its fingerprint."""

    fingerprint: str
    result: ProfileResult
    created_at: datetime
