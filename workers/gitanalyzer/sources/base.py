"""Contracts for the collaborators the analysis core consumes."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from collections.abc import Sequence

    from gitanalyzer.models import (
        BatchAnalysis,
        CommitBatch,
        CommitRecord,
        FileChange,
        SkillEvidence,
        SkillKey,
        UserInfo,
    )


class CommitSource(Protocol):
    """Source-control data source.

    May raise NotFoundError, RateLimitedError, TransientError or FatalError.
    """

    async def fetch_user(self, username: str) -> UserInfo:
        """Account details; NotFoundError when the user does not exist."""
        ...

    async def fetch_commits(
        self,
        username: str,
        repositories: Sequence[str] | None,
        max_per_repo: int,
        include_forks: bool,
    ) -> list[CommitRecord]:
        """Commits authored by *username*, ascending by time within each repository."""
        ...

    async def fetch_diff(self, commit: CommitRecord) -> list[FileChange]: ...


class Analyzer(Protocol):
    """Language-model analyzer.

    May raise RateLimitedError, TransientError, MalformedResponseError or
    FatalError.
    """

    @property
    def max_context_tokens(self) -> int: ...

    async def analyze_batch(self, batch: CommitBatch) -> BatchAnalysis: ...

    async def estimate_proficiency(self, key: SkillKey, evidence: SkillEvidence) -> float | None:
        """Overall 0..100 estimate for a skill, or None when there is none."""
        ...
