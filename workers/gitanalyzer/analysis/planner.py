"""Batch planner: splits an ordered commit list into token-bounded batches.

Strategy:
1. Apply the per-repository cap, keeping each repository's most recent commits.
2. Group commits by repository (first-appearance order, stable within a group).
3. Greedily fill batches up to the token budget; a batch never spans two
   repositories.
4. A commit that alone exceeds the budget is truncated and emitted as a
   singleton batch flagged ``oversized``.

The partition is a pure function of the input sequence, the cap and the
budget.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from gitanalyzer.constants import (
    CHARS_PER_TOKEN,
    COMMIT_TOKEN_OVERHEAD,
    DEFAULT_CONTEXT_TOKENS,
    RESERVED_PROMPT_TOKENS,
    TRUNCATION_MARKER,
)
from gitanalyzer.errors import ConfigError
from gitanalyzer.models import CommitBatch, CommitRecord
from gitanalyzer.taxonomy import file_priority

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

# Smallest budget that still leaves room for a commit message and one file.
MIN_TOKEN_BUDGET = 2 * COMMIT_TOKEN_OVERHEAD


def estimate_commit_tokens(commit: CommitRecord) -> int:
    """Estimate the prompt tokens a commit needs (4-chars-per-token heuristic)."""
    chars = len(commit.message) + sum(len(f.filename) + len(f.patch) for f in commit.files)
    return chars // CHARS_PER_TOKEN + COMMIT_TOKEN_OVERHEAD


def cap_per_repository(commits: Sequence[CommitRecord], max_per_repo: int) -> list[CommitRecord]:
    """Keep the *max_per_repo* most recent commits of each repository.

    Input order is preserved for the commits that survive.
    """
    if max_per_repo <= 0:
        msg = f"max_per_repo must be positive, got {max_per_repo}"
        raise ConfigError(msg)

    positions: dict[str, list[int]] = {}
    for pos, commit in enumerate(commits):
        positions.setdefault(commit.repository, []).append(pos)

    keep: set[int] = set()
    for repo_positions in positions.values():
        newest_first = sorted(repo_positions, key=lambda p: (commits[p].authored_at, p), reverse=True)
        keep.update(newest_first[:max_per_repo])

    return [c for pos, c in enumerate(commits) if pos in keep]


class BatchPlanner:
    """Partitions commits into batches that fit one analyzer call."""

    def __init__(self, token_budget: int = DEFAULT_CONTEXT_TOKENS - RESERVED_PROMPT_TOKENS) -> None:
        if token_budget < MIN_TOKEN_BUDGET:
            msg = f"token budget must be at least {MIN_TOKEN_BUDGET}, got {token_budget}"
            raise ConfigError(msg)
        self._budget = token_budget

    @classmethod
    def for_context(cls, max_context_tokens: int) -> BatchPlanner:
        """Build a planner for a model context size, reserving prompt/response room."""
        return cls(max(MIN_TOKEN_BUDGET, max_context_tokens - RESERVED_PROMPT_TOKENS))

    @property
    def token_budget(self) -> int:
        return self._budget

    def plan(
        self,
        commits: Sequence[CommitRecord],
        max_commits_per_repo: int | None = None,
    ) -> list[CommitBatch]:
        """Return the ordered batch partition for *commits*."""
        selected = list(commits)
        if max_commits_per_repo is not None:
            selected = cap_per_repository(selected, max_commits_per_repo)

        groups: dict[str, list[CommitRecord]] = {}
        for commit in selected:
            groups.setdefault(commit.repository, []).append(commit)

        batches: list[CommitBatch] = []
        for repository, repo_commits in groups.items():
            self._plan_repository(repository, repo_commits, batches)

        logger.debug(
            "planned %d batches for %d commits (budget %d tokens)",
            len(batches),
            len(selected),
            self._budget,
        )
        return batches

    def _plan_repository(
        self,
        repository: str,
        commits: list[CommitRecord],
        batches: list[CommitBatch],
    ) -> None:
        current: list[CommitRecord] = []
        current_tokens = 0

        def flush() -> None:
            nonlocal current, current_tokens
            if current:
                batches.append(
                    CommitBatch(
                        index=len(batches),
                        repository=repository,
                        commits=tuple(current),
                        estimated_tokens=current_tokens,
                    )
                )
            current = []
            current_tokens = 0

        for commit in commits:
            tokens = estimate_commit_tokens(commit)

            if tokens > self._budget:
                flush()
                truncated = self.truncate_commit(commit)
                logger.info(
                    "commit %s exceeds budget (%d > %d tokens), truncated into its own batch",
                    commit.sha[:8],
                    tokens,
                    self._budget,
                )
                batches.append(
                    CommitBatch(
                        index=len(batches),
                        repository=repository,
                        commits=(truncated,),
                        estimated_tokens=estimate_commit_tokens(truncated),
                        oversized=True,
                    )
                )
                continue

            if current_tokens + tokens > self._budget:
                flush()

            current.append(commit)
            current_tokens += tokens

        flush()

    def truncate_commit(self, commit: CommitRecord) -> CommitRecord:
        """Shrink a commit's diff to fit the budget, keeping the most relevant files first."""
        max_chars = (self._budget - COMMIT_TOKEN_OVERHEAD) * CHARS_PER_TOKEN
        message = commit.message[: max_chars // 2]
        remaining = max_chars - len(message)

        # sorted() is stable, so equally ranked files keep their diff order.
        ranked = sorted(commit.files, key=lambda f: file_priority(f.filename), reverse=True)

        kept = []
        for file in ranked:
            room = remaining - len(file.filename)
            if room <= 0:
                break
            patch = file.patch
            if len(patch) > room:
                patch = (patch[: max(0, room - len(TRUNCATION_MARKER))] + TRUNCATION_MARKER)[:room]
            kept.append(file.model_copy(update={"patch": patch}))
            remaining -= len(file.filename) + len(patch)

        return commit.model_copy(update={"message": message, "files": tuple(kept), "truncated": True})
