"""Tests for the batch planner."""

from __future__ import annotations

import pytest

from gitanalyzer.analysis.planner import (
    MIN_TOKEN_BUDGET,
    BatchPlanner,
    cap_per_repository,
    estimate_commit_tokens,
)
from gitanalyzer.constants import RESERVED_PROMPT_TOKENS, TRUNCATION_MARKER
from gitanalyzer.errors import ConfigError
from tests.fakes import make_commit, make_file


def _sized(sha: str, patch_chars: int, repository: str = "alice/app", days_ago: float = 1.0):
    return make_commit(sha, repository=repository, days_ago=days_ago, files=[make_file(patch="x" * patch_chars)])


# --- Token estimate ---


def test_estimate_commit_tokens() -> None:
    commit = make_commit("a1", message="m" * 40, files=[make_file(filename="f" * 20, patch="p" * 340)])
    # (40 + 20 + 340) / 4 + 100
    assert estimate_commit_tokens(commit) == 200


# --- Per-repository cap ---


def test_cap_keeps_most_recent_per_repository() -> None:
    commits = [
        make_commit("old", days_ago=30),
        make_commit("mid", days_ago=20),
        make_commit("other", repository="alice/lib", days_ago=50),
        make_commit("new", days_ago=10),
    ]
    kept = cap_per_repository(commits, 2)
    assert [c.sha for c in kept] == ["mid", "other", "new"]


def test_cap_rejects_non_positive() -> None:
    with pytest.raises(ConfigError):
        cap_per_repository([], 0)


# --- Planning ---


def test_budget_below_minimum_rejected() -> None:
    with pytest.raises(ConfigError):
        BatchPlanner(MIN_TOKEN_BUDGET - 1)


def test_for_context_reserves_prompt_room() -> None:
    assert BatchPlanner.for_context(10_000).token_budget == 10_000 - RESERVED_PROMPT_TOKENS
    assert BatchPlanner.for_context(0).token_budget == MIN_TOKEN_BUDGET


def test_plan_empty() -> None:
    assert BatchPlanner().plan([]) == []


def test_batches_respect_budget_and_order() -> None:
    # Each commit: (6 + 10 + 400) / 4 + 100 = 204 tokens.
    commits = [_sized(f"c{i}", 400) for i in range(5)]
    batches = BatchPlanner(450).plan(commits)

    assert [b.shas for b in batches] == [["c0", "c1"], ["c2", "c3"], ["c4"]]
    assert all(b.estimated_tokens <= 450 for b in batches)
    assert [b.index for b in batches] == [0, 1, 2]


def test_batch_never_spans_repositories() -> None:
    commits = [
        _sized("a1", 10, repository="alice/a"),
        _sized("b1", 10, repository="alice/b"),
        _sized("a2", 10, repository="alice/a"),
    ]
    batches = BatchPlanner().plan(commits)

    assert [(b.repository, b.shas) for b in batches] == [("alice/a", ["a1", "a2"]), ("alice/b", ["b1"])]


def test_plan_applies_cap() -> None:
    commits = [_sized(f"c{i}", 10, days_ago=10 - i) for i in range(5)]
    batches = BatchPlanner().plan(commits, max_commits_per_repo=2)
    assert [sha for b in batches for sha in b.shas] == ["c3", "c4"]


def test_plan_is_deterministic() -> None:
    commits = [_sized(f"c{i}", 100 * i, repository=f"alice/r{i % 2}") for i in range(8)]
    planner = BatchPlanner(500)
    assert planner.plan(commits) == planner.plan(commits)


# --- Oversized commits ---


def test_oversized_commit_is_truncated_into_own_batch() -> None:
    commits = [_sized("small", 10), _sized("huge", 10_000), _sized("after", 10)]
    planner = BatchPlanner(500)
    batches = planner.plan(commits)

    assert [b.shas for b in batches] == [["small"], ["huge"], ["after"]]
    huge = batches[1]
    assert huge.oversized
    assert huge.commits[0].truncated
    assert huge.estimated_tokens <= planner.token_budget
    assert huge.commits[0].files[0].patch.endswith(TRUNCATION_MARKER)


def test_truncation_keeps_code_before_docs() -> None:
    commit = make_commit(
        "mixed",
        files=[
            make_file(filename="README.md", patch="d" * 2_000),
            make_file(filename="src/core.py", patch="c" * 2_000),
        ],
    )
    truncated = BatchPlanner(600).truncate_commit(commit)

    assert truncated.files[0].filename == "src/core.py"
    assert estimate_commit_tokens(truncated) <= 600
