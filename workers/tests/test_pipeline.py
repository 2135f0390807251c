"""End-to-end tests for the analysis pipeline with fake source and analyzer."""

from __future__ import annotations

import asyncio
import sqlite3
from typing import TYPE_CHECKING

import pytest

from gitanalyzer.analysis.pipeline import AnalysisPipeline
from gitanalyzer.cache import ProfileCache
from gitanalyzer.config import RetryPolicy
from gitanalyzer.errors import (
    AnalysisAbortedError,
    AuthenticationError,
    MalformedResponseError,
    NotFoundError,
    RateLimitedError,
    TransientError,
)
from gitanalyzer.models import AnalysisRequest, SkillEvidence, SkillKey, SkillTrend
from tests.fakes import NOW, PYTHON, FakeAnalyzer, FakeSource, make_commit, no_sleep

if TYPE_CHECKING:
    from pathlib import Path


def _commits() -> list:  # type: ignore[type-arg]
    return [
        make_commit("a1", days_ago=1),
        make_commit("a2", days_ago=3),
        make_commit("b1", repository="alice/lib", days_ago=2),
    ]


def _pipeline(
    source: FakeSource,
    analyzer: FakeAnalyzer,
    cache: ProfileCache | None = None,
    concurrency: int = 4,
) -> AnalysisPipeline:
    return AnalysisPipeline(
        source,
        analyzer,
        cache,
        retry_policy=RetryPolicy(jitter=0.0),
        concurrency_limit=concurrency,
        now=lambda: NOW,
        sleep=no_sleep,
    )


def _rows(db_path: Path) -> int:
    with sqlite3.connect(db_path) as conn:
        (count,) = conn.execute("SELECT COUNT(*) FROM profile_cache").fetchone()
    return count


# --- Happy path ---


async def test_profile_from_commit_history() -> None:
    source = FakeSource(_commits())
    result = await _pipeline(source, FakeAnalyzer()).analyze(AnalysisRequest(username="alice"))

    assert result.username == "alice"
    assert result.user is not None
    assert result.user.login == "alice"
    assert result.user.public_repos == 2
    assert result.repositories == ["alice/app", "alice/lib"]
    assert result.analyzed_at == NOW
    assert result.total_commits_analyzed == 3
    assert [r.key for r in result.ratings] == [PYTHON]

    rating = result.ratings[0]
    assert rating.evidence.commit_count == 3
    assert rating.evidence.repositories == ("alice/app", "alice/lib")
    assert rating.trend is SkillTrend.IMPROVING
    assert rating.components.llm == 90.0

    summary = result.summary
    assert summary.primary_languages == ["python"]
    assert summary.primary_domains == ["backend"]
    assert not summary.reduced_coverage
    assert summary.coverage.total_batches == 2
    assert sorted(source.diff_calls) == ["a1", "a2", "b1"]


async def test_per_repository_cap_applies_before_analysis() -> None:
    analyzer = FakeAnalyzer()
    request = AnalysisRequest(username="alice", max_commits_per_repo=1)
    result = await _pipeline(FakeSource(_commits()), analyzer).analyze(request)

    assert result.total_commits_analyzed == 2
    assert result.ratings[0].evidence.commit_shas == ("a1", "b1")


async def test_same_history_gives_identical_profile() -> None:
    first = await _pipeline(FakeSource(_commits()), FakeAnalyzer()).analyze(AnalysisRequest(username="alice"))
    second = await _pipeline(FakeSource(list(reversed(_commits()))), FakeAnalyzer(max_context_tokens=0)).analyze(
        AnalysisRequest(username="alice")
    )

    assert first.fingerprint == second.fingerprint
    assert first.ratings == second.ratings


async def test_empty_history() -> None:
    result = await _pipeline(FakeSource([]), FakeAnalyzer()).analyze(AnalysisRequest(username="alice"))

    assert result.ratings == []
    assert result.total_commits_analyzed == 0
    assert result.summary.coverage.total_batches == 0


# --- Cache ---


async def test_cache_hit_skips_analysis(db_path: Path) -> None:
    source = FakeSource(_commits())
    analyzer = FakeAnalyzer()
    pipeline = _pipeline(source, analyzer, ProfileCache.open(db_path))
    request = AnalysisRequest(username="alice")

    first = await pipeline.analyze(request)
    calls, diffs = list(analyzer.calls), list(source.diff_calls)
    second = await pipeline.analyze(request)

    assert second == first
    assert analyzer.calls == calls
    assert source.diff_calls == diffs
    assert _rows(db_path) == 1


async def test_cache_survives_a_new_process(db_path: Path) -> None:
    request = AnalysisRequest(username="alice")
    first = await _pipeline(FakeSource(_commits()), FakeAnalyzer(), ProfileCache.open(db_path)).analyze(request)

    analyzer = FakeAnalyzer()
    second = await _pipeline(FakeSource(_commits()), analyzer, ProfileCache.open(db_path)).analyze(request)

    fresh = await _pipeline(FakeSource(_commits()), FakeAnalyzer()).analyze(request)

    assert second == first
    assert analyzer.calls == []
    assert second.model_dump_json() == fresh.model_dump_json()


async def test_new_commit_changes_fingerprint(db_path: Path) -> None:
    request = AnalysisRequest(username="alice")
    first = await _pipeline(FakeSource(_commits()), FakeAnalyzer(), ProfileCache.open(db_path)).analyze(request)
    grown = [*_commits(), make_commit("a3", days_ago=0.5)]
    second = await _pipeline(FakeSource(grown), FakeAnalyzer(), ProfileCache.open(db_path)).analyze(request)

    assert second.fingerprint != first.fingerprint
    assert second.total_commits_analyzed == 4
    assert _rows(db_path) == 2


async def test_bypass_recomputes_and_overwrites(db_path: Path) -> None:
    analyzer = FakeAnalyzer()
    pipeline = _pipeline(FakeSource(_commits()), analyzer, ProfileCache.open(db_path))

    await pipeline.analyze(AnalysisRequest(username="alice"))
    first_calls = len(analyzer.calls)
    await pipeline.analyze(AnalysisRequest(username="alice", bypass_cache=True))

    assert len(analyzer.calls) == 2 * first_calls
    assert _rows(db_path) == 1


# --- Single flight ---


async def test_concurrent_runs_share_one_computation() -> None:
    analyzer = FakeAnalyzer(delay=0.01)
    pipeline = _pipeline(FakeSource(_commits()), analyzer)
    request = AnalysisRequest(username="alice")

    first, second = await asyncio.gather(pipeline.analyze(request), pipeline.analyze(request))

    assert first is second
    assert sorted(analyzer.calls) == [0, 1]


async def test_concurrent_runs_write_one_entry(db_path: Path) -> None:
    pipeline = _pipeline(FakeSource(_commits()), FakeAnalyzer(delay=0.01), ProfileCache.open(db_path))
    request = AnalysisRequest(username="alice")

    results = await asyncio.gather(*(pipeline.analyze(request) for _ in range(3)))

    assert results[0] == results[1] == results[2]
    assert _rows(db_path) == 1


# --- Failures ---


async def test_degraded_batch_reduces_coverage() -> None:
    analyzer = FakeAnalyzer(max_context_tokens=0, errors={1: [MalformedResponseError("not json")]})
    result = await _pipeline(FakeSource(_commits()), analyzer).analyze(AnalysisRequest(username="alice"))

    coverage = result.summary.coverage
    assert result.summary.reduced_coverage
    assert coverage.total_batches == 3
    assert coverage.degraded_batches == 1
    assert len(coverage.degraded_commits) == 1
    assert result.total_commits_analyzed == 2
    assert result.ratings[0].evidence.commit_count == 2


async def test_transient_batch_failure_is_retried() -> None:
    analyzer = FakeAnalyzer(errors={0: [TransientError("502"), TransientError("502")]})
    result = await _pipeline(FakeSource(_commits()), analyzer).analyze(AnalysisRequest(username="alice"))

    assert analyzer.calls.count(0) == 3
    assert not result.summary.reduced_coverage
    assert result.total_commits_analyzed == 3


async def test_failed_diff_fetch_is_skipped() -> None:
    source = FakeSource(_commits(), diff_errors={"a2": [MalformedResponseError("bad diff")]})
    result = await _pipeline(source, FakeAnalyzer()).analyze(AnalysisRequest(username="alice"))

    assert result.summary.coverage.skipped_commits == ["a2"]
    assert result.summary.reduced_coverage
    assert result.ratings[0].evidence.commit_shas == ("a1", "b1")


async def test_fatal_error_aborts_without_cache_write(db_path: Path) -> None:
    auth = AuthenticationError("token revoked")
    analyzer = FakeAnalyzer(max_context_tokens=0, errors={0: [auth]})
    pipeline = _pipeline(FakeSource(_commits()), analyzer, ProfileCache.open(db_path))

    with pytest.raises(AnalysisAbortedError) as exc_info:
        await pipeline.analyze(AnalysisRequest(username="alice"))

    assert exc_info.value.cause is auth
    assert _rows(db_path) == 0


async def test_unknown_account_stops_before_listing() -> None:
    source = FakeSource(_commits(), user_errors=[NotFoundError("user ghost not found")])
    with pytest.raises(NotFoundError, match="user ghost"):
        await _pipeline(source, FakeAnalyzer()).analyze(AnalysisRequest(username="ghost"))

    assert source.list_calls == 0


async def test_missing_repository_raises_not_found() -> None:
    source = FakeSource([], list_errors=[NotFoundError("commits of alice/gone not found")])
    with pytest.raises(NotFoundError, match="alice/gone"):
        await _pipeline(source, FakeAnalyzer()).analyze(AnalysisRequest(username="alice", repositories=["gone"]))


async def test_user_lookup_is_retried() -> None:
    source = FakeSource(_commits(), user_errors=[TransientError("timeout")])
    result = await _pipeline(source, FakeAnalyzer()).analyze(AnalysisRequest(username="alice"))

    assert source.user_calls == 2
    assert result.user is not None


async def test_listing_is_retried() -> None:
    source = FakeSource(_commits(), list_errors=[TransientError("timeout")])
    result = await _pipeline(source, FakeAnalyzer()).analyze(AnalysisRequest(username="alice"))

    assert source.list_calls == 2
    assert result.total_commits_analyzed == 3


async def test_listing_gives_up_after_retry_budget() -> None:
    errors = [TransientError("timeout") for _ in range(4)]
    with pytest.raises(TransientError):
        await _pipeline(FakeSource(_commits(), list_errors=errors), FakeAnalyzer()).analyze(
            AnalysisRequest(username="alice")
        )


async def test_missing_estimate_lowers_confidence() -> None:
    request = AnalysisRequest(username="alice")
    with_llm = await _pipeline(FakeSource(_commits()), FakeAnalyzer()).analyze(request)
    without = await _pipeline(FakeSource(_commits()), FakeAnalyzer(estimate=None)).analyze(request)

    assert without.ratings[0].components.llm is None
    assert without.ratings[0].confidence < with_llm.ratings[0].confidence


async def test_failed_estimate_is_dropped_not_fatal() -> None:
    class ThrottledEstimates(FakeAnalyzer):
        async def estimate_proficiency(self, key: SkillKey, evidence: SkillEvidence) -> float | None:
            raise RateLimitedError("estimates throttled")

    result = await _pipeline(FakeSource(_commits()), ThrottledEstimates()).analyze(AnalysisRequest(username="alice"))

    assert result.ratings[0].components.llm is None
    assert result.total_commits_analyzed == 3
