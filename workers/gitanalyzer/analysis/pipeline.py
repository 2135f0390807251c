"""End-to-end analysis: commits -> diffs -> batches -> evidence -> ratings -> cache.

Steps:
1. Fetch the account and list its commits through the source (retried
   like any call).
2. Fingerprint the request plus commit set; a cache hit returns immediately.
3. Fetch diffs under the source orchestrator; failed fetches are skipped.
4. Plan token-bounded batches and analyze them under the analyzer
   orchestrator, folding each result into the aggregator as it completes.
5. Rate every skill, build the summary, write through the cache.

Concurrent runs for the same fingerprint in one process share a single
computation.  A fatal error anywhere aborts the run before the cache write.
"""

from __future__ import annotations

import asyncio
from datetime import UTC, datetime
from typing import TYPE_CHECKING, TypeVar

import structlog

from gitanalyzer.analysis.aggregator import SkillAggregator
from gitanalyzer.analysis.orchestrator import CallOrchestrator
from gitanalyzer.analysis.planner import BatchPlanner, cap_per_repository
from gitanalyzer.analysis.rating import RatingContext, RatingEngine
from gitanalyzer.analysis.summary import build_summary
from gitanalyzer.cache.fingerprint import compute_fingerprint
from gitanalyzer.config import RatingConfig, RetryPolicy
from gitanalyzer.constants import DEFAULT_CONCURRENCY
from gitanalyzer.errors import (
    RETRYABLE_ERRORS,
    AnalysisAbortedError,
    AnalyzerError,
    MalformedResponseError,
    TransientError,
)
from gitanalyzer.models import Coverage, ProfileResult

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from gitanalyzer.cache.store import ProfileCache
    from gitanalyzer.models import (
        AnalysisRequest,
        BatchAnalysis,
        CommitBatch,
        CommitRecord,
        FileChange,
        SkillEvidence,
        SkillKey,
        UserInfo,
    )
    from gitanalyzer.sources.base import Analyzer, CommitSource

logger = structlog.get_logger()

T = TypeVar("T")
R = TypeVar("R")


class AnalysisPipeline:
    """Wires the source, planner, orchestrators, aggregator, rating engine and cache."""

    def __init__(
        self,
        source: CommitSource,
        analyzer: Analyzer,
        cache: ProfileCache | None = None,
        *,
        rating_config: RatingConfig | None = None,
        retry_policy: RetryPolicy | None = None,
        concurrency_limit: int = DEFAULT_CONCURRENCY,
        now: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._source = source
        self._analyzer = analyzer
        self._cache = cache
        self._rating_config = rating_config or RatingConfig()
        self._engine = RatingEngine(self._rating_config)
        self._now = now or (lambda: datetime.now(UTC))
        # One orchestrator per external target so a rate limit pauses every
        # run hitting that target.
        self._source_calls = CallOrchestrator(
            concurrency_limit, retry_policy, target="source", wall_clock=self._now, sleep=sleep
        )
        self._analyzer_calls = CallOrchestrator(
            concurrency_limit, retry_policy, target="analyzer", wall_clock=self._now, sleep=sleep
        )
        self._inflight: dict[str, asyncio.Future[ProfileResult]] = {}

    async def analyze(self, request: AnalysisRequest) -> ProfileResult:
        """Produce the profile for *request*, from cache when possible.

        Raises:
            NotFoundError: The user or an explicitly requested repository
                does not exist.
            AnalysisAbortedError: A fatal error cancelled the run.
            FatalError: Authentication, configuration or storage failure.
            TransientError, RateLimitedError: The user lookup or commit
                listing kept failing after its retry budget.
        """
        log = logger.bind(username=request.username)
        user = await self._fetch_once(request.username, self._source.fetch_user, "user lookup")
        commits = await self._list_commits(request)
        fingerprint = compute_fingerprint(request, commits)
        log = log.bind(fingerprint=fingerprint[:12])

        if self._cache is not None and not request.bypass_cache:
            cached = await self._cache.get(fingerprint)
            if cached is not None:
                return cached

        pending = self._inflight.get(fingerprint)
        if pending is not None:
            log.info("joining in-flight analysis")
            return await asyncio.shield(pending)

        future: asyncio.Future[ProfileResult] = asyncio.get_running_loop().create_future()
        self._inflight[fingerprint] = future
        try:
            result = await self._compute(request, user, commits, fingerprint, log)
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as exc:
            future.set_exception(exc)
            # Joiners re-raise it; mark retrieved so a lone failure is not reported twice.
            future.exception()
            raise
        else:
            future.set_result(result)
            return result
        finally:
            self._inflight.pop(fingerprint, None)

    async def _fetch_once(self, unit: T, call: Callable[[T], Awaitable[R]], what: str) -> R:
        """Run a single source call under the source orchestrator's retry rules."""
        try:
            (record,) = await self._source_calls.run([unit], call)
        except AnalysisAbortedError as exc:
            # A single unit: surface its own failure (e.g. unknown user).
            if isinstance(exc.cause, AnalyzerError):
                raise exc.cause from exc
            raise
        if not record.succeeded or record.result is None:
            raise record.error or TransientError(f"{what} failed")
        return record.result

    async def _list_commits(self, request: AnalysisRequest) -> list[CommitRecord]:
        async def fetch(req: AnalysisRequest) -> list[CommitRecord]:
            return await self._source.fetch_commits(
                req.username, req.repositories, req.max_commits_per_repo, req.include_forks
            )

        commits = await self._fetch_once(request, fetch, "commit listing")
        return cap_per_repository(commits, request.max_commits_per_repo)

    async def _compute(
        self,
        request: AnalysisRequest,
        user: UserInfo,
        commits: list[CommitRecord],
        fingerprint: str,
        log: structlog.stdlib.BoundLogger,
    ) -> ProfileResult:
        log.info("analysis started", commits=len(commits))

        enriched, skipped = await self._fetch_diffs(commits)

        planner = BatchPlanner.for_context(self._analyzer.max_context_tokens)
        batches = planner.plan(enriched)
        log.info("batches planned", batches=len(batches), budget=planner.token_budget)

        aggregator = SkillAggregator(window_size=self._rating_config.recency_window_size)

        async def fold(_batch: CommitBatch, analysis: BatchAnalysis) -> None:
            await aggregator.fold_batch(analysis)

        records = await self._analyzer_calls.run(batches, self._analyzer.analyze_batch, on_success=fold)

        analyzed = [c for r in records if r.succeeded for c in r.unit.commits]
        degraded = [r for r in records if r.degraded]
        if degraded:
            log.warning(
                "reduced coverage",
                degraded_batches=len(degraded),
                degraded_commits=sum(len(r.unit.commits) for r in degraded),
            )

        evidence = aggregator.snapshot()
        estimates = await self._estimates(evidence, log)

        now = self._now()
        ratings = self._engine.rate_all(evidence, estimates, RatingContext.for_commits(analyzed, now))
        coverage = Coverage(
            total_commits=len(commits),
            analyzed_commits=len(analyzed),
            total_batches=len(batches),
            degraded_batches=len(degraded),
            degraded_commits=sorted(c.sha for r in degraded for c in r.unit.commits),
            skipped_commits=sorted(skipped),
        )
        result = ProfileResult(
            username=request.username,
            user=user,
            repositories=sorted({c.repository for c in commits}),
            fingerprint=fingerprint,
            analyzed_at=now,
            total_commits_analyzed=len(analyzed),
            ratings=ratings,
            summary=build_summary(ratings, aggregator.analyses(), coverage, aggregator.style_counts()),
        )

        if self._cache is not None:
            result = await self._cache.put(fingerprint, result, replace=request.bypass_cache)

        log.info(
            "analysis finished",
            skills=len(ratings),
            analyzed_commits=len(analyzed),
            reduced_coverage=coverage.reduced,
        )
        return result

    async def _fetch_diffs(self, commits: list[CommitRecord]) -> tuple[list[CommitRecord], list[str]]:
        """Attach diffs; commits whose diff fetch degraded are returned as skipped."""
        records = await self._source_calls.run(commits, self._source.fetch_diff)
        enriched: list[CommitRecord] = []
        skipped: list[str] = []
        for record in records:
            files: list[FileChange] | None = record.result
            if record.succeeded and files is not None:
                enriched.append(record.unit.with_files(files))
            else:
                skipped.append(record.unit.sha)
        return enriched, skipped

    async def _estimates(
        self,
        evidence: dict[SkillKey, SkillEvidence],
        log: structlog.stdlib.BoundLogger,
    ) -> dict[SkillKey, float | None]:
        estimates: dict[SkillKey, float | None] = {}
        for key, ev in evidence.items():
            try:
                estimates[key] = await self._analyzer.estimate_proficiency(key, ev)
            except (*RETRYABLE_ERRORS, MalformedResponseError) as exc:
                # A missing estimate lowers confidence; it never fails the run.
                log.warning("proficiency estimate unavailable", skill=str(key), error=str(exc))
                estimates[key] = None
        return estimates
