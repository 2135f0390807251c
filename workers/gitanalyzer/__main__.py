"""Command-line entry point: ``python -m gitanalyzer <username>``.

Prints the profile as JSON on stdout (or to ``--output``); logs go to stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from pathlib import Path

import structlog

from gitanalyzer.analysis.pipeline import AnalysisPipeline
from gitanalyzer.cache.store import ProfileCache
from gitanalyzer.config import AnalyzerSettings, load_rating_config
from gitanalyzer.errors import AnalysisAbortedError, AnalyzerError, ConfigError, NotFoundError
from gitanalyzer.llm import LiteLLMClient
from gitanalyzer.logger import setup_logging, stop_logging
from gitanalyzer.models import AnalysisRequest
from gitanalyzer.sources.analyzer import LiteLLMAnalyzer
from gitanalyzer.sources.github import GitHubSource

logger = structlog.get_logger()

EXIT_FAILURE = 1
EXIT_NOT_FOUND = 2


def build_parser(settings: AnalyzerSettings) -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gitanalyzer",
        description="Build a skill profile from a GitHub user's commit history.",
    )
    parser.add_argument("username", help="GitHub username to analyze")
    parser.add_argument(
        "--repo",
        dest="repositories",
        action="append",
        metavar="OWNER/NAME",
        help="Only analyze this repository (repeatable)",
    )
    parser.add_argument(
        "--max-commits-per-repo",
        type=int,
        default=settings.max_commits_per_repo,
        help="Most recent commits analyzed per repository (default: %(default)s)",
    )
    parser.add_argument(
        "--include-forks",
        action="store_true",
        default=settings.include_forks,
        help="Include forked repositories",
    )
    parser.add_argument(
        "--concurrency",
        type=int,
        default=settings.concurrency_limit,
        help="Maximum concurrent external calls (default: %(default)s)",
    )
    parser.add_argument(
        "--database",
        default=settings.database_path,
        help="Cache database path (default: %(default)s)",
    )
    parser.add_argument("--no-cache", action="store_true", help="Recompute and overwrite the cached profile")
    parser.add_argument(
        "--rating-config",
        type=Path,
        default=settings.rating_config_path,
        help="YAML file with rating thresholds",
    )
    parser.add_argument("--output", "-o", type=Path, help="Write the profile JSON here instead of stdout")
    return parser


def _not_found_cause(exc: BaseException) -> NotFoundError | None:
    """The NotFoundError behind *exc*, including one that aborted a run."""
    if isinstance(exc, NotFoundError):
        return exc
    if isinstance(exc, AnalysisAbortedError) and isinstance(exc.cause, NotFoundError):
        return exc.cause
    return None


async def main(argv: list[str] | None = None) -> int:
    """Run one analysis and return the process exit code."""
    try:
        settings = AnalyzerSettings()
    except ConfigError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILURE

    args = build_parser(settings).parse_args(argv)
    setup_logging(service=settings.log_service, level=settings.log_level)

    source: GitHubSource | None = None
    llm: LiteLLMClient | None = None
    try:
        if args.concurrency < 1:
            msg = f"--concurrency must be positive, got {args.concurrency}"
            raise ConfigError(msg)
        request = AnalysisRequest(
            username=args.username,
            repositories=args.repositories,
            max_commits_per_repo=args.max_commits_per_repo,
            include_forks=args.include_forks,
            bypass_cache=args.no_cache,
        )
        rating_config = load_rating_config(args.rating_config)

        source = GitHubSource(token=settings.require_github_token())
        llm = LiteLLMClient(base_url=settings.litellm_url, api_key=settings.litellm_api_key)
        pipeline = AnalysisPipeline(
            source,
            LiteLLMAnalyzer(llm, model=settings.model),
            ProfileCache.open(args.database),
            rating_config=rating_config,
            concurrency_limit=args.concurrency,
        )
        result = await pipeline.analyze(request)
    except (AnalyzerError, ValueError) as exc:
        missing = _not_found_cause(exc)
        if missing is not None:
            logger.error("not found", error=str(missing))
            print(f"error: {missing}", file=sys.stderr)
            return EXIT_NOT_FOUND
        logger.error("analysis failed", error=str(exc), kind=type(exc).__name__)
        print(f"error: {exc}", file=sys.stderr)
        return EXIT_FAILURE
    finally:
        if source is not None:
            await source.close()
        if llm is not None:
            await llm.close()
        stop_logging()

    payload = result.model_dump_json(indent=2)
    if args.output is not None:
        args.output.write_text(payload + "\n", encoding="utf-8")
    else:
        print(payload)
    return 0


def run() -> None:
    """Console-script entry point."""
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run()
