"""Tests for the command-line entry point."""

from __future__ import annotations

import json
from pathlib import Path
from unittest.mock import AsyncMock, patch

import pytest

from gitanalyzer.__main__ import EXIT_FAILURE, EXIT_NOT_FOUND, build_parser, main
from gitanalyzer.config import AnalyzerSettings
from gitanalyzer.errors import AnalysisAbortedError, AuthenticationError, NotFoundError, TransientError
from gitanalyzer.models import ProfileResult
from tests.fakes import NOW


@pytest.fixture
def env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    monkeypatch.setenv("GITHUB_TOKEN", "ghp_test")
    monkeypatch.setenv("GITANALYZER_DATABASE", str(tmp_path / "cache.db"))
    monkeypatch.delenv("GITANALYZER_CONCURRENCY", raising=False)
    return tmp_path


def test_parser_defaults_come_from_settings(env: Path) -> None:
    args = build_parser(AnalyzerSettings()).parse_args(["alice"])

    assert args.username == "alice"
    assert args.repositories is None
    assert args.concurrency == 5
    assert args.database == str(env / "cache.db")
    assert not args.no_cache


def test_parser_collects_repositories(env: Path) -> None:
    args = build_parser(AnalyzerSettings()).parse_args(
        ["alice", "--repo", "alice/app", "--repo", "lib", "--no-cache", "-o", "out.json"]
    )
    assert args.repositories == ["alice/app", "lib"]
    assert args.no_cache
    assert args.output == Path("out.json")


async def test_main_writes_profile(env: Path) -> None:
    result = ProfileResult(username="alice", fingerprint="f" * 64, analyzed_at=NOW)
    output = env / "profile.json"

    with patch("gitanalyzer.__main__.AnalysisPipeline.analyze", new_callable=AsyncMock, return_value=result):
        code = await main(["alice", "-o", str(output)])

    assert code == 0
    assert json.loads(output.read_text(encoding="utf-8"))["username"] == "alice"


async def test_main_not_found_exit_code(env: Path) -> None:
    with patch(
        "gitanalyzer.__main__.AnalysisPipeline.analyze",
        new_callable=AsyncMock,
        side_effect=NotFoundError("user ghost not found"),
    ):
        assert await main(["ghost"]) == EXIT_NOT_FOUND


async def test_main_not_found_during_analysis_exit_code(env: Path) -> None:
    aborted = AnalysisAbortedError([NotFoundError("commit abc1234 not found")])
    with patch("gitanalyzer.__main__.AnalysisPipeline.analyze", new_callable=AsyncMock, side_effect=aborted):
        assert await main(["alice"]) == EXIT_NOT_FOUND


async def test_main_aborted_run_exit_code(env: Path) -> None:
    aborted = AnalysisAbortedError([AuthenticationError("token revoked")])
    with patch("gitanalyzer.__main__.AnalysisPipeline.analyze", new_callable=AsyncMock, side_effect=aborted):
        assert await main(["alice"]) == EXIT_FAILURE


async def test_main_failure_exit_code(env: Path) -> None:
    with patch(
        "gitanalyzer.__main__.AnalysisPipeline.analyze",
        new_callable=AsyncMock,
        side_effect=TransientError("GitHub 502"),
    ):
        assert await main(["alice"]) == EXIT_FAILURE


async def test_main_rejects_bad_concurrency(env: Path) -> None:
    assert await main(["alice", "--concurrency", "0"]) == EXIT_FAILURE


async def test_main_requires_token(env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("GITHUB_TOKEN")
    assert await main(["alice"]) == EXIT_FAILURE
