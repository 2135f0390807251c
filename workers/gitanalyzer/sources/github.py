"""GitHub REST v3 commit source."""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import TYPE_CHECKING, Any

import httpx

from gitanalyzer.constants import GITHUB_API_URL, GITHUB_PAGE_SIZE, HTTP_TIMEOUT_SECONDS
from gitanalyzer.errors import (
    AuthenticationError,
    FatalError,
    MalformedResponseError,
    NotFoundError,
    RateLimitedError,
    TransientError,
)
from gitanalyzer.models import CommitRecord, FileChange, UserInfo, qualify_repository
from gitanalyzer.taxonomy import detect_language

if TYPE_CHECKING:
    from collections.abc import Sequence

logger = logging.getLogger(__name__)

_USER_AGENT = "gitanalyzer/0.1"

# GitHub answers 409 Conflict when listing commits of an empty repository.
_EMPTY_REPOSITORY = 409


def _reset_at(resp: httpx.Response) -> datetime | None:
    """Moment the target accepts calls again, from retry-after or x-ratelimit-reset."""
    retry_after = resp.headers.get("retry-after")
    if retry_after:
        try:
            return datetime.fromtimestamp(datetime.now(UTC).timestamp() + float(retry_after), tz=UTC)
        except ValueError:
            pass
    reset = resp.headers.get("x-ratelimit-reset")
    if reset:
        try:
            return datetime.fromtimestamp(int(reset), tz=UTC)
        except ValueError:
            return None
    return None


def _check(resp: httpx.Response, what: str) -> None:
    """Map a GitHub error response onto the analyzer error taxonomy."""
    status = resp.status_code
    if status < 400:
        return
    rate_exhausted = resp.headers.get("x-ratelimit-remaining") == "0"
    if status == 429 or (status == 403 and (rate_exhausted or "retry-after" in resp.headers)):
        raise RateLimitedError(f"GitHub rate limit hit fetching {what}", reset_at=_reset_at(resp))
    if status == 404:
        msg = f"{what} not found"
        raise NotFoundError(msg)
    if status in (401, 403):
        msg = f"GitHub rejected credentials ({status}) fetching {what}"
        raise AuthenticationError(msg)
    if status >= 500:
        msg = f"GitHub {status} fetching {what}"
        raise TransientError(msg)
    msg = f"GitHub {status} fetching {what}: {resp.text[:500]}"
    raise FatalError(msg)


def _parse_datetime(raw: str) -> datetime:
    return datetime.fromisoformat(raw.replace("Z", "+00:00"))


class GitHubSource:
    """CommitSource backed by the GitHub REST API."""

    def __init__(
        self,
        token: str,
        base_url: str = GITHUB_API_URL,
        timeout: float = HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": _USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def _get(
        self,
        url: str,
        what: str,
        params: dict[str, Any] | None = None,
        allow_empty: bool = False,
    ) -> httpx.Response:
        try:
            resp = await self._client.get(url, params=params)
        except httpx.TransportError as exc:
            msg = f"GitHub request for {what} failed: {exc}"
            raise TransientError(msg) from exc
        if not (allow_empty and resp.status_code == _EMPTY_REPOSITORY):
            _check(resp, what)
        return resp

    @staticmethod
    def _json(resp: httpx.Response, what: str) -> Any:
        try:
            return resp.json()
        except ValueError as exc:
            msg = f"GitHub returned a non-JSON body for {what}"
            raise MalformedResponseError(msg) from exc

    async def _paginate(
        self,
        url: str,
        what: str,
        params: dict[str, Any] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Follow ``Link: rel="next"`` until exhausted or *limit* items collected."""
        items: list[dict[str, Any]] = []
        next_url: str | None = url
        next_params: dict[str, Any] | None = {"per_page": GITHUB_PAGE_SIZE, **(params or {})}
        while next_url is not None:
            resp = await self._get(next_url, what, next_params, allow_empty=True)
            if resp.status_code == _EMPTY_REPOSITORY:
                logger.debug("%s: repository is empty", what)
                return items
            page = self._json(resp, what)
            if not isinstance(page, list):
                msg = f"expected a list for {what}, got {type(page).__name__}"
                raise MalformedResponseError(msg)
            items.extend(page)
            if limit is not None and len(items) >= limit:
                return items[:limit]
            # The next link already carries the query string.
            next_url = resp.links.get("next", {}).get("url")
            next_params = None
        return items

    async def fetch_user(self, username: str) -> UserInfo:
        resp = await self._get(f"/users/{username}", f"user {username}")
        data = self._json(resp, f"user {username}")
        if not isinstance(data, dict):
            msg = f"expected an object for user {username}"
            raise MalformedResponseError(msg)
        try:
            created = data.get("created_at")
            return UserInfo(
                login=data.get("login") or username,
                name=data.get("name"),
                bio=data.get("bio"),
                company=data.get("company"),
                location=data.get("location"),
                public_repos=int(data.get("public_repos") or 0),
                followers=int(data.get("followers") or 0),
                following=int(data.get("following") or 0),
                created_at=_parse_datetime(created) if created else None,
            )
        except (TypeError, ValueError) as exc:
            msg = f"unexpected user payload for {username}: {exc}"
            raise MalformedResponseError(msg) from exc

    async def list_repositories(self, username: str, include_forks: bool) -> list[str]:
        """Full names of repositories owned by *username*, most recently updated first."""
        repos = await self._paginate(
            f"/users/{username}/repos",
            f"repositories of {username}",
            {"type": "owner", "sort": "updated"},
        )
        names = [r["full_name"] for r in repos if include_forks or not r.get("fork", False)]
        logger.info("found %d repositories for %s (forks included: %s)", len(names), username, include_forks)
        return names

    async def fetch_commits(
        self,
        username: str,
        repositories: Sequence[str] | None,
        max_per_repo: int,
        include_forks: bool,
    ) -> list[CommitRecord]:
        if repositories is None:
            names = await self.list_repositories(username, include_forks)
        else:
            names = [qualify_repository(username, r) for r in repositories]

        commits: list[CommitRecord] = []
        for full_name in names:
            items = await self._paginate(
                f"/repos/{full_name}/commits",
                f"commits of {full_name}",
                {"author": username},
                limit=max_per_repo,
            )
            repo_commits = [self._commit_record(full_name, item) for item in items]
            repo_commits.sort(key=lambda c: c.authored_at)
            commits.extend(repo_commits)
            logger.debug("fetched %d commits from %s", len(repo_commits), full_name)

        logger.info("fetched %d commits across %d repositories", len(commits), len(names))
        return commits

    @staticmethod
    def _commit_record(full_name: str, item: dict[str, Any]) -> CommitRecord:
        try:
            sha = item["sha"]
            commit = item["commit"]
            author = commit.get("author") or commit.get("committer") or {}
            return CommitRecord(
                sha=sha,
                repository=full_name,
                authored_at=_parse_datetime(author["date"]),
                message=commit.get("message", ""),
                diff_ref=f"/repos/{full_name}/commits/{sha}",
            )
        except (KeyError, TypeError, ValueError) as exc:
            msg = f"unexpected commit payload in {full_name}: {exc}"
            raise MalformedResponseError(msg) from exc

    async def fetch_diff(self, commit: CommitRecord) -> list[FileChange]:
        ref = commit.diff_ref or f"/repos/{commit.repository}/commits/{commit.sha}"
        resp = await self._get(ref, f"commit {commit.sha[:7]}")
        data = self._json(resp, f"commit {commit.sha[:7]}")
        if not isinstance(data, dict):
            msg = f"expected an object for commit {commit.sha[:7]}"
            raise MalformedResponseError(msg)
        files: list[FileChange] = []
        for f in data.get("files") or []:
            if not isinstance(f, dict) or "filename" not in f:
                continue
            files.append(
                FileChange(
                    filename=f["filename"],
                    status=f.get("status", "modified"),
                    additions=int(f.get("additions", 0)),
                    deletions=int(f.get("deletions", 0)),
                    patch=f.get("patch") or "",
                    language=detect_language(f["filename"]),
                )
            )
        return files

    async def close(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
