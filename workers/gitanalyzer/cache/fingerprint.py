"""Content fingerprint of an analysis request plus the commits it covers."""

from __future__ import annotations

import hashlib
import json
from typing import TYPE_CHECKING

from gitanalyzer.models import qualify_repository

if TYPE_CHECKING:
    from collections.abc import Iterable

    from gitanalyzer.models import AnalysisRequest, CommitRecord


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def commit_set_hash(commits: Iterable[CommitRecord]) -> str:
    """Order-independent hash over the concrete ``repository@sha`` identifiers."""
    lines = sorted({f"{c.repository}@{c.sha}" for c in commits})
    return _sha256("\n".join(lines))


def compute_fingerprint(request: AnalysisRequest, commits: Iterable[CommitRecord]) -> str:
    """Stable cache key for *request* over *commits*.

    The repository set is the explicit filter when given (bare names
    qualified with the username), otherwise the repositories the commits
    came from.  ``bypass_cache`` is not part of the key: a bypassing run
    overwrites the entry a normal run would read.
    """
    commits = list(commits)
    if request.repositories is not None:
        repositories = [qualify_repository(request.username, r) for r in request.repositories]
    else:
        repositories = [c.repository for c in commits]
    payload = {
        "username": request.username.lower(),
        "repositories": sorted({r.lower() for r in repositories}),
        "max_commits_per_repo": request.max_commits_per_repo,
        "include_forks": request.include_forks,
        "commit_set_hash": commit_set_hash(commits),
    }
    return _sha256(json.dumps(payload, sort_keys=True, separators=(",", ":")))
