"""Skill aggregator: folds observations into per-skill evidence.

Evidence lives in an arena keyed by SkillKey.  ``fold_observation`` and
``merge_evidence`` are pure and commutative: sums are integer milli-points,
collections are kept sorted, and the recency window keeps the N most recent
timestamps rather than the N most recently folded.  The arena serializes
merges per skill with an asyncio.Lock; different skills never contend.
"""

from __future__ import annotations

import asyncio
import bisect
from collections import Counter
from typing import TYPE_CHECKING

import structlog

from gitanalyzer.constants import MILLI, RECENCY_WINDOW_SIZE
from gitanalyzer.models import SkillEvidence

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from gitanalyzer.models import BatchAnalysis, SkillKey, SkillObservation

logger = structlog.get_logger()


def _milli(value: float) -> int:
    return round(value * MILLI)


def _most_recent(timestamps: Iterable[datetime], window_size: int) -> tuple[datetime, ...]:
    ordered = sorted(timestamps)
    return tuple(ordered[-window_size:]) if window_size > 0 else ()


def _min_dt(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return min(a, b)


def _max_dt(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def fold_observation(
    evidence: SkillEvidence,
    observation: SkillObservation,
    window_size: int = RECENCY_WINDOW_SIZE,
) -> SkillEvidence:
    """Return *evidence* with *observation* folded in.

    Returns the same object unchanged when the observation's commit was
    already folded for this skill.
    """
    if observation.key != evidence.key:
        msg = f"cannot fold {observation.key} into evidence for {evidence.key}"
        raise ValueError(msg)

    shas = evidence.commit_shas
    pos = bisect.bisect_left(shas, observation.commit_sha)
    if pos < len(shas) and shas[pos] == observation.commit_sha:
        return evidence

    day = observation.observed_at.date().isoformat()
    activity = Counter(evidence.daily_activity)
    activity[day] += 1

    repositories = evidence.repositories
    if observation.repository and observation.repository not in repositories:
        repositories = tuple(sorted((*repositories, observation.repository)))

    signal_milli = evidence.signal_milli
    signal_weight_milli = evidence.signal_weight_milli
    if observation.proficiency_signal is not None:
        signal_milli += _milli(observation.proficiency_signal * observation.signal_confidence)
        signal_weight_milli += _milli(observation.signal_confidence)

    return evidence.model_copy(
        update={
            "commit_count": evidence.commit_count + 1,
            "complexity_milli": evidence.complexity_milli + _milli(observation.complexity),
            "quality_milli": evidence.quality_milli + _milli(observation.quality),
            "signal_milli": signal_milli,
            "signal_weight_milli": signal_weight_milli,
            "tests_count": evidence.tests_count + int(observation.has_tests),
            "docs_count": evidence.docs_count + int(observation.has_docs),
            "lines_changed": evidence.lines_changed + observation.lines_changed,
            "first_seen": _min_dt(evidence.first_seen, observation.observed_at),
            "last_seen": _max_dt(evidence.last_seen, observation.observed_at),
            "recent_timestamps": _most_recent((*evidence.recent_timestamps, observation.observed_at), window_size),
            "daily_activity": dict(sorted(activity.items())),
            "commit_shas": (*shas[:pos], observation.commit_sha, *shas[pos:]),
            "repositories": repositories,
        }
    )


def merge_evidence(
    left: SkillEvidence,
    right: SkillEvidence,
    window_size: int = RECENCY_WINDOW_SIZE,
) -> SkillEvidence:
    """Combine two partial evidence records built from disjoint commits.

    Raises:
        ValueError: If the keys differ or both sides folded the same commit.
    """
    if left.key != right.key:
        msg = f"cannot merge evidence for {left.key} with {right.key}"
        raise ValueError(msg)
    overlap = set(left.commit_shas) & set(right.commit_shas)
    if overlap:
        msg = f"evidence for {left.key} overlaps on {len(overlap)} commit(s)"
        raise ValueError(msg)

    activity = Counter(left.daily_activity)
    activity.update(right.daily_activity)

    return SkillEvidence(
        key=left.key,
        commit_count=left.commit_count + right.commit_count,
        complexity_milli=left.complexity_milli + right.complexity_milli,
        quality_milli=left.quality_milli + right.quality_milli,
        signal_milli=left.signal_milli + right.signal_milli,
        signal_weight_milli=left.signal_weight_milli + right.signal_weight_milli,
        tests_count=left.tests_count + right.tests_count,
        docs_count=left.docs_count + right.docs_count,
        lines_changed=left.lines_changed + right.lines_changed,
        first_seen=_min_dt(left.first_seen, right.first_seen),
        last_seen=_max_dt(left.last_seen, right.last_seen),
        recent_timestamps=_most_recent((*left.recent_timestamps, *right.recent_timestamps), window_size),
        daily_activity=dict(sorted(activity.items())),
        commit_shas=tuple(sorted((*left.commit_shas, *right.commit_shas))),
        repositories=tuple(sorted(set(left.repositories) | set(right.repositories))),
    )


class SkillAggregator:
    """Arena of per-skill evidence plus the per-commit style ledger."""

    def __init__(self, window_size: int = RECENCY_WINDOW_SIZE) -> None:
        self._window_size = window_size
        self._arena: dict[SkillKey, SkillEvidence] = {}
        self._locks: dict[SkillKey, asyncio.Lock] = {}
        # commit sha -> (has_tests, has_docs), OR-ed across observations
        self._commit_style: dict[str, tuple[bool, bool]] = {}
        self._analyses: dict[int, BatchAnalysis] = {}

    def _lock_for(self, key: SkillKey) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def fold(self, observation: SkillObservation) -> bool:
        """Fold one observation; returns False when it was a duplicate."""
        async with self._lock_for(observation.key):
            current = self._arena.get(observation.key)
            if current is None:
                current = SkillEvidence(key=observation.key)
            updated = fold_observation(current, observation, self._window_size)
            if updated is current:
                return False
            self._arena[observation.key] = updated

        tests, docs = self._commit_style.get(observation.commit_sha, (False, False))
        self._commit_style[observation.commit_sha] = (tests or observation.has_tests, docs or observation.has_docs)
        return True

    async def fold_batch(self, analysis: BatchAnalysis) -> int:
        """Fold every observation of a completed batch; returns how many were new."""
        self._analyses[analysis.batch_index] = analysis
        folded = 0
        for observation in analysis.observations:
            if await self.fold(observation):
                folded += 1
        logger.debug(
            "batch folded",
            batch=analysis.batch_index,
            observations=len(analysis.observations),
            folded=folded,
            skills=len(self._arena),
        )
        return folded

    def snapshot(self) -> dict[SkillKey, SkillEvidence]:
        """Current evidence ordered by skill key."""
        return {key: self._arena[key] for key in sorted(self._arena, key=lambda k: k.sort_key())}

    def evidence(self, key: SkillKey) -> SkillEvidence | None:
        return self._arena.get(key)

    def analyses(self) -> list[BatchAnalysis]:
        """Batch analyses ordered by batch index."""
        return [self._analyses[i] for i in sorted(self._analyses)]

    def style_counts(self) -> tuple[int, int, int]:
        """Return (observed commits, commits with tests, commits with docs)."""
        with_tests = sum(1 for tests, _ in self._commit_style.values() if tests)
        with_docs = sum(1 for _, docs in self._commit_style.values() if docs)
        return len(self._commit_style), with_tests, with_docs

    def __len__(self) -> int:
        return len(self._arena)
