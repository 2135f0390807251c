"""Rating engine: turns final skill evidence into proficiency ratings.

Components (each on 0..100):

- frequency:   100 * (1 - exp(-k * count / total)), saturating
- recency:     100 inside the recent window, linear decay to a floor at the
               staleness threshold, floor beyond
- complexity:  mean complexity rescaled from 0..10
- quality:     mean quality rescaled from 0..10
- consistency: normalized Shannon entropy of per-day activity across the
               analyzed span (even spread = 100, single burst = 0)
- llm:         the analyzer's estimate, when it has one

The weighted sum is rounded half-up and clamped to [1, 100].  Every input,
including ``now``, is explicit so the same evidence always rates the same.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import date, datetime
from typing import TYPE_CHECKING

import numpy as np
import structlog

from gitanalyzer.config import RatingConfig
from gitanalyzer.models import RatingComponents, SkillRating, SkillTrend

if TYPE_CHECKING:
    from collections.abc import Mapping, Sequence

    from gitanalyzer.models import CommitRecord, SkillEvidence, SkillKey

logger = structlog.get_logger()

_SECONDS_PER_DAY = 86_400.0


@dataclass(frozen=True)
class RatingContext:
    """User-level inputs shared by every rating of one run."""

    now: datetime
    total_commits: int
    span_start: datetime | None = None
    span_end: datetime | None = None

    @classmethod
    def for_commits(cls, commits: Sequence[CommitRecord], now: datetime) -> RatingContext:
        """Context covering the analyzed commits."""
        if not commits:
            return cls(now=now, total_commits=0)
        stamps = [c.authored_at for c in commits]
        return cls(now=now, total_commits=len(commits), span_start=min(stamps), span_end=max(stamps))


def round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


class RatingEngine:
    """Computes SkillRatings from evidence using a RatingConfig."""

    def __init__(self, config: RatingConfig | None = None) -> None:
        self._config = config or RatingConfig()

    @property
    def config(self) -> RatingConfig:
        return self._config

    # -- Public API ----------------------------------------------------------

    def rate(
        self,
        evidence: SkillEvidence,
        llm_estimate: float | None,
        context: RatingContext,
    ) -> SkillRating:
        """Rate one skill.  Zero evidence yields score 1, confidence 0."""
        if evidence.commit_count == 0:
            return SkillRating(
                key=evidence.key,
                proficiency_score=1,
                confidence=0.0,
                trend=SkillTrend.STABLE,
                components=RatingComponents(),
                evidence=evidence,
            )

        llm = None
        if llm_estimate is not None and math.isfinite(llm_estimate):
            llm = _clamp(llm_estimate, 0.0, 100.0)

        components = RatingComponents(
            frequency=self.frequency(evidence, context.total_commits),
            recency=self.recency(evidence, context.now),
            complexity=_clamp(evidence.mean_complexity * 10.0, 0.0, 100.0),
            quality=_clamp(evidence.mean_quality * 10.0, 0.0, 100.0),
            consistency=self.consistency(evidence, context.span_start, context.span_end),
            llm=llm,
        )

        confidence = self.confidence(evidence)
        if llm is None:
            confidence *= self._config.missing_llm_confidence_factor

        return SkillRating(
            key=evidence.key,
            proficiency_score=int(_clamp(round_half_up(self.weighted_score(components)), 1, 100)),
            confidence=_clamp(confidence, 0.0, 1.0),
            trend=self.trend(evidence, context.now),
            components=components,
            evidence=evidence,
        )

    def rate_all(
        self,
        evidence: Mapping[SkillKey, SkillEvidence],
        estimates: Mapping[SkillKey, float | None],
        context: RatingContext,
    ) -> list[SkillRating]:
        """Rate every skill; ordered by score desc, then name, then category."""
        ratings = [self.rate(ev, estimates.get(key), context) for key, ev in evidence.items()]
        ratings.sort(key=lambda r: (-r.proficiency_score, r.key.name, r.key.category.value))
        logger.debug("skills rated", skills=len(ratings), total_commits=context.total_commits)
        return ratings

    # -- Components ----------------------------------------------------------

    def weighted_score(self, components: RatingComponents) -> float:
        """Weighted sum; without an llm value the other weights are renormalized."""
        w = self._config.weights
        total = (
            w.frequency * components.frequency
            + w.recency * components.recency
            + w.complexity * components.complexity
            + w.quality * components.quality
            + w.consistency * components.consistency
        )
        if components.llm is not None:
            return total + w.llm * components.llm
        remaining = 1.0 - w.llm
        return total / remaining if remaining > 0 else 0.0

    def frequency(self, evidence: SkillEvidence, total_commits: int) -> float:
        total = max(total_commits, evidence.commit_count, 1)
        ratio = evidence.commit_count / total
        return 100.0 * (1.0 - math.exp(-self._config.frequency_steepness * ratio))

    def recency(self, evidence: SkillEvidence, now: datetime) -> float:
        if evidence.last_seen is None:
            return self._config.recency_floor
        cfg = self._config
        age_days = (now - evidence.last_seen).total_seconds() / _SECONDS_PER_DAY
        if age_days <= cfg.recent_window_days:
            return 100.0
        if age_days >= cfg.staleness_days:
            return cfg.recency_floor
        fraction = (age_days - cfg.recent_window_days) / (cfg.staleness_days - cfg.recent_window_days)
        return 100.0 - (100.0 - cfg.recency_floor) * fraction

    def consistency(
        self,
        evidence: SkillEvidence,
        span_start: datetime | None,
        span_end: datetime | None,
    ) -> float:
        """Normalized entropy of per-day activity over the analyzed span."""
        neutral = self._config.single_observation_consistency
        if evidence.commit_count < 2 or not evidence.daily_activity:
            return neutral

        days = np.array([date.fromisoformat(d).toordinal() for d in evidence.daily_activity], dtype=np.int64)
        counts = np.array(list(evidence.daily_activity.values()), dtype=np.float64)

        start = span_start.date().toordinal() if span_start is not None else int(days.min())
        end = span_end.date().toordinal() if span_end is not None else int(days.max())
        start, end = min(start, int(days.min())), max(end, int(days.max()))
        span_days = end - start + 1

        bins = min(self._config.consistency_bins, evidence.commit_count, span_days)
        if bins < 2:
            return neutral

        hist, _ = np.histogram(days, bins=bins, range=(start, end + 1), weights=counts)
        p = hist[hist > 0] / hist.sum()
        entropy = float(-(p * np.log(p)).sum())
        return _clamp(100.0 * entropy / math.log(bins), 0.0, 100.0)

    def confidence(self, evidence: SkillEvidence) -> float:
        """More observations on more distinct days give higher confidence."""
        cfg = self._config
        n = evidence.commit_count
        if n == 0:
            return 0.0
        window = evidence.recent_timestamps
        spread = len({ts.date() for ts in window}) / len(window) if window else 0.0
        volume = 1.0 - math.exp(-n / cfg.confidence_scale)
        return _clamp(volume * (cfg.spread_floor + (1.0 - cfg.spread_floor) * spread), 0.0, 1.0)

    def trend(self, evidence: SkillEvidence, now: datetime) -> SkillTrend:
        """Compare activity density in the recent window against the history window."""
        if evidence.commit_count == 0:
            return SkillTrend.STABLE

        cfg = self._config
        today = now.date()
        recent = historical = 0
        for day, count in evidence.daily_activity.items():
            age = (today - date.fromisoformat(day)).days
            if age < cfg.trend_recent_days:
                recent += count
            elif age < cfg.trend_history_days:
                historical += count

        if recent == 0:
            return SkillTrend.DORMANT
        if historical == 0:
            return SkillTrend.IMPROVING

        recent_density = recent / cfg.trend_recent_days
        historical_density = historical / (cfg.trend_history_days - cfg.trend_recent_days)
        ratio = recent_density / historical_density
        if ratio > cfg.improving_ratio:
            return SkillTrend.IMPROVING
        if ratio < cfg.declining_ratio:
            return SkillTrend.DECLINING
        return SkillTrend.STABLE
