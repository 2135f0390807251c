"""Tests for the rating engine."""

from __future__ import annotations

import itertools
from datetime import timedelta

import pytest

from gitanalyzer.analysis.aggregator import fold_observation
from gitanalyzer.analysis.rating import RatingContext, RatingEngine, round_half_up
from gitanalyzer.config import RatingConfig, RatingWeights
from gitanalyzer.models import RatingComponents, SkillCategory, SkillEvidence, SkillKey, SkillTrend
from tests.fakes import NOW, PYTHON, make_commit, make_observation

GO = SkillKey(name="go", category=SkillCategory.LANGUAGE)


def _evidence(
    days_ago: list[float],
    key: SkillKey = PYTHON,
    complexity: float = 5.0,
    quality: float = 5.0,
) -> SkillEvidence:
    evidence = SkillEvidence(key=key)
    for i, age in enumerate(days_ago):
        evidence = fold_observation(
            evidence,
            make_observation(f"{key.name}{i:03d}", key=key, days_ago=age, complexity=complexity, quality=quality),
        )
    return evidence


def _context(evidence: SkillEvidence, total: int | None = None) -> RatingContext:
    return RatingContext(
        now=NOW,
        total_commits=evidence.commit_count if total is None else total,
        span_start=evidence.first_seen,
        span_end=evidence.last_seen,
    )


@pytest.fixture
def engine() -> RatingEngine:
    return RatingEngine()


# --- rate ---


def test_zero_evidence_rates_lowest(engine: RatingEngine) -> None:
    rating = engine.rate(SkillEvidence(key=PYTHON), 95.0, RatingContext(now=NOW, total_commits=0))
    assert rating.proficiency_score == 1
    assert rating.confidence == 0.0
    assert rating.trend is SkillTrend.STABLE


def test_active_recent_skill_rates_high(engine: RatingEngine) -> None:
    ev = _evidence([i % 7 for i in range(10)], complexity=8.0, quality=8.0)
    rating = engine.rate(ev, 90.0, _context(ev))

    assert rating.proficiency_score > 70
    assert rating.trend is SkillTrend.IMPROVING
    assert rating.confidence > 0.6
    assert rating.components.recency == 100.0
    assert rating.components.complexity == pytest.approx(80.0)
    assert rating.components.llm == 90.0


def test_long_unused_skill_is_dormant(engine: RatingEngine) -> None:
    ev = _evidence([730])
    rating = engine.rate(ev, 60.0, _context(ev, total=20))

    assert rating.trend is SkillTrend.DORMANT
    assert rating.components.recency == engine.config.recency_floor


def test_scores_and_confidence_stay_in_bounds(engine: RatingEngine) -> None:
    ages = ([0.0], [1, 2, 3], [400, 800, 1200], [i * 0.1 for i in range(40)], [i * 30 for i in range(25)])
    for days, estimate, level in itertools.product(ages, (None, 0.0, 100.0, 250.0, -5.0), (0.0, 10.0)):
        ev = _evidence(list(days), complexity=level, quality=level)
        for total in (0, 1, len(days), 1000):
            rating = engine.rate(ev, estimate, _context(ev, total=total))
            assert 1 <= rating.proficiency_score <= 100
            assert 0.0 <= rating.confidence <= 1.0
            for value in rating.components.model_dump().values():
                assert value is None or 0.0 <= value <= 100.0


def test_same_inputs_rate_identically(engine: RatingEngine) -> None:
    ev = _evidence([1, 5, 40, 41, 200], complexity=6.3, quality=7.7)
    first = engine.rate(ev, 72.5, _context(ev, total=30))
    second = RatingEngine().rate(ev, 72.5, _context(ev, total=30))
    assert first == second
    assert first.model_dump_json() == second.model_dump_json()


def test_missing_estimate_lowers_confidence(engine: RatingEngine) -> None:
    ev = _evidence([1, 2, 3, 4])
    with_llm = engine.rate(ev, 80.0, _context(ev))
    without = engine.rate(ev, None, _context(ev))

    assert without.components.llm is None
    assert without.confidence == pytest.approx(with_llm.confidence * 0.8)


def test_non_finite_estimate_is_ignored(engine: RatingEngine) -> None:
    ev = _evidence([1, 2])
    assert engine.rate(ev, float("nan"), _context(ev)).components.llm is None


# --- Components ---


def test_weighted_score_renormalizes_without_llm(engine: RatingEngine) -> None:
    components = RatingComponents(frequency=50, recency=50, complexity=50, quality=50, consistency=50)
    assert engine.weighted_score(components) == pytest.approx(50.0)
    assert engine.weighted_score(components.model_copy(update={"llm": 100.0})) == pytest.approx(60.0)


def test_frequency_saturates(engine: RatingEngine) -> None:
    ev = _evidence([1, 2, 3])
    assert engine.frequency(ev, 3) == pytest.approx(engine.frequency(ev, 1))
    assert engine.frequency(ev, 300) < engine.frequency(ev, 30) < engine.frequency(ev, 3)
    assert engine.frequency(ev, 3) < 100.0


@pytest.mark.parametrize(
    ("age", "expected"),
    [(0, 100.0), (30, 100.0), (197.5, 55.0), (365, 10.0), (1000, 10.0)],
)
def test_recency_decays_linearly(engine: RatingEngine, age: float, expected: float) -> None:
    ev = _evidence([age])
    assert engine.recency(ev, NOW) == pytest.approx(expected)


def test_consistency_prefers_spread_over_burst(engine: RatingEngine) -> None:
    spread = _evidence([i * 30 for i in range(10)])
    burst = _evidence([0.0] * 10)
    span_start = NOW - timedelta(days=270)

    spread_score = engine.consistency(spread, spread.first_seen, spread.last_seen)
    burst_score = engine.consistency(burst, span_start, NOW)

    assert burst_score == pytest.approx(0.0)
    assert spread_score > 80.0


def test_consistency_single_commit_is_neutral(engine: RatingEngine) -> None:
    assert engine.consistency(_evidence([3]), None, None) == engine.config.single_observation_consistency


def test_confidence_grows_with_observations(engine: RatingEngine) -> None:
    few = engine.confidence(_evidence([1, 2]))
    many = engine.confidence(_evidence(list(range(1, 21))))
    assert 0.0 < few < many <= 1.0


def test_confidence_rewards_distinct_days(engine: RatingEngine) -> None:
    same_day = engine.confidence(_evidence([1.0] * 6))
    spread = engine.confidence(_evidence([1, 2, 3, 4, 5, 6]))
    assert same_day < spread


def test_trend_declining(engine: RatingEngine) -> None:
    ev = _evidence([10] + [100 + i * 10 for i in range(20)])
    assert engine.trend(ev, NOW) is SkillTrend.DECLINING


def test_trend_stable(engine: RatingEngine) -> None:
    ev = _evidence([10, 40, 70] + [100 + i * 25 for i in range(10)])
    assert engine.trend(ev, NOW) is SkillTrend.STABLE


# --- rate_all ---


def test_rate_all_orders_by_score_then_name(engine: RatingEngine) -> None:
    strong = _evidence([1, 2, 3], key=GO, complexity=9.0, quality=9.0)
    weak = _evidence([500], complexity=1.0, quality=1.0)
    ada = SkillKey(name="ada", category=SkillCategory.LANGUAGE)
    twin = _evidence([1, 2, 3], key=ada, complexity=9.0, quality=9.0)
    commits = [make_commit(f"c{i}", days_ago=d) for i, d in enumerate([1, 2, 3, 500])]
    context = RatingContext.for_commits(commits, NOW)

    ratings = engine.rate_all({PYTHON: weak, GO: strong, ada: twin}, {}, context)

    assert [r.key.name for r in ratings] == ["ada", "go", "python"]
    assert ratings[0].proficiency_score == ratings[1].proficiency_score > ratings[2].proficiency_score


def test_context_for_commits_spans_history() -> None:
    commits = [make_commit("a", days_ago=3), make_commit("b", days_ago=300)]
    context = RatingContext.for_commits(commits, NOW)
    assert context.total_commits == 2
    assert context.span_start == NOW - timedelta(days=300)
    assert context.span_end == NOW - timedelta(days=3)
    assert RatingContext.for_commits([], NOW).span_start is None


# --- Helpers / config ---


@pytest.mark.parametrize(("value", "expected"), [(0.5, 1), (1.49, 1), (2.5, 3), (99.5, 100), (-0.5, 0)])
def test_round_half_up(value: float, expected: int) -> None:
    assert round_half_up(value) == expected


def test_weights_must_sum_to_one() -> None:
    with pytest.raises(ValueError, match="sum to 1.0"):
        RatingWeights(llm=0.5)


def test_config_rejects_inverted_windows() -> None:
    with pytest.raises(ValueError, match="staleness_days"):
        RatingConfig(recent_window_days=400, staleness_days=365)
