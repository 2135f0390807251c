"""Profile summary derived from the final ratings and batch analyses."""

from __future__ import annotations

from collections import Counter
from typing import TYPE_CHECKING

from gitanalyzer.models import (
    CodingStyle,
    Coverage,
    ExperienceLevel,
    ProfileSummary,
    SkillCategory,
    SkillTrend,
    StrengthWeakness,
)

if TYPE_CHECKING:
    from collections.abc import Sequence

    from gitanalyzer.models import BatchAnalysis, SkillRating

PRIMARY_LANGUAGE_MIN_SCORE = 40
STRENGTH_MIN_SCORE = 70
GOOD_PATTERN_IMPACT = 0.3
ANTI_PATTERN_IMPACT = -0.3
HIGH_QUALITY_AVERAGE = 7.0
LOW_TESTING_AVERAGE = 0.3
LOW_DOCS_AVERAGE = 4.0
MAX_ITEMS = 5
MAX_DOMAINS = 3

_DOMAIN_ALIASES: dict[str, str] = {
    "frontend": "frontend",
    "backend": "backend",
    "fullstack": "fullstack",
    "full-stack": "fullstack",
    "full stack": "fullstack",
    "mobile": "mobile",
    "devops": "devops",
    "ml": "machine_learning",
    "machine learning": "machine_learning",
    "data": "data_science",
    "data science": "data_science",
    "security": "security",
    "database": "database",
    "databases": "database",
    "cloud": "cloud",
    "embedded": "embedded",
    "systems": "systems_programming",
}

# (level, min high-proficiency skills, min average score, min active years)
_EXPERIENCE_THRESHOLDS: tuple[tuple[ExperienceLevel, int, int, int], ...] = (
    (ExperienceLevel.PRINCIPAL, 5, 70, 5),
    (ExperienceLevel.STAFF, 4, 65, 4),
    (ExperienceLevel.SENIOR, 3, 60, 2),
    (ExperienceLevel.MID, 1, 50, 1),
)


def build_summary(
    ratings: Sequence[SkillRating],
    analyses: Sequence[BatchAnalysis],
    coverage: Coverage | None = None,
    style_counts: tuple[int, int, int] | None = None,
) -> ProfileSummary:
    """Summarize a profile.

    Args:
        ratings: Ratings ordered by score (as returned by ``rate_all``).
        analyses: Successful batch analyses ordered by batch index.
        coverage: How much of the history reached the evidence.
        style_counts: (commits, commits touching tests, commits touching docs)
            from the aggregator's style ledger; refines the coding style
            percentages when present.
    """
    coverage = coverage or Coverage()
    return ProfileSummary(
        primary_languages=primary_languages(ratings),
        primary_domains=primary_domains(analyses),
        strengths=detect_strengths(ratings, analyses),
        weaknesses=detect_weaknesses(ratings, analyses),
        experience_level=assess_experience_level(ratings),
        coding_style=assess_coding_style(analyses, style_counts),
        coverage=coverage,
        reduced_coverage=coverage.reduced,
    )


def primary_languages(ratings: Sequence[SkillRating]) -> list[str]:
    return [
        r.key.name
        for r in ratings
        if r.key.category is SkillCategory.LANGUAGE and r.proficiency_score >= PRIMARY_LANGUAGE_MIN_SCORE
    ][:MAX_ITEMS]


def primary_domains(analyses: Sequence[BatchAnalysis]) -> list[str]:
    counts: Counter[str] = Counter()
    for analysis in analyses:
        for signal in analysis.domain_signals:
            domain = _DOMAIN_ALIASES.get(signal.strip().lower())
            if domain is not None:
                counts[domain] += 1
    # Ties break alphabetically so the summary does not depend on arrival order.
    ranked = sorted(counts.items(), key=lambda kv: (-kv[1], kv[0]))
    return [domain for domain, _ in ranked[:MAX_DOMAINS]]


def _mean(values: list[float]) -> float:
    return sum(values) / max(len(values), 1)


def detect_strengths(ratings: Sequence[SkillRating], analyses: Sequence[BatchAnalysis]) -> list[StrengthWeakness]:
    strengths = [
        StrengthWeakness(
            area=r.key.name,
            description=f"Strong {r.key.category.value} proficiency with {r.evidence.commit_count} commits",
            evidence=list(r.evidence.repositories),
            score=r.proficiency_score,
        )
        for r in ratings
        if r.proficiency_score >= STRENGTH_MIN_SCORE
    ]

    good_patterns = sorted({p.name for a in analyses for p in a.patterns if p.quality_impact > GOOD_PATTERN_IMPACT})
    if good_patterns:
        strengths.append(
            StrengthWeakness(
                area="Design Patterns",
                description="Uses good design patterns and practices",
                evidence=good_patterns,
                score=75,
            )
        )

    if analyses:
        avg_quality = _mean([a.code_quality for a in analyses])
        if avg_quality >= HIGH_QUALITY_AVERAGE:
            strengths.append(
                StrengthWeakness(
                    area="Code Quality",
                    description=f"Consistently high code quality (avg: {avg_quality:.1f}/10)",
                    score=int(avg_quality * 10),
                )
            )

    strengths.sort(key=lambda s: (-s.score, s.area))
    return strengths[:MAX_ITEMS]


def detect_weaknesses(ratings: Sequence[SkillRating], analyses: Sequence[BatchAnalysis]) -> list[StrengthWeakness]:
    weaknesses: list[StrengthWeakness] = []

    if analyses:
        avg_testing = _mean([a.testing_coverage for a in analyses])
        if avg_testing < LOW_TESTING_AVERAGE:
            weaknesses.append(
                StrengthWeakness(
                    area="Testing",
                    description=f"Low test coverage across commits ({avg_testing * 100:.0f}%)",
                    score=int(avg_testing * 100),
                )
            )

        avg_docs = _mean([a.documentation_quality for a in analyses])
        if avg_docs < LOW_DOCS_AVERAGE:
            weaknesses.append(
                StrengthWeakness(
                    area="Documentation",
                    description=f"Limited documentation quality (avg: {avg_docs:.1f}/10)",
                    score=int(avg_docs * 10),
                )
            )

    for r in ratings:
        if r.trend is not SkillTrend.DECLINING:
            continue
        last_seen = r.evidence.last_seen.date().isoformat() if r.evidence.last_seen else "unknown"
        weaknesses.append(
            StrengthWeakness(
                area=r.key.name,
                description=f"{r.key.name} usage declining over time",
                evidence=[f"Last used: {last_seen}"],
                score=r.proficiency_score,
            )
        )

    anti_patterns = sorted({p.name for a in analyses for p in a.patterns if p.quality_impact < ANTI_PATTERN_IMPACT})
    if anti_patterns:
        weaknesses.append(
            StrengthWeakness(
                area="Code Patterns",
                description="Some anti-patterns detected in code",
                evidence=anti_patterns,
                score=30,
            )
        )

    weaknesses.sort(key=lambda w: (w.score, w.area))
    return weaknesses[:MAX_ITEMS]


def assess_experience_level(ratings: Sequence[SkillRating]) -> ExperienceLevel:
    """Heuristic from high-proficiency count, average score and active years."""
    if not ratings:
        return ExperienceLevel.JUNIOR

    high = sum(1 for r in ratings if r.proficiency_score >= STRENGTH_MIN_SCORE)
    average = int(sum(r.proficiency_score for r in ratings) / len(ratings))

    first = [r.evidence.first_seen for r in ratings if r.evidence.first_seen is not None]
    last = [r.evidence.last_seen for r in ratings if r.evidence.last_seen is not None]
    years = int((max(last) - min(first)).days / 365) if first and last else 0

    for level, min_high, min_average, min_years in _EXPERIENCE_THRESHOLDS:
        if high >= min_high and average >= min_average and years >= min_years:
            return level
    return ExperienceLevel.JUNIOR


def assess_coding_style(
    analyses: Sequence[BatchAnalysis],
    style_counts: tuple[int, int, int] | None = None,
) -> CodingStyle:
    if not analyses:
        return CodingStyle()

    test_pct = _mean([a.testing_coverage for a in analyses]) * 100
    docs_pct = _mean([a.documentation_quality / 10 for a in analyses]) * 100
    if style_counts is not None and style_counts[0] > 0:
        commits, with_tests, with_docs = style_counts
        # Blend the model's judgement with what the diffs actually touched.
        test_pct = (test_pct + 100 * with_tests / commits) / 2
        docs_pct = (docs_pct + 100 * with_docs / commits) / 2

    return CodingStyle(
        test_coverage_pct=round(test_pct, 1),
        documentation_pct=round(docs_pct, 1),
        convention_adherence_pct=round(_mean([a.code_quality / 10 for a in analyses]) * 100, 1),
        refactors_regularly=any("refactor" in p.name.lower() for a in analyses for p in a.patterns),
    )
