"""LiteLLM-backed analyzer: one prompt per batch, structured JSON back."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from gitanalyzer.constants import DEFAULT_CONTEXT_TOKENS, MAX_PATCH_CHARS_IN_PROMPT
from gitanalyzer.errors import MalformedResponseError
from gitanalyzer.llm import DEFAULT_MODEL
from gitanalyzer.models import BatchAnalysis, DetectedPattern, SkillObservation
from gitanalyzer.taxonomy import is_doc_file, is_test_file, skill_key

if TYPE_CHECKING:
    from gitanalyzer.llm import LiteLLMClient
    from gitanalyzer.models import CommitBatch, CommitRecord, SkillEvidence, SkillKey

logger = structlog.get_logger()

SYSTEM_PROMPT = """\
You are an expert software engineer and technical recruiter analyzing Git commit history.
Your task is to extract skills, expertise levels, and coding patterns from commit diffs.

You must respond with valid JSON matching this exact schema:
{
    "skills": [
        {
            "name": "string (e.g., 'Rust', 'React', 'PostgreSQL')",
            "category": "language|framework|library|tool|domain|practice|concept",
            "proficiency_level": "beginner|intermediate|advanced|expert",
            "confidence": 0.0-1.0,
            "commits": ["8-char commit ids where this skill is visible"],
            "evidence": ["string describing specific evidence from the code"]
        }
    ],
    "patterns": [
        {
            "type": "design_pattern|anti_pattern|testing|security|performance|documentation",
            "name": "string",
            "description": "string",
            "quality_impact": -1.0 to 1.0 (negative for bad, positive for good)
        }
    ],
    "complexity_assessment": {
        "overall_score": 1-10,
        "reasoning": "string explaining the assessment"
    },
    "quality_assessment": {
        "code_quality": 1-10,
        "testing_coverage": 0.0-1.0 (estimated based on test files/code),
        "documentation_quality": 1-10,
        "observations": ["string observations about code quality"]
    },
    "domain_signals": ["frontend", "backend", "devops", "ml", "security", "mobile", "data", "systems"]
}

Guidelines:
- Be specific with skill names (e.g., "React" not just "JavaScript framework")
- Only report skills you have strong evidence for from the actual code
- Proficiency levels: beginner (basic usage), intermediate (competent), advanced (sophisticated patterns), expert (mastery)
- List in "commits" only the commits that show the skill; omit it if all of them do
- Domain signals help categorize what type of development this is"""

PROFICIENCY_LEVELS: dict[str, float] = {
    "expert": 95.0,
    "advanced": 80.0,
    "intermediate": 60.0,
    "beginner": 35.0,
}
_UNKNOWN_LEVEL = 50.0

SHORT_SHA = 8
MAX_EVIDENCE_CHARS = 500
RESPONSE_MAX_TOKENS = 4096


# --- Response schema ---


class _SkillPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: str
    category: str = "concept"
    proficiency_level: str = "intermediate"
    confidence: float = 0.5
    commits: list[str] | None = None
    evidence: list[str] = Field(default_factory=list)


class _PatternPayload(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    kind: str = Field(default="", alias="type")
    name: str
    description: str = ""
    quality_impact: float = 0.0


class _ComplexityPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    overall_score: float = 5.0


class _QualityPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    code_quality: float = 5.0
    testing_coverage: float = 0.0
    documentation_quality: float = 5.0


class _AnalysisPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    skills: list[_SkillPayload] = Field(default_factory=list)
    patterns: list[_PatternPayload] = Field(default_factory=list)
    complexity_assessment: _ComplexityPayload = Field(default_factory=_ComplexityPayload)
    quality_assessment: _QualityPayload = Field(default_factory=_QualityPayload)
    domain_signals: list[str] = Field(default_factory=list)


# --- Prompt / parsing helpers ---


def _clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def render_prompt(batch: CommitBatch) -> str:
    """User prompt describing every commit of *batch* with its (capped) diffs."""
    parts = [f"Analyze the following {len(batch.commits)} commit(s) from repository '{batch.repository}':\n\n"]
    for commit in batch.commits:
        first_line = commit.message.splitlines()[0] if commit.message else ""
        parts.append(f"## Commit: {commit.sha[:SHORT_SHA]}\n")
        parts.append(f"Message: {first_line}\n")
        parts.append(f"Stats: +{commit.additions} -{commit.deletions}\n\n")
        for f in commit.files:
            if not f.patch:
                continue
            header = f"### File: {f.filename}"
            if f.language:
                header += f" ({f.language})"
            patch = f.patch
            if len(patch) > MAX_PATCH_CHARS_IN_PROMPT:
                patch = patch[:MAX_PATCH_CHARS_IN_PROMPT] + "...\n[truncated]"
            parts.append(f"{header}\n```\n{patch}\n```\n\n")
    parts.append("\nProvide your analysis as JSON:\n")
    return "".join(parts)


def _balanced_object(text: str, start: int) -> str | None:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        c = text[i]
        if escaped:
            escaped = False
        elif c == "\\" and in_string:
            escaped = True
        elif c == '"':
            in_string = not in_string
        elif not in_string and c == "{":
            depth += 1
        elif not in_string and c == "}":
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


def extract_json(text: str) -> str:
    """Pull the JSON object out of a model reply (fenced block or raw braces).

    Raises:
        MalformedResponseError: No JSON object could be located.
    """
    fence = text.find("```json")
    if fence != -1:
        start = fence + len("```json")
        end = text.find("```", start)
        if end != -1:
            return text[start:end].strip()

    fence = text.find("```")
    if fence != -1:
        newline = text.find("\n", fence + 3)
        start = newline + 1 if newline != -1 else fence + 3
        end = text.find("```", start)
        if end != -1:
            content = text[start:end].strip()
            if content.startswith("{"):
                return content

    brace = text.find("{")
    if brace != -1:
        obj = _balanced_object(text, brace)
        if obj is not None:
            return obj

    msg = "no JSON object found in analyzer response"
    raise MalformedResponseError(msg)


def parse_response(text: str) -> _AnalysisPayload:
    """Parse and validate a model reply.

    Raises:
        MalformedResponseError: The reply is not valid JSON or does not match
            the response schema.
    """
    raw = extract_json(text)
    try:
        return _AnalysisPayload.model_validate(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as exc:
        msg = f"analyzer response does not match schema: {exc}"
        raise MalformedResponseError(msg) from exc


def _attributed(commits: tuple[CommitRecord, ...], refs: list[str] | None) -> list[CommitRecord]:
    """Commits a skill was attributed to; every commit when unattributed or unmatched."""
    if not refs:
        return list(commits)
    prefixes = [r.strip().lower() for r in refs if len(r.strip()) >= 4]
    matched = [c for c in commits if any(c.sha.lower().startswith(p) for p in prefixes)]
    return matched or list(commits)


def to_batch_analysis(batch: CommitBatch, payload: _AnalysisPayload) -> BatchAnalysis:
    """Turn a validated reply into per-commit skill observations."""
    complexity = _clamp(payload.complexity_assessment.overall_score, 0.0, 10.0)
    quality = _clamp(payload.quality_assessment.code_quality, 0.0, 10.0)

    style = {
        c.sha: (any(is_test_file(f.filename) for f in c.files), any(is_doc_file(f.filename) for f in c.files))
        for c in batch.commits
    }

    observations: list[SkillObservation] = []
    for skill in payload.skills:
        if not skill.name.strip():
            continue
        key = skill_key(skill.name, skill.category)
        signal = PROFICIENCY_LEVELS.get(skill.proficiency_level.strip().lower(), _UNKNOWN_LEVEL)
        evidence = "; ".join(skill.evidence)[:MAX_EVIDENCE_CHARS]
        for commit in _attributed(batch.commits, skill.commits):
            has_tests, has_docs = style[commit.sha]
            observations.append(
                SkillObservation(
                    key=key,
                    commit_sha=commit.sha,
                    repository=commit.repository,
                    observed_at=commit.authored_at,
                    complexity=complexity,
                    quality=quality,
                    has_tests=has_tests,
                    has_docs=has_docs,
                    proficiency_signal=signal,
                    signal_confidence=_clamp(skill.confidence, 0.0, 1.0),
                    lines_changed=commit.lines_changed,
                    evidence=evidence,
                )
            )

    return BatchAnalysis(
        batch_index=batch.index,
        observations=tuple(observations),
        code_quality=quality,
        testing_coverage=_clamp(payload.quality_assessment.testing_coverage, 0.0, 1.0),
        documentation_quality=_clamp(payload.quality_assessment.documentation_quality, 0.0, 10.0),
        patterns=tuple(
            DetectedPattern(name=p.name, kind=p.kind, quality_impact=_clamp(p.quality_impact, -1.0, 1.0))
            for p in payload.patterns
        ),
        domain_signals=tuple(payload.domain_signals),
    )


class LiteLLMAnalyzer:
    """Analyzer that prompts a model through the LiteLLM proxy."""

    def __init__(
        self,
        llm: LiteLLMClient,
        model: str = DEFAULT_MODEL,
        max_context_tokens: int = DEFAULT_CONTEXT_TOKENS,
        temperature: float = 0.1,
    ) -> None:
        self._llm = llm
        self._model = model
        self._max_context_tokens = max_context_tokens
        self._temperature = temperature

    @property
    def max_context_tokens(self) -> int:
        return self._max_context_tokens

    async def analyze_batch(self, batch: CommitBatch) -> BatchAnalysis:
        log = logger.bind(batch=batch.index, repository=batch.repository)
        resp = await self._llm.completion(
            prompt=render_prompt(batch),
            model=self._model,
            system=SYSTEM_PROMPT,
            temperature=self._temperature,
            max_tokens=RESPONSE_MAX_TOKENS,
        )
        analysis = to_batch_analysis(batch, parse_response(resp.content))
        log.debug(
            "batch analyzed",
            commits=len(batch.commits),
            observations=len(analysis.observations),
            tokens_in=resp.tokens_in,
            tokens_out=resp.tokens_out,
            cost_usd=resp.cost_usd,
        )
        return analysis

    async def estimate_proficiency(self, key: SkillKey, evidence: SkillEvidence) -> float | None:
        """Confidence-weighted mean of the per-commit levels the model reported."""
        return evidence.signal_mean
