"""Analysis core: planning, orchestration, aggregation, rating and the pipeline."""

from gitanalyzer.analysis.aggregator import SkillAggregator, fold_observation, merge_evidence
from gitanalyzer.analysis.orchestrator import CallOrchestrator, CallRecord, CallState, RateLimitGate
from gitanalyzer.analysis.pipeline import AnalysisPipeline
from gitanalyzer.analysis.planner import BatchPlanner, cap_per_repository, estimate_commit_tokens
from gitanalyzer.analysis.rating import RatingContext, RatingEngine
from gitanalyzer.analysis.summary import build_summary

__all__ = [
    "AnalysisPipeline",
    "BatchPlanner",
    "CallOrchestrator",
    "CallRecord",
    "CallState",
    "RateLimitGate",
    "RatingContext",
    "RatingEngine",
    "SkillAggregator",
    "build_summary",
    "cap_per_repository",
    "estimate_commit_tokens",
    "fold_observation",
    "merge_evidence",
]
