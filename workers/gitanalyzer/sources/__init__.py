"""Collaborator contracts and their shipped implementations."""

from gitanalyzer.sources.analyzer import LiteLLMAnalyzer
from gitanalyzer.sources.base import Analyzer, CommitSource
from gitanalyzer.sources.github import GitHubSource

__all__ = [
    "Analyzer",
    "CommitSource",
    "GitHubSource",
    "LiteLLMAnalyzer",
]
