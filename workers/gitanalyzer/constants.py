"""Centralized constants for gitanalyzer.

Tunables that are not part of the rating configuration are collected here
for easy discovery and consistent usage.
"""

from __future__ import annotations

# -- Token estimation --------------------------------------------------------
CHARS_PER_TOKEN = 4  # Rough heuristic: 1 token ~ 4 characters.
COMMIT_TOKEN_OVERHEAD = 100  # Formatting overhead per commit in a prompt.
RESERVED_PROMPT_TOKENS = 4_000  # System prompt (~1k) + response (~3k).
DEFAULT_CONTEXT_TOKENS = 200_000
MAX_PATCH_CHARS_IN_PROMPT = 3_000  # Per-file diff cap when rendering a prompt.
TRUNCATION_MARKER = "\n... [truncated]"

# -- Evidence ----------------------------------------------------------------
RECENCY_WINDOW_SIZE = 50  # Most recent observation timestamps kept per skill.
MILLI = 1_000  # Scores are accumulated as integer milli-points.

# -- Orchestration -----------------------------------------------------------
DEFAULT_CONCURRENCY = 5
DEFAULT_MAX_RETRIES = 3
DEFAULT_MAX_RATE_LIMIT_CYCLES = 6
DEFAULT_BASE_BACKOFF_SECONDS = 1.0
DEFAULT_MAX_BACKOFF_SECONDS = 60.0

# -- Sources -----------------------------------------------------------------
GITHUB_API_URL = "https://api.github.com"
GITHUB_PAGE_SIZE = 100
HTTP_TIMEOUT_SECONDS = 120.0

# -- Request defaults --------------------------------------------------------
DEFAULT_MAX_COMMITS_PER_REPO = 50
DEFAULT_DATABASE_PATH = "gitanalyzer.db"
