"""Error taxonomy shared by the sources, the orchestrator and the pipeline.

NotFoundError and FatalError abort a run.  RateLimitedError and
TransientError are retried with capped budgets before the affected unit is
marked degraded.  MalformedResponseError degrades the unit immediately.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence
    from datetime import datetime


class AnalyzerError(Exception):
    """Base class for every error raised by gitanalyzer."""


class NotFoundError(AnalyzerError):
    """The target user, repository or resource does not exist."""


class RateLimitedError(AnalyzerError):
    """The external target asked us to slow down.

    *reset_at* is the moment the target said it will accept calls again,
    when it said so.
    """

    def __init__(self, message: str = "rate limited", reset_at: datetime | None = None) -> None:
        self.reset_at = reset_at
        super().__init__(message)


class TransientError(AnalyzerError):
    """Network failure or 5xx response; worth retrying."""


class MalformedResponseError(AnalyzerError):
    """The analyzer returned a structure we could not parse or validate."""


class FatalError(AnalyzerError):
    """Unrecoverable failure; the run is aborted without a cache write."""


class AuthenticationError(FatalError):
    """Credentials were rejected by an external service."""


class ConfigError(FatalError):
    """Invalid configuration value."""


class StorageError(FatalError):
    """The cache store failed or returned a corrupt record."""


class AnalysisAbortedError(FatalError):
    """Single aggregate failure raised when a run is cancelled by fatal errors."""

    def __init__(self, failures: Sequence[BaseException]) -> None:
        self.failures = list(failures)
        first = self.failures[0] if self.failures else None
        detail = f"{type(first).__name__}: {first}" if first is not None else "unknown failure"
        extra = f" (+{len(self.failures) - 1} more)" if len(self.failures) > 1 else ""
        super().__init__(f"analysis aborted: {detail}{extra}")

    @property
    def cause(self) -> BaseException | None:
        """The first failure that triggered the abort."""
        return self.failures[0] if self.failures else None


# Errors retried by the orchestrator before a unit is degraded.
RETRYABLE_ERRORS: tuple[type[AnalyzerError], ...] = (RateLimitedError, TransientError)

# Errors that cancel the whole run.
ABORTING_ERRORS: tuple[type[AnalyzerError], ...] = (NotFoundError, FatalError)
