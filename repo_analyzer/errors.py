"""Exception hierarchy for Repo Analyzer.

Cache-layer errors are recovered where they occur, agent errors are
captured per task, and only the run-level errors reach the CLI.
"""

from typing import Any


class AnalyzerError(Exception):
    """Base error for all analyzer failures."""

    pass


# ---------------------------------------------------------------------------
# Cache layer
# ---------------------------------------------------------------------------


class ScanError(AnalyzerError):
    """The repository walk could not start."""

    pass


class CacheLoadError(AnalyzerError):
    """A cache file was unreadable, corrupt or from another version."""

    pass


class CacheCommitError(AnalyzerError):
    """The change cache snapshot could not be persisted."""

    pass


class CacheKeyError(AnalyzerError):
    """A request could not be canonicalized into a cache key."""

    pass


# ---------------------------------------------------------------------------
# Model invocation
# ---------------------------------------------------------------------------


class ModelError(AnalyzerError):
    """Base model invocation error."""

    retryable = False


class ModelServiceError(ModelError):
    """The provider answered with an error status."""

    def __init__(self, message: str, status_code: int, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.body = body

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code == 429 or self.status_code >= 500


class ModelConnectionError(ModelError):
    """The provider could not be reached."""

    retryable = True


class ModelResponseError(ModelError):
    """The provider answered with a payload we cannot use."""

    pass


# ---------------------------------------------------------------------------
# Agents and orchestration
# ---------------------------------------------------------------------------


class ToolError(AnalyzerError):
    """A tool call failed; the message is reported back to the model."""

    pass


class CancellationError(AnalyzerError):
    """The shared run context was cancelled or its deadline passed."""

    pass


class AgentTaskError(AnalyzerError):
    """An analysis agent failed."""

    def __init__(self, agent_name: str, message: str):
        super().__init__(f"{agent_name}: {message}")
        self.agent_name = agent_name


class NoAgentsToRunError(AnalyzerError):
    """Every analysis agent was excluded by the caller."""

    pass


class AllAgentsFailedError(AnalyzerError):
    """Every dispatched agent failed and none could be skipped."""

    def __init__(self, failures: list[Any]):
        names = ", ".join(failure.name for failure in failures)
        super().__init__(f"All {len(failures)} analysis agents failed: {names}")
        self.failures = failures
