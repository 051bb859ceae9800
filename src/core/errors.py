# src/core/errors.py — v1
"""Exception taxonomy.

Request-level errors (validation, auth, rate limit, busy) are raised before
a Run exists. Stage and storage errors are absorbed by the orchestrator into
the run's error list. PipelineFatalError is the only mid-pipeline error a
caller ever sees.
"""

from __future__ import annotations


class FactGraphError(Exception):
    """Base class for all factgraph errors."""


# --- Request-level ---


class RequestValidationError(FactGraphError):
    """Malformed pipeline request (bad length, bad id, unknown document)."""


class AuthenticationError(FactGraphError):
    """Caller failed pre-flight authorization."""


class RateLimitExceededError(FactGraphError):
    """Caller exceeded its request quota."""

    def __init__(self, identity: str, retry_after_s: float):
        self.identity = identity
        self.retry_after_s = retry_after_s
        super().__init__(
            f"Rate limit exceeded for '{identity}', retry in {retry_after_s:.0f}s"
        )


class PipelineBusyError(FactGraphError):
    """Another pipeline run is in flight; this request fails fast."""


# --- Storage ---


class RunConflictError(FactGraphError):
    """Store rejected a second run in 'running' status."""


class RunStateError(FactGraphError):
    """Attempt to mutate a run that is already terminal, or unknown."""


# --- Stages ---


class StageError(FactGraphError):
    """A stage call failed after classification (and retries, if any)."""

    def __init__(
        self,
        stage: str,
        message: str,
        error_type: str = "unknown",
        status_code: int | None = None,
        attempts: int = 1,
    ):
        self.stage = stage
        self.error_type = error_type
        self.status_code = status_code
        self.attempts = attempts
        super().__init__(message)


class StageRetryExhausted(StageError):
    """Network-level failures exhausted all retries for a stage call."""

    def __init__(self, stage: str, attempts: int, last_error: Exception):
        self.last_error = last_error
        super().__init__(
            stage,
            f"Stage '{stage}' failed after {attempts} attempts (network_error): {last_error}",
            error_type="network_error",
            attempts=attempts,
        )


class PolicyDecisionError(StageError):
    """Policy response carried no usable decision."""

    def __init__(self, message: str):
        super().__init__("policy", message, error_type="malformed_decision")


# --- Top level ---


class PipelineFatalError(FactGraphError):
    """Uncaught failure; the run was marked failed on a best-effort basis."""

    def __init__(self, message: str, run_id: str | None = None):
        self.run_id = run_id
        super().__init__(message)
