"""
Idea Engine - AI Router Exceptions

Provider-scoped errors are raised by the adapters; router-scoped errors are
raised by AIRouter itself. Callers only ever see subclasses of
AIRouterException.
"""

from dataclasses import dataclass
from typing import Optional, List


class AIRouterException(Exception):
    """Base class for every error the router surfaces."""
    pass


# =============================================================================
# PROVIDER-SCOPED
# =============================================================================

class ProviderException(AIRouterException):
    """An error reported by a single provider backend."""

    kind = "provider_error"
    retryable = True

    def __init__(self, provider: str, message: str, status_code: Optional[int] = None):
        super().__init__(f"{provider}: {message}")
        self.provider = provider
        self.status_code = status_code
        self.detail = message


class RateLimitedException(ProviderException):
    """429 from the backend. Transient."""

    kind = "rate_limited"
    retryable = True

    def __init__(
        self,
        provider: str,
        message: str,
        status_code: Optional[int] = 429,
        retry_after: Optional[float] = None,
    ):
        super().__init__(provider, message, status_code)
        self.retry_after = retry_after


class AuthFailedException(ProviderException):
    """401/403. Terminal: a configuration defect, not a capacity problem."""

    kind = "auth_failed"
    retryable = False


class BadRequestException(ProviderException):
    """400-class validation failure. Terminal."""

    kind = "bad_request"
    retryable = False


class ProviderServerException(ProviderException):
    """5xx, timeout or connection failure. Transient."""

    kind = "server_error"
    retryable = True


# =============================================================================
# ROUTER-SCOPED
# =============================================================================

class BudgetExceededException(AIRouterException):
    """Raised when the daily or monthly budget is exhausted."""

    def __init__(self, message: str, utilization: float = 0.0):
        super().__init__(message)
        self.utilization = utilization


class ModelUnavailableException(AIRouterException):
    """No catalog model can take the request (e.g. context too large)."""
    pass


class DeadlineExceededException(AIRouterException):
    """The caller's deadline passed before a provider answered."""
    pass


@dataclass(frozen=True)
class CandidateFailure:
    """Why one candidate in the fallback chain did not produce a response."""
    provider: str
    model: str
    kind: str
    detail: str


class AllProvidersExhaustedException(AIRouterException):
    """Every candidate in the fallback chain failed or was skipped."""

    def __init__(self, failures: List[CandidateFailure]):
        self.failures = list(failures)
        reasons = "; ".join(
            f"{f.provider}/{f.model}: {f.kind} ({f.detail})" for f in self.failures
        )
        super().__init__(f"All providers exhausted: {reasons or 'no candidates'}")

    @property
    def kinds(self) -> List[str]:
        return [f.kind for f in self.failures]

    @property
    def all_rate_limited(self) -> bool:
        return bool(self.failures) and all(k == "rate_limited" for k in self.kinds)

    @property
    def all_server_errors(self) -> bool:
        return bool(self.failures) and all(k == "server_error" for k in self.kinds)
