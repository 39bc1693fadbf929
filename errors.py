"""
errors.py: exception hierarchy shared by the providers, aggregators and handlers.

Handlers map these to HTTP status codes:
  InvalidRequestError       -> 400
  retryable failures        -> 503 + Retry-After
  everything else           -> 500
CacheError never reaches a handler; the cache gateway swallows it.
"""

from typing import Optional

RETRYABLE_MARKERS = ("rate limit", "timeout", "timed out", "network", "temporar")


class AnalyzerError(Exception):
    """Base class for every error raised by this service."""


class InvalidRequestError(AnalyzerError):
    """Bad or missing input."""


# ---------------------------------------------------------------------------
# Provider errors
# ---------------------------------------------------------------------------

class ProviderError(AnalyzerError):
    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderHttpError(ProviderError):
    """Non-2xx response. `body` holds the response text for diagnostics."""

    def __init__(self, provider: str, status: int, body: str, rate_limit=None):
        if status == 429:
            summary = f"rate limit exceeded ({status})"
        elif status >= 500:
            summary = f"temporary upstream failure ({status})"
        else:
            summary = f"HTTP {status}"
        super().__init__(provider, f"{summary}: {body[:300]}")
        self.status = status
        self.body = body
        self.rate_limit = rate_limit


class QuotaError(ProviderHttpError):
    """Credit or quota exhausted. Triggers the fallback LLM provider."""


class ProviderFormatError(ProviderError):
    """2xx response whose body is not JSON or lacks the expected fields."""


class ProviderTimeoutError(ProviderError):
    def __init__(self, provider: str, detail: str = ""):
        super().__init__(provider, f"request timed out {detail}".strip())


class ProviderNetworkError(ProviderError):
    def __init__(self, provider: str, detail: str = ""):
        super().__init__(provider, f"network error {detail}".strip())


class ProviderUnavailableError(ProviderError):
    """No credentials configured for a provider the request cannot do without."""


# ---------------------------------------------------------------------------
# Orchestration errors
# ---------------------------------------------------------------------------

class ContentValidationError(AnalyzerError):
    """LLM output failed the structural checks."""

    def __init__(self, stats: dict):
        super().__init__(
            "analysis response incomplete: "
            f"length={stats.get('length')} sections={stats.get('total_sections')} "
            f"bullets={stats.get('bullet_points')}"
        )
        self.stats = stats


class RequestTimeoutError(AnalyzerError):
    def __init__(self, seconds: float):
        super().__init__(f"Request timed out after {seconds:g}s")
        self.seconds = seconds


class CacheError(AnalyzerError):
    """Backing-store failure. Always swallowed by CacheGateway."""


def is_quota_failure(status: Optional[int], body: str) -> bool:
    lowered = (body or "").lower()
    return status == 402 or "credit" in lowered or "quota" in lowered


def is_retryable(exc: BaseException) -> bool:
    """Whether the client should retry later (503) rather than give up (500)."""
    if isinstance(exc, (RequestTimeoutError, ProviderTimeoutError, ProviderNetworkError)):
        return True
    message = str(exc).lower()
    return any(marker in message for marker in RETRYABLE_MARKERS)
