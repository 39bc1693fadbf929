"""
http_client.py: outbound HTTP adapter shared by every provider integration.

- ProviderClient.request_json(): one call, status check, JSON parse, shape check
- RateLimitInfo: defensive parse of x-ratelimit-* / retry-after headers
- RetryPolicy: attempt budget + exponential backoff, independent of what is retried
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

import httpx

from errors import (
    ProviderFormatError,
    ProviderHttpError,
    ProviderNetworkError,
    ProviderTimeoutError,
    QuotaError,
    is_quota_failure,
)

logger = logging.getLogger("seo-analyzer.http")

Sleep = Callable[[float], Awaitable[None]]


# ---------------------------------------------------------------------------
# Rate-limit headers
# ---------------------------------------------------------------------------

def _header_int(headers, name: str) -> int:
    raw = headers.get(name) if headers is not None else None
    if raw is None:
        return 0
    try:
        value = int(float(str(raw).strip()))
    except (ValueError, OverflowError):
        return 0
    return max(value, 0)


@dataclass(frozen=True)
class RateLimitInfo:
    remaining: int = 0
    remaining_tokens: int = 0
    reset: int = 0
    retry_after: int = 0

    @classmethod
    def from_headers(cls, headers) -> "RateLimitInfo":
        """Absent or non-numeric headers read as 0."""
        return cls(
            remaining=_header_int(headers, "x-ratelimit-remaining"),
            remaining_tokens=_header_int(headers, "x-ratelimit-remaining-tokens"),
            reset=_header_int(headers, "x-ratelimit-reset"),
            retry_after=_header_int(headers, "retry-after"),
        )

    @property
    def hint_seconds(self) -> int:
        return self.retry_after or self.reset


# ---------------------------------------------------------------------------
# Retry policy
# ---------------------------------------------------------------------------

@dataclass
class RetryPolicy:
    max_attempts: int = 5
    base_delay: float = 1.0
    max_delay: float = 30.0
    sleep: Sleep = asyncio.sleep

    def delay_for(self, attempt: int, rate_limit: Optional[RateLimitInfo] = None) -> float:
        """min(base * 2^(attempt-1), max). The provider's hint replaces the base."""
        base = self.base_delay
        if rate_limit is not None and rate_limit.hint_seconds > 0:
            base = float(rate_limit.hint_seconds)
        return min(base * (2 ** (attempt - 1)), self.max_delay)

    async def run(
        self,
        operation: Callable[[], Awaitable[Any]],
        *,
        retryable: Callable[[BaseException], bool],
        label: str = "call",
    ) -> Any:
        """
        Await operation() until it succeeds or the attempt budget is spent.
        Errors for which retryable(exc) is False propagate immediately.
        """
        rate_limit: Optional[RateLimitInfo] = None
        for attempt in range(1, self.max_attempts + 1):
            try:
                return await operation()
            except Exception as e:
                if not retryable(e) or attempt >= self.max_attempts:
                    if attempt >= self.max_attempts:
                        logger.error(f"{label} failed after {attempt} attempts: {e}")
                    raise
                rate_limit = getattr(e, "rate_limit", None) or rate_limit
                delay = self.delay_for(attempt, rate_limit)
                logger.warning(
                    f"{label} attempt {attempt}/{self.max_attempts} failed "
                    f"(retrying in {delay:g}s): {e}"
                )
                await self.sleep(delay)


# ---------------------------------------------------------------------------
# Provider client
# ---------------------------------------------------------------------------

class ProviderClient:
    """Thin wrapper around one shared httpx.AsyncClient."""

    def __init__(self, http: httpx.AsyncClient, timeout: float = 30.0):
        self.http = http
        self.timeout = timeout

    async def request_json(
        self,
        provider: str,
        method: str,
        url: str,
        *,
        params: Optional[dict] = None,
        headers: Optional[dict] = None,
        json: Any = None,
        expect: type | tuple = dict,
        required: tuple[str, ...] = (),
    ) -> Any:
        """
        Send one request and return the parsed JSON body.

        Raises ProviderHttpError / QuotaError on non-2xx (body text attached),
        ProviderFormatError when the body is not JSON, is not of type `expect`,
        or lacks any of the `required` keys.
        """
        try:
            resp = await self.http.request(
                method,
                url,
                params=params,
                headers=headers,
                json=json,
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            logger.warning(f"{provider} timed out: {e!r}")
            raise ProviderTimeoutError(provider, f"after {self.timeout:g}s") from e
        except httpx.TransportError as e:
            logger.warning(f"{provider} transport error: {e!r}")
            raise ProviderNetworkError(provider, str(e)) from e

        rate_limit = RateLimitInfo.from_headers(resp.headers)

        if not resp.is_success:
            body = resp.text
            logger.warning(f"{provider} returned {resp.status_code}: {body[:200]}")
            if is_quota_failure(resp.status_code, body):
                raise QuotaError(provider, resp.status_code, body, rate_limit)
            raise ProviderHttpError(provider, resp.status_code, body, rate_limit)

        try:
            data = resp.json()
        except ValueError as e:
            raise ProviderFormatError(provider, f"invalid JSON body: {resp.text[:200]}") from e

        if not isinstance(data, expect):
            wanted = " or ".join(t.__name__ for t in expect) if isinstance(expect, tuple) else expect.__name__
            raise ProviderFormatError(provider, f"expected {wanted}, got {type(data).__name__}")
        missing = [key for key in required if key not in data]
        if missing:
            raise ProviderFormatError(provider, f"missing fields: {', '.join(missing)}")
        return data
