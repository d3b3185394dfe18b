"""
Base client for all external literature source clients.

Provides: rate limiting, retry with exponential backoff (honouring
Retry-After), per-request timeouts and structured logging.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Literal

import aiohttp
from pydantic import BaseModel

from evidence_scout.constants import DEFAULT_MAX_RETRIES, DEFAULT_TIMEOUT

logger = logging.getLogger("evidence_scout.data_sources")


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


class RetryConfig(BaseModel):
    """Retry behaviour for failed requests."""

    max_retries: int = DEFAULT_MAX_RETRIES
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    backoff_factor: float = 2.0
    retryable_status_codes: set[int] = {429, 500, 502, 503, 504}


class RateLimitConfig(BaseModel):
    """Token-bucket rate limiter settings.

    NCBI allows 3 requests/second without an API key and 10 with one.
    """

    requests_per_second: float = 3.0
    burst: int = 3


class ClientConfig(BaseModel):
    """Top-level config aggregating retry and rate limit."""

    retry: RetryConfig = RetryConfig()
    rate_limit: RateLimitConfig = RateLimitConfig()
    timeout_seconds: float = DEFAULT_TIMEOUT


# ---------------------------------------------------------------------------
# Rate limiter (async token bucket)
# ---------------------------------------------------------------------------


class TokenBucketRateLimiter:
    """
    Async token-bucket rate limiter.

    Allows `burst` requests immediately, then refills at
    `requests_per_second`.  Callers await `acquire()` before
    making a request; it sleeps only when the bucket is empty.
    """

    def __init__(self, config: RateLimitConfig):
        self.rate = config.requests_per_second
        self.max_tokens = config.burst
        self.tokens = float(config.burst)
        self.last_refill = time.monotonic()
        self._lock = asyncio.Lock()

    async def acquire(self) -> None:
        async with self._lock:
            now = time.monotonic()
            elapsed = now - self.last_refill
            self.tokens = min(self.max_tokens, self.tokens + elapsed * self.rate)
            self.last_refill = now

            if self.tokens < 1.0:
                wait = (1.0 - self.tokens) / self.rate
                logger.debug("Rate limiter: sleeping %.2fs", wait)
                await asyncio.sleep(wait)
                self.tokens = 0.0
                self.last_refill = time.monotonic()
            else:
                self.tokens -= 1.0


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class DataSourceError(Exception):
    """Base exception for data source failures."""

    def __init__(self, source: str, message: str, status_code: int | None = None):
        self.source = source
        self.status_code = status_code
        super().__init__(f"[{source}] {message}")


class RateLimitError(DataSourceError):
    """Raised when rate limit is exceeded and retries are exhausted."""

    pass


# ---------------------------------------------------------------------------
# Base client
# ---------------------------------------------------------------------------

ResponseKind = Literal["json", "text", "status"]


class BaseClient(ABC):
    """
    Abstract base for the PubMed, iCite and remote batch-analysis clients.

    Subclasses implement `_source_name` and their own typed methods that
    call `_rest_get()`, `_rest_get_xml()`, `_rest_post()` or `_head()`.
    """

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        max_retries: int | None = None,
        timeout: float | None = None,
    ):
        self.config = config or ClientConfig()
        if max_retries is not None or timeout is not None:
            self.config = self.config.model_copy(deep=True)
            if max_retries is not None:
                self.config.retry.max_retries = max_retries
            if timeout is not None:
                self.config.timeout_seconds = timeout
        self.rate_limiter = TokenBucketRateLimiter(self.config.rate_limit)
        self._session: aiohttp.ClientSession | None = None

    @property
    @abstractmethod
    def _source_name(self) -> str:
        """Identifier for this data source, e.g. 'pubmed'."""
        ...

    # -- Session management --------------------------------------------------

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            timeout = aiohttp.ClientTimeout(total=self.config.timeout_seconds)
            self._session = aiohttp.ClientSession(timeout=timeout)
        return self._session

    async def close(self) -> None:
        if self._session and not self._session.closed:
            await self._session.close()

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        await self.close()

    # -- Core request with retry + rate limiting -----------------------------

    def _backoff(self, attempt: int) -> float:
        retry = self.config.retry
        return min(retry.base_delay * (retry.backoff_factor**attempt), retry.max_delay)

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
        response_kind: ResponseKind = "json",
        operation: str = "unknown",
    ) -> Any:
        """
        Make an HTTP request with rate limiting and retry.

        Parameters
        ----------
        method : str
            HTTP method: "GET", "POST" or "HEAD".
        url : str
            Full URL.
        params : dict, optional
            Query string parameters.
        json_body : Any, optional
            JSON body (for POST).
        headers : dict, optional
            Additional HTTP headers.
        response_kind : str
            "json" decodes the body, "text" returns it raw and "status"
            returns the status code without treating 4xx as an error.
        operation : str
            Logging label, e.g. "esearch".

        Raises
        ------
        DataSourceError
            Non-retryable HTTP status, or retries exhausted.
        RateLimitError
            Retries exhausted while upstream kept answering 429.
        """
        source = self._source_name
        retry = self.config.retry
        last_error: DataSourceError | None = None
        start = time.monotonic()

        for attempt in range(retry.max_retries + 1):
            try:
                await self.rate_limiter.acquire()
                session = await self._get_session()

                logger.info(
                    "Request [%s.%s] attempt=%d url=%s",
                    source,
                    operation,
                    attempt + 1,
                    url,
                )

                verb = method.upper()
                if verb == "GET":
                    resp = await session.get(url, params=params, headers=headers)
                elif verb == "HEAD":
                    resp = await session.head(url, params=params, headers=headers)
                else:
                    resp = await session.post(
                        url, json=json_body, params=params, headers=headers
                    )

                # --- Handle HTTP errors ---
                if resp.status in retry.retryable_status_codes:
                    body = await resp.text() if verb != "HEAD" else ""
                    logger.warning(
                        "Retryable %d from %s.%s: %s",
                        resp.status,
                        source,
                        operation,
                        body[:200],
                    )
                    error_cls = RateLimitError if resp.status == 429 else DataSourceError
                    last_error = error_cls(
                        source,
                        f"HTTP {resp.status}: {body[:200]}",
                        status_code=resp.status,
                    )
                    if attempt >= retry.max_retries:
                        break
                    delay = self._backoff(attempt)
                    if resp.status == 429:
                        # Respect Retry-After header if present
                        retry_after = resp.headers.get("Retry-After")
                        if retry_after:
                            try:
                                delay = float(retry_after)
                            except ValueError:
                                pass
                    await asyncio.sleep(delay)
                    continue

                if response_kind == "status":
                    return resp.status

                if resp.status >= 400:
                    body = await resp.text()
                    raise DataSourceError(
                        source,
                        f"HTTP {resp.status}: {body[:500]}",
                        status_code=resp.status,
                    )

                # --- Success ---
                if response_kind == "text":
                    data = await resp.text()
                else:
                    try:
                        data = await resp.json(content_type=None)
                    except ValueError as e:
                        # not retried: a 200 with a non-JSON body is an upstream fault
                        raise DataSourceError(
                            source,
                            f"Malformed response: {e}",
                            status_code=resp.status,
                        ) from e

                logger.info(
                    "Success [%s.%s] elapsed=%.2fs",
                    source,
                    operation,
                    time.monotonic() - start,
                )
                return data

            except asyncio.TimeoutError:
                elapsed = time.monotonic() - start
                last_error = DataSourceError(source, f"Timeout after {elapsed:.1f}s")
                logger.warning(
                    "Timeout [%s.%s] attempt=%d elapsed=%.1fs",
                    source,
                    operation,
                    attempt + 1,
                    elapsed,
                )

            except aiohttp.ClientError as e:
                last_error = DataSourceError(source, f"Connection error: {e}")
                logger.warning(
                    "Connection error [%s.%s] attempt=%d: %s",
                    source,
                    operation,
                    attempt + 1,
                    e,
                )

            # Exponential backoff before next attempt
            if attempt < retry.max_retries:
                await asyncio.sleep(self._backoff(attempt))

        logger.error(
            "All retries exhausted [%s.%s] after %.1fs: %s",
            source,
            operation,
            time.monotonic() - start,
            last_error,
        )
        raise last_error or DataSourceError(source, "Request failed")

    # -- Convenience methods for subclasses ----------------------------------

    async def _rest_get(
        self, url: str, params: dict[str, Any], *, operation: str = "get"
    ) -> Any:
        """GET returning decoded JSON."""
        return await self._request("GET", url, params=params, operation=operation)

    async def _rest_get_xml(
        self, url: str, params: dict[str, Any], *, operation: str = "get_xml"
    ) -> str:
        """GET returning the raw body (EFetch XML)."""
        return await self._request(
            "GET", url, params=params, response_kind="text", operation=operation
        )

    async def _rest_post(
        self, url: str, json_body: Any, *, operation: str = "post"
    ) -> Any:
        """POST a JSON body and return decoded JSON."""
        return await self._request(
            "POST",
            url,
            json_body=json_body,
            headers={"Content-Type": "application/json"},
            operation=operation,
        )

    async def _head(self, url: str, *, operation: str = "head") -> int:
        """HEAD returning the status code; 4xx is not an error here."""
        return await self._request(
            "HEAD", url, response_kind="status", operation=operation
        )
