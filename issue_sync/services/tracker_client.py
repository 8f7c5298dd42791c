"""
Issue tracker API client with error classification and pagination support.

This module provides an async client for the tracker's REST search API.
Every failure is translated into one of a small set of exception classes
so that the retry policy and the sync orchestrator can decide whether to
retry, skip the query, or abort the run.
"""

import asyncio
import logging
import math
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Any, Dict, List, Optional

import httpx

logger = logging.getLogger(__name__)


class TrackerAPIError(Exception):
    """Base class for issue tracker failures."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class TrackerAuthenticationError(TrackerAPIError):
    """Raised on 401/403 or missing credentials. Never retried; aborts the run."""
    pass


class TrackerRateLimitError(TrackerAPIError):
    """Raised on 429. Carries the server-requested wait in seconds."""

    def __init__(self, message: str, retry_after: float, status_code: int = 429):
        super().__init__(message, status_code)
        self.retry_after = retry_after


class TrackerTransientError(TrackerAPIError):
    """Raised on 5xx responses, timeouts and connection failures."""
    pass


class TrackerClientError(TrackerAPIError):
    """Raised on any other 4xx response or an unreadable response body."""
    pass


def parse_retry_after(
    value: Optional[str],
    default: float,
    maximum: Optional[float] = None,
) -> float:
    """
    Parse a Retry-After header given in seconds.

    Missing, negative or non-finite values fall back to ``default``; waits
    longer than ``maximum`` are capped.
    """
    if not value:
        return default
    try:
        seconds = float(value.strip())
    except ValueError:
        return default
    if not math.isfinite(seconds) or seconds < 0:
        return default
    if maximum is not None:
        return min(seconds, maximum)
    return seconds


class IssueTrackerClient:
    """Async client for the issue tracker REST API."""

    SEARCH_EXPAND = "renderedFields,names,schema,operations,editmeta,changelog"
    SEARCH_FIELDS = "*all,-comment,-attachment,-worklog"

    def __init__(
        self,
        base_url: str,
        api_token: str,
        api_version: str = "2",
        page_size: int = 50,
        connect_timeout: float = 30.0,
        read_timeout: float = 60.0,
        max_connections: int = 20,
        max_connections_per_host: int = 10,
        rate_limit_default_wait: float = 60.0,
        rate_limit_max_wait: float = 600.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Initialize the tracker client.

        Args:
            base_url: Tracker base URL (e.g., 'https://tracker.example.com')
            api_token: Bearer token for API authentication
            api_version: REST API version segment
            page_size: maxResults requested per search page
            connect_timeout: Connect timeout in seconds
            read_timeout: Read timeout in seconds
            max_connections: Pool size across all hosts
            max_connections_per_host: Concurrent request bound for the tracker host
            rate_limit_default_wait: Wait used when a 429 has no usable Retry-After
            rate_limit_max_wait: Upper bound on any server-requested wait
            transport: Optional httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip("/")
        self.api_version = api_version
        self.api_url = f"{self.base_url}/rest/api/{api_version}"
        self.page_size = page_size
        self.rate_limit_default_wait = rate_limit_default_wait
        self.rate_limit_max_wait = rate_limit_max_wait
        self._api_token = api_token

        self._timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=read_timeout,
            pool=connect_timeout,
        )
        self._limits = httpx.Limits(
            max_connections=max_connections,
            max_keepalive_connections=max_connections_per_host,
        )
        # The client only talks to one host, so this bounds per-host concurrency
        self._host_slots = asyncio.Semaphore(max_connections_per_host)
        self._transport = transport

        # HTTP client
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def is_configured(self) -> bool:
        return bool(self._api_token and self.base_url)

    async def __aenter__(self):
        """Async context manager entry."""
        await self._ensure_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_client(self):
        """Ensure HTTP client is initialized."""
        if self._client is None:
            # Reject every cookie so no session state survives between calls
            no_cookies = CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))
            self._client = httpx.AsyncClient(
                headers={
                    "Authorization": f"Bearer {self._api_token}",
                    "Content-Type": "application/json",
                    "Accept": "application/json"
                },
                cookies=no_cookies,
                timeout=self._timeout,
                limits=self._limits,
                transport=self._transport,
            )

    async def close(self):
        """Close HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        **kwargs
    ) -> Dict[str, Any]:
        """
        Make one authenticated request and classify any failure.

        No retries happen here; the caller wraps calls in a RetryPolicy.

        Args:
            method: HTTP method (GET, POST, etc.)
            endpoint: API path below the versioned root (e.g., '/search')
            **kwargs: Additional arguments to pass to httpx request

        Returns:
            JSON response as dictionary

        Raises:
            TrackerAuthenticationError: On 401/403 or missing token
            TrackerRateLimitError: On 429
            TrackerTransientError: On 5xx, timeouts and connection failures
            TrackerClientError: On other 4xx or an unreadable body
        """
        if not self.is_configured:
            raise TrackerAuthenticationError("Issue tracker API token is not configured")

        await self._ensure_client()
        url = f"{self.api_url}{endpoint}"

        try:
            async with self._host_slots:
                response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            raise TrackerTransientError(f"Timeout calling {endpoint}: {e}") from e
        except httpx.TransportError as e:
            raise TrackerTransientError(f"Connection error calling {endpoint}: {e}") from e

        status_code = response.status_code

        if status_code in (401, 403):
            logger.error(f"Authentication failed on {endpoint} (HTTP {status_code})")
            raise TrackerAuthenticationError(
                f"Authentication failed (HTTP {status_code})",
                status_code=status_code
            )

        if status_code == 429:
            retry_after = parse_retry_after(
                response.headers.get("Retry-After"),
                self.rate_limit_default_wait,
                self.rate_limit_max_wait,
            )
            logger.warning(f"Rate limited on {endpoint}. Retry after {retry_after} seconds")
            raise TrackerRateLimitError(
                f"Rate limit exceeded on {endpoint}",
                retry_after=retry_after
            )

        if 500 <= status_code < 600:
            raise TrackerTransientError(
                f"Server error {status_code} on {endpoint}: {response.text[:200]}",
                status_code=status_code
            )

        if status_code >= 400:
            raise TrackerClientError(
                f"Client error {status_code} on {endpoint}: {response.text[:200]}",
                status_code=status_code
            )

        try:
            return response.json()
        except ValueError as e:
            raise TrackerClientError(
                f"Failed to parse response from {endpoint}: {e}",
                status_code=status_code
            ) from e

    async def search_issues(
        self,
        jql: str,
        start_at: int = 0,
        max_results: Optional[int] = None,
    ) -> Dict[str, Any]:
        """
        Fetch one page of search results.

        Args:
            jql: Query expression
            start_at: Index of the first result
            max_results: Page size (defaults to the configured page size)

        Returns:
            Raw search response with 'issues', 'startAt', 'maxResults', 'total'
        """
        params = {
            "jql": jql,
            "startAt": start_at,
            "maxResults": max_results or self.page_size,
            "expand": self.SEARCH_EXPAND,
            "fields": self.SEARCH_FIELDS,
        }
        return await self._request("GET", "/search", params=params)

    async def execute(self, query_expression: str) -> List[Dict[str, Any]]:
        """
        Run a query and collect every matching issue across all pages.

        Args:
            query_expression: Query expression to search with

        Returns:
            List of raw issue objects
        """
        issues: List[Dict[str, Any]] = []
        start_at = 0

        while True:
            page = await self.search_issues(query_expression, start_at=start_at)
            batch = page.get("issues") or []
            issues.extend(batch)

            total = page.get("total", 0)
            start_at += len(batch)

            logger.debug(f"Fetched {len(issues)}/{total} issues for query")

            if not batch or start_at >= total:
                break

        logger.info(f"Query returned {len(issues)} issues")
        return issues

    async def get_issue(self, issue_key: str) -> Dict[str, Any]:
        """Fetch a single issue by key."""
        return await self._request("GET", f"/issue/{issue_key}")

    async def test_connection(self) -> bool:
        """
        Check that the tracker is reachable with the configured credentials.

        Returns:
            True if the server info endpoint answered, False otherwise
        """
        try:
            info = await self._request("GET", "/serverInfo")
        except TrackerAPIError as e:
            logger.warning(f"Issue tracker connection test failed: {e}")
            return False

        logger.info(f"Connected to issue tracker version {info.get('version', 'unknown')}")
        return True


def get_tracker_client() -> IssueTrackerClient:
    """
    Factory function to create an issue tracker client from settings.

    Returns:
        Configured IssueTrackerClient instance
    """
    from issue_sync.config import settings

    return IssueTrackerClient(
        base_url=settings.TRACKER_BASE_URL,
        api_token=settings.TRACKER_API_TOKEN,
        api_version=settings.TRACKER_API_VERSION,
        page_size=settings.TRACKER_PAGE_SIZE,
        connect_timeout=settings.TRACKER_CONNECT_TIMEOUT,
        read_timeout=settings.TRACKER_READ_TIMEOUT,
        max_connections=settings.TRACKER_POOL_MAX_CONNECTIONS,
        max_connections_per_host=settings.TRACKER_POOL_MAX_PER_HOST,
        rate_limit_default_wait=settings.RATE_LIMIT_DEFAULT_WAIT,
        rate_limit_max_wait=settings.RATE_LIMIT_MAX_WAIT,
    )
