"""
Async Graph API client with pagination, throttling and retry.
Read-only: only GET requests are ever issued.
"""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncGenerator, Optional

import httpx

from ..config import (
    GRAPH_BASE_URL,
    GRAPH_API_VERSION,
    GRAPH_BETA_VERSION,
    MAX_RETRIES,
    INITIAL_BACKOFF_SECONDS,
    MAX_BACKOFF_SECONDS,
    BACKOFF_MULTIPLIER,
    DEFAULT_PAGE_SIZE,
    MAX_PAGES_PER_ENDPOINT,
    MAX_CONCURRENT_REQUESTS,
)

logger = logging.getLogger("m365_compromise_engine.graph")


class GraphAPIError(Exception):
    """Raised when Graph API returns a non-recoverable error."""
    def __init__(self, status_code: int, message: str, url: str):
        self.status_code = status_code
        self.url = url
        super().__init__(f"Graph API Error {status_code} for {url}: {message}")


class GraphClient:
    """
    Async Microsoft Graph API client.
    Features:
      - Automatic pagination with @odata.nextLink
      - Exponential backoff on 429/503/504
      - Concurrent request semaphore
      - v1.0 and beta endpoint support
    """

    def __init__(
        self,
        access_token: str,
        page_size: int = DEFAULT_PAGE_SIZE,
        max_pages: int = MAX_PAGES_PER_ENDPOINT,
        initial_backoff: float = INITIAL_BACKOFF_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.access_token = access_token
        self.page_size = page_size
        self.max_pages = max_pages
        self.initial_backoff = initial_backoff
        self._transport = transport
        self._semaphore = asyncio.Semaphore(MAX_CONCURRENT_REQUESTS)
        self._request_count = 0
        self._throttle_count = 0
        self._client: Optional[httpx.AsyncClient] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(60.0, connect=30.0),
            limits=httpx.Limits(
                max_connections=MAX_CONCURRENT_REQUESTS * 2,
                max_keepalive_connections=MAX_CONCURRENT_REQUESTS,
            ),
            headers={
                "Authorization": f"Bearer {self.access_token}",
                "Accept": "application/json",
                "ConsistencyLevel": "eventual",
            },
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    def _build_url(self, endpoint: str, beta: bool = False) -> str:
        if endpoint.startswith("http"):
            return endpoint
        version = GRAPH_BETA_VERSION if beta else GRAPH_API_VERSION
        return f"{GRAPH_BASE_URL}/{version}/{endpoint.lstrip('/')}"

    async def get(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
    ) -> dict:
        """Execute a single GET request with retry/throttle handling."""
        url = self._build_url(endpoint, beta=beta)
        async with self._semaphore:
            return await self._get_with_retry(url, params=params)

    async def get_all_pages(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
        skip_top: bool = False,
    ) -> list[dict]:
        """Fetch all pages of a paginated endpoint into a list."""
        items = []
        async for item in self.get_all_pages_stream(endpoint, params, beta, skip_top=skip_top):
            items.append(item)
        return items

    async def get_all_pages_stream(
        self,
        endpoint: str,
        params: Optional[dict] = None,
        beta: bool = False,
        skip_top: bool = False,
    ) -> AsyncGenerator[dict, None]:
        """
        Stream all pages of a paginated endpoint as an async generator.
        Set skip_top=True for endpoints that don't support $top.
        """
        params = dict(params or {})
        if not skip_top and "$top" not in params:
            params["$top"] = str(self.page_size)

        url = self._build_url(endpoint, beta=beta)
        pages = 0

        while url and pages < self.max_pages:
            async with self._semaphore:
                data = await self._get_with_retry(url, params=params)

            if data.get("_forbidden"):
                raise GraphAPIError(
                    403,
                    data.get("_error_message", "Forbidden — missing API permission"),
                    url,
                )

            for item in data.get("value", []):
                yield item

            url = data.get("@odata.nextLink")
            params = None  # nextLink carries the query
            pages += 1

        if url and pages >= self.max_pages:
            logger.warning(f"Pagination cap reached ({self.max_pages} pages) for endpoint: {endpoint}")

    async def _get_with_retry(self, url: str, params: Optional[dict] = None) -> dict:
        """Execute a GET with exponential backoff on throttling."""
        if not self._client:
            raise RuntimeError("GraphClient not initialized. Use 'async with' context.")

        backoff = self.initial_backoff

        for attempt in range(MAX_RETRIES + 1):
            try:
                response = await self._client.get(url, params=params)
                self._request_count += 1

                if response.status_code == 200:
                    if not response.content or not response.content.strip():
                        return {"value": []}
                    try:
                        return response.json()
                    except ValueError:
                        logger.debug(f"200 response with non-JSON body from {url}")
                        return {"value": []}

                if response.status_code == 204:
                    return {}

                if response.status_code == 404:
                    logger.debug(f"404 Not Found: {url}")
                    return {"value": [], "_not_found": True}

                if response.status_code in (429, 503, 504):
                    self._throttle_count += 1
                    retry_after = float(response.headers.get("Retry-After", backoff))
                    wait_time = max(retry_after, backoff)
                    logger.warning(
                        f"Throttled ({response.status_code}) on {url}. "
                        f"Retry {attempt + 1}/{MAX_RETRIES} in {wait_time:.1f}s"
                    )
                    await asyncio.sleep(wait_time)
                    backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)
                    continue

                error_msg = _error_message(response)
                if response.status_code == 403:
                    logger.warning(f"403 Forbidden: {url} — {error_msg}")
                    return {"value": [], "_forbidden": True, "_error_message": error_msg}

                raise GraphAPIError(response.status_code, error_msg, url)

            except (httpx.TimeoutException, httpx.ConnectError) as e:
                logger.warning(f"{type(e).__name__} on {url}, attempt {attempt + 1}/{MAX_RETRIES}")
                if attempt == MAX_RETRIES:
                    raise
                await asyncio.sleep(backoff)
                backoff = min(backoff * BACKOFF_MULTIPLIER, MAX_BACKOFF_SECONDS)

        raise GraphAPIError(429, "Retries exhausted", url)

    def get_stats(self) -> dict:
        return {
            "total_requests": self._request_count,
            "throttle_events": self._throttle_count,
        }


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json() if response.content else {}
    except ValueError:
        return response.text[:200]
    return body.get("error", {}).get("message", response.text[:200])
