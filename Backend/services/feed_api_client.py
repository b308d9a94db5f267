from __future__ import annotations

import asyncio
from typing import Any, Mapping, Optional

import httpx

from app.config import Settings, settings as default_settings
from app.core.logging import get_logger

logger = get_logger().bind(module="feed_api_client")


def _is_retryable(exc: Exception) -> bool:
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code >= 500
    return isinstance(exc, httpx.TransportError)


class FeedApiClient:
    """
    Async HTTP client for the marketplace backend.

    Owns one httpx.AsyncClient bound to the API base, bounds concurrency with a
    semaphore and retries transient failures (transport errors, 5xx) with
    exponential backoff. 4xx responses are raised immediately.
    """

    def __init__(
        self,
        *,
        base_url: str,
        user_agent: str = "marketplace-feed/0.1",
        token: Optional[str] = None,
        timeout_s: float = 10.0,
        max_concurrency: int = 6,
        max_retries: int = 0,
        retry_delay_s: float = 0.5,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            base_url: Marketplace API base, also used to absolutize media paths
            user_agent: User-Agent string for HTTP requests
            token: Optional bearer token
            timeout_s: Request timeout in seconds
            max_concurrency: Maximum concurrent requests (semaphore limit)
            max_retries: Retry attempts for transient failures
            retry_delay_s: First backoff delay, doubled per retry (max 5s)
            transport: Optional httpx transport (tests)
        """
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout_s = timeout_s
        self.max_concurrency = max(1, max_concurrency)
        self.max_retries = max(0, max_retries)
        self.retry_delay_s = max(0.0, retry_delay_s)
        self._token = token
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._sem = asyncio.Semaphore(self.max_concurrency)

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings) -> "FeedApiClient":
        return cls(
            base_url=cfg.FEED_API_BASE_URL,
            user_agent=cfg.FEED_USER_AGENT,
            token=cfg.FEED_API_TOKEN,
            timeout_s=cfg.FEED_SOURCE_TIMEOUT_S,
            max_concurrency=cfg.FEED_MAX_CONCURRENCY,
            max_retries=cfg.FEED_SOURCE_MAX_RETRIES,
        )

    async def __aenter__(self) -> "FeedApiClient":
        headers = {"User-Agent": self.user_agent, "Accept": "application/json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout_s,
            headers=headers,
            follow_redirects=True,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(self, path: str, params: Optional[Mapping[str, Any]] = None) -> httpx.Response:
        """
        GET a path relative to the API base.

        Raises:
            httpx.HTTPStatusError: non-2xx response (after retries for 5xx)
            httpx.TransportError: network failure after retries
        """
        if self._client is None:
            raise RuntimeError(f"{self.__class__.__name__} HTTP client not initialized")

        attempt = 0
        delay = self.retry_delay_s
        while True:
            try:
                async with self._sem:
                    response = await self._client.get(path, params=params)
                response.raise_for_status()
                return response
            except httpx.HTTPError as exc:
                attempt += 1
                if attempt > self.max_retries or not _is_retryable(exc):
                    raise
                logger.debug("feed_api_retry", path=path, attempt=attempt, error=str(exc))
                await asyncio.sleep(delay)
                delay = min(delay * 2, 5)

    async def get_json(self, path: str, params: Optional[Mapping[str, Any]] = None) -> Any:
        """GET and decode JSON; a non-JSON body raises ValueError."""
        response = await self.get(path, params=params)
        return response.json()
