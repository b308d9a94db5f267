"""
Per-category page fetching.

One page of one category is fetched by walking the registry's endpoint
candidates and, per endpoint, the known pagination parameter shapes. The first
attempt that answers 2xx with a recognizable list wins; a category for which
nothing works contributes an empty, failed page instead of an exception.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, TypeVar

import httpx

from app.core.logging import get_logger
from app.models.feed_items import FeedItem
from services.feed_api_client import FeedApiClient
from services.feed_normalizer import get_path, normalize_item
from services.feed_registry import DEFAULT_REGISTRY, CategoryRegistry

logger = get_logger().bind(module="feed_source_fetcher")

T = TypeVar("T")

LIST_ENVELOPE_PATHS: Tuple[str, ...] = (
    "content",
    "items",
    "list",
    "results",
    "page.content",
    "data.items",
    "data.content",
)


class UnrecognizedPayload(ValueError):
    """2xx response without any list we know how to read."""


class AllAttemptsFailed(Exception):
    def __init__(self, attempts: int, last_error: Optional[BaseException]):
        super().__init__(f"all {attempts} attempts failed: {last_error!r}")
        self.attempts = attempts
        self.last_error = last_error


@dataclass
class SourcePage:
    category: str
    items: List[FeedItem] = field(default_factory=list)
    ok: bool = True
    endpoint: Optional[str] = None


def extract_list_payload(data: Any) -> Optional[List[Any]]:
    """
    Pull the record list out of any envelope the backends use.
    Returns the first non-empty list, [] when only empty lists were found and
    None when the payload has no list at all.
    """
    if isinstance(data, list):
        return data
    found: Optional[List[Any]] = None
    for path in LIST_ENVELOPE_PATHS:
        value = get_path(data, path)
        if isinstance(value, list):
            if value:
                return value
            found = value
    return found


def build_param_variants(page: int, size: int, has_photos: bool = False) -> List[Dict[str, Any]]:
    variants: List[Dict[str, Any]] = [
        {"page": page, "size": size},
        {"pageNumber": page, "pageSize": size},
    ]
    if has_photos:
        for params in variants:
            params["hasPhotos"] = "true"
    return variants


async def first_success(
    strategies: Sequence[Callable[[], Awaitable[T]]],
    *,
    recoverable: Tuple[type, ...] = (httpx.HTTPError, ValueError),
    on_failure: Optional[Callable[[int, BaseException], None]] = None,
) -> T:
    """Run strategies in order and return the first result that does not raise."""
    last_error: Optional[BaseException] = None
    for index, strategy in enumerate(strategies):
        try:
            return await strategy()
        except recoverable as exc:
            last_error = exc
            if on_failure is not None:
                on_failure(index, exc)
    raise AllAttemptsFailed(len(strategies), last_error)


class SourcePageFetcher:
    def __init__(
        self,
        client: FeedApiClient,
        *,
        registry: CategoryRegistry = DEFAULT_REGISTRY,
        api_base: Optional[str] = None,
    ) -> None:
        self.client = client
        self.registry = registry
        self.api_base = api_base if api_base is not None else client.base_url

    def plan(self, category: str, page: int, size: int, has_photos: Optional[bool] = None) -> List[Tuple[str, Dict[str, Any]]]:
        source = self.registry.get(category)
        if source is None:
            return []
        photo_filter = bool(has_photos) and source.supports_photo_filter
        return [
            (endpoint, params)
            for endpoint in source.endpoints
            for params in build_param_variants(page, size, photo_filter)
        ]

    async def _attempt(self, endpoint: str, params: Dict[str, Any]) -> Tuple[str, List[Any]]:
        data = await self.client.get_json(endpoint, params=params)
        rows = extract_list_payload(data)
        if rows is None:
            raise UnrecognizedPayload(f"no list payload from {endpoint}")
        return endpoint, rows

    async def fetch(
        self,
        category: str,
        page: int,
        size: int,
        *,
        has_photos: Optional[bool] = None,
    ) -> SourcePage:
        plan = self.plan(category, page, size, has_photos)
        if not plan:
            logger.warning("feed_source_unknown_category", category=category)
            return SourcePage(category=category, ok=False)

        def _log_attempt(index: int, exc: BaseException) -> None:
            endpoint, params = plan[index]
            logger.debug(
                "feed_source_attempt_failed",
                category=category,
                endpoint=endpoint,
                params=params,
                error=str(exc),
            )

        try:
            endpoint, rows = await first_success(
                [lambda e=e, p=p: self._attempt(e, p) for e, p in plan],
                on_failure=_log_attempt,
            )
        except AllAttemptsFailed as exc:
            logger.warning(
                "feed_source_failed",
                category=category,
                page=page,
                attempts=exc.attempts,
                error=str(exc.last_error),
            )
            return SourcePage(category=category, ok=False)

        items = [
            normalize_item(row, category, api_base=self.api_base, registry=self.registry)
            for row in rows
        ]
        logger.debug("feed_source_page", category=category, page=page, endpoint=endpoint, items=len(items))
        return SourcePage(category=category, items=items, ok=True, endpoint=endpoint)
