"""
Feed orchestration.

fetch_feed first asks the backend's aggregated /feed endpoint (bounded by a
timeout), tops up categories that endpoint left out from the per-type
endpoints, and falls back to per-type aggregation entirely when /feed is down,
slow or erroring server-side. Client errors from /feed (4xx other than 404) are
raised to the caller.
"""

from __future__ import annotations

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set, Tuple

import httpx

from app.config import Settings, settings as default_settings
from app.core.logging import get_logger
from app.core.request_id import with_run_id
from app.models.feed_items import FeedItem, FeedPage, FeedQuery
from services.feed_aggregator import PerTypeAggregator, sort_items
from services.feed_api_client import FeedApiClient
from services.feed_errors import FeedRequestError, FeedUpstreamClientError
from services.feed_normalizer import normalize_item
from services.feed_registry import DEFAULT_REGISTRY, CategoryRegistry
from services.feed_source_fetcher import SourcePageFetcher, UnrecognizedPayload, extract_list_payload

logger = get_logger().bind(module="feed_service")

PRIMARY_PATH = "/feed"
_RESERVED_PARAMS = {"types", "sort", "limit", "cursor", "hasPhotos"}


def _split_types(types: Iterable[str]) -> List[str]:
    out: List[str] = []
    for value in types or []:
        out.extend(part.strip() for part in str(value).split(",") if part.strip())
    return out


def _param_value(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def dedupe_items(items: Iterable[FeedItem]) -> List[FeedItem]:
    """Keep the first item per (type, id); items without an id are always kept."""
    seen: Set[Tuple[str, str]] = set()
    out: List[FeedItem] = []
    for item in items:
        if item.id is not None:
            key = (item.type, item.id)
            if key in seen:
                continue
            seen.add(key)
        out.append(item)
    return out


def _error_detail(response: httpx.Response) -> Any:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or None
    if isinstance(body, dict):
        return body.get("message") or body.get("error") or body.get("detail") or body
    return body


class FeedService:
    def __init__(
        self,
        client: FeedApiClient,
        *,
        registry: CategoryRegistry = DEFAULT_REGISTRY,
        aggregator: Optional[PerTypeAggregator] = None,
        backend_enabled: bool = True,
        primary_timeout_s: float = 4.0,
        default_types: Sequence[str] = (),
        min_page_size: int = 6,
        api_base: Optional[str] = None,
    ) -> None:
        self.client = client
        self.registry = registry
        self.api_base = api_base if api_base is not None else client.base_url
        self.aggregator = aggregator or PerTypeAggregator(
            SourcePageFetcher(client, registry=registry, api_base=self.api_base),
            min_page_size=min_page_size,
        )
        self.backend_enabled = backend_enabled
        self.primary_timeout_s = primary_timeout_s
        self.default_types = [
            key for key in (registry.canonical(t) for t in default_types) if key
        ] or registry.keys()

    @classmethod
    def from_settings(cls, client: FeedApiClient, cfg: Settings = default_settings) -> "FeedService":
        return cls(
            client,
            backend_enabled=cfg.FEED_BACKEND_ENABLED,
            primary_timeout_s=cfg.FEED_PRIMARY_TIMEOUT_S,
            default_types=cfg.FEED_DEFAULT_TYPES,
            min_page_size=cfg.FEED_MIN_PAGE_SIZE,
        )

    # -------- Request shaping ------------------------------------------------

    def resolve_categories(self, types: Iterable[str]) -> List[str]:
        requested = _split_types(types)
        if not requested:
            return list(self.default_types)

        categories: List[str] = []
        unknown: List[str] = []
        for name in requested:
            key = self.registry.canonical(name)
            if key is None:
                unknown.append(name)
            elif key not in categories:
                categories.append(key)

        if unknown:
            logger.warning("feed_unknown_categories", unknown=unknown, known=categories)
        if not categories:
            raise FeedRequestError(f"Unknown feed categories: {', '.join(unknown)}")
        return categories

    def primary_params(self, query: FeedQuery, categories: Sequence[str]) -> Dict[str, str]:
        params = {
            "types": ",".join(categories),
            "sort": query.sort,
            "limit": str(query.limit),
        }
        if query.cursor:
            params["cursor"] = query.cursor
        if query.has_photos is True:
            params["hasPhotos"] = "true"
        for key, value in query.filters.items():
            if key in _RESERVED_PARAMS or value is None or value == "":
                continue
            params[key] = _param_value(value)
        return params

    # -------- Primary --------------------------------------------------------

    async def fetch_primary(self, query: FeedQuery, categories: Sequence[str]) -> Tuple[FeedPage, Set[str]]:
        """
        Call /feed once. Returns the normalized page plus the categories the
        backend says it attempted (empty when it does not say).
        """
        data = await self.client.get_json(PRIMARY_PATH, params=self.primary_params(query, categories))
        rows = extract_list_payload(data)
        if rows is None:
            raise UnrecognizedPayload("no list payload from /feed")

        next_cursor = None
        declared: Set[str] = set()
        if isinstance(data, dict):
            next_cursor = data.get("nextCursor") or data.get("cursor") or None
            if isinstance(data.get("types"), list):
                declared = {key for key in (self.registry.canonical(t) for t in data["types"]) if key}

        items = [normalize_item(row, None, api_base=self.api_base, registry=self.registry) for row in rows]
        page = FeedPage(items=items, next_cursor=str(next_cursor) if next_cursor else None)
        return page, declared

    async def _try_primary(self, query: FeedQuery, categories: Sequence[str]) -> Optional[Tuple[FeedPage, Set[str]]]:
        try:
            return await asyncio.wait_for(
                self.fetch_primary(query, categories),
                timeout=self.primary_timeout_s,
            )
        except asyncio.TimeoutError:
            logger.warning("feed_primary_timeout", timeout_s=self.primary_timeout_s)
        except httpx.HTTPStatusError as exc:
            status = exc.response.status_code
            if status < 500 and status != 404:
                detail = _error_detail(exc.response)
                logger.warning("feed_primary_rejected", status_code=status, detail=str(detail))
                raise FeedUpstreamClientError(status, detail) from exc
            logger.warning("feed_primary_failed", status_code=status)
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning("feed_primary_failed", error=str(exc), error_type=exc.__class__.__name__)
        return None

    # -------- Public ---------------------------------------------------------

    async def fetch_feed(self, query: FeedQuery) -> FeedPage:
        categories = self.resolve_categories(query.types)

        with with_run_id():
            if self.backend_enabled:
                primary = await self._try_primary(query, categories)
                if primary is not None:
                    page, declared = primary
                    return await self._supplement(query, categories, page, declared)
                logger.warning("feed_fallback_per_type", categories=categories)

            return await self.aggregator.page(
                categories,
                query.cursor,
                query.limit,
                sort=query.sort,
                has_photos=query.has_photos,
            )

    async def _supplement(
        self,
        query: FeedQuery,
        categories: Sequence[str],
        primary: FeedPage,
        declared: Set[str],
    ) -> FeedPage:
        covered = {item.type for item in primary.items} | declared
        missing = [key for key in categories if key not in covered]
        if not missing:
            return primary

        logger.info("feed_primary_partial", missing=missing, primary_items=len(primary.items))
        extra = await self.aggregator.page(
            missing,
            query.cursor,
            query.limit,
            sort=query.sort,
            has_photos=query.has_photos,
        )
        merged = sort_items(dedupe_items([*primary.items, *extra.items]), query.sort)
        return FeedPage(items=merged, next_cursor=primary.next_cursor or extra.next_cursor)


async def fetch_feed(query: FeedQuery, *, cfg: Settings = default_settings) -> FeedPage:
    """One-shot helper: own client for the duration of a single feed request."""
    async with FeedApiClient.from_settings(cfg) as client:
        return await FeedService.from_settings(client, cfg).fetch_feed(query)
