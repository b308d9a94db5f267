from __future__ import annotations

import asyncio
import math
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Sequence

from dateutil import parser as date_parser

from app.core.logging import get_logger
from app.models.feed_items import FeedItem, FeedPage
from services.feed_cursor import MIN_PAGE_SIZE, encode_cursor, resolve_cursor
from services.feed_source_fetcher import SourcePage, SourcePageFetcher

logger = get_logger().bind(module="feed_aggregator")

SORT_NEWEST = "newest"
_EPOCH_MS_THRESHOLD = 1e11
# missing date parts ("May 2024") fill from here, not from today
_PARSE_DEFAULT = datetime(1970, 1, 1, tzinfo=timezone.utc)


def created_at_timestamp(value: Optional[str]) -> float:
    """Sort key for createdAt; anything unparsable counts as the epoch."""
    if not value:
        return 0.0
    text = str(value).strip()
    try:
        number = float(text)
    except ValueError:
        pass
    else:
        if not math.isfinite(number):
            return 0.0
        return number / 1000 if abs(number) > _EPOCH_MS_THRESHOLD else number
    try:
        parsed = date_parser.parse(text, default=_PARSE_DEFAULT)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    except (ValueError, OverflowError, OSError):
        return 0.0


def sort_items(items: Iterable[FeedItem], sort: Optional[str]) -> List[FeedItem]:
    if sort == SORT_NEWEST:
        return sorted(items, key=lambda item: created_at_timestamp(item.created_at), reverse=True)
    return list(items)


class PerTypeAggregator:
    """
    Client-side feed: one page per category, fetched concurrently, merged,
    sorted and cut to the requested limit.
    """

    def __init__(self, fetcher: SourcePageFetcher, *, min_page_size: int = MIN_PAGE_SIZE) -> None:
        self.fetcher = fetcher
        self.min_page_size = min_page_size

    async def _fetch_all(self, categories: Sequence[str], pages: dict, size: int, has_photos: Optional[bool]) -> List[SourcePage]:
        results = await asyncio.gather(
            *(self.fetcher.fetch(c, pages[c], size, has_photos=has_photos) for c in categories),
            return_exceptions=True,
        )
        settled: List[SourcePage] = []
        for category, result in zip(categories, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning("feed_category_crashed", category=category, error=repr(result))
                settled.append(SourcePage(category=category, ok=False))
            else:
                settled.append(result)
        return settled

    async def page(
        self,
        active: Sequence[str],
        cursor: Optional[str],
        limit: int,
        *,
        sort: Optional[str] = SORT_NEWEST,
        has_photos: Optional[bool] = None,
    ) -> FeedPage:
        if not active:
            return FeedPage(items=[], next_cursor=None)

        state = resolve_cursor(cursor, active, limit, min_page_size=self.min_page_size)
        pages = await self._fetch_all(active, state.page_by_type, state.page_size, has_photos)

        merged = sort_items((item for page in pages for item in page.items), sort)
        items = merged[:limit]

        any_full = any(len(page.items) >= state.page_size for page in pages)
        next_cursor = encode_cursor(state.advanced()) if any_full else None

        logger.info(
            "feed_aggregate_round",
            categories=list(active),
            pages=state.page_by_type,
            page_size=state.page_size,
            failed=[page.category for page in pages if not page.ok],
            merged=len(merged),
            returned=len(items),
            has_more=next_cursor is not None,
        )
        return FeedPage(items=items, next_cursor=next_cursor)
