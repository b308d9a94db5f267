from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, HTTPException, Query, Request

from app.config import settings
from app.core.logging import get_logger
from app.models.feed_items import FeedPage, FeedQuery
from services.feed_errors import FeedRequestError, FeedUpstreamClientError
from services.feed_service import fetch_feed

logger = get_logger()

router = APIRouter(
    prefix="/feed",
    tags=["feed"],
)

# Everything else in the query string is forwarded to /feed as a filter.
_FEED_PARAMS = {"types", "sort", "limit", "cursor", "hasPhotos"}


@router.get("", response_model=FeedPage)
async def get_feed(
    request: Request,
    types: list[str] | None = Query(
        default=None,
        description="Categories (repeat or comma-separate): rental, home_swap, service, event, ad, travel.",
    ),
    sort: str = Query("newest"),
    limit: int = Query(settings.FEED_DEFAULT_LIMIT, ge=1, le=settings.FEED_MAX_LIMIT),
    cursor: Optional[str] = Query(None, description="Opaque token from a previous nextCursor."),
    has_photos: Optional[bool] = Query(None, alias="hasPhotos"),
) -> FeedPage:
    """
    Merged marketplace feed: rentals, home swaps, services, events, ads and
    travel posts in one cursor-paginated list.
    """
    filters = {
        key: value
        for key, value in request.query_params.items()
        if key not in _FEED_PARAMS
    }
    query = FeedQuery(
        types=types or [],
        sort=sort,
        limit=limit,
        cursor=cursor or None,
        has_photos=has_photos,
        filters=filters,
    )

    try:
        return await fetch_feed(query)
    except FeedRequestError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except FeedUpstreamClientError as exc:
        logger.warning("feed_request_rejected", status_code=exc.status_code)
        raise HTTPException(status_code=exc.status_code, detail=exc.detail or str(exc)) from exc
