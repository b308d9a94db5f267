from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class FeedType(str, Enum):
    RENTAL = "rental"
    HOME_SWAP = "home_swap"
    SERVICE = "service"
    EVENT = "event"
    AD = "ad"
    TRAVEL = "travel"


class FeedItem(BaseModel):
    """
    Canonical feed item.

    Every key of the raw record is kept as an extra field next to the
    canonical ones; canonical names win when they collide.
    """

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str = Field(..., description="Canonical type, or the canonicalized raw value when unknown.")
    id: Optional[str] = None
    title: str = "(Untitled)"
    location: Optional[str] = None
    price: Optional[float] = None
    created_at: Optional[str] = Field(default=None, alias="createdAt")
    slug: Optional[str] = None
    image_url: Optional[str] = Field(default=None, alias="imageUrl")
    image_url_absolute: Optional[str] = Field(default=None, alias="imageUrlAbsolute")
    detail_path: str = Field(default="#", alias="detailPath")
    origin: Optional[str] = None
    destination: Optional[str] = None

    @property
    def raw_fields(self) -> Dict[str, Any]:
        return dict(self.__pydantic_extra__ or {})


class FeedPage(BaseModel):
    """Response for /api/v1/feed."""

    model_config = ConfigDict(populate_by_name=True)

    items: List[FeedItem] = Field(default_factory=list)
    next_cursor: Optional[str] = Field(default=None, alias="nextCursor")


class FeedQuery(BaseModel):
    """One fetch_feed call as the rest of the application expresses it."""

    types: List[str] = Field(default_factory=list)
    sort: str = "newest"
    limit: int = Field(default=20, ge=1)
    cursor: Optional[str] = None
    has_photos: Optional[bool] = None
    filters: Dict[str, Any] = Field(default_factory=dict)
