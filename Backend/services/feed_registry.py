"""
Category registry for the marketplace feed.

Maps every canonical category to the list endpoints that can serve it, in the
order they should be tried, plus the per-category URL templates the normalizer
needs (photo endpoints, detail routes). Adding a category or an alternate
endpoint is a data change here and nowhere else.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from app.models.feed_items import FeedType

_SEPARATOR_RE = re.compile(r"[\s\-]+")

# alias -> canonical key
TYPE_ALIASES: Mapping[str, str] = MappingProxyType({
    # rentals
    "rental": FeedType.RENTAL.value,
    "rentals": FeedType.RENTAL.value,
    "rental_listing": FeedType.RENTAL.value,
    "listing_rental": FeedType.RENTAL.value,
    "rentallist": FeedType.RENTAL.value,
    "rental_list": FeedType.RENTAL.value,
    # home swaps
    "home_swap": FeedType.HOME_SWAP.value,
    "homeswap": FeedType.HOME_SWAP.value,
    "house_swap": FeedType.HOME_SWAP.value,
    "home_exchange": FeedType.HOME_SWAP.value,
    "homeexchange": FeedType.HOME_SWAP.value,
    # services
    "service": FeedType.SERVICE.value,
    "services": FeedType.SERVICE.value,
    "svc": FeedType.SERVICE.value,
    # events
    "event": FeedType.EVENT.value,
    "events": FeedType.EVENT.value,
    # classified ads
    "ad": FeedType.AD.value,
    "ads": FeedType.AD.value,
    "classified": FeedType.AD.value,
    "classified_ad": FeedType.AD.value,
    "classifieds": FeedType.AD.value,
    # travel posts
    "travel": FeedType.TRAVEL.value,
    "trip": FeedType.TRAVEL.value,
    "trips": FeedType.TRAVEL.value,
    "tour": FeedType.TRAVEL.value,
    "tours": FeedType.TRAVEL.value,
    "journey": FeedType.TRAVEL.value,
    "rideshare": FeedType.TRAVEL.value,
    "carpool": FeedType.TRAVEL.value,
})


def canonicalize_type(value: object) -> str:
    """
    Lower-case, trim and unify separators, then resolve through TYPE_ALIASES.
    Unknown values come back canonicalized but otherwise unchanged ("" for None).
    """
    if value is None:
        return ""
    key = _SEPARATOR_RE.sub("_", str(value).strip().lower())
    return TYPE_ALIASES.get(key, key)


@dataclass(frozen=True)
class CategorySource:
    key: str
    endpoints: Tuple[str, ...]
    detail_prefix: str
    # hasPhotos would hide text-only posts for the other categories
    supports_photo_filter: bool = False
    first_photo_path: Optional[str] = None  # "{id}" placeholder
    photo_by_id_path: Optional[str] = None  # "{photo_id}" placeholder


DEFAULT_SOURCES: Tuple[CategorySource, ...] = (
    CategorySource(
        key=FeedType.HOME_SWAP.value,
        endpoints=("/homeswap", "/api/homeswap"),
        detail_prefix="/app/homeswap",
        supports_photo_filter=True,
        first_photo_path="/homeswap/{id}/photos/first",
    ),
    CategorySource(
        key=FeedType.RENTAL.value,
        endpoints=("/api/rentals", "/rentals"),
        detail_prefix="/app/rentals",
        supports_photo_filter=True,
        first_photo_path="/rentals/{id}/photos/first",
        photo_by_id_path="/rentals/photos/{photo_id}",
    ),
    CategorySource(
        key=FeedType.SERVICE.value,
        endpoints=("/api/services", "/services"),
        detail_prefix="/app/services",
    ),
    CategorySource(
        key=FeedType.EVENT.value,
        endpoints=("/api/events", "/events"),
        detail_prefix="/app/events",
        first_photo_path="/events/{id}/photos/first",
    ),
    CategorySource(
        key=FeedType.AD.value,
        endpoints=("/ads", "/api/ads"),
        detail_prefix="/app/ads",
    ),
    CategorySource(
        key=FeedType.TRAVEL.value,
        endpoints=("/api/travel", "/travel", "/api/trips", "/trips", "/travels", "/api/travels"),
        detail_prefix="/app/travel",
    ),
)


@dataclass(frozen=True)
class CategoryRegistry:
    """Read-only lookup over a fixed set of CategorySource entries."""

    sources: Tuple[CategorySource, ...] = DEFAULT_SOURCES
    _by_key: Mapping[str, CategorySource] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        by_key: Dict[str, CategorySource] = {}
        for source in self.sources:
            if source.key in by_key:
                raise ValueError(f"duplicate category '{source.key}' in registry")
            by_key[source.key] = source
        object.__setattr__(self, "_by_key", MappingProxyType(by_key))

    @classmethod
    def from_sources(cls, sources: Iterable[CategorySource]) -> "CategoryRegistry":
        return cls(sources=tuple(sources))

    def keys(self) -> List[str]:
        return [source.key for source in self.sources]

    def __contains__(self, category: object) -> bool:
        return category in self._by_key

    def get(self, category: str) -> Optional[CategorySource]:
        return self._by_key.get(category)

    def candidates(self, category: str) -> Tuple[str, ...]:
        source = self._by_key.get(category)
        return source.endpoints if source else ()

    def canonical(self, name: object) -> Optional[str]:
        """Resolve a requested category name (any alias) to a registry key."""
        key = canonicalize_type(name)
        return key if key in self._by_key else None


DEFAULT_REGISTRY = CategoryRegistry()
