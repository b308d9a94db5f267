"""
Feed item normalization.

Turns an untyped record from any marketplace source into a FeedItem. The
candidate-field tables below are plain data and are tried in order; nothing
here raises on sparse or odd input, a record that matches nothing still
yields a displayable item.
"""

from __future__ import annotations

import math
import re
from typing import Any, Mapping, Optional, Sequence, Tuple
from urllib.parse import quote, urlsplit

from app.models.feed_items import FeedItem, FeedType
from services.feed_registry import (
    DEFAULT_REGISTRY,
    CategoryRegistry,
    CategorySource,
    canonicalize_type,
)

UNTITLED = "(Untitled)"
MISSING_SIDE = "—"
ROUTE_ARROW = " → "

TYPE_FIELDS: Tuple[str, ...] = ("type",)
TYPE_FALLBACK_FIELDS: Tuple[str, ...] = ("category", "kind")

ID_FIELDS: Tuple[str, ...] = (
    "id", "itemId", "rentalId", "serviceId", "eventId", "homeSwapId", "adId",
    "travelId", "tripId", "uuid", "_id", "listingId", "publicId",
    "rentalID", "rId", "rid", "classifiedId", "classifiedID",
)
TITLE_FIELDS: Tuple[str, ...] = ("title", "name", "headline", "postTitle")
LOCATION_FIELDS: Tuple[str, ...] = ("location", "city", "area", "country")
PRICE_FIELDS: Tuple[str, ...] = (
    "price", "monthlyPrice", "monthly", "rentPerMonth", "cost", "amount",
    "fare", "ticketPrice", "seatPrice",
)
CREATED_AT_FIELDS: Tuple[str, ...] = ("createdAt", "created_at", "postedAt", "publishedAt")
SLUG_FIELDS: Tuple[str, ...] = ("slug", "handle")

ORIGIN_FIELDS: Tuple[str, ...] = (
    "originCity",
    "from", "origin", "fromCity", "from_city", "departureCity", "departure_city",
    "departure", "leavingFrom", "source", "start", "startCity", "fromLocation", "from_location",
    "from.city", "from.name", "fromCity.name", "route.from.city", "route.origin.city", "route.originCity",
)
DESTINATION_FIELDS: Tuple[str, ...] = (
    "destinationCity",
    "to", "destination", "toCity", "to_city", "arrivalCity", "arrival_city",
    "arrival", "goingTo", "end", "endCity", "toLocation", "to_location",
    "to.city", "to.name", "toCity.name", "route.to.city", "route.destination.city", "route.destinationCity",
)
# Non-travel records keep plain origin/destination values they already carry.
PLAIN_ORIGIN_FIELDS: Tuple[str, ...] = ("origin", "from")
PLAIN_DESTINATION_FIELDS: Tuple[str, ...] = ("destination", "to")

IMAGE_ARRAY_FIELDS: Tuple[str, ...] = (
    "photos", "images", "pictures", "media", "gallery", "imageUrls", "photoPaths",
)
FIRST_PHOTO_FIELDS: Tuple[str, ...] = ("firstPhoto", "coverPhoto", "primaryPhoto", "photo", "mainPhoto")
PHOTO_URL_FIELDS: Tuple[str, ...] = ("url", "src", "thumbnailUrl", "path")
PHOTO_ID_FIELDS: Tuple[str, ...] = ("id", "photoId", "fileId", "_id")
DIRECT_IMAGE_FIELDS: Tuple[str, ...] = (
    "imageUrl", "coverUrl", "pictureUrl", "image", "thumbnailUrl", "mainPhotoUrl",
    "photoUrl", "firstPhotoUrl", "primaryPhotoUrl", "primaryImageUrl",
    "thumbnailPath", "firstPhotoPath", "primaryPhotoPath", "imagePath", "photoPath",
    "thumb", "thumbnail",
)
FILE_ID_FIELDS: Tuple[str, ...] = ("coverImageId", "imageId", "photoId", "fileId", "thumbnailId")
NESTED_TEXT_FIELDS: Tuple[str, ...] = ("city", "name")

_ABSOLUTE_URL_RE = re.compile(r"^https?://", re.IGNORECASE)
_URLISH_RE = re.compile(r"^(https?:)?//", re.IGNORECASE)


# -------- Field access -------------------------------------------------------

def _is_present(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def get_path(record: Any, path: str) -> Any:
    """Dotted lookup ("route.from.city"); None as soon as a hop is missing."""
    current = record
    for part in path.split("."):
        if isinstance(current, Mapping) and part in current:
            current = current[part]
        else:
            return None
    return current


def first_present(record: Any, paths: Sequence[str]) -> Any:
    for path in paths:
        value = get_path(record, path)
        if _is_present(value):
            return value
    return None


def _as_text(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, Mapping):
        nested = first_present(value, NESTED_TEXT_FIELDS)
        return _as_text(nested) if not isinstance(nested, Mapping) else None
    return None


def first_text(record: Any, paths: Sequence[str]) -> Optional[str]:
    """First candidate that renders to a non-empty string."""
    for path in paths:
        text = _as_text(get_path(record, path))
        if text:
            return text
    return None


def _as_number(value: Any) -> Optional[float]:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip().replace(",", ""))
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def _as_id(value: Any) -> Optional[str]:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, (int, float)):
        return str(value)
    return None


# -------- Type ---------------------------------------------------------------

def resolve_type(record: Mapping[str, Any], type_hint: Optional[str], registry: CategoryRegistry) -> str:
    """
    Self-declared type wins when it is a known category, then the hint from the
    source the record was fetched under, then whatever the record declares.
    """
    declared = canonicalize_type(first_text(record, TYPE_FIELDS))
    if declared in registry:
        return declared
    hint = canonicalize_type(type_hint)
    if hint in registry:
        return hint
    if declared:
        return declared
    fallback = canonicalize_type(first_text(record, TYPE_FALLBACK_FIELDS))
    return fallback or hint


# -------- Travel -------------------------------------------------------------

def resolve_route(record: Mapping[str, Any]) -> Tuple[Optional[str], Optional[str]]:
    return first_text(record, ORIGIN_FIELDS), first_text(record, DESTINATION_FIELDS)


def route_title(origin: Optional[str], destination: Optional[str]) -> Optional[str]:
    if not origin and not destination:
        return None
    return f"{origin or MISSING_SIDE}{ROUTE_ARROW}{destination or MISSING_SIDE}"


def route_location(origin: Optional[str], destination: Optional[str]) -> Optional[str]:
    sides = [side for side in (origin, destination) if side]
    return ROUTE_ARROW.join(sides) or None


# -------- Images -------------------------------------------------------------

def looks_like_url(value: Any) -> bool:
    return isinstance(value, str) and (bool(_URLISH_RE.match(value)) or value.startswith("data:"))


def looks_like_path(value: Any) -> bool:
    return isinstance(value, str) and (value.startswith("/") or value.startswith("uploads/"))


def _image_ref(value: Any) -> Optional[str]:
    if not isinstance(value, str):
        return None
    value = value.strip()
    if looks_like_url(value) or looks_like_path(value):
        return value
    return None


def make_api_url(api_base: Optional[str], ref: Optional[str]) -> Optional[str]:
    """
    Resolve a media reference against the API base.
    Absolute and data: URLs pass through; relative refs without a base give None.
    """
    if not ref:
        return None
    if _ABSOLUTE_URL_RE.match(ref) or ref.startswith("data:"):
        return ref
    base = (api_base or "").rstrip("/")
    if ref.startswith("//"):
        scheme = urlsplit(base).scheme or "https"
        return f"{scheme}:{ref}"
    if not base:
        return None
    path = ref if ref.startswith("/") else f"/{ref}"
    return f"{base}{path}"


def photo_endpoint(source: Optional[CategorySource], photo_id: Any, item_id: Optional[str]) -> Optional[str]:
    """Category-specific photo route; None for categories that expose none."""
    if source is None:
        return None
    pid = _as_id(photo_id)
    if pid and source.photo_by_id_path:
        return source.photo_by_id_path.format(photo_id=quote(pid, safe=""))
    if item_id and source.first_photo_path:
        return source.first_photo_path.format(id=quote(item_id, safe=""))
    return None


def _from_photo_object(photo: Any, source: Optional[CategorySource], item_id: Optional[str]) -> Optional[str]:
    if isinstance(photo, str):
        return _image_ref(photo)
    if isinstance(photo, Mapping):
        for field in PHOTO_URL_FIELDS:
            ref = _image_ref(photo.get(field))
            if ref:
                return ref
        photo_id = first_present(photo, PHOTO_ID_FIELDS)
        if photo_id is not None:
            return photo_endpoint(source, photo_id, item_id)
    return None


def resolve_image(record: Mapping[str, Any], source: Optional[CategorySource], item_id: Optional[str]) -> Optional[str]:
    # a. photo arrays
    for field in IMAGE_ARRAY_FIELDS:
        values = record.get(field)
        if isinstance(values, list) and values:
            ref = _from_photo_object(values[0], source, item_id)
            if ref:
                return ref

    # b. "first photo" convenience objects
    for field in FIRST_PHOTO_FIELDS:
        ref = _from_photo_object(record.get(field), source, item_id)
        if ref:
            return ref

    # c. legacy direct fields, then bare file ids
    for field in DIRECT_IMAGE_FIELDS:
        ref = _image_ref(record.get(field))
        if ref:
            return ref
    file_id = first_present(record, FILE_ID_FIELDS)
    if file_id is not None:
        ref = photo_endpoint(source, file_id, item_id)
        if ref:
            return ref

    # d. type+id endpoint
    return photo_endpoint(source, None, item_id)


def _normalize_upload_path(ref: Optional[str]) -> Optional[str]:
    if ref and ref.startswith("uploads/"):
        return f"/{ref}"
    return ref


# -------- Routes -------------------------------------------------------------

def build_detail_path(
    item_type: str,
    item_id: Optional[str],
    slug: Optional[str],
    registry: CategoryRegistry = DEFAULT_REGISTRY,
) -> str:
    key = slug or item_id
    source = registry.get(item_type)
    if not key or source is None:
        return "#"
    return f"{source.detail_prefix}/{quote(key, safe='')}"


# -------- Entry point --------------------------------------------------------

def normalize_item(
    raw: Any,
    type_hint: Optional[str] = None,
    *,
    api_base: Optional[str] = None,
    registry: CategoryRegistry = DEFAULT_REGISTRY,
) -> FeedItem:
    """
    Normalize one raw record. The record's own keys are preserved on the item,
    the canonical fields are layered on top.
    """
    record = {str(k): v for k, v in raw.items()} if isinstance(raw, Mapping) else {}

    item_type = resolve_type(record, type_hint, registry)
    source = registry.get(item_type)
    item_id = next((i for i in (_as_id(record.get(f)) for f in ID_FIELDS) if i), None)
    slug = first_text(record, SLUG_FIELDS)

    title = first_text(record, TITLE_FIELDS)
    location = first_text(record, LOCATION_FIELDS)
    if item_type == FeedType.TRAVEL.value:
        origin, destination = resolve_route(record)
        title = title or route_title(origin, destination)
        location = location or route_location(origin, destination)
    else:
        origin = first_text(record, PLAIN_ORIGIN_FIELDS)
        destination = first_text(record, PLAIN_DESTINATION_FIELDS)

    created_at = first_present(record, CREATED_AT_FIELDS)
    image_url = _normalize_upload_path(resolve_image(record, source, item_id))

    canonical = {
        "type": item_type,
        "id": item_id,
        "title": title or UNTITLED,
        "location": location,
        "price": _as_number(first_present(record, PRICE_FIELDS)),
        "createdAt": _as_text(created_at) if not isinstance(created_at, Mapping) else None,
        "slug": slug,
        "imageUrl": image_url,
        "imageUrlAbsolute": make_api_url(api_base, image_url),
        "detailPath": build_detail_path(item_type, item_id, slug, registry),
        "origin": origin,
        "destination": destination,
    }
    # only the serialized canonical keys are replaced; snake_case raw keys stay
    extras = {k: v for k, v in record.items() if k not in canonical}
    return FeedItem.model_validate({**extras, **canonical})
