from __future__ import annotations

import base64
import binascii
import json
import math
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Sequence

CURSOR_VERSION = 1
MIN_PAGE_SIZE = 6
MAX_PAGE_SIZE = 500


@dataclass(frozen=True)
class FeedCursor:
    """Pagination state of a per-type aggregation lineage."""

    page_by_type: Dict[str, int] = field(default_factory=dict)
    page_size: int = MIN_PAGE_SIZE
    version: int = CURSOR_VERSION

    def advanced(self) -> "FeedCursor":
        """Every active category moves one page forward."""
        return FeedCursor(
            page_by_type={key: page + 1 for key, page in self.page_by_type.items()},
            page_size=self.page_size,
        )


def default_page_size(limit: int, active_count: int, *, min_page_size: int = MIN_PAGE_SIZE) -> int:
    return max(min_page_size, math.ceil(max(1, limit) / max(1, active_count)))


def default_cursor(active: Sequence[str], limit: int, *, min_page_size: int = MIN_PAGE_SIZE) -> FeedCursor:
    return FeedCursor(
        page_by_type={key: 0 for key in active},
        page_size=default_page_size(limit, len(active), min_page_size=min_page_size),
    )


def encode_cursor(cursor: FeedCursor) -> str:
    payload = {
        "v": cursor.version,
        "pageByType": dict(cursor.page_by_type),
        "pageSize": cursor.page_size,
    }
    raw = json.dumps(payload, separators=(",", ":"), sort_keys=True).encode("utf-8")
    return base64.urlsafe_b64encode(raw).decode("ascii").rstrip("=")


def _is_count(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def decode_cursor(token: Optional[str]) -> Optional[FeedCursor]:
    """
    Decode a token produced by encode_cursor.
    Absent, malformed or other-version tokens give None, never an exception.
    """
    if not token or not isinstance(token, str):
        return None
    try:
        raw = base64.urlsafe_b64decode(token + "=" * (-len(token) % 4))
        payload = json.loads(raw.decode("utf-8"))
    except (binascii.Error, ValueError):
        return None

    if not isinstance(payload, dict) or payload.get("v") != CURSOR_VERSION:
        return None
    pages = payload.get("pageByType")
    size = payload.get("pageSize")
    if not isinstance(pages, dict) or not _is_count(size) or not 0 < size <= MAX_PAGE_SIZE:
        return None
    if not all(isinstance(k, str) and _is_count(v) and v >= 0 for k, v in pages.items()):
        return None
    return FeedCursor(page_by_type=dict(pages), page_size=size)


def reconcile(cursor: FeedCursor, active: Sequence[str]) -> FeedCursor:
    """Drop stale categories, start new ones at page 0, keep the page size."""
    return FeedCursor(
        page_by_type={key: cursor.page_by_type.get(key, 0) for key in active},
        page_size=cursor.page_size,
    )


def resolve_cursor(
    token: Optional[str],
    active: Sequence[str],
    limit: int,
    *,
    min_page_size: int = MIN_PAGE_SIZE,
) -> FeedCursor:
    decoded = decode_cursor(token)
    if decoded is None:
        return default_cursor(active, limit, min_page_size=min_page_size)
    return reconcile(decoded, active)
