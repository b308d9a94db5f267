from __future__ import annotations

from typing import Any, Optional


class FeedError(Exception):
    """Base class for errors the feed engine lets reach its caller."""


class FeedRequestError(FeedError):
    """The request cannot be served as asked, e.g. only unknown categories."""


class FeedUpstreamClientError(FeedError):
    """
    The aggregated /feed endpoint rejected the request with a 4xx (other than 404).
    This means the request itself is malformed, so it is not worth a fallback.
    """

    def __init__(self, status_code: int, detail: Optional[Any] = None):
        super().__init__(f"feed backend rejected request with status {status_code}")
        self.status_code = status_code
        self.detail = detail
