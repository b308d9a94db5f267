from __future__ import annotations

import re

import httpx
import pytest

from app.config import Settings
from app.models.feed_items import FeedQuery
from feed_fixtures import API_BASE, make_ad, make_rental, make_service, make_travel
from services.feed_aggregator import created_at_timestamp
from services.feed_errors import FeedRequestError, FeedUpstreamClientError
from services.feed_service import FeedService, dedupe_items, fetch_feed
from services.feed_normalizer import normalize_item

_ABSOLUTE_OR_DATA = re.compile(r"^(https?://|data:)", re.IGNORECASE)


def _typed(record, feed_type):
    return {**record, "type": feed_type}


def _service(api_client, **kwargs) -> FeedService:
    kwargs.setdefault("primary_timeout_s", 1.0)
    return FeedService(api_client, **kwargs)


# -------- Request shaping ----------------------------------------------------

@pytest.mark.asyncio
async def test_resolve_categories(api_client):
    service = _service(api_client, default_types=["rental", "ads", "boats"])

    assert service.resolve_categories([]) == ["rental", "ad"]
    assert service.resolve_categories(["rentals,trips", "Rental", "boats"]) == ["rental", "travel"]
    with pytest.raises(FeedRequestError, match="boats"):
        service.resolve_categories(["boats"])


@pytest.mark.asyncio
async def test_default_types_fall_back_to_whole_registry(api_client):
    assert _service(api_client).resolve_categories([]) == [
        "home_swap", "rental", "service", "event", "ad", "travel",
    ]


@pytest.mark.asyncio
async def test_primary_params(api_client):
    query = FeedQuery(
        types=["rental"],
        limit=10,
        cursor="abc",
        has_photos=True,
        filters={"city": "Rotterdam", "verified": True, "empty": "", "limit": 99},
    )
    params = _service(api_client).primary_params(query, ["rental", "travel"])

    assert params == {
        "types": "rental,travel",
        "sort": "newest",
        "limit": "10",
        "cursor": "abc",
        "hasPhotos": "true",
        "city": "Rotterdam",
        "verified": "true",
    }
    assert "hasPhotos" not in _service(api_client).primary_params(FeedQuery(has_photos=False), ["ad"])


# -------- Primary path -------------------------------------------------------

@pytest.mark.asyncio
async def test_primary_with_full_coverage_is_returned_as_is(marketplace, api_client):
    marketplace.on("/feed", {
        "items": [_typed(make_rental(1), "rental"), _typed(make_service(2), "service")],
        "nextCursor": "backend-token-2",
    })

    page = await _service(api_client).fetch_feed(FeedQuery(types=["rental", "service"]))

    assert [item.type for item in page.items] == ["rental", "service"]
    assert page.next_cursor == "backend-token-2"
    assert page.items[0].image_url_absolute == f"{API_BASE}/uploads/rental-1.jpg"
    assert [r.url.path for r in marketplace.requests] == ["/feed"]
    assert marketplace.calls("/feed")[0]["types"] == "rental,service"


@pytest.mark.asyncio
async def test_partial_primary_is_supplemented_without_duplicates(marketplace, api_client):
    marketplace.on("/feed", {
        "content": [
            _typed(make_rental(1, created_at="2024-05-02T00:00:00Z"), "rental_listing"),
            _typed(make_service(5, created_at="2024-05-01T00:00:00Z"), "services"),
        ],
        "cursor": "backend-token",
    })
    marketplace.on("/api/travel", [
        make_travel(9, created_at="2024-05-03T00:00:00Z"),
        make_travel(9, created_at="2024-05-03T00:00:00Z"),
        make_travel(10, created_at="2024-04-01T00:00:00Z"),
    ])

    page = await _service(api_client).fetch_feed(FeedQuery(types=["rental", "service", "travel"]))

    assert [(item.type, item.id) for item in page.items] == [
        ("travel", "9"), ("rental", "1"), ("service", "5"), ("travel", "10"),
    ]
    assert page.next_cursor == "backend-token"
    # only the missing category went to the per-type endpoints
    assert marketplace.calls("/api/rentals") == []
    assert marketplace.calls("/api/travel")[0] == {"page": "0", "size": "20"}


@pytest.mark.asyncio
async def test_supplement_cursor_used_when_primary_has_none(marketplace, api_client):
    marketplace.on("/feed", [_typed(make_rental(1), "rental")])
    marketplace.on("/api/travel", [make_travel(i) for i in range(1, 7)])

    page = await _service(api_client).fetch_feed(FeedQuery(types=["rental", "travel"], limit=6))

    assert page.next_cursor is not None
    assert len(page.items) == 7


@pytest.mark.asyncio
async def test_declared_types_count_as_covered(marketplace, api_client):
    marketplace.on("/feed", {
        "items": [_typed(make_rental(1), "rental")],
        "types": ["rental", "trips"],
    })

    page = await _service(api_client).fetch_feed(FeedQuery(types=["rental", "travel"]))

    assert len(page.items) == 1
    assert [r.url.path for r in marketplace.requests] == ["/feed"]


@pytest.mark.asyncio
async def test_empty_primary_without_declared_types_probes_everything(marketplace, api_client):
    marketplace.on("/feed", {"items": []})
    marketplace.on("/ads", [make_ad(1)])

    page = await _service(api_client).fetch_feed(FeedQuery(types=["ad"]))

    assert [item.title for item in page.items] == ["Bike for sale 1"]


# -------- Fallback -----------------------------------------------------------

@pytest.mark.asyncio
@pytest.mark.parametrize("status", [500, 502, 404])
async def test_server_errors_and_not_found_fall_back(marketplace, api_client, status):
    marketplace.on("/feed", {"error": "nope"}, status=status)
    marketplace.on("/api/rentals", [make_rental(1)])

    page = await _service(api_client).fetch_feed(FeedQuery(types=["rental"]))

    assert [item.id for item in page.items] == ["1"]
    assert page.next_cursor is None


@pytest.mark.asyncio
async def test_timeout_falls_back(marketplace, api_client):
    marketplace.on("/feed", {"items": [_typed(make_ad(99), "ad")]}, delay=2.0)
    marketplace.on("/ads", [make_ad(1)])

    page = await _service(api_client, primary_timeout_s=0.05).fetch_feed(FeedQuery(types=["ad"]))

    assert [item.id for item in page.items] == ["1"]


@pytest.mark.asyncio
async def test_network_error_falls_back(marketplace, api_client):
    marketplace.on("/feed", httpx.ConnectError("connection refused"))
    marketplace.on("/api/services", [make_service(1)])

    page = await _service(api_client).fetch_feed(FeedQuery(types=["service"]))

    assert [item.type for item in page.items] == ["service"]


@pytest.mark.asyncio
async def test_unreadable_primary_falls_back(marketplace, api_client):
    marketplace.on("/feed", {"status": "ok"})
    marketplace.on("/api/events", [{"eventId": 3, "title": "Iftar"}])

    page = await _service(api_client).fetch_feed(FeedQuery(types=["event"]))

    assert page.items[0].title == "Iftar"
    assert page.items[0].image_url_absolute == f"{API_BASE}/events/3/photos/first"


@pytest.mark.asyncio
@pytest.mark.parametrize("status", [400, 401, 422])
async def test_client_errors_are_raised(marketplace, api_client, status):
    marketplace.on("/feed", {"message": "bad types"}, status=status)

    with pytest.raises(FeedUpstreamClientError) as info:
        await _service(api_client).fetch_feed(FeedQuery(types=["rental"]))

    assert info.value.status_code == status
    assert info.value.detail == "bad types"
    assert marketplace.calls("/api/rentals") == []


@pytest.mark.asyncio
async def test_backend_disabled_skips_primary(marketplace, api_client):
    marketplace.on("/api/rentals", [make_rental(1)])

    page = await _service(api_client, backend_enabled=False).fetch_feed(FeedQuery(types=["rental"]))

    assert len(page.items) == 1
    assert marketplace.calls("/feed") == []


# -------- Properties ---------------------------------------------------------

@pytest.mark.asyncio
async def test_fallback_feed_is_idempotent_and_well_formed(marketplace, api_client):
    marketplace.on("/feed", {"error": "down"}, status=503)
    marketplace.on("/api/rentals", {"content": [make_rental(i, created_at=f"2024-05-0{i}") for i in range(1, 7)]})
    marketplace.on("/api/services", {"items": [make_service(1, created_at="garbage")]})
    marketplace.on("/api/travel", {"page": {"content": [make_travel(1, created_at="2024-05-04T12:00:00Z")]}})
    service = _service(api_client)
    query = FeedQuery(types=["rental", "service", "travel"], limit=8)

    first = await service.fetch_feed(query)
    second = await service.fetch_feed(query)

    assert first == second
    assert first.next_cursor is not None
    stamps = [created_at_timestamp(item.created_at) for item in first.items]
    assert all(a >= b for a, b in zip(stamps, stamps[1:]))
    assert all(
        item.image_url_absolute is None or _ABSOLUTE_OR_DATA.match(item.image_url_absolute)
        for item in first.items
    )


def test_dedupe_items_keeps_first_and_idless():
    items = [
        normalize_item({"id": 1, "title": "first"}, "ad"),
        normalize_item({"id": 1, "title": "second"}, "ad"),
        normalize_item({"id": 1}, "rental"),
        normalize_item({"title": "no id"}, "ad"),
        normalize_item({"title": "no id"}, "ad"),
    ]
    kept = dedupe_items(items)
    assert [(i.type, i.id, i.title) for i in kept] == [
        ("ad", "1", "first"),
        ("rental", "1", "(Untitled)"),
        ("ad", None, "no id"),
        ("ad", None, "no id"),
    ]


@pytest.mark.asyncio
async def test_module_fetch_feed_uses_settings(marketplace):
    marketplace.on("/feed", {"items": [_typed(make_ad(1), "ad")], "nextCursor": None})
    cfg = Settings(FEED_API_BASE_URL=API_BASE + "/", FEED_API_TOKEN="t0ken", FEED_DEFAULT_TYPES=["ad"])

    page = await fetch_feed(FeedQuery(), cfg=cfg)

    assert [item.id for item in page.items] == ["1"]
    assert page.next_cursor is None
    request = marketplace.requests[0]
    assert request.headers["Authorization"] == "Bearer t0ken"
    assert request.url.params["types"] == "ad"


@pytest.mark.asyncio
async def test_supplement_restarts_on_backend_cursor(marketplace, api_client):
    marketplace.on("/feed", {"items": [_typed(make_rental(1), "rental")], "nextCursor": "backend-page-2"})
    marketplace.on("/api/travel", [make_travel(1)])
    service = _service(api_client)

    first = await service.fetch_feed(FeedQuery(types=["rental", "travel"]))
    second = await service.fetch_feed(FeedQuery(types=["rental", "travel"], cursor=first.next_cursor))

    assert marketplace.calls("/feed")[1]["cursor"] == "backend-page-2"
    # the backend token is not a per-type cursor, so travel starts over at page 0
    assert [params["page"] for params in marketplace.calls("/api/travel")] == ["0", "0"]
    assert [item.id for item in second.items if item.type == "travel"] == ["1"]
