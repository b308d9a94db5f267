# Backend/tests/conftest.py
from __future__ import annotations

import pytest
import pytest_asyncio

from feed_fixtures import API_BASE, FakeMarketplace
from services.feed_api_client import FeedApiClient


@pytest.fixture
def marketplace(httpx_mock) -> FakeMarketplace:
    fake = FakeMarketplace()
    httpx_mock.add_callback(fake.handle, is_reusable=True, is_optional=True)
    return fake


@pytest_asyncio.fixture
async def api_client():
    async with FeedApiClient(base_url=API_BASE, user_agent="feed-tests/1.0") as client:
        yield client
