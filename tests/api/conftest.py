"""Shared fixtures for API tests.

Route tests are synchronous: the TestClient drives the app on its own
event loop, so the schema is created and seeded with ``asyncio.run``.
"""

import asyncio
from collections.abc import Callable

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.pool import NullPool

from storefront.domain.entities import ProductVariant
from storefront.infrastructure import database
from storefront.infrastructure.config import settings
from storefront.main import app


@pytest.fixture
def api_db(database_url: str, gateway, notifier):
    """Fresh schema for a route test, with fake collaborators installed."""
    engine = database.configure_engine(database_url, poolclass=NullPool)
    asyncio.run(database.create_all())
    yield engine
    asyncio.run(engine.dispose())


@pytest.fixture
def client(api_db) -> TestClient:
    """Create test client without authentication."""
    return TestClient(app)


@pytest.fixture
def auth_client(api_db) -> TestClient:
    """Create test client with valid API key authentication."""
    return TestClient(
        app,
        headers={"Authorization": f"Bearer {settings.api_key}"},
    )


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Get authentication headers."""
    return {"Authorization": f"Bearer {settings.api_key}"}


@pytest.fixture
def user_headers() -> Callable[[str], dict[str, str]]:
    """Identity headers for a customer."""

    def headers(user_id: str = "user-1") -> dict[str, str]:
        return {"X-User-Id": user_id}

    return headers


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Identity headers for an admin."""
    return {"X-User-Id": "admin-1", "X-User-Roles": "admin"}


@pytest.fixture
def seed_variant(api_db, variant_factory) -> Callable[..., ProductVariant]:
    """Insert a product variant from a synchronous test."""

    def seed(**kwargs) -> ProductVariant:
        return asyncio.run(variant_factory(**kwargs))

    return seed


@pytest.fixture
def stock(api_db, stock_reader) -> Callable[[str], int]:
    """Read the stock of a variant from a synchronous test."""

    def read(variant_id: str) -> int:
        return asyncio.run(stock_reader(variant_id))

    return read
