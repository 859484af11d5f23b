"""Shared test fixtures."""

import os

# Settings require a JWT secret; set one before anything imports config.settings.
os.environ.setdefault("JWT_SECRET", "test-secret-key-for-unit-tests-only-0123456789")
os.environ.setdefault("PLATFORM_ADMIN_USER_IDS", '["usr_admin"]')
os.environ.setdefault("GATEWAY_WEBHOOK_SECRET", "whsec_test")

import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

from src.main import app  # noqa: E402


@pytest.fixture
async def client() -> AsyncClient:
    """Async HTTP client for testing FastAPI endpoints (lifespan not run)."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.fixture(autouse=True)
def _clear_dependency_overrides():
    yield
    app.dependency_overrides.clear()
