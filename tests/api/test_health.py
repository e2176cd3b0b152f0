"""Health endpoint tests."""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient
from sqlalchemy.exc import OperationalError

from tollgate.database import get_session
from tollgate.main import app
from tollgate.services.email import ConsoleEmailBackend, email_service


@pytest.fixture
def broken_database():
    """Make every request session fail its first query."""
    broken = AsyncMock()
    broken.execute.side_effect = OperationalError("SELECT 1", {}, Exception("connection refused"))

    async def override_get_session():
        yield broken

    previous = app.dependency_overrides.get(get_session)
    app.dependency_overrides[get_session] = override_get_session
    yield broken
    if previous is not None:
        app.dependency_overrides[get_session] = previous


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient):
    """Test basic health check endpoint."""
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


@pytest.mark.asyncio
async def test_health_check_db(client: AsyncClient):
    """Test health check with database connectivity."""
    response = await client.get("/api/health/db")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "connected"}


@pytest.mark.asyncio
async def test_health_check_db_down(client: AsyncClient, broken_database):
    response = await client.get("/api/health/db")
    assert response.status_code == 503
    assert response.json()["database"] == "disconnected"


@pytest.mark.asyncio
async def test_ready(client: AsyncClient):
    """The test outbox counts as a real delivery backend."""
    response = await client.get("/api/health/ready")
    assert response.status_code == 200
    assert response.json() == {"status": "ok", "database": "connected", "email": "configured"}


@pytest.mark.asyncio
async def test_ready_with_console_email(client: AsyncClient, monkeypatch):
    monkeypatch.setattr(email_service, "_backend", ConsoleEmailBackend())

    response = await client.get("/api/health/ready")

    assert response.status_code == 200
    assert response.json()["status"] == "degraded"
    assert response.json()["email"] == "console"


@pytest.mark.asyncio
async def test_ready_db_down(client: AsyncClient, broken_database):
    response = await client.get("/api/health/ready")
    assert response.status_code == 503
