"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncGenerator
from dataclasses import dataclass
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs, urlsplit

# Set test environment before importing app
os.environ["ENVIRONMENT"] = "test"

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import NullPool
from sqlmodel import SQLModel

import tollgate.models  # noqa: F401  (registers tables)
from tollgate.config import settings
from tollgate.database import get_session
from tollgate.main import app
from tollgate.models import User
from tollgate.models.base import utcnow
from tollgate.services.email import EmailBackend, OutgoingEmail, email_service
from tollgate.services.identity import RequestIdentity
from tollgate.services.passwords import hash_password
from tollgate.services.rate_limit import get_rate_limiter
from tollgate.services.sessions import IssuedSession, create_user_session
from tollgate.services.users import create_user

USER_PASSWORD = "correct-horse-battery"


@dataclass
class SentEmail:
    to: str
    subject: str
    html: str
    text: str

    @property
    def link(self) -> str:
        """The action link from the plain-text body."""
        for line in self.text.splitlines():
            if line.startswith(("http://", "https://")):
                return line
        raise AssertionError(f"No link in email to {self.to}: {self.subject}")

    def query(self, name: str) -> str:
        return parse_qs(urlsplit(self.link).query)[name][0]


class Outbox(EmailBackend):
    """Email backend that records messages instead of sending them.

    Set ``fail`` to make every send report a delivery failure.
    """

    def __init__(self) -> None:
        self.messages: list[SentEmail] = []
        self.fail = False

    async def send(self, email: OutgoingEmail) -> bool:
        if self.fail:
            return False
        self.messages.append(SentEmail(email.to, email.subject, email.html, email.text))
        return True

    def last(self, to: str | None = None) -> SentEmail:
        matching = [m for m in self.messages if to is None or m.to == to]
        assert matching, f"No email sent to {to or 'anyone'}"
        return matching[-1]


@pytest.fixture(autouse=True)
def outbox() -> Any:
    """Capture outgoing email for every test."""
    backend = Outbox()
    with patch.object(email_service, "_backend", backend):
        yield backend


@pytest.fixture(autouse=True)
def fast_password_hashing():
    """Use the cheapest bcrypt cost so tests don't spend seconds hashing."""
    with patch("tollgate.services.passwords.BCRYPT_ROUNDS", 4):
        yield


@pytest.fixture(autouse=True)
def reset_rate_limiter():
    """Start every test with empty rate limit windows."""
    get_rate_limiter().reset()
    yield
    get_rate_limiter().reset()


@pytest.fixture(autouse=True)
def mock_queue():
    """Mock the SAQ queue to avoid Redis connections in tests."""
    mock_job = MagicMock()
    mock_job.id = "test-job-id"

    with patch("tollgate.tasks.queue.queue.enqueue", new_callable=AsyncMock) as mock_enqueue:
        mock_enqueue.return_value = mock_job
        yield mock_enqueue


@pytest_asyncio.fixture
async def test_engine(tmp_path):
    """Create fresh tables for one test.

    Runs against ``DATABASE_URL_TEST`` when set (Postgres, as in production),
    otherwise against a throwaway SQLite file. A file rather than :memory:
    lets several connections see the same data, which the concurrency tests
    rely on.
    """
    url = settings.database_url_test or f"sqlite+aiosqlite:///{tmp_path / 'test.db'}"
    engine = create_async_engine(url, echo=False, poolclass=NullPool)

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
        await conn.run_sync(SQLModel.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a test database session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create a test HTTP client. Each request gets its own session, as in production."""

    async def override_get_session():
        async with session_factory() as request_session:
            yield request_session

    app.dependency_overrides[get_session] = override_get_session

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.fixture
def user_password() -> str:
    """Plain-text password of the test user."""
    return USER_PASSWORD


@pytest.fixture
async def user(session: AsyncSession) -> User:
    """Create a verified test user with a password."""
    user = await create_user(
        session,
        name="Alice",
        email="alice@example.com",
        password_hash=hash_password(USER_PASSWORD),
        email_verified_at=utcnow(),
    )
    await session.commit()
    return user


@pytest.fixture
async def user_session(session: AsyncSession, user: User) -> IssuedSession:
    """Create a session for the test user."""
    issued = await create_user_session(session, user, user_agent="pytest")
    await session.commit()
    return issued


@pytest.fixture
def identity(user: User, user_session: IssuedSession) -> RequestIdentity:
    """Authenticated identity for the test user, as the API layer would build it."""
    return RequestIdentity(user=user, session_id=user_session.session_id, source="bearer")


@pytest.fixture
def auth_headers(user_session: IssuedSession) -> dict[str, str]:
    """Create authorization headers for the test user."""
    return {"Authorization": f"Bearer {user_session.session_id}"}


# Helper to make authenticated requests
class AuthenticatedClient:
    """Wrapper for AsyncClient with authentication."""

    def __init__(self, client: AsyncClient, headers: dict[str, str]):
        self.client = client
        self.headers = headers

    async def get(self, url: str, **kwargs: Any) -> Any:
        kwargs.setdefault("headers", {}).update(self.headers)
        return await self.client.get(url, **kwargs)

    async def post(self, url: str, **kwargs: Any) -> Any:
        kwargs.setdefault("headers", {}).update(self.headers)
        return await self.client.post(url, **kwargs)


@pytest.fixture
def authenticated_client(client: AsyncClient, auth_headers: dict[str, str]) -> AuthenticatedClient:
    """Create an authenticated test client."""
    return AuthenticatedClient(client, auth_headers)
