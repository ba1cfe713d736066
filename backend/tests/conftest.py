"""Test fixtures for the backend."""
import os
from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

os.environ.setdefault("GATEKEEPER_SECRET_KEY", "test-secret")
os.environ.setdefault("GATEKEEPER_RECOVERY_SECRET_KEY", "test-recovery-secret")
os.environ.setdefault("GATEKEEPER_DATABASE_URL", "sqlite+aiosqlite:///./test_gatekeeper.db")
os.environ.setdefault("GATEKEEPER_PASSWORD_HASH_ROUNDS", "4")
os.environ.setdefault("GATEKEEPER_TOKEN_CLEANUP_INTERVAL_MINUTES", "0")
os.environ.setdefault("GATEKEEPER_GOOGLE_CLIENT_ID", "test-client-id")
os.environ.setdefault("GATEKEEPER_GOOGLE_CLIENT_SECRET", "test-client-secret")
os.environ.setdefault("GATEKEEPER_FRONTEND_URL", "http://frontend.test")

from gatekeeper.core.exceptions import OAuthError  # noqa: E402
from gatekeeper.db.session import Database  # noqa: E402
from gatekeeper.main import app  # noqa: E402
from gatekeeper.services.notifications import NotificationMessage  # noqa: E402
from gatekeeper.services.oauth import GoogleOAuthClient, OAuthProfile  # noqa: E402
from gatekeeper.services.rbac import seed_defaults  # noqa: E402


class RecordingProvider:
    """Notification provider that keeps messages in memory."""

    def __init__(self) -> None:
        self.messages: list[NotificationMessage] = []
        self.fail = False

    async def send(self, message: NotificationMessage) -> None:
        if self.fail:
            raise RuntimeError("Mail service unavailable")
        self.messages.append(message)


class StubOAuthClient(GoogleOAuthClient):
    """Google client whose code exchange returns a canned profile."""

    def __init__(self) -> None:
        super().__init__()
        self.profile: OAuthProfile | None = None

    async def exchange_code(self, code: str) -> OAuthProfile:
        if self.profile is None:
            raise OAuthError("No profile configured")
        return self.profile


@pytest_asyncio.fixture
async def database(tmp_path) -> AsyncIterator[Database]:
    """A fresh, seeded database per test."""

    db = Database(f"sqlite+aiosqlite:///{tmp_path / 'gatekeeper.db'}")
    db.open()
    await db.create_all()
    async with db.session() as session:
        await seed_defaults(session)
        await session.commit()
    yield db
    await db.close()


@pytest_asyncio.fixture
async def session(database: Database) -> AsyncIterator[AsyncSession]:
    async with database.session() as session:
        yield session


@pytest.fixture
def notifier() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture
def oauth_client() -> StubOAuthClient:
    return StubOAuthClient()


@pytest_asyncio.fixture
async def client(
    database: Database, notifier: RecordingProvider, oauth_client: StubOAuthClient
) -> AsyncIterator[AsyncClient]:
    """Provide an HTTP client for integration tests.

    ASGITransport does not run the lifespan, so application state is wired here.
    """

    app.state.database = database
    app.state.notifier = notifier
    app.state.oauth_client = oauth_client
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://testserver") as client:
        yield client


async def register_user(client: AsyncClient, email: str, password: str = "secret123", **extra) -> dict:
    response = await client.post("/api/auth/register", json={"email": email, "password": password, **extra})
    assert response.status_code == 201, response.text
    return response.json()


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}
