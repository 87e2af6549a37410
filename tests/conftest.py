from __future__ import annotations

import os
import sys
from collections.abc import AsyncIterator, Awaitable, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import anyio  # noqa: E402
import pytest  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402

TEST_DB_PATH = ROOT / "test.db"
if TEST_DB_PATH.exists():
    TEST_DB_PATH.unlink()

TEST_ENV = {
    "APP_ENV": "test",
    "DATABASE_URL": f"sqlite+aiosqlite:///{TEST_DB_PATH}",
    "BASE_URL": "http://testserver",
    "GOOGLE_CLIENT_ID": "client-id",
    "GOOGLE_CLIENT_SECRET": "client-secret",
    "GOOGLE_REDIRECT_URI": "",
    "API_SECRET_KEY": "test-api-key",
    "ADMIN_USERNAME": "admin",
    "ADMIN_PASSWORD": "admin-pass",
    "REFRESH_RATE_LIMIT": "60",
    "REFRESH_RATE_WINDOW_SECONDS": "60",
}
os.environ.update(TEST_ENV)

from gmail_connect.core.config import get_settings  # noqa: E402

get_settings.cache_clear()


@pytest.fixture(scope="session")
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture()
async def database() -> AsyncIterator[None]:
    from gmail_connect.core.db import create_tables

    get_settings.cache_clear()
    await create_tables(drop_existing=True)
    yield
    get_settings.cache_clear()


@pytest.fixture()
async def session(database):
    from gmail_connect.core.db import AsyncSessionLocal

    async with AsyncSessionLocal() as db_session:
        yield db_session


@pytest.fixture()
async def client(database) -> AsyncIterator[AsyncClient]:
    from gmail_connect.main import app

    app.state.refresh_limiter.reset()
    app.state.admin_sessions.clear()

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


@pytest.fixture()
def seed_family(database) -> Callable[..., Awaitable[Any]]:
    """Insert a credential record directly, bypassing the OAuth flow."""

    from gmail_connect.core.db import AsyncSessionLocal
    from gmail_connect.models import FamilyToken

    async def _seed(
        family_id: str = "family-1",
        *,
        access_token: str = "stored-access-token",
        refresh_token: str = "stored-refresh-token",
        token_expiry: datetime | None = None,
        expires_in: timedelta | None = timedelta(hours=1),
        family_name: str | None = "The Smiths",
        email: str | None = "smiths@gmail.com",
    ) -> FamilyToken:
        if token_expiry is None and expires_in is not None:
            token_expiry = datetime.now(UTC) + expires_in
        an_hour_ago = datetime.now(UTC) - timedelta(hours=1)
        async with AsyncSessionLocal() as db_session:
            record = FamilyToken(
                family_id=family_id,
                family_name=family_name,
                email=email,
                access_token=access_token,
                refresh_token=refresh_token,
                token_expiry=token_expiry,
                created_at=an_hour_ago,
                updated_at=an_hour_ago,
            )
            db_session.add(record)
            await db_session.commit()
            return record

    return _seed


@pytest.fixture()
def load_family(database) -> Callable[[str], Awaitable[Any]]:
    """Read a credential record through a fresh session."""

    from sqlalchemy import select

    from gmail_connect.core.db import AsyncSessionLocal
    from gmail_connect.models import FamilyToken

    async def _load(family_id: str):
        async with AsyncSessionLocal() as db_session:
            result = await db_session.execute(
                select(FamilyToken).where(FamilyToken.family_id == family_id)
            )
            return result.scalars().first()

    return _load


class FakeGoogle:
    """Stand-in for Google's token and Gmail profile endpoints."""

    def __init__(self) -> None:
        self.token_requests: list[dict[str, str]] = []
        self.token_errors: list[Exception] = []
        self.issue_refresh_token = True
        self.expires_in = 3600
        self.email: str | None = "smiths@gmail.com"
        self.profile_requests: list[str] = []
        self._counter = 0

    @property
    def refresh_requests(self) -> list[dict[str, str]]:
        return [p for p in self.token_requests if p["grant_type"] == "refresh_token"]

    async def request_token(self, payload: dict[str, str]) -> dict[str, Any]:
        self.token_requests.append(payload)
        # Let overlapping requests interleave.
        await anyio.sleep(0.01)
        if self.token_errors:
            raise self.token_errors.pop(0)
        self._counter += 1
        data: dict[str, Any] = {
            "access_token": f"new-access-token-{self._counter}",
            "expires_in": self.expires_in,
            "token_type": "Bearer",
        }
        if payload["grant_type"] == "authorization_code" and self.issue_refresh_token:
            data["refresh_token"] = "granted-refresh-token"
        return data

    async def fetch_profile(self, access_token: str) -> dict[str, Any]:
        self.profile_requests.append(access_token)
        if self.email is None:
            return {}
        return {"emailAddress": self.email, "messagesTotal": 10}


@pytest.fixture()
def fake_google(monkeypatch) -> FakeGoogle:
    from gmail_connect.core.oauth_google import GoogleOAuthClient

    fake = FakeGoogle()

    async def fake_request_token(self, payload):  # type: ignore[override]
        return await fake.request_token(payload)

    async def fake_fetch_profile(self, access_token):  # type: ignore[override]
        return await fake.fetch_profile(access_token)

    monkeypatch.setattr(GoogleOAuthClient, "_request_token", fake_request_token)
    monkeypatch.setattr(GoogleOAuthClient, "_fetch_profile", fake_fetch_profile)
    return fake
