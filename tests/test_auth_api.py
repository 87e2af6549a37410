from __future__ import annotations

from datetime import UTC, datetime, timedelta
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from gmail_connect.core.config import get_settings
from gmail_connect.core.oauth_google import TOKEN_URL, GoogleAPIError
from gmail_connect.core.state import decode_state, encode_state
from gmail_connect.services.credential_store import CredentialStore, CredentialStoreError

API_HEADERS = {"x-api-key": "test-api-key"}


def _error_message(location: str) -> str:
    parsed = urlparse(location)
    assert parsed.path == "/error"
    return parse_qs(parsed.query)["message"][0]


def _token_endpoint_returns_html(monkeypatch) -> None:
    """Make Google's token endpoint answer with a captive-portal page."""

    original_post = httpx.AsyncClient.post

    async def post(self, url, *args, **kwargs):
        if str(url) == TOKEN_URL:
            return httpx.Response(
                200, text="<html>proxy login</html>", request=httpx.Request("POST", TOKEN_URL)
            )
        return await original_post(self, url, *args, **kwargs)

    monkeypatch.setattr(httpx.AsyncClient, "post", post)


@pytest.mark.anyio("asyncio")
async def test_start_redirects_to_google_consent(client):
    response = await client.get(
        "/api/auth/start", params={"familyId": "family-1", "familyName": "The Smiths"}
    )

    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert location.netloc == "accounts.google.com"
    params = parse_qs(location.query)
    assert params["prompt"] == ["consent"]
    assert params["access_type"] == ["offline"]
    assert params["redirect_uri"] == ["http://testserver/api/auth/callback"]
    pending = decode_state(params["state"][0])
    assert (pending.family_id, pending.family_name) == ("family-1", "The Smiths")


@pytest.mark.anyio("asyncio")
async def test_start_without_family_id_redirects_to_error(client):
    response = await client.get("/api/auth/start")

    assert response.status_code == 302
    assert _error_message(response.headers["location"]) == "Missing family ID"


@pytest.mark.anyio("asyncio")
async def test_start_without_google_credentials_redirects_to_error(client, monkeypatch):
    monkeypatch.setenv("GOOGLE_CLIENT_ID", "")
    get_settings.cache_clear()

    response = await client.get("/api/auth/start", params={"familyId": "family-1"})

    assert response.status_code == 302
    assert _error_message(response.headers["location"]) == "Failed to start authentication"


@pytest.mark.anyio("asyncio")
async def test_callback_stores_tokens_and_redirects_to_success(client, fake_google, load_family):
    state = encode_state("family-1", "The Smiths")

    response = await client.get("/api/auth/callback", params={"code": "auth-code", "state": state})

    assert response.status_code == 302
    location = urlparse(response.headers["location"])
    assert location.path == "/success"
    assert parse_qs(location.query) == {"email": ["smiths@gmail.com"], "familyName": ["The Smiths"]}

    assert fake_google.token_requests[0]["code"] == "auth-code"
    assert fake_google.profile_requests == ["new-access-token-1"]

    stored = await load_family("family-1")
    assert stored.family_name == "The Smiths"
    assert stored.email == "smiths@gmail.com"
    assert stored.access_token == "new-access-token-1"
    assert stored.refresh_token == "granted-refresh-token"
    assert stored.token_expiry > datetime.now(UTC) + timedelta(minutes=55)


@pytest.mark.anyio("asyncio")
async def test_callback_without_refresh_token_stores_nothing(client, fake_google, load_family):
    fake_google.issue_refresh_token = False
    state = encode_state("family-1", "The Smiths")

    response = await client.get("/api/auth/callback", params={"code": "auth-code", "state": state})

    assert response.status_code == 302
    assert "refresh token" in _error_message(response.headers["location"])
    assert fake_google.profile_requests == []
    assert await load_family("family-1") is None


@pytest.mark.anyio("asyncio")
async def test_callback_without_refresh_token_leaves_existing_record(
    client, fake_google, seed_family, load_family
):
    await seed_family("family-1", access_token="old-access", refresh_token="old-refresh")
    fake_google.issue_refresh_token = False

    response = await client.get(
        "/api/auth/callback", params={"code": "auth-code", "state": encode_state("family-1")}
    )

    assert urlparse(response.headers["location"]).path == "/error"
    stored = await load_family("family-1")
    assert stored.access_token == "old-access"
    assert stored.refresh_token == "old-refresh"


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    ("params", "expected_message"),
    [
        ({"error": "access_denied"}, "Authentication failed: access_denied"),
        ({"state": "e30="}, "Missing authorization code"),
        ({"code": "auth-code"}, "Missing state parameter"),
        ({"code": "auth-code", "state": "%%%"}, "Invalid state parameter"),
        ({"code": "auth-code", "state": "e30="}, "Invalid state parameter"),
    ],
)
async def test_callback_failures_redirect_to_error(
    client, fake_google, load_family, params, expected_message
):
    response = await client.get("/api/auth/callback", params=params)

    assert response.status_code == 302
    assert _error_message(response.headers["location"]) == expected_message
    assert fake_google.token_requests == []


@pytest.mark.anyio("asyncio")
async def test_callback_exchange_failure_redirects_to_error(client, fake_google, load_family):
    fake_google.token_errors.append(GoogleAPIError("bad code", status_code=400, error_code="invalid_grant"))

    response = await client.get(
        "/api/auth/callback", params={"code": "used-code", "state": encode_state("family-1")}
    )

    assert response.status_code == 302
    assert "Failed to complete authentication" in _error_message(response.headers["location"])
    assert await load_family("family-1") is None


@pytest.mark.anyio("asyncio")
async def test_callback_with_non_json_token_response_redirects_to_error(
    client, monkeypatch, load_family
):
    _token_endpoint_returns_html(monkeypatch)

    response = await client.get(
        "/api/auth/callback", params={"code": "auth-code", "state": encode_state("family-1")}
    )

    assert response.status_code == 302
    assert _error_message(response.headers["location"]) == (
        "Failed to complete authentication. Please try again."
    )
    assert await load_family("family-1") is None


@pytest.mark.anyio("asyncio")
async def test_callback_save_failure_redirects_to_error(
    client, fake_google, monkeypatch, load_family
):
    async def failing_upsert(self, family_id, **kwargs):
        raise CredentialStoreError("Failed to write tokens")

    monkeypatch.setattr(CredentialStore, "upsert", failing_upsert)

    response = await client.get(
        "/api/auth/callback", params={"code": "auth-code", "state": encode_state("family-1")}
    )

    assert response.status_code == 302
    assert _error_message(response.headers["location"]) == (
        "Failed to save your connection. Please try again."
    )
    assert await load_family("family-1") is None


@pytest.mark.anyio("asyncio")
async def test_refresh_with_expired_token_returns_new_token(client, fake_google, seed_family, load_family):
    seeded = await seed_family("family-1", expires_in=timedelta(minutes=-30))

    response = await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS)

    assert response.status_code == 200
    payload = response.json()
    assert payload["refreshed"] is True
    assert payload["access_token"] == "new-access-token-1"
    assert datetime.fromisoformat(payload["expires_at"]) > seeded.token_expiry
    assert fake_google.refresh_requests[0]["refresh_token"] == "stored-refresh-token"

    stored = await load_family("family-1")
    assert stored.access_token == "new-access-token-1"
    assert stored.refresh_token == "stored-refresh-token"


@pytest.mark.anyio("asyncio")
async def test_refresh_with_valid_token_returns_stored_token(client, fake_google, seed_family):
    seeded = await seed_family("family-1", expires_in=timedelta(hours=1))

    first = await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS)
    second = await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS)

    assert first.status_code == second.status_code == 200
    assert first.json() == second.json()
    assert first.json()["access_token"] == "stored-access-token"
    assert first.json()["refreshed"] is False
    assert datetime.fromisoformat(first.json()["expires_at"]) == seeded.token_expiry
    assert fake_google.token_requests == []


@pytest.mark.anyio("asyncio")
async def test_refresh_unknown_family_is_not_found(client, fake_google):
    response = await client.post("/api/auth/refresh", json={"family_id": "nobody"}, headers=API_HEADERS)

    assert response.status_code == 404
    assert response.json()["error"]["code"] == "NOT_CONNECTED"


@pytest.mark.anyio("asyncio")
async def test_refresh_with_revoked_refresh_token_requires_reauth(client, fake_google, seed_family):
    await seed_family("family-1", expires_in=timedelta(minutes=-30))
    fake_google.token_errors.append(
        GoogleAPIError("Token has been expired or revoked.", status_code=400, error_code="invalid_grant")
    )

    response = await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS)

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "REAUTH_REQUIRED"


@pytest.mark.anyio("asyncio")
async def test_refresh_provider_outage_is_transient(client, fake_google, seed_family):
    await seed_family("family-1", expires_in=timedelta(minutes=-30))
    fake_google.token_errors.append(GoogleAPIError("backend error", status_code=503))

    response = await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS)

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "TRANSIENT"


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("body", [{}, {"family_id": ""}, {"family_id": "   "}, None])
async def test_refresh_requires_family_id(client, body):
    response = await client.post("/api/auth/refresh", json=body, headers=API_HEADERS)

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST"


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize("body", [{"family_id": 123}, {"family_id": None}, ["family-1"], "family-1"])
async def test_refresh_rejects_unreadable_family_id(client, body):
    response = await client.post("/api/auth/refresh", json=body, headers=API_HEADERS)

    assert response.status_code == 400
    assert response.json()["error"] == {
        "code": "BAD_REQUEST",
        "message": "Missing family_id in request body",
    }


@pytest.mark.anyio("asyncio")
@pytest.mark.parametrize(
    ("content", "content_type"),
    [
        ("family_id=family-1", "application/x-www-form-urlencoded"),
        ('{"family_id": ', "application/json"),
    ],
)
async def test_refresh_rejects_non_json_body(client, seed_family, content, content_type):
    await seed_family("family-1")

    response = await client.post(
        "/api/auth/refresh",
        content=content,
        headers={**API_HEADERS, "content-type": content_type},
    )

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST"


@pytest.mark.anyio("asyncio")
async def test_refresh_with_non_json_token_response_is_transient(
    client, monkeypatch, seed_family, load_family
):
    await seed_family("family-1", expires_in=timedelta(minutes=-5))
    _token_endpoint_returns_html(monkeypatch)

    response = await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS)

    assert response.status_code == 503
    assert response.json()["error"]["code"] == "TRANSIENT"
    assert (await load_family("family-1")).access_token == "stored-access-token"


@pytest.mark.anyio("asyncio")
async def test_refresh_store_outage_is_transient(client, fake_google, monkeypatch):
    async def failing_lookup(self, family_id):
        raise CredentialStoreError("Failed to load tokens")

    monkeypatch.setattr(CredentialStore, "get_by_family_id", failing_lookup)

    response = await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS)

    assert response.status_code == 503
    assert response.json()["error"] == {
        "code": "TRANSIENT",
        "message": "Failed to load stored tokens. Please try again.",
    }
    assert fake_google.token_requests == []


@pytest.mark.anyio("asyncio")
async def test_refresh_rejects_wrong_api_key(client, seed_family):
    await seed_family("family-1")

    response = await client.post(
        "/api/auth/refresh", json={"family_id": "family-1"}, headers={"x-api-key": "wrong"}
    )

    assert response.status_code == 403
    assert response.json()["error"]["code"] == "FORBIDDEN"


@pytest.mark.anyio("asyncio")
async def test_refresh_rejects_missing_api_key(client, seed_family):
    await seed_family("family-1")

    response = await client.post("/api/auth/refresh", json={"family_id": "family-1"})

    assert response.status_code == 401
    assert response.json()["error"]["code"] == "UNAUTHORIZED"


@pytest.mark.anyio("asyncio")
async def test_refresh_without_configured_api_key_fails_closed(client, monkeypatch):
    monkeypatch.setenv("API_SECRET_KEY", "")
    get_settings.cache_clear()

    response = await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS)

    assert response.status_code == 500
    assert response.json()["error"]["code"] == "CONFIGURATION_ERROR"


@pytest.mark.anyio("asyncio")
async def test_refresh_is_rate_limited_per_caller(client, fake_google, seed_family):
    await seed_family("family-1", expires_in=timedelta(hours=1))

    for _ in range(60):
        response = await client.post(
            "/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS
        )
        assert response.status_code == 200

    limited = await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS)

    assert limited.status_code == 429
    assert limited.json()["error"]["code"] == "RATE_LIMITED"
    assert 1 <= int(limited.headers["retry-after"]) <= 60


@pytest.mark.anyio("asyncio")
async def test_rejected_api_keys_do_not_consume_rate_limit(client, seed_family):
    await seed_family("family-1", expires_in=timedelta(hours=1))

    for _ in range(61):
        await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers={"x-api-key": "bad"})

    response = await client.post("/api/auth/refresh", json={"family_id": "family-1"}, headers=API_HEADERS)

    assert response.status_code == 200


@pytest.mark.anyio("asyncio")
async def test_status_for_connected_family(client, seed_family):
    seeded = await seed_family("family-1", email="smiths@gmail.com")

    response = await client.get("/api/auth/status", params={"familyId": "family-1"})

    assert response.status_code == 200
    payload = response.json()
    assert payload["connected"] is True
    assert payload["email"] == "smiths@gmail.com"
    assert datetime.fromisoformat(payload["connectedAt"]) == seeded.created_at
    assert "access_token" not in payload


@pytest.mark.anyio("asyncio")
async def test_status_for_unknown_family(client):
    response = await client.get("/api/auth/status", params={"familyId": "nobody"})

    assert response.status_code == 200
    assert response.json() == {"connected": False}


@pytest.mark.anyio("asyncio")
async def test_status_requires_family_id(client):
    response = await client.get("/api/auth/status")

    assert response.status_code == 400
    assert response.json()["error"]["code"] == "BAD_REQUEST"
