"""Google OAuth client for the Gmail connection flow."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any
from urllib.parse import urlencode

import httpx

from gmail_connect.core.config import Settings, get_settings
from gmail_connect.core.state import encode_state

AUTH_BASE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
GMAIL_PROFILE_URL = "https://gmail.googleapis.com/gmail/v1/users/me/profile"
DEFAULT_EXPIRES_IN = 3600
REQUEST_TIMEOUT = 10.0

logger = logging.getLogger(__name__)


class GoogleOAuthError(Exception):
    """Base error for Google OAuth operations."""


class GoogleNotConfiguredError(GoogleOAuthError):
    """Raised when OAuth credentials are not configured."""


class GoogleAPIError(GoogleOAuthError):
    """Raised when Google returns an error response or cannot be reached."""

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.error_code = error_code


class InvalidGrantError(GoogleAPIError):
    """Raised when Google rejects a refresh token as revoked or expired."""


@dataclass(frozen=True)
class TokenGrant:
    """Credentials returned by the token endpoint."""

    access_token: str
    expiry: datetime
    refresh_token: str | None = None


def is_expiring_soon(
    expiry: datetime | None,
    threshold_minutes: int = 5,
    *,
    now: datetime | None = None,
) -> bool:
    """Return True when ``expiry`` falls within ``threshold_minutes`` of now.

    A missing expiry counts as expired so callers always refresh when in
    doubt. Naive datetimes are interpreted as UTC.
    """

    if expiry is None:
        return True
    if expiry.tzinfo is None:
        expiry = expiry.replace(tzinfo=UTC)
    current = now or datetime.now(UTC)
    return expiry - current <= timedelta(minutes=threshold_minutes)


class GoogleOAuthClient:
    """Build consent URLs and talk to Google's token and profile endpoints."""

    def __init__(self, settings: Settings):
        self.settings = settings

    def _require_configured(self) -> None:
        if not (
            self.settings.google_client_id
            and self.settings.google_client_secret
            and self.settings.oauth_redirect_uri
        ):
            raise GoogleNotConfiguredError("Google OAuth credentials are not fully configured")

    def build_authorize_url(self, family_id: str, family_name: str | None = None) -> str:
        """Return the consent-screen URL for a family."""

        self._require_configured()
        params: dict[str, Any] = {
            "client_id": self.settings.google_client_id,
            "redirect_uri": self.settings.oauth_redirect_uri,
            "response_type": "code",
            "scope": " ".join(self.settings.google_scopes),
            "access_type": "offline",
            # Forces a new refresh token even for a previously connected account.
            "prompt": "consent",
            "include_granted_scopes": "true",
            "state": encode_state(family_id, family_name),
        }
        logger.info("Generated Google authorization URL", extra={"family_id": family_id})
        return f"{AUTH_BASE_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> TokenGrant:
        """Exchange an authorization code for access and refresh tokens."""

        self._require_configured()
        payload = {
            "code": code,
            "client_id": self.settings.google_client_id,
            "client_secret": self.settings.google_client_secret,
            "redirect_uri": self.settings.oauth_redirect_uri,
            "grant_type": "authorization_code",
        }
        token_data = await self._request_token(payload)
        grant = self._parse_grant(token_data)
        logger.info(
            "Exchanged authorization code",
            extra={
                "expires_at": grant.expiry.isoformat(),
                "has_refresh_token": grant.refresh_token is not None,
            },
        )
        return grant

    async def refresh(self, refresh_token: str) -> TokenGrant:
        """Mint a new access token from a long-lived refresh token."""

        self._require_configured()
        payload = {
            "refresh_token": refresh_token,
            "client_id": self.settings.google_client_id,
            "client_secret": self.settings.google_client_secret,
            "grant_type": "refresh_token",
        }
        try:
            token_data = await self._request_token(payload)
        except GoogleAPIError as exc:
            if exc.error_code == "invalid_grant":
                raise InvalidGrantError(
                    "Refresh token was rejected by Google",
                    status_code=exc.status_code,
                    error_code=exc.error_code,
                ) from exc
            raise
        grant = self._parse_grant(token_data)
        logger.info("Refreshed access token", extra={"expires_at": grant.expiry.isoformat()})
        return grant

    async def fetch_identity_email(self, access_token: str) -> str:
        """Return the Gmail address the access token belongs to."""

        data = await self._fetch_profile(access_token)
        email = data.get("emailAddress") if isinstance(data, dict) else None
        if not email:
            raise GoogleAPIError("Gmail profile response missing emailAddress")
        return str(email)

    @staticmethod
    def _parse_grant(token_data: dict[str, Any]) -> TokenGrant:
        access_token = token_data.get("access_token")
        if not access_token:
            raise GoogleAPIError("Google token response missing access_token")

        try:
            expires_in = int(token_data.get("expires_in", DEFAULT_EXPIRES_IN))
        except (TypeError, ValueError, OverflowError) as exc:
            raise GoogleAPIError("Google token response has an invalid expires_in") from exc
        expiry = datetime.now(UTC) + timedelta(seconds=expires_in)
        return TokenGrant(
            access_token=access_token,
            expiry=expiry,
            refresh_token=token_data.get("refresh_token") or None,
        )

    async def _request_token(self, payload: dict[str, str]) -> dict[str, Any]:
        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.post(TOKEN_URL, data=payload)
        except httpx.HTTPError as exc:  # pragma: no cover - network failure
            logger.error("Failed to communicate with Google OAuth token endpoint", exc_info=exc)
            raise GoogleAPIError("Unable to reach Google OAuth endpoint") from exc

        if response.status_code >= 400:
            error_code = _extract_error_code(response)
            logger.error(
                "Google OAuth token request failed",
                extra={
                    "status_code": response.status_code,
                    "error_code": error_code,
                    "grant_type": payload.get("grant_type"),
                },
            )
            raise GoogleAPIError(
                "Google OAuth token request failed",
                status_code=response.status_code,
                error_code=error_code,
            )
        return _json_body(response)

    async def _fetch_profile(self, access_token: str) -> dict[str, Any]:
        headers = {"Authorization": f"Bearer {access_token}"}
        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.get(GMAIL_PROFILE_URL, headers=headers)
        except httpx.HTTPError as exc:  # pragma: no cover - network failure
            logger.error("Gmail profile request failed", exc_info=exc)
            raise GoogleAPIError("Failed to communicate with Gmail") from exc

        if response.status_code >= 400:
            logger.error("Gmail profile request failed", extra={"status_code": response.status_code})
            raise GoogleAPIError("Gmail API error", status_code=response.status_code)
        return _json_body(response)


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        body = response.json()
    except ValueError as exc:
        logger.error("Google returned a non-JSON response", extra={"status_code": response.status_code})
        raise GoogleAPIError("Invalid response from Google", status_code=response.status_code) from exc
    if not isinstance(body, dict):
        raise GoogleAPIError("Invalid response from Google", status_code=response.status_code)
    return body


def _extract_error_code(response: httpx.Response) -> str | None:
    try:
        body = response.json()
    except ValueError:
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), str):
        return body["error"]
    return None


def get_google_oauth_client() -> GoogleOAuthClient:
    return GoogleOAuthClient(get_settings())
