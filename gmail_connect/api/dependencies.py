"""Shared FastAPI dependencies for the token service routes."""
from __future__ import annotations

import hmac
import logging

from fastapi import Depends, Header, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from gmail_connect.api.common import http_error
from gmail_connect.core import oauth_google
from gmail_connect.core.config import Settings, get_settings
from gmail_connect.core.db import get_session
from gmail_connect.core.errors import (
    ConfigurationError,
    ForbiddenError,
    RateLimitedError,
    UnauthorizedError,
)
from gmail_connect.services.admin_sessions import AdminSession, AdminSessionStore
from gmail_connect.services.credential_store import CredentialStore
from gmail_connect.services.onboarding import OnboardingFlow
from gmail_connect.services.rate_limit import FixedWindowRateLimiter, retry_after_seconds
from gmail_connect.services.token_lifecycle import TokenLifecycleManager

logger = logging.getLogger(__name__)


def get_credential_store(session: AsyncSession = Depends(get_session)) -> CredentialStore:
    return CredentialStore(session)


def get_token_manager(
    store: CredentialStore = Depends(get_credential_store),
    settings: Settings = Depends(get_settings),
) -> TokenLifecycleManager:
    return TokenLifecycleManager(
        store,
        oauth_google.get_google_oauth_client(),
        threshold_minutes=settings.token_expiry_threshold_minutes,
    )


def get_onboarding_flow(store: CredentialStore = Depends(get_credential_store)) -> OnboardingFlow:
    return OnboardingFlow(store, oauth_google.get_google_oauth_client())


def require_api_key(
    x_api_key: str | None = Header(default=None, alias="x-api-key"),
    settings: Settings = Depends(get_settings),
) -> None:
    """Reject requests whose ``x-api-key`` header does not match the shared secret."""

    if not settings.api_secret_key:
        logger.error("API_SECRET_KEY is not set; rejecting protected request")
        raise http_error(ConfigurationError("API key validation is not properly configured"))
    if not x_api_key:
        logger.warning("Request missing x-api-key header")
        raise http_error(UnauthorizedError("Missing API key. Please provide x-api-key header."))
    if not hmac.compare_digest(x_api_key.encode(), settings.api_secret_key.encode()):
        logger.warning("Invalid API key provided")
        raise http_error(ForbiddenError("Invalid API key"))


def get_refresh_limiter(request: Request) -> FixedWindowRateLimiter:
    return request.app.state.refresh_limiter


def enforce_refresh_rate_limit(
    request: Request,
    limiter: FixedWindowRateLimiter = Depends(get_refresh_limiter),
) -> None:
    client_address = request.client.host if request.client else "unknown"
    decision = limiter.hit(client_address)
    if not decision.allowed:
        logger.warning("Refresh rate limit exceeded", extra={"client": client_address})
        raise http_error(RateLimitedError(retry_after_seconds(decision)))


def get_admin_sessions(request: Request) -> AdminSessionStore:
    return request.app.state.admin_sessions


def get_session_token(
    x_session_token: str | None = Header(default=None, alias="x-session-token"),
    session: str | None = Query(default=None),
) -> str | None:
    return x_session_token or session


def require_admin_session(
    token: str | None = Depends(get_session_token),
    sessions: AdminSessionStore = Depends(get_admin_sessions),
) -> AdminSession:
    """Return the caller's admin session or reject the request with 401."""

    if not token:
        raise http_error(UnauthorizedError("Please login first"))
    admin_session = sessions.validate(token)
    if admin_session is None:
        raise http_error(UnauthorizedError("Session expired or invalid. Please login again."))
    return admin_session
