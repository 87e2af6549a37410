"""OAuth connection and token endpoints under ``/api/auth``."""
from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import RedirectResponse
from pydantic import ValidationError

from gmail_connect.api.common import http_error
from gmail_connect.api.dependencies import (
    enforce_refresh_rate_limit,
    get_credential_store,
    get_onboarding_flow,
    get_token_manager,
    require_api_key,
)
from gmail_connect.core.errors import BadRequestError, ServiceError, TransientError
from gmail_connect.schemas import ConnectionStatusRead, RefreshRequest, RefreshResponse
from gmail_connect.services.credential_store import CredentialStore, CredentialStoreError
from gmail_connect.services.onboarding import OnboardingFlow
from gmail_connect.services.token_lifecycle import TokenLifecycleManager

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


def error_redirect(message: str) -> RedirectResponse:
    """Send a browser to the generic error page with a readable reason."""
    return RedirectResponse(
        f"/error?{urlencode({'message': message})}", status_code=status.HTTP_302_FOUND
    )


@router.get("/start", status_code=status.HTTP_302_FOUND)
async def start_authorization(
    family_id: str | None = Query(default=None, alias="familyId"),
    family_name: str | None = Query(default=None, alias="familyName"),
    flow: OnboardingFlow = Depends(get_onboarding_flow),
) -> RedirectResponse:
    """Redirect the family to Google's consent screen."""

    try:
        authorize_url = flow.start(family_id, family_name)
    except ServiceError as exc:
        logger.warning("Could not start OAuth flow", extra={"reason": exc.code})
        return error_redirect(exc.message)
    logger.info("Redirecting to Google consent screen", extra={"family_id": family_id})
    return RedirectResponse(authorize_url, status_code=status.HTTP_302_FOUND)


@router.get("/callback", status_code=status.HTTP_302_FOUND)
async def authorization_callback(
    code: str | None = None,
    state: str | None = None,
    error: str | None = None,
    flow: OnboardingFlow = Depends(get_onboarding_flow),
) -> RedirectResponse:
    """Exchange the authorization code and store the family's tokens."""

    try:
        connected = await flow.complete(code=code, state=state, error=error)
    except ServiceError as exc:
        logger.warning("OAuth callback failed", extra={"reason": exc.code})
        return error_redirect(exc.message)

    query = urlencode({"email": connected.email, "familyName": connected.family_name or ""})
    return RedirectResponse(f"/success?{query}", status_code=status.HTTP_302_FOUND)


async def _read_family_id(request: Request) -> str:
    """Pull ``family_id`` out of a JSON body, or return "" when it cannot be read."""
    try:
        body = await request.json()
    except ValueError:
        return ""
    try:
        payload = RefreshRequest.model_validate(body)
    except ValidationError:
        return ""
    return payload.family_id.strip() if payload.family_id else ""


@router.post(
    "/refresh",
    response_model=RefreshResponse,
    dependencies=[Depends(require_api_key), Depends(enforce_refresh_rate_limit)],
)
async def refresh_access_token(
    request: Request,
    manager: TokenLifecycleManager = Depends(get_token_manager),
) -> RefreshResponse:
    """Return a usable access token for a family, refreshing it when needed."""

    family_id = await _read_family_id(request)
    if not family_id:
        raise http_error(BadRequestError("Missing family_id in request body"))

    logger.info("Token requested", extra={"family_id": family_id})
    try:
        result = await manager.get_valid_access_token(family_id)
    except ServiceError as exc:
        logger.warning(
            "Token request failed", extra={"family_id": family_id, "reason": exc.code}
        )
        raise http_error(exc) from exc

    return RefreshResponse(
        access_token=result.access_token,
        expires_at=result.expires_at,
        refreshed=result.refreshed,
    )


@router.get("/status")
async def connection_status(
    family_id: str | None = Query(default=None, alias="familyId"),
    store: CredentialStore = Depends(get_credential_store),
) -> dict[str, Any]:
    """Report whether a family has connected Gmail."""

    if not family_id:
        raise http_error(BadRequestError("Missing familyId parameter"))

    try:
        connection = await store.get_connection_status(family_id)
    except CredentialStoreError as exc:
        raise http_error(TransientError("Failed to check connection status")) from exc

    status_read = ConnectionStatusRead(
        connected=connection.connected,
        email=connection.email,
        connected_at=connection.connected_at,
    )
    return status_read.model_dump(mode="json", by_alias=True, exclude_none=True)
