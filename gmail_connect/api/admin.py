"""Admin dashboard JSON endpoints under ``/admin``."""
from __future__ import annotations

import hmac
import logging
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, status

from gmail_connect.api.common import http_error
from gmail_connect.api.dependencies import (
    get_admin_sessions,
    get_credential_store,
    get_session_token,
    require_admin_session,
)
from gmail_connect.core.config import Settings, get_settings
from gmail_connect.core.errors import (
    BadRequestError,
    NotConnectedError,
    TransientError,
    UnauthorizedError,
)
from gmail_connect.schemas import (
    AdminLoginRequest,
    AdminLoginResponse,
    FamiliesResponse,
    FamilyRead,
    GenerateLinkRequest,
    GenerateLinkResponse,
)
from gmail_connect.services.admin_sessions import AdminSessionStore
from gmail_connect.services.credential_store import CredentialStore, CredentialStoreError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["admin"])


def _credentials_match(payload: AdminLoginRequest, settings: Settings) -> bool:
    if not settings.admin_password:
        return False
    username_ok = hmac.compare_digest(payload.username.encode(), settings.admin_username.encode())
    password_ok = hmac.compare_digest(payload.password.encode(), settings.admin_password.encode())
    return username_ok and password_ok


@router.post("/login", response_model=AdminLoginResponse)
async def login(
    payload: AdminLoginRequest,
    settings: Settings = Depends(get_settings),
    sessions: AdminSessionStore = Depends(get_admin_sessions),
) -> AdminLoginResponse:
    """Exchange admin credentials for a session token."""

    if not _credentials_match(payload, settings):
        logger.warning("Admin login failed", extra={"username": payload.username})
        raise http_error(UnauthorizedError("Invalid credentials"))

    token = sessions.create(payload.username)
    logger.info("Admin login succeeded", extra={"username": payload.username})
    return AdminLoginResponse(success=True, token=token)


@router.post("/logout")
async def logout(
    token: str | None = Depends(get_session_token),
    sessions: AdminSessionStore = Depends(get_admin_sessions),
) -> dict[str, bool]:
    if token:
        sessions.revoke(token)
    return {"success": True}


@router.get("/check-session", dependencies=[Depends(require_admin_session)])
async def check_session() -> dict[str, bool]:
    return {"valid": True}


@router.get(
    "/families",
    response_model=FamiliesResponse,
    dependencies=[Depends(require_admin_session)],
)
async def list_families(store: CredentialStore = Depends(get_credential_store)) -> FamiliesResponse:
    """List every connected family without exposing tokens."""

    try:
        records = await store.list_records()
    except CredentialStoreError as exc:
        raise http_error(TransientError("Failed to fetch families")) from exc
    logger.info("Listed families", extra={"count": len(records)})
    return FamiliesResponse(families=[FamilyRead.model_validate(record) for record in records])


@router.delete("/families/{family_id}", dependencies=[Depends(require_admin_session)])
async def delete_family(
    family_id: str,
    store: CredentialStore = Depends(get_credential_store),
) -> dict[str, bool]:
    """Remove a family's stored connection."""

    try:
        deleted = await store.delete(family_id)
        await store.commit()
    except CredentialStoreError as exc:
        raise http_error(TransientError("Failed to delete family")) from exc
    if not deleted:
        raise http_error(NotConnectedError("No connection found for this family"))
    logger.info("Deleted family connection", extra={"family_id": family_id})
    return {"success": True}


@router.post(
    "/generate-link",
    response_model=GenerateLinkResponse,
    status_code=status.HTTP_200_OK,
    dependencies=[Depends(require_admin_session)],
)
async def generate_link(
    payload: GenerateLinkRequest,
    settings: Settings = Depends(get_settings),
) -> GenerateLinkResponse:
    """Build the invite link a family opens to connect Gmail."""

    if not payload.family_id:
        raise http_error(BadRequestError("Family ID is required"))

    params = {"familyId": payload.family_id}
    if payload.family_name:
        params["familyName"] = payload.family_name
    link = f"{settings.base_url}/connect?{urlencode(params)}"
    logger.info("Generated invite link", extra={"family_id": payload.family_id})
    return GenerateLinkResponse(link=link)
