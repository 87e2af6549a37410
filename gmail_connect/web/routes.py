"""Browser-facing pages: connect landing, result pages and admin login."""
from __future__ import annotations

import logging
from pathlib import Path
from urllib.parse import urlencode

from fastapi import APIRouter, Query, Request, status
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates

templates = Jinja2Templates(directory=str(Path(__file__).resolve().parent / "templates"))

logger = logging.getLogger(__name__)

router = APIRouter(include_in_schema=False)


@router.get("/connect", response_class=HTMLResponse, name="web_connect", response_model=None)
async def connect_page(
    request: Request,
    family_id: str | None = Query(default=None, alias="familyId"),
    family_name: str | None = Query(default=None, alias="familyName"),
) -> HTMLResponse | RedirectResponse:
    """Render the landing page a family opens from its invite link."""

    if not family_id:
        logger.warning("Connect page opened without familyId")
        message = "Missing family ID. Please use a valid connection link."
        return RedirectResponse(
            f"/error?{urlencode({'message': message})}", status_code=status.HTTP_302_FOUND
        )

    params = {"familyId": family_id}
    if family_name:
        params["familyName"] = family_name
    return templates.TemplateResponse(
        request,
        "connect.html",
        {
            "family_name": family_name,
            "start_url": f"/api/auth/start?{urlencode(params)}",
        },
    )


@router.get("/success", response_class=HTMLResponse, name="web_success")
async def success_page(
    request: Request,
    email: str | None = None,
    family_name: str | None = Query(default=None, alias="familyName"),
) -> HTMLResponse:
    return templates.TemplateResponse(
        request, "success.html", {"email": email, "family_name": family_name}
    )


@router.get("/error", response_class=HTMLResponse, name="web_error")
async def error_page(request: Request, message: str | None = None) -> HTMLResponse:
    return templates.TemplateResponse(
        request,
        "error.html",
        {"message": message or "Something went wrong. Please try again."},
    )


@router.get("/admin", response_class=HTMLResponse, name="web_admin")
async def admin_page(request: Request) -> HTMLResponse:
    """Render the admin dashboard shell; data is loaded from ``/admin/*``."""
    return templates.TemplateResponse(request, "admin.html", {})
