"""Common helpers for API error responses."""
from __future__ import annotations

from fastapi import HTTPException

from gmail_connect.core.errors import RateLimitedError, ServiceError


def http_error(exc: ServiceError) -> HTTPException:
    """Translate a service error into an ``HTTPException`` for the JSON API."""

    headers = None
    if isinstance(exc, RateLimitedError):
        headers = {"Retry-After": str(exc.retry_after)}
    return HTTPException(status_code=exc.status_code, detail=exc.as_detail(), headers=headers)
