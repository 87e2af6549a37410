"""Pydantic schemas for the token service API."""

from .admin import (
    AdminLoginRequest,
    AdminLoginResponse,
    FamiliesResponse,
    FamilyRead,
    GenerateLinkRequest,
    GenerateLinkResponse,
)
from .token import ConnectionStatusRead, RefreshRequest, RefreshResponse

__all__ = [
    "AdminLoginRequest",
    "AdminLoginResponse",
    "ConnectionStatusRead",
    "FamiliesResponse",
    "FamilyRead",
    "GenerateLinkRequest",
    "GenerateLinkResponse",
    "RefreshRequest",
    "RefreshResponse",
]
