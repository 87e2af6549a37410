"""Pydantic schemas for the token refresh and status endpoints."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class RefreshRequest(BaseModel):
    family_id: str | None = None


class RefreshResponse(BaseModel):
    access_token: str
    expires_at: datetime | None
    refreshed: bool


class ConnectionStatusRead(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    connected: bool
    email: str | None = None
    connected_at: datetime | None = Field(default=None, serialization_alias="connectedAt")
