"""Pydantic schemas for the admin dashboard API."""
from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class AdminLoginRequest(BaseModel):
    username: str = ""
    password: str = ""


class AdminLoginResponse(BaseModel):
    success: bool
    token: str


class FamilyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    family_id: str
    family_name: str | None = None
    email: str | None = None
    created_at: datetime
    updated_at: datetime


class FamiliesResponse(BaseModel):
    families: list[FamilyRead]


class GenerateLinkRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    family_id: str | None = Field(default=None, alias="familyId")
    family_name: str | None = Field(default=None, alias="familyName")


class GenerateLinkResponse(BaseModel):
    link: str
