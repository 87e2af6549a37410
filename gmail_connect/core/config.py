"""Configuration management for the token service."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Any

from dotenv import load_dotenv
from pydantic import BaseModel, Field, field_validator

load_dotenv()

DEFAULT_GOOGLE_SCOPES = [
    "https://www.googleapis.com/auth/gmail.readonly",
    "https://www.googleapis.com/auth/gmail.labels",
    "https://www.googleapis.com/auth/gmail.modify",
]


class Settings(BaseModel):
    """Application configuration loaded from environment variables."""

    app_env: str = "dev"
    version: str = "1.0.0"
    database_url: str = "sqlite:///./tokens.db"
    cors_origins: list[str] = Field(default_factory=list)
    base_url: str = "http://localhost:8000"
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = ""
    google_scopes: list[str] = Field(default_factory=lambda: list(DEFAULT_GOOGLE_SCOPES))
    api_secret_key: str = ""
    admin_username: str = "admin"
    admin_password: str = ""
    admin_session_ttl_seconds: int = Field(default=24 * 60 * 60, gt=0)
    refresh_rate_limit: int = Field(default=60, gt=0)
    refresh_rate_window_seconds: int = Field(default=60, gt=0)
    token_expiry_threshold_minutes: int = Field(default=5, ge=0)

    @field_validator("cors_origins", mode="before")
    @classmethod
    def assemble_cors_origins(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            if not value:
                return []
            return [origin.strip() for origin in value.split(",") if origin.strip()]
        if isinstance(value, list):
            return value
        return []

    @field_validator("google_scopes", mode="before")
    @classmethod
    def assemble_google_scopes(cls, value: Any) -> list[str]:
        if isinstance(value, str):
            scopes = [scope for scope in value.replace(",", " ").split() if scope]
            return scopes or list(DEFAULT_GOOGLE_SCOPES)
        if isinstance(value, list):
            return value
        return list(DEFAULT_GOOGLE_SCOPES)

    @field_validator("base_url", mode="after")
    @classmethod
    def strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")

    @property
    def async_database_url(self) -> str:
        if self.database_url.startswith("sqlite+aiosqlite://"):
            return self.database_url
        if self.database_url.startswith("sqlite:///"):
            return self.database_url.replace("sqlite:///", "sqlite+aiosqlite:///")
        if self.database_url.startswith("sqlite://"):
            return self.database_url.replace("sqlite://", "sqlite+aiosqlite://")
        return self.database_url

    @property
    def oauth_redirect_uri(self) -> str:
        """Return the OAuth callback URL registered with Google."""
        if self.google_redirect_uri:
            return self.google_redirect_uri
        return f"{self.base_url}/api/auth/callback"

    def missing_required(self) -> list[str]:
        """Return the names of required environment variables that are unset."""
        required = {
            "GOOGLE_CLIENT_ID": self.google_client_id,
            "GOOGLE_CLIENT_SECRET": self.google_client_secret,
            "API_SECRET_KEY": self.api_secret_key,
            "BASE_URL": os.getenv("BASE_URL", ""),
        }
        return [name for name, value in required.items() if not value]


def _build_settings() -> Settings:
    raw_values: dict[str, Any] = {
        "app_env": os.getenv("APP_ENV"),
        "version": os.getenv("APP_VERSION"),
        "database_url": os.getenv("DATABASE_URL"),
        "cors_origins": os.getenv("CORS_ORIGINS"),
        "base_url": os.getenv("BASE_URL"),
        "google_client_id": os.getenv("GOOGLE_CLIENT_ID"),
        "google_client_secret": os.getenv("GOOGLE_CLIENT_SECRET"),
        "google_redirect_uri": os.getenv("GOOGLE_REDIRECT_URI"),
        "google_scopes": os.getenv("GOOGLE_SCOPES"),
        "api_secret_key": os.getenv("API_SECRET_KEY"),
        "admin_username": os.getenv("ADMIN_USERNAME"),
        "admin_password": os.getenv("ADMIN_PASSWORD"),
        "admin_session_ttl_seconds": os.getenv("ADMIN_SESSION_TTL_SECONDS"),
        "refresh_rate_limit": os.getenv("REFRESH_RATE_LIMIT"),
        "refresh_rate_window_seconds": os.getenv("REFRESH_RATE_WINDOW_SECONDS"),
        "token_expiry_threshold_minutes": os.getenv("TOKEN_EXPIRY_THRESHOLD_MINUTES"),
    }
    filtered_values = {key: value for key, value in raw_values.items() if value is not None}
    return Settings(**filtered_values)


@lru_cache()
def get_settings() -> Settings:
    """Return a cached settings instance."""
    return _build_settings()
