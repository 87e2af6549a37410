"""Caller-facing error taxonomy.

Provider and store failures are translated into one of these before they
leave the service layer. Each carries a stable machine ``code`` for the
JSON API and a short human-readable ``message`` for browser redirects.
"""
from __future__ import annotations

from fastapi import status


class ServiceError(Exception):
    """Base class for errors surfaced to API callers."""

    code = "SERVICE_ERROR"
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_message = "The request could not be completed"

    def __init__(self, message: str | None = None) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)

    def as_detail(self) -> dict[str, str]:
        return {"code": self.code, "message": self.message}


class ConfigurationError(ServiceError):
    """Provider or store credentials are missing; not retryable."""

    code = "CONFIGURATION_ERROR"
    default_message = "The service is not fully configured"


class NotConnectedError(ServiceError):
    """No credential record exists for the family."""

    code = "NOT_CONNECTED"
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "No tokens found for this family. Please connect Gmail first."


class MissingRefreshTokenError(ServiceError):
    """The provider completed the exchange but withheld a refresh token."""

    code = "MISSING_REFRESH_TOKEN"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = (
        "Google did not issue a refresh token. Remove this app's access from your "
        "Google account and connect again."
    )


class ReauthRequiredError(ServiceError):
    """The stored refresh token was rejected; the family must reconnect."""

    code = "REAUTH_REQUIRED"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Refresh token is invalid or expired. Please reconnect Gmail."


class TransientError(ServiceError):
    """Network or backend hiccup; safe to retry."""

    code = "TRANSIENT"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Temporary failure. Please try again."


class BadRequestError(ServiceError):
    code = "BAD_REQUEST"
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Missing required input"


class InvalidStateError(BadRequestError):
    code = "INVALID_STATE"
    default_message = "Invalid state parameter"


class UnauthorizedError(ServiceError):
    code = "UNAUTHORIZED"
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Missing credentials"


class ForbiddenError(ServiceError):
    code = "FORBIDDEN"
    status_code = status.HTTP_403_FORBIDDEN
    default_message = "Invalid credentials"


class RateLimitedError(ServiceError):
    code = "RATE_LIMITED"
    status_code = status.HTTP_429_TOO_MANY_REQUESTS
    default_message = "Rate limit exceeded. Please try again later."

    def __init__(self, retry_after: int, message: str | None = None) -> None:
        super().__init__(message)
        self.retry_after = retry_after
