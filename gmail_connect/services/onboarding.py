"""First-time Gmail connection flow for a family."""
from __future__ import annotations

import logging
from dataclasses import dataclass

from gmail_connect.core.errors import (
    BadRequestError,
    ConfigurationError,
    MissingRefreshTokenError,
    TransientError,
)
from gmail_connect.core.oauth_google import (
    GoogleAPIError,
    GoogleNotConfiguredError,
    GoogleOAuthClient,
)
from gmail_connect.core.state import decode_state
from gmail_connect.services.credential_store import CredentialStore, CredentialStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ConnectedFamily:
    family_id: str
    family_name: str | None
    email: str


class OnboardingFlow:
    """Start the consent round trip and persist the first credential record.

    Every failure is raised as a ``ServiceError`` whose message is safe to
    show to the person connecting their account. Nothing is written unless
    the exchange yields a refresh token and the account email resolves.
    """

    def __init__(self, store: CredentialStore, oauth_client: GoogleOAuthClient):
        self.store = store
        self.oauth_client = oauth_client

    def start(self, family_id: str | None, family_name: str | None = None) -> str:
        """Return the Google consent URL for ``family_id``."""
        if not family_id or not family_id.strip():
            raise BadRequestError("Missing family ID")
        try:
            return self.oauth_client.build_authorize_url(family_id.strip(), family_name or None)
        except GoogleNotConfiguredError as exc:
            logger.error("Cannot start OAuth flow, Google credentials missing")
            raise ConfigurationError("Failed to start authentication") from exc

    async def complete(
        self,
        *,
        code: str | None,
        state: str | None,
        error: str | None = None,
    ) -> ConnectedFamily:
        """Handle the provider callback and store the family's credentials."""
        if error:
            raise BadRequestError(f"Authentication failed: {error}")
        if not code:
            raise BadRequestError("Missing authorization code")

        pending = decode_state(state)
        logger.info("Processing OAuth callback", extra={"family_id": pending.family_id})

        try:
            grant = await self.oauth_client.exchange_code(code)
            if not grant.refresh_token:
                logger.error("No refresh token received", extra={"family_id": pending.family_id})
                raise MissingRefreshTokenError()
            email = await self.oauth_client.fetch_identity_email(grant.access_token)
        except GoogleNotConfiguredError as exc:
            raise ConfigurationError("Failed to complete authentication") from exc
        except GoogleAPIError as exc:
            raise TransientError("Failed to complete authentication. Please try again.") from exc

        try:
            await self.store.upsert(
                pending.family_id,
                family_name=pending.family_name,
                email=email,
                access_token=grant.access_token,
                refresh_token=grant.refresh_token,
                token_expiry=grant.expiry,
            )
            await self.store.commit()
        except CredentialStoreError as exc:
            await self.store.rollback()
            raise TransientError("Failed to save your connection. Please try again.") from exc

        logger.info("Stored tokens for family", extra={"family_id": pending.family_id})
        return ConnectedFamily(
            family_id=pending.family_id,
            family_name=pending.family_name,
            email=email,
        )
