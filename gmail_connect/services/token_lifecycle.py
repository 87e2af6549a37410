"""Hand out usable access tokens, refreshing them on demand.

Every call re-reads the stored record; there is no cache beyond the
database. A token is reused until it comes within the lookahead threshold
of its expiry, at which point it is refreshed with Google and persisted
before being returned.

Overlapping calls for the same family inside one process are serialized
by a per-family lock, so only the first performs the refresh and the rest
pick up the persisted result. Separate processes can still race; the
outcome is two valid access tokens and is harmless.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from gmail_connect.core.errors import (
    ConfigurationError,
    NotConnectedError,
    ReauthRequiredError,
    TransientError,
)
from gmail_connect.core.oauth_google import (
    GoogleAPIError,
    GoogleNotConfiguredError,
    GoogleOAuthClient,
    InvalidGrantError,
    is_expiring_soon,
)
from gmail_connect.services.credential_store import CredentialStore, CredentialStoreError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AccessTokenResult:
    access_token: str
    expires_at: datetime | None
    refreshed: bool


class FamilyLocks:
    """Hand out one ``asyncio.Lock`` per family id.

    Locks are held weakly and disappear once no request is using them.
    """

    def __init__(self) -> None:
        self._locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()

    def get(self, family_id: str) -> asyncio.Lock:
        lock = self._locks.get(family_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[family_id] = lock
        return lock


family_locks = FamilyLocks()


class TokenLifecycleManager:
    """Decide between reusing and refreshing a family's access token."""

    def __init__(
        self,
        store: CredentialStore,
        oauth_client: GoogleOAuthClient,
        *,
        threshold_minutes: int = 5,
        locks: FamilyLocks | None = None,
    ):
        self.store = store
        self.oauth_client = oauth_client
        self.threshold_minutes = threshold_minutes
        self.locks = locks or family_locks

    async def get_valid_access_token(self, family_id: str) -> AccessTokenResult:
        """Return an access token for ``family_id`` that outlives the threshold.

        Raises ``NotConnectedError`` when the family has no record,
        ``ReauthRequiredError`` when Google rejects the refresh token,
        ``ConfigurationError`` when OAuth credentials are missing, and
        ``TransientError`` for any other provider or database failure.
        """
        lock = self.locks.get(family_id)
        async with lock:
            try:
                return await self._get_or_refresh(family_id)
            except Exception:
                try:
                    await self.store.rollback()
                except SQLAlchemyError:
                    logger.exception("Rollback failed", extra={"family_id": family_id})
                raise

    async def _get_or_refresh(self, family_id: str) -> AccessTokenResult:
        try:
            record = await self.store.get_by_family_id(family_id)
        except CredentialStoreError as exc:
            raise TransientError("Failed to load stored tokens. Please try again.") from exc

        if record is None:
            logger.info("No tokens stored for family", extra={"family_id": family_id})
            raise NotConnectedError()

        if not is_expiring_soon(record.token_expiry, self.threshold_minutes):
            logger.debug("Reusing stored access token", extra={"family_id": family_id})
            return AccessTokenResult(
                access_token=record.access_token,
                expires_at=record.token_expiry,
                refreshed=False,
            )

        if not record.refresh_token:
            logger.warning("Stored record has no refresh token", extra={"family_id": family_id})
            raise ReauthRequiredError()

        logger.info("Access token expiring soon, refreshing", extra={"family_id": family_id})
        try:
            grant = await self.oauth_client.refresh(record.refresh_token)
        except InvalidGrantError as exc:
            logger.warning("Refresh token rejected", extra={"family_id": family_id})
            raise ReauthRequiredError() from exc
        except GoogleNotConfiguredError as exc:
            raise ConfigurationError(str(exc)) from exc
        except GoogleAPIError as exc:
            raise TransientError("Failed to refresh token. Please try again.") from exc

        try:
            await self.store.update_access_token(family_id, grant.access_token, grant.expiry)
            await self.store.commit()
        except CredentialStoreError as exc:
            raise TransientError("Failed to store refreshed token. Please try again.") from exc

        logger.info("Refreshed access token for family", extra={"family_id": family_id})
        return AccessTokenResult(
            access_token=grant.access_token,
            expires_at=grant.expiry,
            refreshed=True,
        )
