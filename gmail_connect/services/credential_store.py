"""Keyed storage for per-family OAuth credentials."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gmail_connect.models import FamilyToken

logger = logging.getLogger(__name__)


class CredentialStoreError(Exception):
    """Raised when the backing database fails or a write is rejected."""


class CredentialNotFoundError(CredentialStoreError):
    """Raised when an update targets a family with no stored record."""


@dataclass(frozen=True)
class ConnectionStatus:
    connected: bool
    email: str | None = None
    connected_at: datetime | None = None


class CredentialStore:
    """Upsert and read ``FamilyToken`` rows keyed by ``family_id``.

    Writes are flushed but not committed; the caller owns the unit of work
    and finishes it with :meth:`commit` or :meth:`rollback`.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_family_id(self, family_id: str) -> FamilyToken | None:
        """Return the family's record, or ``None`` when it was never connected."""
        try:
            result = await self.session.execute(
                select(FamilyToken).where(FamilyToken.family_id == family_id)
            )
        except SQLAlchemyError as exc:
            logger.error("Failed to load tokens", extra={"family_id": family_id}, exc_info=exc)
            raise CredentialStoreError("Failed to load stored tokens") from exc
        return result.scalars().first()

    async def upsert(
        self,
        family_id: str,
        *,
        access_token: str,
        token_expiry: datetime | None,
        refresh_token: str | None = None,
        family_name: str | None = None,
        email: str | None = None,
    ) -> FamilyToken:
        """Insert or overwrite the family's record.

        A blank ``refresh_token`` never replaces a stored one: Google only
        reissues it on re-consent, so losing it would kill the connection.
        """
        record = await self.get_by_family_id(family_id)
        if record is None:
            if not refresh_token:
                raise CredentialStoreError("A refresh token is required to store a new connection")
            record = FamilyToken(
                family_id=family_id,
                family_name=family_name,
                email=email,
                access_token=access_token,
                refresh_token=refresh_token,
                token_expiry=token_expiry,
            )
            self.session.add(record)
            action = "created"
        else:
            record.family_name = family_name
            record.email = email
            record.access_token = access_token
            record.token_expiry = token_expiry
            if refresh_token:
                record.refresh_token = refresh_token
            action = "updated"

        await self._flush()
        logger.info("Upserted tokens", extra={"family_id": family_id, "action": action})
        return record

    async def update_access_token(
        self, family_id: str, access_token: str, token_expiry: datetime
    ) -> FamilyToken:
        """Replace the access token and its expiry together."""
        record = await self.get_by_family_id(family_id)
        if record is None:
            raise CredentialNotFoundError(f"No stored tokens for family {family_id!r}")

        record.access_token = access_token
        record.token_expiry = token_expiry
        await self._flush()
        logger.info(
            "Updated access token",
            extra={"family_id": family_id, "expires_at": token_expiry.isoformat()},
        )
        return record

    async def get_connection_status(self, family_id: str) -> ConnectionStatus:
        record = await self.get_by_family_id(family_id)
        if record is None:
            return ConnectionStatus(connected=False)
        return ConnectionStatus(connected=True, email=record.email, connected_at=record.created_at)

    async def list_records(self) -> list[FamilyToken]:
        """Return every stored record, most recently connected first."""
        try:
            result = await self.session.execute(
                select(FamilyToken).order_by(FamilyToken.created_at.desc(), FamilyToken.id.desc())
            )
        except SQLAlchemyError as exc:
            logger.error("Failed to list families", exc_info=exc)
            raise CredentialStoreError("Failed to list stored tokens") from exc
        return list(result.scalars())

    async def delete(self, family_id: str) -> bool:
        """Remove the family's record; return False when none existed."""
        record = await self.get_by_family_id(family_id)
        if record is None:
            return False
        await self.session.delete(record)
        await self._flush()
        logger.info("Deleted tokens", extra={"family_id": family_id})
        return True

    async def commit(self) -> None:
        try:
            await self.session.commit()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Failed to commit token changes", exc_info=exc)
            raise CredentialStoreError("Failed to persist tokens") from exc

    async def rollback(self) -> None:
        await self.session.rollback()

    async def _flush(self) -> None:
        try:
            await self.session.flush()
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Failed to write tokens", exc_info=exc)
            raise CredentialStoreError("Failed to write stored tokens") from exc
