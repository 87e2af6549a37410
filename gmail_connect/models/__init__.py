"""Database models for the token service."""

from .base import Base, UTCDateTime, utcnow
from .family_token import FamilyToken

__all__ = ["Base", "FamilyToken", "UTCDateTime", "utcnow"]
