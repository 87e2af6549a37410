"""Service layer for the token service."""
