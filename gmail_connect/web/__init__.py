"""Server-rendered pages for the Gmail connection flow."""

from .routes import router

__all__ = ["router"]
