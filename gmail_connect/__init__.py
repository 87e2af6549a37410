"""Family Gmail OAuth connection and token refresh service."""
