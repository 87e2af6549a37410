"""Configuration, persistence and Google OAuth primitives."""
