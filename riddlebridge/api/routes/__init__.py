"""Bridge API routes."""

from riddlebridge.api.routes import bridge

__all__ = ["bridge"]
