"""HTTP API for the usage guard."""

from usage_guard.api.app import create_app

__all__ = ["create_app"]
