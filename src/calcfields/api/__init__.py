"""HTTP API for semantic views, tool descriptors and field requests."""

from calcfields.api.main import create_app

__all__ = ["create_app"]
