"""API routers."""

from calcfields.api.routers import fields, views

__all__ = ["fields", "views"]
