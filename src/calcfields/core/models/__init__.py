"""Core data models used across all modules."""

from calcfields.core.models.base import Result

__all__ = ["Result"]
