"""Core infrastructure: configuration, logging, connections, result types."""

from calcfields.core.connections import ConnectionConfig, ConnectionManager
from calcfields.core.models import Result

__all__ = [
    "ConnectionConfig",
    "ConnectionManager",
    "Result",
]
