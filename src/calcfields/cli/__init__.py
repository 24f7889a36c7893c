"""Command-line interface."""

from calcfields.cli.main import app, main

__all__ = ["app", "main"]
