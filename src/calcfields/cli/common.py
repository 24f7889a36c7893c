"""Shared CLI utilities and constants."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from pathlib import Path
from typing import TYPE_CHECKING, Annotated, TypeVar

import typer
from dotenv import load_dotenv
from rich.console import Console

from calcfields.catalog.provider import CatalogNotFoundError
from calcfields.core.config import Settings, get_settings
from calcfields.core.logging import configure_logging

if TYPE_CHECKING:
    from calcfields.context import FieldsContext

T = TypeVar("T")

# Load .env file from current directory (for API keys, etc.)
load_dotenv()

# Shared console instance
console = Console()

# Common type aliases for typer options
ScopeArg = Annotated[
    str,
    typer.Argument(help="Scope (catalog) the field belongs to, e.g. 'credit'"),
]

OutputDirOption = Annotated[
    Path | None,
    typer.Option(
        "--output",
        "-o",
        help="Directory holding metadata.db and data.duckdb (default: CALCFIELDS_OUTPUT_DIR)",
        dir_okay=True,
        file_okay=False,
        resolve_path=True,
    ),
]

ConfigDirOption = Annotated[
    Path | None,
    typer.Option(
        "--config",
        "-c",
        help="Config directory with llm.yaml, prompts/, catalogs/, tools/",
        exists=True,
        dir_okay=True,
        file_okay=False,
        resolve_path=True,
    ),
]

RequesterOption = Annotated[
    str,
    typer.Option(
        "--by",
        help="Identity recorded as the requester",
        envvar="USER",
    ),
]

JsonFlag = Annotated[
    bool,
    typer.Option(
        "--json",
        help="Output as JSON for scripting",
    ),
]

VerboseOption = Annotated[
    int,
    typer.Option(
        "--verbose",
        "-v",
        count=True,
        help="Increase logging verbosity (-v=INFO, -vv=DEBUG)",
    ),
]


def setup_logging(verbosity: int = 0, log_format: str = "console") -> None:
    """Configure structured logging based on verbosity level.

    Args:
        verbosity: 0=WARNING, 1=INFO, 2+=DEBUG
        log_format: "console" for development, "json" for production/cloud
    """
    if verbosity >= 2:
        level = "DEBUG"
    elif verbosity >= 1:
        level = "INFO"
    else:
        level = "WARNING"

    configure_logging(
        log_level=level,
        log_format=log_format,
        show_timestamps=verbosity >= 1,
        color=log_format == "console",
    )


def build_settings(output_dir: Path | None, config_dir: Path | None) -> Settings:
    """Settings from the environment with command-line overrides."""
    overrides: dict[str, Path] = {}
    if output_dir is not None:
        overrides["output_dir"] = output_dir
    if config_dir is not None:
        overrides["config_path"] = config_dir
    settings = get_settings()
    return settings.model_copy(update=overrides) if overrides else settings


def run_in_context(
    work: Callable[[FieldsContext], Awaitable[T]],
    output_dir: Path | None,
    config_dir: Path | None,
    with_generator: bool = False,
) -> T:
    """Open a FieldsContext, run ``work`` in it and close it again.

    Unknown scopes and missing LLM configuration are reported and exit 1.
    """
    from calcfields.context import FieldsContext

    settings = build_settings(output_dir, config_dir)

    async def _run() -> T:
        async with FieldsContext(settings, with_generator=with_generator) as ctx:
            return await work(ctx)

    try:
        return asyncio.run(_run())
    except CatalogNotFoundError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1) from e
    except (FileNotFoundError, ValueError) as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1) from e
