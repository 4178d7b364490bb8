"""Tessera CLI.

Package structure:
    cli/
    ├── __init__.py           # App assembly and global options
    ├── helpers.py            # Logging state, store root, engine session
    ├── output.py             # Rich formatting
    └── commands/
        ├── memory.py         # stats, patterns, consensus, recommend, calibration
        └── sync.py           # export, import, validate, merge
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from tessera import __version__

from . import helpers as helpers
from .commands import (
    calibration,
    consensus,
    export,
    import_,
    merge,
    patterns,
    recommend,
    stats,
    validate,
)
from .helpers import (
    configure_global_logging,
    load_cli_config,
    set_home,
    set_log_file,
    set_log_format,
    set_log_level,
)
from .output import console

# =============================================================================
# Typer app definition
# =============================================================================

app = typer.Typer(
    name="tessera",
    help="Cross-project pattern memory and confidence calibration",
    add_completion=False,
)


# =============================================================================
# Global option callbacks
# =============================================================================


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"Tessera v{__version__}")
        raise typer.Exit()


def log_level_callback(value: str | None) -> str | None:
    if value:
        set_log_level(value)
    return value


def log_file_callback(value: Path | None) -> Path | None:
    if value:
        set_log_file(value)
    return value


def log_format_callback(value: str | None) -> str | None:
    if value:
        set_log_format(value)
    return value


def home_callback(value: Path | None) -> Path | None:
    if value:
        set_home(value)
    return value


@app.callback()
def main(
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
    log_level: Annotated[
        str | None,
        typer.Option(
            "--log-level",
            "-L",
            callback=log_level_callback,
            help="Logging level (DEBUG, INFO, WARNING, ERROR)",
            envvar="TESSERA_LOG_LEVEL",
        ),
    ] = None,
    log_file: Annotated[
        Path | None,
        typer.Option(
            "--log-file",
            callback=log_file_callback,
            help="Path for log file output",
            envvar="TESSERA_LOG_FILE",
        ),
    ] = None,
    log_format: Annotated[
        str | None,
        typer.Option(
            "--log-format",
            callback=log_format_callback,
            help="Log format: json, console, or both",
            envvar="TESSERA_LOG_FORMAT",
        ),
    ] = None,
    home: Annotated[
        Path | None,
        typer.Option(
            "--home",
            callback=home_callback,
            help="Store root directory (default ~/.tessera)",
            envvar="TESSERA_HOME",
        ),
    ] = None,
) -> None:
    """Tessera - cross-project pattern memory and confidence calibration."""
    configure_global_logging(console, load_cli_config(console).log)


# =============================================================================
# Command registration
# =============================================================================

# Inspection
app.command()(stats)
app.command()(patterns)
app.command()(consensus)
app.command()(recommend)
app.command()(calibration)

# Team sync
app.command()(export)
app.command(name="import")(import_)
app.command()(validate)
app.command()(merge)


__all__ = ["app", "console", "helpers"]
