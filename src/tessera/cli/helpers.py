"""Shared utilities for Tessera CLI commands.

Module-level state carries the global options (logging, store root) from
the app callback to the commands, and ``open_session`` builds the engine
components over one shared PersistentStore.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Literal

import typer
import yaml
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape

from tessera.core.config import (
    CONFIG_FILENAME,
    LogConfig,
    TesseraConfig,
    default_root_dir,
    load_config,
)
from tessera.core.errors import StorageWriteError
from tessera.core.logging import configure_logging, get_logger
from tessera.memory import (
    ConfidenceCalibrator,
    FeedbackCollector,
    GlobalMemory,
    PatternAggregator,
    PersistentStore,
    TeamSync,
)

_logger = get_logger("cli")


# =============================================================================
# Logging configuration
# =============================================================================


@dataclass
class CliLoggingConfig:
    """Logging options given on the command line.

    None means "not given": the value then comes from ``config.yaml``.
    """

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] | None = None
    file: Path | None = None
    format: Literal["json", "console", "both"] | None = None
    configured: bool = False


_log_config = CliLoggingConfig()


def set_log_level(level: str) -> None:
    _log_config.level = level.upper()  # type: ignore[assignment]


def set_log_file(path: Path | None) -> None:
    """Set the log file path.

    A log file without an explicit format gets JSON lines in the file.
    """
    _log_config.file = path
    if path and _log_config.format is None:
        _log_config.format = "json"


def set_log_format(fmt: str) -> None:
    _log_config.format = fmt.lower()  # type: ignore[assignment]


def configure_global_logging(console: Console, base: LogConfig | None = None) -> None:
    """Configure logging from ``config.yaml`` overridden by CLI options.

    Only configures once per session.

    Args:
        console: Rich console for error output.
        base: Logging section of the loaded configuration.

    Raises:
        typer.Exit: If the combined logging configuration is invalid.
    """
    if _log_config.configured:
        return

    overrides = {
        name: value
        for name, value in (
            ("level", _log_config.level),
            ("format", _log_config.format),
            ("file_path", _log_config.file),
        )
        if value is not None
    }
    try:
        merged = LogConfig.model_validate({**(base or LogConfig()).model_dump(), **overrides})
        configure_logging(
            level=merged.level,
            format=merged.format,
            file_path=merged.file_path,
            max_file_size_mb=merged.max_file_size_mb,
            backup_count=merged.backup_count,
            include_timestamps=merged.include_timestamps,
            include_context=merged.include_context,
        )
        _log_config.configured = True
    except (ValidationError, ValueError) as e:
        console.print(f"[red]Logging configuration error:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None


def reset_logging_state() -> None:
    """Reset CLI state so tests can reconfigure logging and the store root."""
    global _log_config, _home
    _log_config = CliLoggingConfig()
    _home = None


# =============================================================================
# Store root and configuration
# =============================================================================

_home: Path | None = None


def set_home(path: Path | None) -> None:
    global _home
    _home = path


def get_home() -> Path:
    """Store root: ``--home`` if given, else ``$TESSERA_HOME`` or ``~/.tessera``."""
    return _home if _home is not None else default_root_dir()


def load_cli_config(console: Console) -> TesseraConfig:
    """Load ``config.yaml`` from the store root.

    Raises:
        typer.Exit: If the file exists but is invalid.
    """
    home = get_home()
    try:
        config = load_config(home / CONFIG_FILENAME)
    except (ValidationError, ValueError, OSError, yaml.YAMLError) as e:
        console.print(f"[red]Error loading config:[/red] {escape(str(e))}")
        raise typer.Exit(1) from None
    if _home is not None:
        config.storage.root_dir = home
    return config


# =============================================================================
# Engine session
# =============================================================================


@dataclass
class Session:
    """Every engine component wired over one store."""

    config: TesseraConfig
    store: PersistentStore
    memory: GlobalMemory
    feedback: FeedbackCollector
    calibrator: ConfidenceCalibrator
    aggregator: PatternAggregator
    team_sync: TeamSync


@contextmanager
def open_session(console: Console) -> Iterator[Session]:
    """Build the engine for one command and flush pending writes on exit.

    Raises:
        typer.Exit: If pending writes cannot be flushed.
    """
    config = load_cli_config(console)
    store = PersistentStore(config.storage.root_dir, debounce_ms=config.storage.debounce_ms)
    memory = GlobalMemory(store)
    aggregator = PatternAggregator(memory)
    session = Session(
        config=config,
        store=store,
        memory=memory,
        feedback=FeedbackCollector(store, config.feedback),
        calibrator=ConfidenceCalibrator(store, config.calibration),
        aggregator=aggregator,
        team_sync=TeamSync(memory, aggregator, config.sync),
    )
    _logger.debug("session_opened", root=str(config.storage.root_dir))
    try:
        yield session
    finally:
        try:
            store.close()
        except StorageWriteError as e:
            console.print(f"[red]Failed to save learned state:[/red] {escape(str(e))}")
            raise typer.Exit(1) from None
