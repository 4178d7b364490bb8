"""Team sync commands.

Commands:
- export: Write a team export of local patterns
- import: Fold a team export into local memory
- validate: Check a team export file
- merge: Combine several team exports into one
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Annotated, Any

import typer

from tessera.core.errors import UnknownStrategyError
from tessera.memory.models import ConflictStrategy
from tessera.memory.team_sync import validate_export

from ..helpers import open_session
from ..output import console, output_error


def _read_json(path: Path) -> Any:
    """Read a JSON file for a command, exiting with a message on failure."""
    try:
        with open(path, encoding="utf-8") as f:
            return json.load(f)
    except FileNotFoundError:
        output_error(f"File not found: {path}")
        raise typer.Exit(1) from None
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
        output_error(f"Cannot read {path}: {e}")
        raise typer.Exit(1) from None


def _write_json(path: Path, data: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)


def export(
    team: Annotated[str, typer.Argument(help="Team name recorded in the export")],
    output: Annotated[Path, typer.Argument(help="File to write")],
    min_confidence: Annotated[
        float | None,
        typer.Option("--min-confidence", "-c", min=0.0, max=1.0, help="Minimum pattern confidence"),
    ] = None,
    consensus_only: Annotated[
        bool, typer.Option("--consensus-only", help="Export only cross-project consensus patterns")
    ] = False,
) -> None:
    """Export local patterns for a team.

    Examples:
        tessera export platform team.json
        tessera export platform team.json --consensus-only
    """
    with open_session(console) as session:
        if consensus_only:
            data = session.team_sync.export_consensus_patterns(team)
            _write_json(output, data)
            count = data["patternCount"]
        else:
            count = session.team_sync.export_to_file(output, team, min_confidence=min_confidence)

    console.print(f"[green]Exported {count} pattern(s)[/green] to {output}")


def import_(
    file: Annotated[Path, typer.Argument(help="Team export to import")],
    strategy: Annotated[
        str | None,
        typer.Option(
            "--strategy",
            "-s",
            help="Conflict strategy: " + ", ".join(s.value for s in ConflictStrategy),
        ),
    ] = None,
    boost: Annotated[
        float | None,
        typer.Option("--boost", min=0.0, max=0.5, help="Confidence boost for new patterns"),
    ] = None,
    no_preserve_local: Annotated[
        bool,
        typer.Option("--no-preserve-local", help="Also import team preferences not set locally"),
    ] = False,
) -> None:
    """Import a team export into local memory.

    Examples:
        tessera import team.json
        tessera import team.json --strategy merge_all --boost 0.05
    """
    validation = validate_export(_read_json(file))
    if not validation.valid:
        output_error(f"{file} is not a valid team export", hints=validation.errors)
        raise typer.Exit(1)

    with open_session(console) as session:
        try:
            result = session.team_sync.import_from_file(
                file,
                strategy=strategy,
                confidence_boost=boost,
                preserve_local=not no_preserve_local,
            )
        except UnknownStrategyError as e:
            output_error(str(e))
            raise typer.Exit(1) from None

    if not result.success:
        output_error(result.error or "Import failed")
        raise typer.Exit(1)

    summary = result.summary
    console.print(f"[green]Imported {file}[/green]")
    console.print(f"  New patterns: {summary.patterns_imported}")
    console.print(f"  Conflicts resolved: {summary.conflicts_resolved}")
    console.print(f"  Skipped: {summary.patterns_skipped}")
    console.print(f"  Expertise areas: {summary.expertise_imported}")
    console.print(f"  Preferences: {summary.preferences_imported}")


def validate(
    file: Annotated[Path, typer.Argument(help="Team export to check")],
) -> None:
    """Check that a file is a well-formed team export."""
    validation = validate_export(_read_json(file))
    if validation.valid:
        console.print(
            f"[green]Valid[/green] team export v{validation.version} "
            f"with {validation.pattern_count} pattern(s)"
        )
        return

    output_error(f"{file} is not a valid team export", hints=validation.errors)
    raise typer.Exit(1)


def merge(
    output: Annotated[Path, typer.Argument(help="File to write the merged export to")],
    files: Annotated[list[Path], typer.Argument(help="Team exports to merge")],
) -> None:
    """Merge several team exports into one.

    Example:
        tessera merge merged.json web.json api.json
    """
    exports = [_read_json(path) for path in files]
    with open_session(console) as session:
        result = session.team_sync.merge_team_exports(exports)

    if not result.success or result.data is None:
        output_error(result.error or "Nothing to merge")
        raise typer.Exit(1)

    _write_json(output, result.data)
    stats = result.data["stats"]
    console.print(
        f"[green]Merged {stats['teamsIncluded']} team export(s)[/green]: "
        f"{stats['totalPatterns']} pattern(s), {stats['crossTeamPatterns']} shared across teams"
    )
