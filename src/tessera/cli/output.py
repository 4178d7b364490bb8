"""Rich output formatting for the Tessera CLI.

Table builders, colour schemes and JSON/error printers shared by every
command, so all commands render confidences and consensus the same way.
"""

from __future__ import annotations

import json
from typing import Any, Literal

from rich.console import Console
from rich.markup import escape
from rich.table import Table

from tessera.memory.models import AggregatedPattern, ConsensusLevel, Pattern

# =============================================================================
# Shared console instance
# =============================================================================

console = Console()


# =============================================================================
# Colour schemes
# =============================================================================

CONSENSUS_COLORS: dict[ConsensusLevel, str] = {
    ConsensusLevel.STRONG: "green",
    ConsensusLevel.MODERATE: "cyan",
    ConsensusLevel.WEAK: "yellow",
    ConsensusLevel.NONE: "dim",
}


def confidence_color(confidence: float) -> str:
    if confidence >= 0.8:
        return "green"
    if confidence >= 0.5:
        return "yellow"
    return "red"


def format_confidence(confidence: float) -> str:
    """Render a confidence as a coloured percentage."""
    color = confidence_color(confidence)
    return f"[{color}]{confidence * 100:.0f}%[/{color}]"


def format_consensus(level: ConsensusLevel) -> str:
    color = CONSENSUS_COLORS[level]
    return f"[{color}]{level.value}[/{color}]"


# =============================================================================
# Table builders
# =============================================================================


def create_patterns_table(patterns: list[Pattern], title: str = "Learned Patterns") -> Table:
    """Table of stored patterns.

    Args:
        patterns: Patterns to list, in display order.
        title: Title for the table.
    """
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Type", style="cyan")
    table.add_column("Pattern", no_wrap=False)
    table.add_column("Confidence", justify="right", width=12)
    table.add_column("Seen", justify="right", width=6)
    table.add_column("Sources", no_wrap=False)
    for pattern in patterns:
        table.add_row(
            escape(pattern.type),
            escape(pattern.value),
            format_confidence(pattern.confidence),
            str(pattern.occurrences),
            escape(", ".join(pattern.sources)) or "-",
        )
    return table


def create_aggregates_table(patterns: list[AggregatedPattern], title: str) -> Table:
    """Table of cross-project aggregates."""
    table = Table(title=title, show_header=True, header_style="bold")
    table.add_column("Type", style="cyan")
    table.add_column("Pattern", no_wrap=False)
    table.add_column("Confidence", justify="right", width=12)
    table.add_column("Projects", justify="right", width=9)
    table.add_column("Consensus", width=10)
    for pattern in patterns:
        table.add_row(
            escape(pattern.type),
            escape(pattern.value),
            format_confidence(pattern.confidence),
            f"{pattern.project_count} ({pattern.project_ratio * 100:.0f}%)",
            format_consensus(pattern.consensus_level),
        )
    return table


def create_simple_table(show_header: bool = False) -> Table:
    """A table without box styling, for key-value displays."""
    return Table(show_header=show_header, box=None)


# =============================================================================
# Printers
# =============================================================================


def print_json(data: Any, console_instance: Console | None = None) -> None:
    """Print ``data`` as indented JSON, free of markup and line wrapping."""
    out = console_instance or console
    out.print(
        json.dumps(data, indent=2, default=str),
        markup=False,
        highlight=False,
        soft_wrap=True,
    )


def output_error(
    message: str,
    *,
    hints: list[str] | None = None,
    severity: Literal["error", "warning"] = "error",
    console_instance: Console | None = None,
) -> None:
    """Print a coloured error or warning with optional hints."""
    out = console_instance or console
    color = "red" if severity == "error" else "yellow"
    label = "Error" if severity == "error" else "Warning"
    out.print(f"[{color}]{label}:[/{color}] {escape(message)}")

    if hints:
        out.print()
        out.print("[dim]Hints:[/dim]")
        for hint in hints:
            out.print(f"  - {escape(hint)}")
