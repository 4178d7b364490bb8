"""Inspection commands over the local memory.

Commands:
- stats: Summary of memory, feedback and calibration state
- patterns: List stored patterns
- consensus: Cross-project consensus patterns
- recommend: Per-type pattern recommendations
- calibration: Reliability analysis of logged predictions
"""

from __future__ import annotations

from typing import Annotated

import typer

from tessera.memory.models import ConsensusLevel

from ..helpers import open_session
from ..output import (
    console,
    create_aggregates_table,
    create_patterns_table,
    create_simple_table,
    format_confidence,
    format_consensus,
    print_json,
)


def stats(
    json_output: bool = typer.Option(
        False,
        "--json",
        "-j",
        help="Output as JSON for machine parsing",
    ),
) -> None:
    """Show memory, feedback and calibration statistics.

    Examples:
        tessera stats         # Human-readable summary
        tessera stats --json  # JSON output for scripting
    """
    with open_session(console) as session:
        memory_stats = session.memory.get_stats()
        aggregate_stats = session.aggregator.get_stats()
        feedback_stats = session.feedback.get_stats()
        calibration_stats = session.calibrator.get_stats()

    if json_output:
        print_json(
            {
                "memory": memory_stats,
                "consensus": aggregate_stats,
                "feedback": {
                    "total": feedback_stats["total"],
                    "acceptance_rate": round(feedback_stats["acceptance_rate"], 3),
                    "categories_tracked": feedback_stats["categories_tracked"],
                    "types_tracked": feedback_stats["types_tracked"],
                },
                "calibration": calibration_stats,
            }
        )
        return

    console.print("[bold]Tessera Memory Statistics[/bold]\n")

    console.print("[bold cyan]Global Memory[/bold cyan]")
    console.print(f"  Patterns: [green]{memory_stats['total_patterns']}[/green]")
    console.print(f"  High confidence: {memory_stats['high_confidence_patterns']}")
    console.print(f"  Expertise areas: {memory_stats['expertise_areas']}")
    console.print(f"  Preferences: {memory_stats['preferences_count']}")
    console.print(f"  Projects: {memory_stats['projects_count']}")

    console.print("\n[bold cyan]Consensus[/bold cyan]")
    console.print(f"  Consensus patterns: {aggregate_stats['consensus_patterns']}")
    console.print(f"  Outlier patterns: {aggregate_stats['outlier_patterns']}")

    console.print("\n[bold cyan]Feedback[/bold cyan]")
    console.print(f"  Outcomes recorded: {feedback_stats['total']}")
    rate = feedback_stats["acceptance_rate"] * 100
    color = "green" if rate > 70 else "yellow"
    console.print(f"  Acceptance rate: [{color}]{rate:.1f}%[/]")

    console.print("\n[bold cyan]Calibration[/bold cyan]")
    console.print(f"  Keys tracked: {calibration_stats['keys_tracked']}")
    console.print(f"  Outcomes: {calibration_stats['total_outcomes']}")
    calibrated = calibration_stats["is_well_calibrated"]
    console.print(
        "  Well calibrated: " + ("[green]yes[/green]" if calibrated else "[red]no[/red]")
    )


def patterns(
    pattern_type: Annotated[
        str | None, typer.Option("--type", "-t", help="Only patterns of this type")
    ] = None,
    min_confidence: Annotated[
        float, typer.Option("--min-confidence", "-c", min=0.0, max=1.0, help="Minimum confidence")
    ] = 0.0,
) -> None:
    """List stored patterns, most confident first.

    Examples:
        tessera patterns
        tessera patterns --type naming --min-confidence 0.7
    """
    with open_session(console) as session:
        if pattern_type:
            found = session.memory.get_patterns_by_type(pattern_type)
        else:
            found = session.memory.get_confident_patterns(0.0)
    found = [p for p in found if p.confidence >= min_confidence]

    if not found:
        console.print("[dim]No patterns learned yet.[/dim]")
        return
    console.print(create_patterns_table(found))


def consensus(
    level: Annotated[
        ConsensusLevel,
        typer.Option("--level", "-l", help="Minimum consensus level", case_sensitive=False),
    ] = ConsensusLevel.MODERATE,
) -> None:
    """Show patterns shared across projects.

    Examples:
        tessera consensus
        tessera consensus --level strong
    """
    with open_session(console) as session:
        session.aggregator.refresh()
        shared = session.aggregator.get_consensus_patterns(level)
        outliers = session.aggregator.get_outlier_patterns()

    if not shared:
        console.print(f"[dim]No patterns reach {level.value} consensus.[/dim]")
    else:
        console.print(create_aggregates_table(shared, f"Consensus Patterns ({level.value}+)"))

    if outliers:
        console.print(f"\n[dim]{len(outliers)} outlier pattern(s) seen in a single project.[/dim]")


def recommend() -> None:
    """Recommend the dominant pattern for each pattern type."""
    with open_session(console) as session:
        session.aggregator.refresh()
        recommendations = session.aggregator.get_recommendations()

    if not recommendations:
        console.print("[dim]No recommendations yet. Patterns need 60% confidence.[/dim]")
        return

    table = create_simple_table(show_header=True)
    table.add_column("Type", style="cyan")
    table.add_column("Recommended")
    table.add_column("Confidence", justify="right")
    table.add_column("Projects", justify="right")
    table.add_column("Consensus")
    for rec in recommendations.values():
        table.add_row(
            rec.type,
            rec.value,
            format_confidence(rec.confidence),
            str(rec.adopted_by),
            format_consensus(rec.consensus_level),
        )
    console.print(table)


def calibration(
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON"),
) -> None:
    """Show how well logged confidences matched real outcomes."""
    with open_session(console) as session:
        analysis = session.calibrator.analyze_calibration()
        well_calibrated = session.calibrator.is_well_calibrated()

    if json_output:
        print_json({**analysis.to_dict(), "wellCalibrated": well_calibrated})
        return

    if not analysis.sufficient:
        console.print(
            f"[yellow]{analysis.error}[/yellow] "
            f"({analysis.total_predictions} prediction(s) logged)"
        )
        return

    table = create_simple_table(show_header=True)
    table.add_column("Range")
    table.add_column("Count", justify="right")
    table.add_column("Predicted", justify="right")
    table.add_column("Actual", justify="right")
    for bin_ in analysis.bins:
        table.add_row(
            bin_.range,
            str(bin_.count),
            f"{bin_.mean_predicted:.2f}" if bin_.count else "-",
            f"{bin_.actual_rate:.2f}" if bin_.count else "-",
        )
    console.print(table)
    console.print(f"\nCalibration error: {analysis.calibration_error:.3f}")
    console.print(f"Brier score: {analysis.brier_score:.3f}")
    console.print(
        "Well calibrated: " + ("[green]yes[/green]" if well_calibrated else "[red]no[/red]")
    )
