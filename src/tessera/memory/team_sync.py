"""Sharing learned patterns between collaborators.

A team export is a versioned JSON envelope::

    {
      "version": "1.0.0",
      "teamName": "platform",
      "exportedAt": "2026-01-05T10:00:00+00:00",
      "exportedBy": "alice",
      "patterns": [{"type": "naming", "pattern": "camelCase", "confidence": 0.8,
                    "occurrences": 3, "sources": ["api", "web"]}],
      "patternCount": 1,
      "expertise": {"backend": {"level": 0.8, ...}},
      "preferences": {"indent": 2},
      "stats": {"patternCount": 1, "uniquePatternTypes": 1,
                "totalSources": 2, "expertiseAreas": 1}
    }

Importing folds an envelope into local GlobalMemory. A pattern unknown
locally is inserted with a small confidence boost; a pattern that already
exists is resolved by one of the ConflictStrategy resolvers.
"""

from __future__ import annotations

import json
import os
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from tessera.core.config import SyncConfig
from tessera.core.errors import UnknownStrategyError
from tessera.core.logging import get_logger
from tessera.memory.aggregator import PatternAggregator
from tessera.memory.global_memory import GlobalMemory
from tessera.memory.models import (
    ConflictStrategy,
    ConsensusLevel,
    Pattern,
    clamp,
    format_timestamp,
    parse_timestamp,
    utc_now,
)

_logger = get_logger("team_sync")

EXPORT_VERSION = "1.0.0"
MAX_IMPORTED_CONFIDENCE = 0.99
MERGE_ALL_BOOST = 0.05

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


@dataclass
class ImportSummary:
    patterns_imported: int = 0
    patterns_skipped: int = 0
    conflicts_resolved: int = 0
    expertise_imported: int = 0
    preferences_imported: int = 0


@dataclass
class ImportResult:
    """Outcome of a team import. Malformed input yields ``success=False``."""

    success: bool
    error: str | None = None
    summary: ImportSummary = field(default_factory=ImportSummary)


@dataclass
class ExportValidation:
    """Structured result of ``validate_export``; lists every problem found."""

    valid: bool
    errors: list[str] = field(default_factory=list)
    version: str | None = None
    pattern_count: int = 0


@dataclass
class MergeResult:
    success: bool
    data: dict[str, Any] | None = None
    error: str | None = None


@dataclass
class TeamRecommendation:
    type: str
    recommended: str
    confidence: float
    alternatives: list[str] = field(default_factory=list)
    team_support: int = 1


@dataclass
class IncomingPattern:
    """A pattern entry read from a team export."""

    pattern: Pattern
    exported_at: datetime | None = None


# ----------------------------------------------------------------------
# Conflict resolution
# ----------------------------------------------------------------------

Resolver = Callable[[Pattern, IncomingPattern], Pattern | None]
"""Returns the winning state for the local pattern, or None to keep it as is."""


def _resolve_majority(local: Pattern, incoming: IncomingPattern) -> Pattern | None:
    local_weight = len(local.sources) + local.occurrences
    team_weight = len(incoming.pattern.sources) + incoming.pattern.occurrences
    return incoming.pattern if team_weight > local_weight else None


def _resolve_highest_confidence(local: Pattern, incoming: IncomingPattern) -> Pattern | None:
    return incoming.pattern if incoming.pattern.confidence > local.confidence else None


def _resolve_newest(local: Pattern, incoming: IncomingPattern) -> Pattern | None:
    team_time = incoming.exported_at or _EPOCH
    local_time = local.last_seen or _EPOCH
    return incoming.pattern if team_time > local_time else None


def _resolve_merge_all(local: Pattern, incoming: IncomingPattern) -> Pattern | None:
    team = incoming.pattern
    return Pattern(
        type=local.type,
        value=local.value,
        confidence=min(
            MAX_IMPORTED_CONFIDENCE,
            max(local.confidence, team.confidence) + MERGE_ALL_BOOST,
        ),
        occurrences=local.occurrences + team.occurrences,
        sources=list(dict.fromkeys([*local.sources, *team.sources])),
    )


CONFLICT_RESOLVERS: dict[ConflictStrategy, Resolver] = {
    ConflictStrategy.MAJORITY: _resolve_majority,
    ConflictStrategy.HIGHEST_CONFIDENCE: _resolve_highest_confidence,
    ConflictStrategy.NEWEST: _resolve_newest,
    ConflictStrategy.MERGE_ALL: _resolve_merge_all,
}


def resolve_strategy(strategy: ConflictStrategy | str) -> ConflictStrategy:
    """Convert a strategy name to a ConflictStrategy.

    Raises:
        UnknownStrategyError: If the name matches no strategy.
    """
    if isinstance(strategy, ConflictStrategy):
        return strategy
    try:
        return ConflictStrategy(str(strategy).lower())
    except ValueError:
        valid = ", ".join(s.value for s in ConflictStrategy)
        raise UnknownStrategyError(
            f"Unknown conflict strategy '{strategy}'. Valid strategies: {valid}"
        ) from None


def _expertise_level(data: Any) -> float | None:
    if isinstance(data, (int, float)) and not isinstance(data, bool):
        return float(data)
    if isinstance(data, dict) and isinstance(data.get("level"), (int, float)):
        return float(data["level"])
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _mapping_section(data: dict[str, Any], name: str) -> dict[str, Any] | None:
    """The ``name`` section of an export, {} when absent, None when not an object."""
    value = data.get(name)
    if value is None:
        return {}
    return value if isinstance(value, dict) else None


def _support(entry: dict[str, Any]) -> int:
    for name in ("teamCount", "occurrences"):
        if _is_number(entry.get(name)) and entry[name] >= 1:
            return int(entry[name])
    return 1


def _exported_by() -> str:
    return os.environ.get("USER") or os.environ.get("USERNAME") or "unknown"


def validate_export(data: Any) -> ExportValidation:
    """Check that ``data`` is a well-formed team export.

    Requires a ``version`` and a ``patterns`` list whose entries each carry
    a ``type`` and a ``pattern`` (or ``value``). Optional pattern fields
    must have the right JSON type, and ``expertise``/``preferences`` must
    be objects when present.
    """
    if not isinstance(data, dict):
        return ExportValidation(valid=False, errors=["Export data is not an object"])

    errors = []
    if not data.get("version"):
        errors.append("Missing version field")

    patterns = data.get("patterns")
    if not isinstance(patterns, list):
        errors.append("Missing or invalid patterns array")
        patterns = []
    for index, entry in enumerate(patterns):
        if not isinstance(entry, dict):
            errors.append(f"Pattern {index} is not an object")
            continue
        if not entry.get("type"):
            errors.append(f"Pattern {index} missing type")
        if not (entry.get("pattern") or entry.get("value")):
            errors.append(f"Pattern {index} missing pattern value")
        if entry.get("confidence") is not None and not _is_number(entry["confidence"]):
            errors.append(f"Pattern {index} confidence must be a number")
        occurrences = entry.get("occurrences")
        if occurrences is not None and (
            not isinstance(occurrences, int) or isinstance(occurrences, bool)
        ):
            errors.append(f"Pattern {index} occurrences must be an integer")
        if entry.get("sources") is not None and not isinstance(entry["sources"], list):
            errors.append(f"Pattern {index} sources must be a list")

    for section in ("expertise", "preferences"):
        if _mapping_section(data, section) is None:
            errors.append(f"Invalid {section} section: expected an object")

    return ExportValidation(
        valid=not errors,
        errors=errors,
        version=data.get("version"),
        pattern_count=len(patterns),
    )


class TeamSync:
    """Exports local patterns for a team and imports a team's patterns locally.

    Attributes:
        memory: Local GlobalMemory.
        config: Export/import defaults.
    """

    def __init__(
        self,
        memory: GlobalMemory | None = None,
        aggregator: PatternAggregator | None = None,
        config: SyncConfig | None = None,
    ) -> None:
        self.memory = memory or GlobalMemory()
        self.config = config or SyncConfig()
        self._aggregator = aggregator

    @property
    def aggregator(self) -> PatternAggregator:
        if self._aggregator is None:
            self._aggregator = PatternAggregator(self.memory)
        return self._aggregator

    # ------------------------------------------------------------------
    # Export
    # ------------------------------------------------------------------

    def export_for_team(
        self,
        team_name: str,
        min_confidence: float | None = None,
        include_expertise: bool = True,
        include_preferences: bool = True,
        include_projects: bool = False,
    ) -> dict[str, Any]:
        """Build an export envelope of every pattern at or above ``min_confidence``."""
        if min_confidence is None:
            min_confidence = self.config.min_confidence
        self.memory.init()

        patterns = [
            {
                "type": p.type,
                "pattern": p.value,
                "confidence": p.confidence,
                "occurrences": p.occurrences,
                "sources": list(p.sources),
            }
            for p in self.memory.patterns
            if p.confidence >= min_confidence
        ]

        envelope: dict[str, Any] = {
            "version": EXPORT_VERSION,
            "teamName": team_name,
            "exportedAt": format_timestamp(utc_now()),
            "exportedBy": _exported_by(),
            "patterns": patterns,
            "patternCount": len(patterns),
        }
        if include_expertise:
            envelope["expertise"] = {
                domain: entry.to_dict() for domain, entry in self.memory.expertise.items()
            }
        if include_preferences:
            envelope["preferences"] = self.memory.get_all_preferences()
        if include_projects:
            envelope["projects"] = [
                {
                    "name": project.name,
                    "path": project.path,
                    "languages": project.metadata.get("languages") or [],
                }
                for project in self.memory.projects
            ]

        envelope["stats"] = {
            "patternCount": len(patterns),
            "uniquePatternTypes": len({p["type"] for p in patterns}),
            "totalSources": len({s for p in patterns for s in p["sources"]}),
            "expertiseAreas": len(envelope.get("expertise", {})),
        }
        _logger.info("team_export_built", team=team_name, patterns=len(patterns))
        return envelope

    def export_consensus_patterns(self, team_name: str) -> dict[str, Any]:
        """Build an export of the patterns with moderate or strong consensus."""
        self.aggregator.refresh()
        consensus = self.aggregator.get_consensus_patterns(ConsensusLevel.MODERATE)
        patterns = [
            {
                "type": p.type,
                "pattern": p.value,
                "confidence": p.confidence,
                "occurrences": p.total_occurrences,
                "sources": list(p.sources),
                "consensusLevel": p.consensus_level.value,
                "projectCount": p.project_count,
            }
            for p in consensus
        ]
        return {
            "version": EXPORT_VERSION,
            "teamName": team_name,
            "exportedAt": format_timestamp(utc_now()),
            "exportedBy": _exported_by(),
            "type": "consensus",
            "patterns": patterns,
            "patternCount": len(patterns),
        }

    def export_to_file(self, path: Path, team_name: str, **options: Any) -> int:
        """Write ``export_for_team(team_name, **options)`` to ``path`` as JSON.

        Returns:
            Number of patterns exported.
        """
        envelope = self.export_for_team(team_name, **options)
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w", encoding="utf-8") as f:
            json.dump(envelope, f, indent=2)
        _logger.info("team_export_written", path=str(path), patterns=envelope["patternCount"])
        return envelope["patternCount"]

    # ------------------------------------------------------------------
    # Import
    # ------------------------------------------------------------------

    def import_from_team(
        self,
        data: Any,
        strategy: ConflictStrategy | str | None = None,
        confidence_boost: float | None = None,
        preserve_local: bool = True,
    ) -> ImportResult:
        """Fold a team export into local memory.

        Args:
            data: Team export envelope.
            strategy: Conflict strategy for patterns that exist locally.
                Defaults to the configured strategy.
            confidence_boost: Added to the confidence of patterns new to
                local memory (capped at 0.99). Defaults to the configured boost.
            preserve_local: When False, team preferences fill in keys that are
                not set locally. Local values are never overwritten.

        Returns:
            ImportResult with per-category counts, or ``success=False`` when
            ``data`` has no patterns array.

        Raises:
            UnknownStrategyError: If ``strategy`` names no known strategy.
        """
        resolved = resolve_strategy(strategy or self.config.default_strategy)
        boost = self.config.confidence_boost if confidence_boost is None else confidence_boost

        if not isinstance(data, dict) or not isinstance(data.get("patterns"), list):
            _logger.warning("team_import_rejected", reason="missing patterns array")
            return ImportResult(success=False, error="Invalid team data")

        expertise = _mapping_section(data, "expertise")
        preferences = _mapping_section(data, "preferences")
        for section, value in (("expertise", expertise), ("preferences", preferences)):
            if value is None:
                _logger.warning("team_import_rejected", reason=f"invalid {section} section")
                return ImportResult(
                    success=False, error=f"Invalid {section} section: expected an object"
                )

        self.memory.init()
        resolver = CONFLICT_RESOLVERS[resolved]
        team_name = data.get("teamName") or "team"
        envelope_time = parse_timestamp(data.get("exportedAt"))
        summary = ImportSummary()

        for entry in data["patterns"]:
            incoming = self._parse_incoming(entry, envelope_time)
            if incoming is None:
                summary.patterns_skipped += 1
                continue

            team = incoming.pattern
            local = self.memory.find_pattern(team.type, team.value)
            if local is None:
                self.memory.record_pattern(
                    team.type,
                    team.value,
                    confidence=min(MAX_IMPORTED_CONFIDENCE, team.confidence + boost),
                    source=team_name,
                )
                summary.patterns_imported += 1
                continue

            winner = resolver(local, incoming)
            if winner is None:
                summary.patterns_skipped += 1
                continue
            local.confidence = winner.confidence
            local.occurrences = max(1, winner.occurrences)
            local.sources = list(winner.sources)
            self.memory.replace_pattern(local)
            summary.conflicts_resolved += 1

        for domain, payload in expertise.items():
            level = _expertise_level(payload)
            if level:
                self.memory.add_expertise(domain, level)
                summary.expertise_imported += 1

        if not preserve_local:
            for key, value in preferences.items():
                if self.memory.get_preference(key) is None:
                    self.memory.set_preference(key, value)
                    summary.preferences_imported += 1

        _logger.info(
            "team_import_completed",
            team=team_name,
            strategy=resolved.value,
            imported=summary.patterns_imported,
            conflicts=summary.conflicts_resolved,
            skipped=summary.patterns_skipped,
        )
        return ImportResult(success=True, summary=summary)

    @staticmethod
    def _parse_incoming(entry: Any, envelope_time: datetime | None) -> IncomingPattern | None:
        if not isinstance(entry, dict) or not entry.get("type"):
            return None
        if not (entry.get("pattern") or entry.get("value")):
            return None
        if entry.get("sources") is not None and not isinstance(entry["sources"], list):
            return None
        try:
            pattern = Pattern.from_dict(entry)
        except (TypeError, ValueError) as e:
            _logger.warning("team_pattern_skipped", type=entry.get("type"), error=str(e))
            return None
        return IncomingPattern(
            pattern=pattern,
            exported_at=parse_timestamp(entry.get("exportedAt")) or envelope_time,
        )

    def import_from_file(self, path: Path, **options: Any) -> ImportResult:
        """Import a team export from a JSON file.

        A missing or unparseable file yields a failed ImportResult.
        """
        path = Path(path)
        if not path.exists():
            return ImportResult(success=False, error=f"File not found: {path}")
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            _logger.warning("team_file_unreadable", path=str(path), error=str(e))
            return ImportResult(success=False, error=f"Failed to parse file: {e}")
        return self.import_from_team(data, **options)

    # ------------------------------------------------------------------
    # Team aggregation
    # ------------------------------------------------------------------

    def merge_team_exports(self, exports: list[Any]) -> MergeResult:
        """Fold several team exports into one envelope.

        Patterns are unioned by identity keeping the highest confidence and
        summing occurrences; expertise levels are averaged over the teams
        that report them; for preferences the first export to set a key wins.
        """
        if not exports:
            return MergeResult(success=False, error="No team data provided")

        merged_patterns: dict[tuple[str, str], dict[str, Any]] = {}
        expertise_totals: dict[str, list[float]] = {}
        preferences: dict[str, Any] = {}
        source_teams: list[str] = []

        for export in exports:
            if not isinstance(export, dict) or not isinstance(export.get("patterns"), list):
                continue
            team = export.get("teamName") or "unknown"
            source_teams.append(team)

            for entry in export["patterns"]:
                incoming = self._parse_incoming(entry, None)
                if incoming is None:
                    continue
                p = incoming.pattern
                current = merged_patterns.get(p.key)
                if current is None:
                    merged_patterns[p.key] = {
                        "type": p.type,
                        "pattern": p.value,
                        "confidence": p.confidence,
                        "occurrences": p.occurrences,
                        "teams": {team: None},
                    }
                else:
                    current["confidence"] = max(current["confidence"], p.confidence)
                    current["occurrences"] += p.occurrences
                    current["teams"][team] = None

            for domain, payload in (_mapping_section(export, "expertise") or {}).items():
                level = _expertise_level(payload)
                if level:
                    expertise_totals.setdefault(domain, []).append(level)

            for key, value in (_mapping_section(export, "preferences") or {}).items():
                preferences.setdefault(key, value)

        patterns = [
            {
                "type": item["type"],
                "pattern": item["pattern"],
                "confidence": clamp(item["confidence"], 0.0, 1.0),
                "occurrences": item["occurrences"],
                "teamCount": len(item["teams"]),
            }
            for item in merged_patterns.values()
        ]
        merged = {
            "version": EXPORT_VERSION,
            "teamName": "merged",
            "exportedAt": format_timestamp(utc_now()),
            "exportedBy": _exported_by(),
            "patterns": patterns,
            "patternCount": len(patterns),
            "expertise": {
                domain: {"level": sum(levels) / len(levels), "teamCount": len(levels)}
                for domain, levels in expertise_totals.items()
            },
            "preferences": preferences,
            "sourceTeams": source_teams,
            "stats": {
                "teamsIncluded": len(source_teams),
                "totalPatterns": len(patterns),
                "crossTeamPatterns": sum(1 for p in patterns if p["teamCount"] > 1),
            },
        }
        _logger.info("team_exports_merged", teams=len(source_teams), patterns=len(patterns))
        return MergeResult(success=True, data=merged)

    def get_team_recommendations(self, data: Any) -> dict[str, TeamRecommendation]:
        """Per pattern type, the most confident pattern in a team export.

        Returns an empty mapping for data without a patterns array.
        """
        if not isinstance(data, dict) or not isinstance(data.get("patterns"), list):
            return {}

        by_type: dict[str, list[dict[str, Any]]] = {}
        for entry in data["patterns"]:
            if not isinstance(entry, dict) or not entry.get("type"):
                continue
            if entry.get("confidence") is None or _is_number(entry["confidence"]):
                by_type.setdefault(entry["type"], []).append(entry)

        recommendations = {}
        for pattern_type, entries in by_type.items():
            ranked = sorted(entries, key=lambda e: e.get("confidence") or 0.5, reverse=True)
            top = ranked[0]
            recommendations[pattern_type] = TeamRecommendation(
                type=pattern_type,
                recommended=str(top.get("pattern") or top.get("value")),
                confidence=float(top.get("confidence") or 0.5),
                alternatives=[str(e.get("pattern") or e.get("value")) for e in ranked[1:3]],
                team_support=_support(top),
            )
        return recommendations

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def validate_export(self, data: Any) -> ExportValidation:
        return validate_export(data)

    def get_stats(self) -> dict[str, int]:
        self.memory.init()
        return {
            "local_patterns": len(self.memory.patterns),
            "local_expertise": len(self.memory.expertise),
            "local_projects": len(self.memory.projects),
        }


__all__ = [
    "CONFLICT_RESOLVERS",
    "EXPORT_VERSION",
    "ExportValidation",
    "ImportResult",
    "ImportSummary",
    "MergeResult",
    "TeamRecommendation",
    "TeamSync",
    "resolve_strategy",
    "validate_export",
]
