"""Cross-project consensus over the patterns held in GlobalMemory.

The aggregator groups every stored pattern instance by its ``(type, value)``
identity and derives, per group:

- how many distinct projects contributed it (union of sources) and what
  share of all registered projects that is;
- an aggregate confidence: the occurrence- and recency-weighted mean of the
  instance confidences, plus a cross-project boost and a strong-consensus
  boost, capped at 0.99;
- a consensus level (strong / moderate / weak / none) and the consensus and
  outlier flags.

Aggregates are recomputed by ``refresh()`` and never persisted.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any

from tessera.core.logging import get_logger
from tessera.memory.global_memory import GlobalMemory
from tessera.memory.models import (
    AggregatedPattern,
    ConsensusLevel,
    Pattern,
    utc_now,
)

_logger = get_logger("aggregator")

CONSENSUS_THRESHOLDS: dict[ConsensusLevel, float] = {
    ConsensusLevel.STRONG: 0.8,
    ConsensusLevel.MODERATE: 0.5,
    ConsensusLevel.WEAK: 0.25,
}

CROSS_PROJECT_BOOST = 0.1
"""Confidence added per contributing project beyond the first."""

MAX_CROSS_PROJECT_BOOST = 0.3
CONSENSUS_BOOST = 0.2
MAX_AGGREGATE_CONFIDENCE = 0.99

RECENCY_DECAY_DAYS = 60.0
MIN_RECENCY_WEIGHT = 0.5
RECOMMENDATION_THRESHOLD = 0.6


def recency_weight(last_seen: datetime | None, now: datetime | None = None) -> float:
    """Linear decay from 1.0 to a 0.5 floor over 60 days since ``last_seen``."""
    if last_seen is None:
        return MIN_RECENCY_WEIGHT
    now = now or utc_now()
    days_since = (now - last_seen).total_seconds() / 86400.0
    return max(MIN_RECENCY_WEIGHT, min(1.0, 1.0 - days_since / RECENCY_DECAY_DAYS))


def weighted_confidence(instances: list[Pattern], now: datetime | None = None) -> float:
    """Occurrence- and recency-weighted mean confidence of pattern instances."""
    if not instances:
        return 0.0
    total_weight = 0.0
    weighted_sum = 0.0
    for instance in instances:
        weight = max(instance.occurrences, 1) * recency_weight(instance.last_seen, now)
        weighted_sum += instance.confidence * weight
        total_weight += weight
    return weighted_sum / total_weight if total_weight > 0 else 0.5


def consensus_level_for(ratio: float) -> ConsensusLevel:
    """Classify a project ratio into a consensus level."""
    for level in (ConsensusLevel.STRONG, ConsensusLevel.MODERATE, ConsensusLevel.WEAK):
        if ratio >= CONSENSUS_THRESHOLDS[level]:
            return level
    return ConsensusLevel.NONE


@dataclass
class _PatternGroup:
    type: str
    value: str
    instances: list[Pattern] = field(default_factory=list)
    sources: dict[str, None] = field(default_factory=dict)


@dataclass
class ProjectComparison:
    """Pattern overlap between two projects."""

    first: str
    second: str
    similarity: float
    common: list[AggregatedPattern] = field(default_factory=list)
    only_in_first: list[AggregatedPattern] = field(default_factory=list)
    only_in_second: list[AggregatedPattern] = field(default_factory=list)


@dataclass
class Recommendation:
    """The pattern to recommend for one pattern type."""

    type: str
    value: str
    confidence: float
    adopted_by: int
    consensus_level: ConsensusLevel


def _by_confidence(patterns: Iterable[AggregatedPattern]) -> list[AggregatedPattern]:
    return sorted(patterns, key=lambda p: p.confidence, reverse=True)


class PatternAggregator:
    """Derives consensus, outlier and emerging views over GlobalMemory.

    Projects are addressed by the identifier used as a pattern source, which
    is normally the project name; a registered project's path is accepted
    too.

    Attributes:
        memory: The GlobalMemory read from.
        initialized: Whether aggregates have been computed.
    """

    def __init__(self, memory: GlobalMemory | None = None) -> None:
        self.memory = memory or GlobalMemory()
        self.initialized = False
        self._aggregated: dict[tuple[str, str], AggregatedPattern] = {}
        self._instances: dict[tuple[str, str], list[Pattern]] = {}
        self._project_patterns: dict[str, set[tuple[str, str]]] = {}
        self._aliases: dict[str, str] = {}

    def init(self) -> PatternAggregator:
        """Reload GlobalMemory and recompute every aggregate."""
        self.refresh()
        return self

    def refresh(self) -> None:
        """Recompute aggregates from the current contents of GlobalMemory."""
        self.memory.init()
        self._analyze(utc_now())
        self.initialized = True
        _logger.debug(
            "aggregates_refreshed",
            aggregated=len(self._aggregated),
            projects=len(self._project_patterns),
        )

    def _ensure_analyzed(self) -> None:
        if not self.initialized:
            self.refresh()

    def _analyze(self, now: datetime) -> None:
        projects = self.memory.projects
        total_projects = max(len(projects), 1)

        groups: dict[tuple[str, str], _PatternGroup] = {}
        for pattern in self.memory.patterns:
            group = groups.setdefault(pattern.key, _PatternGroup(pattern.type, pattern.value))
            group.instances.append(pattern)
            for source in pattern.sources:
                group.sources[source] = None

        self._aggregated = {}
        self._instances = {}
        for key, group in groups.items():
            project_count = len(group.sources)
            ratio = project_count / total_projects
            level = consensus_level_for(ratio)

            confidence = weighted_confidence(group.instances, now)
            confidence += min(max(project_count - 1, 0) * CROSS_PROJECT_BOOST, MAX_CROSS_PROJECT_BOOST)
            if level is ConsensusLevel.STRONG:
                confidence += CONSENSUS_BOOST

            self._instances[key] = group.instances
            self._aggregated[key] = AggregatedPattern(
                type=group.type,
                value=group.value,
                confidence=min(confidence, MAX_AGGREGATE_CONFIDENCE),
                project_count=project_count,
                project_ratio=ratio,
                consensus_level=level,
                is_consensus=ratio >= CONSENSUS_THRESHOLDS[ConsensusLevel.MODERATE],
                is_outlier=project_count == 1 and len(projects) > 1,
                sources=list(group.sources),
                total_occurrences=sum(max(p.occurrences, 1) for p in group.instances),
            )

        self._project_patterns = {}
        self._aliases = {}
        for project in projects:
            name = project.name or project.path
            self._project_patterns[name] = set()
            self._aliases[project.path] = name
        for key, aggregate in self._aggregated.items():
            for source in aggregate.sources:
                name = self._aliases.get(source, source)
                if name in self._project_patterns:
                    self._project_patterns[name].add(key)

    def _project_keys(self, project: str) -> set[tuple[str, str]] | None:
        return self._project_patterns.get(self._aliases.get(project, project))

    def _lookup(self, keys: Iterable[tuple[str, str]]) -> list[AggregatedPattern]:
        return _by_confidence(self._aggregated[k] for k in keys if k in self._aggregated)

    @property
    def aggregated_patterns(self) -> list[AggregatedPattern]:
        self._ensure_analyzed()
        return list(self._aggregated.values())

    def get_aggregate(self, pattern_type: str, value: str) -> AggregatedPattern | None:
        self._ensure_analyzed()
        return self._aggregated.get((pattern_type, value))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_consensus_patterns(
        self,
        level: ConsensusLevel | str = ConsensusLevel.MODERATE,
    ) -> list[AggregatedPattern]:
        """Patterns whose project ratio reaches the threshold for ``level``.

        Unknown level names (and ``none``) fall back to the moderate threshold.
        """
        self._ensure_analyzed()
        try:
            resolved = ConsensusLevel(str(getattr(level, "value", level)).lower())
        except ValueError:
            resolved = ConsensusLevel.MODERATE
        threshold = CONSENSUS_THRESHOLDS.get(resolved, CONSENSUS_THRESHOLDS[ConsensusLevel.MODERATE])
        return _by_confidence(p for p in self._aggregated.values() if p.project_ratio >= threshold)

    def get_outlier_patterns(self) -> list[AggregatedPattern]:
        """Patterns seen in exactly one project while several are known."""
        self._ensure_analyzed()
        return _by_confidence(p for p in self._aggregated.values() if p.is_outlier)

    def get_unique_patterns(self, project: str) -> list[AggregatedPattern]:
        """Outlier patterns contributed by ``project``."""
        self._ensure_analyzed()
        keys = self._project_keys(project) or set()
        return [p for p in self._lookup(keys) if p.is_outlier]

    def get_common_patterns(self, projects: list[str]) -> list[AggregatedPattern]:
        """Patterns shared by every listed project (at least two known ones)."""
        self._ensure_analyzed()
        pattern_sets = [s for s in (self._project_keys(p) for p in projects) if s is not None]
        if len(pattern_sets) < 2:
            return []
        return self._lookup(set.intersection(*pattern_sets))

    def get_patterns_by_type(self, pattern_type: str) -> list[AggregatedPattern]:
        self._ensure_analyzed()
        return _by_confidence(p for p in self._aggregated.values() if p.type == pattern_type)

    def get_dominant_pattern(self, pattern_type: str) -> AggregatedPattern | None:
        patterns = self.get_patterns_by_type(pattern_type)
        return patterns[0] if patterns else None

    def get_emerging_patterns(self, min_projects: int = 2, max_days: int = 30) -> list[AggregatedPattern]:
        """Patterns in at least ``min_projects`` projects with an instance created recently.

        Sorted by project count, most widespread first.
        """
        self._ensure_analyzed()
        cutoff = utc_now() - timedelta(days=max_days)
        emerging = [
            aggregate
            for key, aggregate in self._aggregated.items()
            if aggregate.project_count >= min_projects
            and any(p.created_at >= cutoff for p in self._instances.get(key, []))
        ]
        return sorted(emerging, key=lambda p: p.project_count, reverse=True)

    # ------------------------------------------------------------------
    # Analysis
    # ------------------------------------------------------------------

    def analyze_pattern_diversity(self) -> dict[str, Any]:
        """Per pattern type: how many variations compete and which dominates."""
        self._ensure_analyzed()
        by_type: dict[str, list[AggregatedPattern]] = {}
        for aggregate in self._aggregated.values():
            by_type.setdefault(aggregate.type, []).append(aggregate)

        type_analysis: dict[str, dict[str, Any]] = {}
        with_consensus = 0
        for pattern_type, variations in by_type.items():
            ranked = _by_confidence(variations)
            dominant = ranked[0]
            if dominant.is_consensus:
                with_consensus += 1
            type_analysis[pattern_type] = {
                "variation_count": len(ranked),
                "has_consensus": dominant.is_consensus,
                "dominant": dominant.value,
                "dominant_confidence": dominant.confidence,
                "alternatives": [{"pattern": p.value, "confidence": p.confidence} for p in ranked[1:]],
            }

        return {
            "total_pattern_types": len(by_type),
            "types_with_consensus": with_consensus,
            "types_without_consensus": len(by_type) - with_consensus,
            "type_analysis": type_analysis,
        }

    def get_recommendations(self) -> dict[str, Recommendation]:
        """Per type, the dominant pattern if its confidence is at least 0.6."""
        self._ensure_analyzed()
        recommendations = {}
        for pattern_type in dict.fromkeys(p.type for p in self._aggregated.values()):
            dominant = self.get_dominant_pattern(pattern_type)
            if dominant is not None and dominant.confidence >= RECOMMENDATION_THRESHOLD:
                recommendations[pattern_type] = Recommendation(
                    type=pattern_type,
                    value=dominant.value,
                    confidence=dominant.confidence,
                    adopted_by=dominant.project_count,
                    consensus_level=dominant.consensus_level,
                )
        return recommendations

    def compare_projects(self, first: str, second: str) -> ProjectComparison:
        """Pattern overlap between two projects.

        Similarity is ``2*|common| / (|A| + |B|)``, 0.0 when neither project
        has patterns.
        """
        self._ensure_analyzed()
        a = self._project_keys(first) or set()
        b = self._project_keys(second) or set()
        common = a & b
        size = len(a) + len(b)
        return ProjectComparison(
            first=first,
            second=second,
            similarity=(2 * len(common) / size) if size else 0.0,
            common=self._lookup(common),
            only_in_first=self._lookup(a - b),
            only_in_second=self._lookup(b - a),
        )

    def get_stats(self) -> dict[str, Any]:
        self._ensure_analyzed()
        aggregates = list(self._aggregated.values())
        return {
            "total_aggregated_patterns": len(aggregates),
            "consensus_patterns": sum(1 for p in aggregates if p.is_consensus),
            "outlier_patterns": sum(1 for p in aggregates if p.is_outlier),
            "strong_consensus": sum(1 for p in aggregates if p.consensus_level is ConsensusLevel.STRONG),
            "moderate_consensus": sum(1 for p in aggregates if p.consensus_level is ConsensusLevel.MODERATE),
            "tracked_projects": len(self._project_patterns),
            "pattern_types": sorted({p.type for p in aggregates}),
        }


__all__ = [
    "CONSENSUS_THRESHOLDS",
    "PatternAggregator",
    "ProjectComparison",
    "Recommendation",
    "consensus_level_for",
    "recency_weight",
    "weighted_confidence",
]
