"""Data models for the cross-project pattern memory.

Dataclasses and enums for every record the engine stores or derives.
Each stored record serialises with ``to_dict()``/``from_dict()`` into the
camelCase JSON documents kept in the persistent partitions, so existing
partition files and team exports stay wire-compatible.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any


def utc_now() -> datetime:
    """Current time as an aware UTC datetime."""
    return datetime.now(UTC)


def format_timestamp(value: datetime | None) -> str | None:
    """Serialise a datetime to ISO-8601, passing None through."""
    return value.isoformat() if value is not None else None


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 string, tolerating ``Z`` suffixes and garbage.

    Naive values are assumed to be UTC. Anything unparseable becomes None.
    """
    if not value or not isinstance(value, str):
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def clamp(value: float, low: float, high: float) -> float:
    """Clamp ``value`` into ``[low, high]``."""
    return max(low, min(high, value))


def _number(value: Any, default: float) -> float:
    return default if value is None else float(value)


class FeedbackOutcome(str, Enum):
    """Terminal outcome of a suggestion shown to the developer."""

    ACCEPTED = "accepted"
    REJECTED = "rejected"
    MODIFIED = "modified"
    IGNORED = "ignored"


class SuggestionCategory(str, Enum):
    """Well-known suggestion categories. Free-form strings are also accepted."""

    PATTERN = "pattern"
    CODE = "code"
    QUESTION = "question"
    PREDICTION = "prediction"
    RECOMMENDATION = "recommendation"


class ConsensusLevel(str, Enum):
    """How widely a pattern is shared across known projects."""

    NONE = "none"
    WEAK = "weak"
    MODERATE = "moderate"
    STRONG = "strong"


class ConflictStrategy(str, Enum):
    """How a team import resolves a pattern that already exists locally."""

    MAJORITY = "majority"
    """Keep the side with more sources plus occurrences."""

    HIGHEST_CONFIDENCE = "highest_confidence"
    """Keep the side with the higher confidence."""

    NEWEST = "newest"
    """Keep the side seen most recently."""

    MERGE_ALL = "merge_all"
    """Union sources, sum occurrences and nudge confidence upward."""


@dataclass
class Pattern:
    """A learned coding pattern. Identity is ``(type, value)``."""

    type: str
    value: str
    confidence: float = 0.5
    occurrences: int = 1
    sources: list[str] = field(default_factory=list)
    created_at: datetime = field(default_factory=utc_now)
    last_seen: datetime = field(default_factory=utc_now)
    id: str | None = None

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "pattern": self.value,
            "confidence": self.confidence,
            "occurrences": self.occurrences,
            "sources": list(self.sources),
            "createdAt": format_timestamp(self.created_at),
            "lastSeen": format_timestamp(self.last_seen),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Pattern:
        now = utc_now()
        return cls(
            id=data.get("id"),
            type=str(data["type"]),
            value=str(data.get("pattern", data.get("value"))),
            confidence=clamp(_number(data.get("confidence"), 0.5), 0.0, 1.0),
            occurrences=max(1, int(data.get("occurrences") or 1)),
            sources=list(data.get("sources") or []),
            created_at=parse_timestamp(data.get("createdAt")) or now,
            last_seen=parse_timestamp(data.get("lastSeen")) or now,
        )


@dataclass
class ExpertiseEntry:
    """Developer expertise in a domain. Identity is ``domain``."""

    domain: str
    level: float
    observation_count: int = 1
    created_at: datetime = field(default_factory=utc_now)
    last_updated: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "observations": self.observation_count,
            "createdAt": format_timestamp(self.created_at),
            "lastUpdated": format_timestamp(self.last_updated),
        }

    @classmethod
    def from_dict(cls, domain: str, data: dict[str, Any]) -> ExpertiseEntry:
        now = utc_now()
        return cls(
            domain=domain,
            level=clamp(float(data.get("level") or 0.0), 0.0, 1.0),
            observation_count=max(1, int(data.get("observations") or 1)),
            created_at=parse_timestamp(data.get("createdAt")) or now,
            last_updated=parse_timestamp(data.get("lastUpdated")) or now,
        )


@dataclass
class Preference:
    """An opaque developer preference. Last write wins."""

    key: str
    value: Any
    updated_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {"value": self.value, "updatedAt": format_timestamp(self.updated_at)}

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any]) -> Preference:
        return cls(
            key=key,
            value=data.get("value"),
            updated_at=parse_timestamp(data.get("updatedAt")) or utc_now(),
        )


@dataclass
class ProjectRecord:
    """A project the engine has learned from. Identity is ``path``."""

    path: str
    name: str
    metadata: dict[str, Any] = field(default_factory=dict)
    registered_at: datetime = field(default_factory=utc_now)
    last_accessed: datetime = field(default_factory=utc_now)
    access_count: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "name": self.name,
            "metadata": dict(self.metadata),
            "registeredAt": format_timestamp(self.registered_at),
            "lastAccessed": format_timestamp(self.last_accessed),
            "accessCount": self.access_count,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProjectRecord:
        now = utc_now()
        path = str(data["path"])
        return cls(
            path=path,
            name=str(data.get("name") or path),
            metadata=dict(data.get("metadata") or {}),
            registered_at=parse_timestamp(data.get("registeredAt")) or now,
            last_accessed=parse_timestamp(data.get("lastAccessed")) or now,
            access_count=max(1, int(data.get("accessCount") or 1)),
        )


@dataclass
class SuggestionRecord:
    """A suggestion shown to the developer and, eventually, its outcome.

    Created pending (``outcome is None``); transitions once to a terminal
    outcome and is never modified afterwards.
    """

    id: str
    category: str
    type: str
    suggestion: str
    context: dict[str, Any] = field(default_factory=dict)
    confidence: float = 0.5
    created_at: datetime = field(default_factory=utc_now)
    outcome: FeedbackOutcome | None = None
    feedback_at: datetime | None = None
    feedback_details: dict[str, Any] = field(default_factory=dict)

    @property
    def type_key(self) -> str:
        return f"{self.category}:{self.type}"

    @property
    def is_pending(self) -> bool:
        return self.outcome is None

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "category": self.category,
            "type": self.type,
            "suggestion": self.suggestion,
            "context": self.context,
            "confidence": self.confidence,
            "createdAt": format_timestamp(self.created_at),
            "feedback": self.outcome.value if self.outcome else None,
            "feedbackAt": format_timestamp(self.feedback_at),
            "feedbackDetails": self.feedback_details,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> SuggestionRecord:
        raw_outcome = data.get("feedback")
        outcome: FeedbackOutcome | None = None
        if raw_outcome:
            try:
                outcome = FeedbackOutcome(raw_outcome)
            except ValueError:
                outcome = None
        return cls(
            id=str(data["id"]),
            category=str(data.get("category") or "unknown"),
            type=str(data.get("type") or "unknown"),
            suggestion=str(data.get("suggestion") or ""),
            context=dict(data.get("context") or {}),
            confidence=clamp(_number(data.get("confidence"), 0.5), 0.0, 1.0),
            created_at=parse_timestamp(data.get("createdAt")) or utc_now(),
            outcome=outcome,
            feedback_at=parse_timestamp(data.get("feedbackAt")),
            feedback_details=dict(data.get("feedbackDetails") or {}),
        )


@dataclass
class OutcomeCounts:
    """Per-category or per-type feedback counters."""

    total: int = 0
    accepted: int = 0
    rejected: int = 0
    modified: int = 0
    ignored: int = 0

    def add(self, outcome: FeedbackOutcome) -> None:
        self.total += 1
        setattr(self, outcome.value, getattr(self, outcome.value) + 1)

    @property
    def acceptance_rate(self) -> float:
        """accepted / total, or the uninformative 0.5 with no data."""
        if self.total == 0:
            return 0.5
        return self.accepted / self.total

    def to_dict(self) -> dict[str, int]:
        return {
            "total": self.total,
            "accepted": self.accepted,
            "rejected": self.rejected,
            "modified": self.modified,
            "ignored": self.ignored,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> OutcomeCounts:
        return cls(**{name: int(data.get(name) or 0) for name in cls().to_dict()})


@dataclass
class CalibrationEntry:
    """Beta-Binomial posterior for one calibration key.

    ``alpha = prior_alpha + successes`` and ``beta = prior_beta + failures``,
    so ``alpha + beta == total_outcomes + prior_alpha + prior_beta``.
    """

    key: str
    alpha: float = 2.0
    beta: float = 2.0
    total_outcomes: int = 0
    successes: int = 0
    failures: int = 0
    last_updated: datetime | None = None

    @property
    def posterior_mean(self) -> float:
        return self.alpha / (self.alpha + self.beta)

    @property
    def posterior_variance(self) -> float:
        total = self.alpha + self.beta
        return (self.alpha * self.beta) / (total * total * (total + 1))

    def to_dict(self) -> dict[str, Any]:
        return {
            "alpha": self.alpha,
            "beta": self.beta,
            "totalOutcomes": self.total_outcomes,
            "successes": self.successes,
            "failures": self.failures,
            "lastUpdated": format_timestamp(self.last_updated),
        }

    @classmethod
    def from_dict(cls, key: str, data: dict[str, Any]) -> CalibrationEntry:
        return cls(
            key=key,
            alpha=float(data.get("alpha", 2.0)),
            beta=float(data.get("beta", 2.0)),
            total_outcomes=int(data.get("totalOutcomes") or 0),
            successes=int(data.get("successes") or 0),
            failures=int(data.get("failures") or 0),
            last_updated=parse_timestamp(data.get("lastUpdated")),
        )


@dataclass
class PredictionRecord:
    """One logged (predicted confidence, actual outcome) pair."""

    key: str
    predicted_confidence: float
    actual_outcome: bool
    timestamp: datetime = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "predictedConfidence": self.predicted_confidence,
            "actualOutcome": self.actual_outcome,
            "timestamp": format_timestamp(self.timestamp),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> PredictionRecord:
        return cls(
            key=str(data.get("key") or ""),
            predicted_confidence=float(data["predictedConfidence"]),
            actual_outcome=bool(data.get("actualOutcome")),
            timestamp=parse_timestamp(data.get("timestamp")) or utc_now(),
        )


@dataclass
class AggregatedPattern:
    """Cross-project view of one ``(type, value)`` pattern.

    Derived on demand by the aggregator and never persisted.
    """

    type: str
    value: str
    confidence: float
    project_count: int
    project_ratio: float
    consensus_level: ConsensusLevel
    is_consensus: bool
    is_outlier: bool
    sources: list[str] = field(default_factory=list)
    total_occurrences: int = 0

    @property
    def key(self) -> tuple[str, str]:
        return (self.type, self.value)

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "pattern": self.value,
            "confidence": self.confidence,
            "projectCount": self.project_count,
            "projectRatio": self.project_ratio,
            "consensusLevel": self.consensus_level.value,
            "isConsensus": self.is_consensus,
            "isOutlier": self.is_outlier,
            "sources": list(self.sources),
            "totalOccurrences": self.total_occurrences,
        }


__all__ = [
    "AggregatedPattern",
    "CalibrationEntry",
    "ConflictStrategy",
    "ConsensusLevel",
    "ExpertiseEntry",
    "FeedbackOutcome",
    "OutcomeCounts",
    "Pattern",
    "PredictionRecord",
    "Preference",
    "ProjectRecord",
    "SuggestionCategory",
    "SuggestionRecord",
    "clamp",
    "format_timestamp",
    "parse_timestamp",
    "utc_now",
]
