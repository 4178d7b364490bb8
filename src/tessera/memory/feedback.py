"""Suggestion outcome tracking and acceptance-rate statistics.

The FeedbackCollector records every suggestion shown to the developer and
what happened to it (accepted, rejected, modified, ignored). Counters are
kept per category and per ``category:type`` so callers can blend historical
acceptance into the confidence they display, and suppress suggestion types
that keep getting rejected.

Suggestions awaiting an outcome live in memory only; once an outcome is
recorded the suggestion moves to the persisted ``feedback/history``
partition and ``feedback/stats`` is updated.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Any

from tessera.core.config import FeedbackConfig
from tessera.core.errors import InvalidOutcomeError
from tessera.core.logging import get_logger
from tessera.memory.models import (
    FeedbackOutcome,
    OutcomeCounts,
    SuggestionRecord,
    clamp,
    format_timestamp,
    utc_now,
)
from tessera.memory.persistence import PersistentStore, parse_keyed_records, parse_records

_logger = get_logger("feedback")

HISTORY_PARTITION = "feedback/history"
STATS_PARTITION = "feedback/stats"
EXPORT_VERSION = "1.0.0"

# Blend weights for adjust_confidence.
BASE_WEIGHT = 0.6
TYPE_WEIGHT = 0.25
CATEGORY_WEIGHT = 0.15

MIN_ADJUSTED_CONFIDENCE = 0.1
MAX_ADJUSTED_CONFIDENCE = 0.99


def _coerce_outcome(outcome: FeedbackOutcome | str) -> FeedbackOutcome:
    if isinstance(outcome, FeedbackOutcome):
        return outcome
    try:
        return FeedbackOutcome(str(outcome).lower())
    except ValueError:
        valid = ", ".join(o.value for o in FeedbackOutcome)
        raise InvalidOutcomeError(
            f"Unknown feedback outcome '{outcome}'. Valid outcomes: {valid}"
        ) from None


def _parse_counts(name: str, data: dict[str, Any]) -> OutcomeCounts:
    return OutcomeCounts.from_dict(data)


def _new_id(prefix: str) -> str:
    return f"{prefix}-{uuid.uuid4().hex[:12]}"


class FeedbackCollector:
    """Tracks suggestion acceptance and rejection.

    Example:
        >>> collector = FeedbackCollector(store)
        >>> sid = collector.record_suggestion("pattern", "naming", "camelCase")
        >>> collector.record_feedback(sid, "accepted")
        True
        >>> collector.get_type_acceptance_rate("pattern", "naming")
        1.0
    """

    def __init__(
        self,
        store: PersistentStore | None = None,
        config: FeedbackConfig | None = None,
    ) -> None:
        self.store = store or PersistentStore()
        self.config = config or FeedbackConfig()
        self.initialized = False
        self._history: list[SuggestionRecord] = []
        self._pending: dict[str, SuggestionRecord] = {}
        self._reset_stats()

    def _reset_stats(self) -> None:
        self._total = 0
        self._by_category: dict[str, OutcomeCounts] = {}
        self._by_type: dict[str, OutcomeCounts] = {}

    def init(self) -> FeedbackCollector:
        """(Re)load history and statistics from the store."""
        self._history = parse_records(
            HISTORY_PARTITION,
            self.store.load(HISTORY_PARTITION, []),
            SuggestionRecord.from_dict,
            required="id",
        )
        self._load_stats(self.store.load(STATS_PARTITION, {}))
        self.initialized = True
        return self

    def _load_stats(self, data: Any) -> None:
        self._reset_stats()
        if not isinstance(data, dict):
            return
        total = data.get("total")
        self._total = int(total) if isinstance(total, int | float) else 0
        self._by_category = parse_keyed_records(
            STATS_PARTITION, data.get("byCategory"), _parse_counts
        )
        self._by_type = parse_keyed_records(STATS_PARTITION, data.get("byType"), _parse_counts)

    def _ensure_loaded(self) -> None:
        if not self.initialized:
            self.init()

    def flush(self) -> None:
        self.store.flush()

    # ------------------------------------------------------------------
    # Persistence helpers
    # ------------------------------------------------------------------

    def _stats_document(self) -> dict[str, Any]:
        return {
            "total": self._total,
            "byCategory": {k: v.to_dict() for k, v in self._by_category.items()},
            "byType": {k: v.to_dict() for k, v in self._by_type.items()},
            "acceptanceRate": self.acceptance_rate,
        }

    def _save(self) -> None:
        self.store.put(HISTORY_PARTITION, [r.to_dict() for r in self._history])
        self.store.put(STATS_PARTITION, self._stats_document())

    def _update_stats(self, record: SuggestionRecord) -> None:
        if record.outcome is None:
            return
        self._total += 1
        self._by_category.setdefault(record.category, OutcomeCounts()).add(record.outcome)
        self._by_type.setdefault(record.type_key, OutcomeCounts()).add(record.outcome)

    @property
    def acceptance_rate(self) -> float:
        """Overall share of recorded outcomes that were accepted (0.0 with none)."""
        if self._total == 0:
            return 0.0
        accepted = sum(c.accepted for c in self._by_category.values())
        return accepted / self._total

    # ------------------------------------------------------------------
    # Recording
    # ------------------------------------------------------------------

    def record_suggestion(
        self,
        category: str,
        suggestion_type: str,
        text: str,
        context: dict[str, Any] | None = None,
        confidence: float = 0.5,
    ) -> str:
        """Record a suggestion that was shown and is awaiting an outcome.

        Args:
            category: Suggestion category (see SuggestionCategory).
            suggestion_type: Specific type within the category.
            text: The suggestion itself.
            context: Opaque context, e.g. the file it applied to.
            confidence: Confidence displayed with the suggestion.

        Returns:
            Suggestion id to pass to ``record_feedback`` later.
        """
        self._ensure_loaded()
        record = SuggestionRecord(
            id=_new_id("sug"),
            category=category or "unknown",
            type=suggestion_type or "unknown",
            suggestion=text,
            context=dict(context or {}),
            confidence=clamp(confidence, 0.0, 1.0),
        )
        self._pending[record.id] = record
        _logger.debug("suggestion_recorded", suggestion_id=record.id, type_key=record.type_key)
        return record.id

    def record_feedback(
        self,
        suggestion_id: str,
        outcome: FeedbackOutcome | str,
        details: dict[str, Any] | None = None,
    ) -> bool:
        """Record the outcome of a suggestion.

        The suggestion is looked up among pending suggestions first, then in
        history for a record that has no outcome yet.

        Returns:
            True if the outcome was recorded, False if no pending suggestion
            with that id exists.

        Raises:
            InvalidOutcomeError: If ``outcome`` is not a known outcome.
        """
        resolved = _coerce_outcome(outcome)
        self._ensure_loaded()

        record = self._pending.pop(suggestion_id, None)
        if record is None:
            record = next(
                (r for r in self._history if r.id == suggestion_id and r.is_pending),
                None,
            )
            if record is None:
                _logger.debug("feedback_for_unknown_suggestion", suggestion_id=suggestion_id)
                return False
        else:
            self._history.append(record)

        record.outcome = resolved
        record.feedback_at = utc_now()
        record.feedback_details = dict(details or {})
        self._update_stats(record)
        self._save()
        _logger.debug(
            "feedback_recorded",
            suggestion_id=suggestion_id,
            type_key=record.type_key,
            outcome=resolved.value,
        )
        return True

    def record_quick_feedback(
        self,
        category: str,
        suggestion_type: str,
        outcome: FeedbackOutcome | str = FeedbackOutcome.ACCEPTED,
        text: str = "",
        context: dict[str, Any] | None = None,
        confidence: float = 0.5,
        details: dict[str, Any] | None = None,
    ) -> str:
        """Record a suggestion together with its outcome in one step.

        Returns:
            The id of the new history record.
        """
        resolved = _coerce_outcome(outcome)
        self._ensure_loaded()
        now = utc_now()
        record = SuggestionRecord(
            id=_new_id("fb"),
            category=category or "unknown",
            type=suggestion_type or "unknown",
            suggestion=text,
            context=dict(context or {}),
            confidence=clamp(confidence, 0.0, 1.0),
            created_at=now,
            outcome=resolved,
            feedback_at=now,
            feedback_details=dict(details or {}),
        )
        self._history.append(record)
        self._update_stats(record)
        self._save()
        return record.id

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_acceptance_rate(self, category: str) -> float:
        """accepted/total for a category; 0.5 when nothing is recorded."""
        self._ensure_loaded()
        counts = self._by_category.get(category)
        return counts.acceptance_rate if counts else 0.5

    def get_type_acceptance_rate(self, category: str, suggestion_type: str) -> float:
        """accepted/total for ``category:type``; 0.5 when nothing is recorded."""
        self._ensure_loaded()
        counts = self._by_type.get(f"{category}:{suggestion_type}")
        return counts.acceptance_rate if counts else 0.5

    def get_category_counts(self, category: str) -> OutcomeCounts:
        self._ensure_loaded()
        return self._by_category.get(category, OutcomeCounts())

    def get_type_counts(self, category: str, suggestion_type: str) -> OutcomeCounts:
        self._ensure_loaded()
        return self._by_type.get(f"{category}:{suggestion_type}", OutcomeCounts())

    def get_history(self, category: str | None = None, limit: int = 50) -> list[SuggestionRecord]:
        """The most recent ``limit`` records, newest first."""
        self._ensure_loaded()
        matching = [r for r in self._history if category is None or r.category == category]
        return list(reversed(matching[-limit:])) if limit > 0 else []

    def get_recent_feedback(self, days: int = 7) -> list[SuggestionRecord]:
        """Records whose outcome arrived within the last ``days`` days."""
        self._ensure_loaded()
        cutoff = utc_now() - timedelta(days=days)
        return [r for r in self._history if r.feedback_at is not None and r.feedback_at >= cutoff]

    def get_pending_suggestions(self) -> list[SuggestionRecord]:
        return list(self._pending.values())

    def _performance_report(self, keep) -> list[dict[str, Any]]:
        report = []
        for type_key, counts in self._by_type.items():
            if counts.total < self.config.performance_min_samples:
                continue
            rate = counts.acceptance_rate
            if not keep(rate):
                continue
            category, _, suggestion_type = type_key.partition(":")
            report.append(
                {
                    "category": category,
                    "type": suggestion_type,
                    "acceptance_rate": rate,
                    "total": counts.total,
                    "accepted": counts.accepted,
                    "rejected": counts.rejected,
                }
            )
        return report

    def get_low_performing_types(self, threshold: float = 0.3) -> list[dict[str, Any]]:
        """Types with enough samples and an acceptance rate below ``threshold``.

        Sorted worst first.
        """
        self._ensure_loaded()
        report = self._performance_report(lambda rate: rate < threshold)
        return sorted(report, key=lambda item: item["acceptance_rate"])

    def get_high_performing_types(self, threshold: float = 0.7) -> list[dict[str, Any]]:
        """Types with enough samples and an acceptance rate of at least ``threshold``.

        Sorted best first.
        """
        self._ensure_loaded()
        report = self._performance_report(lambda rate: rate >= threshold)
        return sorted(report, key=lambda item: item["acceptance_rate"], reverse=True)

    # ------------------------------------------------------------------
    # Confidence adjustment
    # ------------------------------------------------------------------

    def adjust_confidence(self, category: str, suggestion_type: str, base_confidence: float) -> float:
        """Blend a base confidence with historical acceptance.

        ``base*0.6 + type_rate*0.25 + category_rate*0.15``, clamped to [0.1, 0.99].
        """
        type_rate = self.get_type_acceptance_rate(category, suggestion_type)
        category_rate = self.get_acceptance_rate(category)
        adjusted = (
            base_confidence * BASE_WEIGHT
            + type_rate * TYPE_WEIGHT
            + category_rate * CATEGORY_WEIGHT
        )
        return clamp(adjusted, MIN_ADJUSTED_CONFIDENCE, MAX_ADJUSTED_CONFIDENCE)

    def should_suppress(
        self,
        category: str,
        suggestion_type: str,
        threshold: float | None = None,
    ) -> bool:
        """Whether a suggestion type has been rejected often enough to stop showing it.

        Never true before the type has ``suppression_min_samples`` outcomes.
        """
        self._ensure_loaded()
        if threshold is None:
            threshold = self.config.suppression_threshold
        counts = self._by_type.get(f"{category}:{suggestion_type}")
        if counts is None or counts.total < self.config.suppression_min_samples:
            return False
        return counts.acceptance_rate < threshold

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def get_stats(self) -> dict[str, Any]:
        self._ensure_loaded()
        return {
            "total": self._total,
            "acceptance_rate": self.acceptance_rate,
            "by_category": {k: v.to_dict() for k, v in self._by_category.items()},
            "by_type": {k: v.to_dict() for k, v in self._by_type.items()},
            "history_size": len(self._history),
            "pending_count": len(self._pending),
            "categories_tracked": len(self._by_category),
            "types_tracked": len(self._by_type),
        }

    def clear(self) -> None:
        """Forget all history, statistics and pending suggestions."""
        self._history = []
        self._pending.clear()
        self._reset_stats()
        self.initialized = True
        self._save()
        _logger.warning("feedback_cleared")

    def export(self) -> dict[str, Any]:
        """Versioned document holding the full history and statistics."""
        self._ensure_loaded()
        return {
            "version": EXPORT_VERSION,
            "exportedAt": format_timestamp(utc_now()),
            "history": [r.to_dict() for r in self._history],
            "stats": self._stats_document(),
        }

    def import_data(self, data: dict[str, Any], merge: bool = True) -> int:
        """Import a document produced by ``export()``.

        Args:
            data: Exported document.
            merge: Append records whose id is not already known and count
                their outcomes. When False, history and statistics are
                replaced wholesale.

        Returns:
            Number of history records added.
        """
        self._ensure_loaded()
        incoming = parse_records(
            "import", data.get("history"), SuggestionRecord.from_dict, required="id"
        )

        if merge:
            known = {r.id for r in self._history}
            added = 0
            for record in incoming:
                if record.id in known:
                    continue
                known.add(record.id)
                self._history.append(record)
                self._update_stats(record)
                added += 1
        else:
            self._history = incoming
            self._load_stats(data.get("stats") or {})
            added = len(incoming)

        self._save()
        _logger.info("feedback_imported", added=added, merge=merge)
        return added


__all__ = [
    "FeedbackCollector",
    "HISTORY_PARTITION",
    "STATS_PARTITION",
]
