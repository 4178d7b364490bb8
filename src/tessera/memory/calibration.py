"""Bayesian calibration of confidence scores from observed outcomes.

Each calibration key (a suggestion type, a pattern family, a predictor name,
...) carries a Beta-Binomial posterior over its success probability. The
prior is Beta(2, 2), a weak pull toward 0.5, so every key starts with
``alpha = beta = 2`` and gains one unit of alpha per success and one unit of
beta per failure.

Callers pass their raw confidence through ``get_calibrated_confidence``,
which shrinks it toward the observed success rate as evidence accumulates:
with no outcomes the raw value is returned unchanged, and with many outcomes
the result converges to the posterior mean.

A bounded log of (predicted confidence, outcome) pairs feeds a reliability
analysis: predictions are bucketed into five 0.2-wide bins, and the mean
gap between predicted and observed rates is the calibration error. The
Brier score is the mean squared error over the whole log.

Example:
    >>> calibrator = ConfidenceCalibrator(store)
    >>> calibrator.record_outcome("pattern:naming", True, predicted_confidence=0.8)
    >>> calibrator.get_posterior_mean("pattern:naming")
    0.6
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from typing import Any

from tessera.core.config import CalibrationConfig
from tessera.core.logging import get_logger
from tessera.memory.models import (
    CalibrationEntry,
    PredictionRecord,
    clamp,
    format_timestamp,
    utc_now,
)
from tessera.memory.persistence import PersistentStore, parse_keyed_records

_logger = get_logger("calibration")

CALIBRATION_PARTITION = "calibration/calibration"
EXPORT_VERSION = "1.0.0"

PRIOR_ALPHA = 2.0
PRIOR_BETA = 2.0

MIN_CALIBRATED = 0.01
MAX_CALIBRATED = 0.99

# Callers are assumed to claim 50% confidence on average.
NOMINAL_SUCCESS_RATE = 0.5
MIN_ADJUSTMENT = 0.5
MAX_ADJUSTMENT = 2.0

Z_SCORES: dict[float, float] = {0.90: 1.645, 0.95: 1.96, 0.99: 2.576}
DEFAULT_Z = 1.96

BIN_EDGES: tuple[float, ...] = (0.0, 0.2, 0.4, 0.6, 0.8, 1.0)


@dataclass(frozen=True)
class CredibleInterval:
    """Normal-approximation credible interval, clipped to [0, 1]."""

    lower: float
    upper: float

    @property
    def width(self) -> float:
        return self.upper - self.lower


@dataclass
class CalibrationBin:
    """One confidence bucket of the reliability analysis, ``[low, high)``."""

    low: float
    high: float
    count: int = 0
    mean_predicted: float = 0.0
    actual_rate: float = 0.0

    @property
    def range(self) -> str:
        return f"{self.low:.1f}-{self.high:.1f}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "range": self.range,
            "count": self.count,
            "meanPredicted": self.mean_predicted,
            "actualRate": self.actual_rate,
        }


@dataclass
class CalibrationAnalysis:
    """Result of ``analyze_calibration``.

    When fewer predictions than required have been logged, ``error`` explains
    why and the metric fields keep their zero defaults.
    """

    total_predictions: int
    bins: list[CalibrationBin] = field(default_factory=list)
    calibration_error: float = 0.0
    brier_score: float = 0.0
    error: str | None = None

    @property
    def sufficient(self) -> bool:
        return self.error is None

    def to_dict(self) -> dict[str, Any]:
        if self.error is not None:
            return {"error": self.error, "totalPredictions": self.total_predictions}
        return {
            "bins": [b.to_dict() for b in self.bins],
            "totalPredictions": self.total_predictions,
            "calibrationError": self.calibration_error,
            "brierScore": self.brier_score,
        }


def z_score(level: float) -> float:
    """Two-sided z value for a credible level; unknown levels use 1.96."""
    return Z_SCORES.get(round(level, 2), DEFAULT_Z)


class ConfidenceCalibrator:
    """Per-key Beta-Binomial calibration with a bounded prediction log.

    Reads of a key that has never seen an outcome answer from the prior
    without storing anything.
    """

    def __init__(
        self,
        store: PersistentStore | None = None,
        config: CalibrationConfig | None = None,
    ) -> None:
        self.store = store or PersistentStore()
        self.config = config or CalibrationConfig()
        self.initialized = False
        self._entries: dict[str, CalibrationEntry] = {}
        self._history: list[PredictionRecord] = []

    def init(self) -> ConfidenceCalibrator:
        """(Re)load calibration entries and prediction history."""
        document = self.store.load(CALIBRATION_PARTITION, {})
        self._entries = parse_keyed_records(
            CALIBRATION_PARTITION, document.get("calibrationData"), CalibrationEntry.from_dict
        )
        self._history = self._parse_history(document.get("predictionHistory") or [])
        self._trim_history()
        self.initialized = True
        return self

    @staticmethod
    def _parse_history(items: Any) -> list[PredictionRecord]:
        if not isinstance(items, list):
            return []
        records = []
        for item in items:
            if not isinstance(item, dict) or item.get("predictedConfidence") is None:
                continue
            try:
                records.append(PredictionRecord.from_dict(item))
            except (TypeError, ValueError):
                _logger.debug("prediction_record_skipped", record=item)
        return records

    def _ensure_loaded(self) -> None:
        if not self.initialized:
            self.init()

    def _trim_history(self) -> None:
        limit = self.config.history_limit
        if len(self._history) > limit:
            self._history = self._history[-limit:]

    def _save(self) -> None:
        self.store.put(
            CALIBRATION_PARTITION,
            {
                "calibrationData": {k: e.to_dict() for k, e in self._entries.items()},
                "predictionHistory": [r.to_dict() for r in self._history],
            },
        )

    def flush(self) -> None:
        self.store.flush()

    def _entry(self, key: str) -> CalibrationEntry:
        self._ensure_loaded()
        return self._entries.get(key) or CalibrationEntry(key=key, alpha=PRIOR_ALPHA, beta=PRIOR_BETA)

    @property
    def prediction_history(self) -> list[PredictionRecord]:
        self._ensure_loaded()
        return list(self._history)

    # ------------------------------------------------------------------
    # Bayesian updating
    # ------------------------------------------------------------------

    def record_outcome(
        self,
        key: str,
        success: bool,
        predicted_confidence: float | None = None,
    ) -> CalibrationEntry:
        """Update the posterior for ``key`` with one binary outcome.

        Args:
            key: Calibration key.
            success: Whether the predicted thing turned out right.
            predicted_confidence: Confidence that was claimed for it. When
                given, the pair is appended to the prediction log (oldest
                entries beyond ``history_limit`` are dropped).

        Returns:
            The updated calibration entry.
        """
        self._ensure_loaded()
        entry = self._entries.setdefault(
            key, CalibrationEntry(key=key, alpha=PRIOR_ALPHA, beta=PRIOR_BETA)
        )
        if success:
            entry.alpha += 1
            entry.successes += 1
        else:
            entry.beta += 1
            entry.failures += 1
        entry.total_outcomes += 1
        entry.last_updated = utc_now()

        if predicted_confidence is not None:
            self._history.append(
                PredictionRecord(
                    key=key,
                    predicted_confidence=float(predicted_confidence),
                    actual_outcome=bool(success),
                    timestamp=entry.last_updated,
                )
            )
            self._trim_history()

        self._save()
        _logger.debug(
            "outcome_recorded",
            key=key,
            success=success,
            posterior_mean=round(entry.posterior_mean, 4),
        )
        return entry

    def get_posterior_mean(self, key: str) -> float:
        """``alpha / (alpha + beta)``."""
        return self._entry(key).posterior_mean

    def get_posterior_variance(self, key: str) -> float:
        """``alpha*beta / ((alpha+beta)^2 * (alpha+beta+1))``."""
        return self._entry(key).posterior_variance

    def get_calibrated_confidence(self, key: str, raw_confidence: float) -> float:
        """Shrink a raw confidence toward the observed success rate.

        The prior mass (4) competes with the observed outcomes: the raw value
        keeps weight ``4 / (n + 4)`` and the posterior mean the rest. The
        result is clamped to [0.01, 0.99].
        """
        entry = self._entry(key)
        prior_mass = PRIOR_ALPHA + PRIOR_BETA
        prior_weight = prior_mass / (entry.total_outcomes + prior_mass)
        calibrated = raw_confidence * prior_weight + entry.posterior_mean * (1 - prior_weight)
        return clamp(calibrated, MIN_CALIBRATED, MAX_CALIBRATED)

    def get_credible_interval(self, key: str, level: float = 0.95) -> CredibleInterval:
        """Approximate credible interval ``mean ± z*sd``, clipped to [0, 1]."""
        entry = self._entry(key)
        margin = z_score(level) * math.sqrt(entry.posterior_variance)
        mean = entry.posterior_mean
        return CredibleInterval(lower=max(0.0, mean - margin), upper=min(1.0, mean + margin))

    def get_adjustment_factor(self, key: str) -> float:
        """Multiplicative correction for a key's raw confidences.

        1.0 until the key has ``min_outcomes_for_adjustment`` outcomes, then
        ``observed_rate / 0.5`` clamped to [0.5, 2.0].
        """
        entry = self._entry(key)
        if entry.total_outcomes < self.config.min_outcomes_for_adjustment or entry.total_outcomes == 0:
            return 1.0
        observed = entry.successes / entry.total_outcomes
        return clamp(observed / NOMINAL_SUCCESS_RATE, MIN_ADJUSTMENT, MAX_ADJUSTMENT)

    # ------------------------------------------------------------------
    # Calibration analysis
    # ------------------------------------------------------------------

    def analyze_calibration(self) -> CalibrationAnalysis:
        """Reliability analysis over the prediction log.

        Returns:
            An analysis with ``error`` set when fewer than ``min_predictions``
            predictions are logged; otherwise per-bin statistics, the
            calibration error over bins holding at least ``min_bin_samples``
            predictions, and the Brier score.
        """
        self._ensure_loaded()
        total = len(self._history)
        if total < self.config.min_predictions:
            return CalibrationAnalysis(
                total_predictions=total,
                error="Insufficient data for calibration analysis",
            )

        grouped: list[list[PredictionRecord]] = [[] for _ in BIN_EDGES[:-1]]
        for record in self._history:
            for index, (low, high) in enumerate(zip(BIN_EDGES, BIN_EDGES[1:])):
                if low <= record.predicted_confidence < high:
                    grouped[index].append(record)
                    break

        bins = []
        for (low, high), members in zip(zip(BIN_EDGES, BIN_EDGES[1:]), grouped):
            bin_ = CalibrationBin(low=low, high=high, count=len(members))
            if members:
                bin_.mean_predicted = sum(r.predicted_confidence for r in members) / len(members)
                bin_.actual_rate = sum(1 for r in members if r.actual_outcome) / len(members)
            bins.append(bin_)

        qualifying = [b for b in bins if b.count >= self.config.min_bin_samples]
        calibration_error = (
            sum(abs(b.mean_predicted - b.actual_rate) for b in qualifying) / len(qualifying)
            if qualifying
            else 0.0
        )
        brier_score = (
            sum((r.predicted_confidence - (1.0 if r.actual_outcome else 0.0)) ** 2 for r in self._history)
            / total
        )

        return CalibrationAnalysis(
            total_predictions=total,
            bins=bins,
            calibration_error=calibration_error,
            brier_score=brier_score,
        )

    def is_well_calibrated(self) -> bool:
        """True with insufficient data, else calibration error under the threshold."""
        analysis = self.analyze_calibration()
        if not analysis.sufficient:
            return True
        return analysis.calibration_error < self.config.well_calibrated_threshold

    # ------------------------------------------------------------------
    # Utilities
    # ------------------------------------------------------------------

    def get_key_stats(self, key: str) -> dict[str, Any]:
        entry = self._entry(key)
        interval = self.get_credible_interval(key)
        return {
            "key": key,
            "posterior_mean": entry.posterior_mean,
            "posterior_variance": entry.posterior_variance,
            "credible_interval": (interval.lower, interval.upper),
            "total_outcomes": entry.total_outcomes,
            "success_rate": (
                entry.successes / entry.total_outcomes if entry.total_outcomes else 0.5
            ),
            "last_updated": format_timestamp(entry.last_updated),
        }

    def get_keys(self) -> list[str]:
        self._ensure_loaded()
        return list(self._entries)

    def get_stats(self) -> dict[str, Any]:
        self._ensure_loaded()
        total_outcomes = sum(e.total_outcomes for e in self._entries.values())
        total_successes = sum(e.successes for e in self._entries.values())
        return {
            "keys_tracked": len(self._entries),
            "total_outcomes": total_outcomes,
            "overall_success_rate": total_successes / total_outcomes if total_outcomes else 0.5,
            "prediction_history_size": len(self._history),
            "is_well_calibrated": self.is_well_calibrated(),
        }

    def clear_key(self, key: str) -> bool:
        """Forget one key's posterior. Returns False if the key was unknown."""
        self._ensure_loaded()
        if self._entries.pop(key, None) is None:
            return False
        self._save()
        return True

    def clear(self) -> None:
        self._entries = {}
        self._history = []
        self.initialized = True
        self._save()
        _logger.warning("calibration_cleared")

    def export(self) -> dict[str, Any]:
        self._ensure_loaded()
        return {
            "version": EXPORT_VERSION,
            "exportedAt": format_timestamp(utc_now()),
            "calibrationData": {k: e.to_dict() for k, e in self._entries.items()},
            "predictionHistory": [r.to_dict() for r in self._history],
        }

    def import_data(self, data: dict[str, Any]) -> None:
        """Overlay imported entries on local ones and append imported history.

        Imported entries replace local entries with the same key; the
        combined prediction log is re-capped to ``history_limit``.
        """
        self._ensure_loaded()
        self._entries.update(
            parse_keyed_records("import", data.get("calibrationData"), CalibrationEntry.from_dict)
        )
        self._history.extend(self._parse_history(data.get("predictionHistory") or []))
        self._trim_history()
        self._save()
        _logger.info("calibration_imported", keys=len(self._entries), history=len(self._history))


__all__ = [
    "CALIBRATION_PARTITION",
    "CalibrationAnalysis",
    "CalibrationBin",
    "ConfidenceCalibrator",
    "CredibleInterval",
    "z_score",
]
