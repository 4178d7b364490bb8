"""Pattern memory, feedback tracking, calibration and team sync."""

from tessera.memory.aggregator import PatternAggregator
from tessera.memory.calibration import CalibrationAnalysis, ConfidenceCalibrator
from tessera.memory.feedback import FeedbackCollector
from tessera.memory.global_memory import GlobalMemory
from tessera.memory.models import (
    AggregatedPattern,
    CalibrationEntry,
    ConflictStrategy,
    ConsensusLevel,
    ExpertiseEntry,
    FeedbackOutcome,
    Pattern,
    ProjectRecord,
    SuggestionCategory,
    SuggestionRecord,
)
from tessera.memory.persistence import PersistentStore
from tessera.memory.team_sync import ExportValidation, ImportResult, TeamSync

__all__ = [
    # Storage
    "PersistentStore",
    # Components
    "GlobalMemory",
    "FeedbackCollector",
    "ConfidenceCalibrator",
    "PatternAggregator",
    "TeamSync",
    # Records
    "AggregatedPattern",
    "CalibrationAnalysis",
    "CalibrationEntry",
    "ExpertiseEntry",
    "ExportValidation",
    "ImportResult",
    "Pattern",
    "ProjectRecord",
    "SuggestionRecord",
    # Enums
    "ConflictStrategy",
    "ConsensusLevel",
    "FeedbackOutcome",
    "SuggestionCategory",
]
