"""Core infrastructure: configuration, errors and logging."""

from tessera.core.config import (
    CalibrationConfig,
    FeedbackConfig,
    LogConfig,
    StorageConfig,
    SyncConfig,
    TesseraConfig,
    load_config,
)
from tessera.core.errors import (
    InvalidOutcomeError,
    StorageWriteError,
    TesseraError,
    UnknownStrategyError,
)

__all__ = [
    "CalibrationConfig",
    "FeedbackConfig",
    "InvalidOutcomeError",
    "LogConfig",
    "StorageConfig",
    "StorageWriteError",
    "SyncConfig",
    "TesseraConfig",
    "TesseraError",
    "UnknownStrategyError",
    "load_config",
]
