"""Configuration models for Tessera.

Pydantic models for loading and validating the optional YAML configuration
at ``<root>/config.yaml``. Every field has a default, so an absent file
yields a fully usable configuration.

Example YAML:
    storage:
      debounce_ms: 250
    calibration:
      history_limit: 2000
    sync:
      default_strategy: merge_all
    log:
      level: DEBUG
      format: json
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, model_validator

TESSERA_HOME_ENV = "TESSERA_HOME"
CONFIG_FILENAME = "config.yaml"


def default_root_dir() -> Path:
    """Return the user-scoped store root, honouring ``$TESSERA_HOME``."""
    override = os.environ.get(TESSERA_HOME_ENV)
    if override:
        return Path(override).expanduser()
    return Path.home() / ".tessera"


class StorageConfig(BaseModel):
    """Where learned state lives and how writes are batched."""

    root_dir: Path = Field(
        default_factory=default_root_dir,
        description="Directory holding every partition document",
    )
    debounce_ms: int = Field(
        default=100,
        ge=0,
        description="Debounce window for batched writes. 0 = write synchronously",
    )


class CalibrationConfig(BaseModel):
    """Thresholds for confidence calibration analysis."""

    history_limit: int = Field(
        default=1000,
        ge=1,
        description="Maximum prediction-history entries retained (oldest dropped)",
    )
    min_predictions: int = Field(
        default=10,
        ge=1,
        description="Logged predictions required before calibration is analysed",
    )
    min_bin_samples: int = Field(
        default=3,
        ge=1,
        description="Samples a confidence bin needs to count toward calibration error",
    )
    well_calibrated_threshold: float = Field(
        default=0.1,
        gt=0.0,
        le=1.0,
        description="Calibration error below which predictions count as well calibrated",
    )
    min_outcomes_for_adjustment: int = Field(
        default=3,
        ge=0,
        description="Outcomes a key needs before its adjustment factor departs from 1.0",
    )


class FeedbackConfig(BaseModel):
    """Guards for suggestion suppression and performance reports."""

    suppression_threshold: float = Field(
        default=0.2,
        ge=0.0,
        le=1.0,
        description="Acceptance rate below which a suggestion type is suppressed",
    )
    suppression_min_samples: int = Field(
        default=5,
        ge=1,
        description="Outcomes a type needs before it can be suppressed",
    )
    performance_min_samples: int = Field(
        default=3,
        ge=1,
        description="Outcomes a type needs to appear in low/high performer reports",
    )


class SyncConfig(BaseModel):
    """Defaults for team export and import."""

    default_strategy: Literal["majority", "highest_confidence", "newest", "merge_all"] = Field(
        default="majority",
        description="Conflict strategy used when an import names none",
    )
    confidence_boost: float = Field(
        default=0.1,
        ge=0.0,
        le=0.5,
        description="Confidence added to team patterns that are new locally",
    )
    min_confidence: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Minimum pattern confidence included in a team export",
    )


class LogConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="WARNING",
        description="Minimum log level to capture",
    )
    format: Literal["json", "console", "both"] = Field(
        default="console",
        description="json for structured, console for human-readable, "
        "both for console to stderr and JSON to file",
    )
    file_path: Path | None = Field(
        default=None,
        description="Path for log file output (required if format='both')",
    )
    max_file_size_mb: int = Field(default=50, gt=0, le=1000)
    backup_count: int = Field(default=5, ge=0, le=100)
    include_timestamps: bool = Field(default=True)
    include_context: bool = Field(
        default=True,
        description="Include the active project context in log entries",
    )

    @model_validator(mode="after")
    def _validate_file_path_for_both(self) -> LogConfig:
        if self.format == "both" and self.file_path is None:
            raise ValueError("log.file_path is required when log.format is 'both'")
        return self


class TesseraConfig(BaseModel):
    """Top-level Tessera configuration."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    calibration: CalibrationConfig = Field(default_factory=CalibrationConfig)
    feedback: FeedbackConfig = Field(default_factory=FeedbackConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    log: LogConfig = Field(default_factory=LogConfig)

    @classmethod
    def from_yaml(cls, path: Path) -> TesseraConfig:
        """Load configuration from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.model_validate(data)

    @classmethod
    def from_yaml_string(cls, yaml_str: str) -> TesseraConfig:
        """Load configuration from a YAML string."""
        data = yaml.safe_load(yaml_str) or {}
        return cls.model_validate(data)


def load_config(path: Path | None = None) -> TesseraConfig:
    """Load ``config.yaml`` from the store root, or defaults when absent.

    Args:
        path: Explicit config file. Defaults to ``<root>/config.yaml``.
    """
    config_path = path or default_root_dir() / CONFIG_FILENAME
    if not config_path.exists():
        return TesseraConfig()
    return TesseraConfig.from_yaml(config_path)


__all__ = [
    "CONFIG_FILENAME",
    "CalibrationConfig",
    "FeedbackConfig",
    "LogConfig",
    "StorageConfig",
    "SyncConfig",
    "TESSERA_HOME_ENV",
    "TesseraConfig",
    "default_root_dir",
    "load_config",
]
