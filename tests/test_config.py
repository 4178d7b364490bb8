"""Tests for tessera.core.config module."""

from pathlib import Path

import pytest
from pydantic import ValidationError

from tessera.core.config import (
    CalibrationConfig,
    FeedbackConfig,
    LogConfig,
    StorageConfig,
    SyncConfig,
    TesseraConfig,
    default_root_dir,
    load_config,
)


class TestDefaultRootDir:
    """Tests for store root resolution."""

    def test_env_override(self, isolated_home: Path):
        """TESSERA_HOME wins over the home directory."""
        assert default_root_dir() == isolated_home

    def test_falls_back_to_home(self, monkeypatch: pytest.MonkeyPatch):
        """Without the env var the root is ~/.tessera."""
        monkeypatch.delenv("TESSERA_HOME", raising=False)
        assert default_root_dir() == Path.home() / ".tessera"


class TestSectionDefaults:
    """Tests for per-section default values."""

    def test_storage(self, isolated_home: Path):
        config = StorageConfig()
        assert config.root_dir == isolated_home
        assert config.debounce_ms == 100

    def test_calibration(self):
        config = CalibrationConfig()
        assert config.history_limit == 1000
        assert config.min_predictions == 10
        assert config.min_bin_samples == 3
        assert config.well_calibrated_threshold == 0.1

    def test_feedback(self):
        config = FeedbackConfig()
        assert config.suppression_threshold == 0.2
        assert config.suppression_min_samples == 5

    def test_sync(self):
        config = SyncConfig()
        assert config.default_strategy == "majority"
        assert config.confidence_boost == 0.1
        assert config.min_confidence == 0.5

    def test_log(self):
        config = LogConfig()
        assert config.level == "WARNING"
        assert config.format == "console"
        assert config.file_path is None


class TestValidation:
    """Tests for rejected values."""

    def test_negative_debounce(self):
        with pytest.raises(ValidationError):
            StorageConfig(debounce_ms=-1)

    def test_unknown_strategy(self):
        with pytest.raises(ValidationError):
            SyncConfig(default_strategy="coin_flip")

    def test_boost_upper_bound(self):
        with pytest.raises(ValidationError):
            SyncConfig(confidence_boost=0.9)

    def test_both_format_requires_file(self):
        with pytest.raises(ValidationError, match="file_path is required"):
            LogConfig(format="both")

    def test_both_format_with_file(self, tmp_path: Path):
        config = LogConfig(format="both", file_path=tmp_path / "tessera.log")
        assert config.file_path == tmp_path / "tessera.log"


class TestLoading:
    """Tests for YAML loading."""

    def test_from_yaml_string(self):
        config = TesseraConfig.from_yaml_string(
            """
storage:
  debounce_ms: 250
sync:
  default_strategy: merge_all
log:
  level: DEBUG
  format: json
"""
        )
        assert config.storage.debounce_ms == 250
        assert config.sync.default_strategy == "merge_all"
        assert config.log.level == "DEBUG"
        assert config.calibration.history_limit == 1000

    def test_empty_yaml_is_defaults(self):
        config = TesseraConfig.from_yaml_string("")
        assert config.feedback.suppression_min_samples == 5

    def test_load_config_without_file(self):
        config = load_config()
        assert config.storage.debounce_ms == 100

    def test_load_config_from_root(self, isolated_home: Path):
        isolated_home.mkdir(parents=True)
        (isolated_home / "config.yaml").write_text("calibration:\n  history_limit: 50\n")

        assert load_config().calibration.history_limit == 50

    def test_load_config_explicit_path(self, tmp_path: Path):
        path = tmp_path / "custom.yaml"
        path.write_text("feedback:\n  suppression_threshold: 0.3\n")

        assert load_config(path).feedback.suppression_threshold == 0.3

    def test_invalid_yaml_values_raise(self, tmp_path: Path):
        path = tmp_path / "bad.yaml"
        path.write_text("storage:\n  debounce_ms: -5\n")

        with pytest.raises(ValidationError):
            load_config(path)
