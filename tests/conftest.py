"""Pytest fixtures for Tessera tests."""

from __future__ import annotations

import logging
from collections.abc import Generator
from pathlib import Path

import pytest
import structlog

from tessera.memory import (
    ConfidenceCalibrator,
    FeedbackCollector,
    GlobalMemory,
    PatternAggregator,
    PersistentStore,
    TeamSync,
)


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset CLI and logging state before and after each test."""
    import tessera.cli.helpers as helpers

    helpers.reset_logging_state()
    structlog.reset_defaults()

    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]
    for handler in original_handlers:
        root_logger.removeHandler(handler)

    yield

    helpers.reset_logging_state()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture(autouse=True)
def isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Point the default store root at a per-test directory."""
    home = tmp_path / "tessera-home"
    monkeypatch.setenv("TESSERA_HOME", str(home))
    return home


@pytest.fixture
def store(tmp_path: Path) -> PersistentStore:
    """Synchronous store: every put is written before returning."""
    return PersistentStore(tmp_path / "store", debounce_ms=0)


@pytest.fixture
def memory(store: PersistentStore) -> GlobalMemory:
    return GlobalMemory(store)


@pytest.fixture
def feedback(store: PersistentStore) -> FeedbackCollector:
    return FeedbackCollector(store)


@pytest.fixture
def calibrator(store: PersistentStore) -> ConfidenceCalibrator:
    return ConfidenceCalibrator(store)


@pytest.fixture
def aggregator(memory: GlobalMemory) -> PatternAggregator:
    return PatternAggregator(memory)


@pytest.fixture
def team_sync(memory: GlobalMemory) -> TeamSync:
    return TeamSync(memory)
