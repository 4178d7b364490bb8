"""Exception hierarchy for Tessera.

All engine-specific exceptions inherit from TesseraError, enabling callers
to catch broad (TesseraError) or narrow (e.g., StorageWriteError).

Storage *read* problems are never raised: a missing or corrupt partition
loads as empty defaults. Malformed team data is reported through structured
results, not exceptions.
"""

from __future__ import annotations

from pathlib import Path


class TesseraError(Exception):
    """Base exception for all Tessera errors."""


class StorageWriteError(TesseraError):
    """Raised when a partition document cannot be written to disk.

    Examples: permission denied on the store directory, disk full.
    Learned state stays pending in memory so a later ``flush()`` can retry.
    """

    def __init__(self, partition: str, path: Path, reason: str) -> None:
        self.partition = partition
        self.path = path
        self.reason = reason
        super().__init__(f"Failed to write partition '{partition}' to {path}: {reason}")


class UnknownStrategyError(TesseraError, ValueError):
    """Raised when a conflict-resolution strategy name is not recognised."""


class InvalidOutcomeError(TesseraError, ValueError):
    """Raised when feedback is recorded with an unknown outcome value."""
