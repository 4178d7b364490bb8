"""Shared test helpers for Tessera tests."""

from __future__ import annotations

import json
from datetime import UTC, datetime, timedelta
from typing import Any

from tessera.memory import PersistentStore


def iso_days_ago(days: float) -> str:
    return (datetime.now(UTC) - timedelta(days=days)).isoformat()


def write_partition(store: PersistentStore, partition: str, document: Any) -> None:
    """Write a partition document directly, bypassing the engine."""
    path = store.partition_path(partition)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document), encoding="utf-8")


def read_partition(store: PersistentStore, partition: str) -> Any:
    return json.loads(store.partition_path(partition).read_text(encoding="utf-8"))


def seed_projects(store: PersistentStore, names: list[str]) -> None:
    """Register projects ``/work/<name>`` named ``<name>``."""
    write_partition(
        store,
        "global/projects",
        [{"path": f"/work/{name}", "name": name} for name in names],
    )


def pattern_record(
    pattern_type: str,
    value: str,
    confidence: float,
    sources: list[str],
    occurrences: int = 1,
    days_old: float = 0.0,
    created_days_ago: float | None = None,
) -> dict[str, Any]:
    """A stored pattern document as it appears in ``global/patterns``."""
    return {
        "type": pattern_type,
        "pattern": value,
        "confidence": confidence,
        "occurrences": occurrences,
        "sources": sources,
        "createdAt": iso_days_ago(days_old if created_days_ago is None else created_days_ago),
        "lastSeen": iso_days_ago(days_old),
    }
