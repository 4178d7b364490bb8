"""Durable partitioned document storage with debounced batched writes.

Every component keeps its learned state in one or more *partitions*: whole
JSON documents at fixed, user-scoped paths under the store root
(``<root>/global/patterns.json``, ``<root>/feedback/stats.json``, ...).

Writes are staged in memory and flushed by a single-slot debounce timer:
the first mutation arms the timer, later mutations inside the window only
replace the staged snapshot, and one physical write covers them all.
``flush()`` cancels the timer and writes synchronously. A debounce window
of 0 makes every write synchronous, which is what the tests use.

Reads never wait on the timer: ``load()`` returns a staged snapshot when
one is pending or still being written, otherwise the document on disk,
otherwise the default.
A missing or corrupt document loads as the default and is never raised.
"""

from __future__ import annotations

import copy
import json
import tempfile
import threading
from collections.abc import Callable
from pathlib import Path
from typing import Any, TypeVar

from tessera.core.config import default_root_dir
from tessera.core.errors import StorageWriteError
from tessera.core.logging import get_logger

_logger = get_logger("persistence")

DEFAULT_DEBOUNCE_MS = 100

T = TypeVar("T")


def parse_records(
    partition: str,
    items: Any,
    parse: Callable[[dict[str, Any]], T],
    required: str,
) -> list[T]:
    """Parse a list partition record by record.

    Entries that are not objects, lack ``required``, or carry values of the
    wrong type are skipped; a bad record never poisons the whole partition.
    """
    if not isinstance(items, list):
        return []
    records = []
    for item in items:
        if not isinstance(item, dict) or not item.get(required):
            continue
        try:
            records.append(parse(item))
        except (TypeError, ValueError) as e:
            _logger.warning(
                "partition_record_skipped",
                partition=partition,
                error=f"{type(e).__name__}: {e}",
            )
    return records


def parse_keyed_records(
    partition: str,
    mapping: Any,
    parse: Callable[[str, dict[str, Any]], T],
) -> dict[str, T]:
    """Parse an object partition (or nested map) whose values are records."""
    if not isinstance(mapping, dict):
        if mapping is not None:
            _logger.warning(
                "partition_shape_mismatch",
                partition=partition,
                expected="dict",
                found=type(mapping).__name__,
            )
        return {}
    records = {}
    for key, data in mapping.items():
        if not isinstance(data, dict):
            continue
        try:
            records[key] = parse(key, data)
        except (TypeError, ValueError) as e:
            _logger.warning(
                "partition_record_skipped",
                partition=partition,
                key=key,
                error=f"{type(e).__name__}: {e}",
            )
    return records


class DebounceScheduler:
    """Single-slot trailing-edge timer.

    Only one task is ever pending: ``schedule()`` while a task is armed is a
    no-op, so N calls inside one window fire the callback exactly once.
    The callback runs on a timer thread; it is non-daemon so a pending write
    still lands when the interpreter exits normally.
    """

    def __init__(self, callback: Callable[[], None], delay_ms: int = DEFAULT_DEBOUNCE_MS) -> None:
        self._callback = callback
        self.delay_ms = max(0, delay_ms)
        self._timer: threading.Timer | None = None
        self._lock = threading.Lock()

    @property
    def pending(self) -> bool:
        """True while a task is armed and has not fired yet."""
        return self._timer is not None

    def schedule(self) -> bool:
        """Arm the timer unless one is already pending.

        Returns:
            True if a new timer was armed, False if one was already pending.
        """
        with self._lock:
            if self._timer is not None:
                return False
            self._timer = threading.Timer(self.delay_ms / 1000.0, self._fire)
            self._timer.daemon = False
            self._timer.start()
            return True

    def cancel(self) -> bool:
        """Disarm the pending timer, if any.

        Returns:
            True if a pending timer was cancelled.
        """
        with self._lock:
            timer, self._timer = self._timer, None
        if timer is None:
            return False
        timer.cancel()
        return True

    def _fire(self) -> None:
        with self._lock:
            self._timer = None
        self._callback()


class PersistentStore:
    """Partitioned JSON document store shared by every memory component.

    Single-writer: two processes writing the same root race on whole
    documents and the last writer wins.

    Attributes:
        root_dir: Directory holding every partition document.
        write_count: Number of physical write batches performed so far.
    """

    def __init__(
        self,
        root_dir: Path | None = None,
        debounce_ms: int = DEFAULT_DEBOUNCE_MS,
    ) -> None:
        """Initialize the store.

        Args:
            root_dir: Store root. Defaults to ``~/.tessera`` (or ``$TESSERA_HOME``).
            debounce_ms: Debounce window in milliseconds. 0 = synchronous writes.
        """
        self.root_dir = Path(root_dir) if root_dir is not None else default_root_dir()
        self.write_count = 0
        self._staged: dict[str, Any] = {}
        self._lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._last_error: StorageWriteError | None = None
        self._scheduler = DebounceScheduler(self._on_timer, debounce_ms)

    # ------------------------------------------------------------------
    # Configuration
    # ------------------------------------------------------------------

    @property
    def debounce_ms(self) -> int:
        return self._scheduler.delay_ms

    @debounce_ms.setter
    def debounce_ms(self, value: int) -> None:
        self._scheduler.delay_ms = max(0, value)

    @property
    def has_pending_write(self) -> bool:
        """True while staged documents are waiting to be written."""
        with self._lock:
            return bool(self._staged)

    @property
    def last_error(self) -> StorageWriteError | None:
        """Failure of the most recent timer-driven write, cleared by a successful flush."""
        return self._last_error

    def partition_path(self, partition: str) -> Path:
        """Resolve a partition name like ``global/patterns`` to its file."""
        return self.root_dir.joinpath(*partition.split("/")).with_suffix(".json")

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def load(self, partition: str, default: Any) -> Any:
        """Load a partition document.

        Args:
            partition: Partition name.
            default: Value returned (deep-copied) when the document is
                missing, unreadable, corrupt, or of the wrong JSON shape.

        Returns:
            The staged snapshot if a write is pending, else the document on
            disk, else a copy of ``default``.
        """
        with self._lock:
            if partition in self._staged:
                return copy.deepcopy(self._staged[partition])

        path = self.partition_path(partition)
        if not path.exists():
            return copy.deepcopy(default)

        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            _logger.warning(
                "partition_load_failed",
                partition=partition,
                path=str(path),
                error=f"{type(e).__name__}: {e}",
            )
            return copy.deepcopy(default)

        if default is not None and not isinstance(data, type(default)):
            _logger.warning(
                "partition_shape_mismatch",
                partition=partition,
                expected=type(default).__name__,
                found=type(data).__name__,
            )
            return copy.deepcopy(default)
        return data

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def put(self, partition: str, document: Any) -> None:
        """Stage a whole-document snapshot and schedule a debounced write.

        With a zero debounce window the write happens before returning, and
        a write failure raises StorageWriteError to the caller.
        """
        with self._lock:
            self._staged[partition] = document
        if self._scheduler.delay_ms == 0:
            self._write_staged()
            return
        self._scheduler.schedule()

    def flush(self) -> None:
        """Cancel any pending timer and write staged documents now.

        Waits for a timer write already in progress, then writes whatever
        is still staged, so a newer snapshot always lands last.

        Raises:
            StorageWriteError: If a document cannot be written. The failed
                documents stay staged so a later flush can retry.
        """
        self._scheduler.cancel()
        if self.has_pending_write:
            self._write_staged()
        self._last_error = None

    def close(self) -> None:
        """Flush pending writes. Call before process exit."""
        self.flush()

    def delete_all(self) -> None:
        """Drop staged snapshots and remove every partition file under the root."""
        self._scheduler.cancel()
        with self._write_lock:
            with self._lock:
                self._staged.clear()
            if not self.root_dir.exists():
                return
            for path in self.root_dir.rglob("*.json"):
                path.unlink()
        _logger.warning("store_cleared", root=str(self.root_dir))

    def _on_timer(self) -> None:
        try:
            self._write_staged()
        except StorageWriteError as e:
            self._last_error = e
            _logger.error(
                "debounced_write_failed",
                partition=e.partition,
                path=str(e.path),
                error=e.reason,
            )

    def _write_staged(self) -> None:
        with self._write_lock:
            with self._lock:
                batch = dict(self._staged)

            for partition, document in batch.items():
                path = self.partition_path(partition)
                try:
                    self._write_document(path, document)
                except (OSError, TypeError, ValueError) as e:
                    raise StorageWriteError(partition, path, f"{type(e).__name__}: {e}") from e
                with self._lock:
                    # A put() during the write staged a newer snapshot; keep it.
                    if self._staged.get(partition) is document:
                        del self._staged[partition]

            if batch:
                self.write_count += 1
                _logger.debug("partitions_written", partitions=sorted(batch))

    @staticmethod
    def _write_document(path: Path, document: Any) -> None:
        """Write one document atomically: temp file in the same dir, then replace."""
        path.parent.mkdir(parents=True, exist_ok=True)
        f = tempfile.NamedTemporaryFile(
            mode="w",
            dir=path.parent,
            suffix=".tmp",
            delete=False,
            encoding="utf-8",
        )
        temp_path = Path(f.name)
        try:
            with f:
                json.dump(document, f, indent=2)
            temp_path.replace(path)
        except BaseException:
            temp_path.unlink(missing_ok=True)
            raise


__all__ = [
    "DEFAULT_DEBOUNCE_MS",
    "DebounceScheduler",
    "PersistentStore",
    "parse_keyed_records",
    "parse_records",
]
