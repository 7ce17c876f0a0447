"""Durable key-value storage and the bounded alert log built on it.

JsonFileStore
    One JSON document on disk mapping keys to JSON values.  Every write
    goes to a temporary file which is ``fsync``-ed and atomically renamed
    over the document, so readers never observe a partial write.  Writes run
    synchronously on the calling thread (the event loop, when driven by the
    scheduler); the document holds at most a few kilobytes.

AlertLogStore
    The alert log: an ordered list of ``"{timestamp}: {message}"`` strings
    kept under a single key, oldest first, capped at ``max_entries`` and
    guarded against immediate duplicates.
"""

from __future__ import annotations

import logging
import os
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Optional

import orjson

logger = logging.getLogger(__name__)

DEFAULT_LOG_KEY = "lora_alert_log"
DEFAULT_MAX_ENTRIES = 50
DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


class StoreCorruptError(Exception):
    """Raised when the store document cannot be decoded."""


class JsonFileStore:
    """Key-value store persisted as a single JSON object.

    Parameters
    ----------
    path:
        Location of the JSON document.  Parent directories are created on
        the first write.
    """

    def __init__(self, path: str | Path) -> None:
        self._path = Path(path)

    @property
    def path(self) -> Path:
        return self._path

    def get(self, key: str) -> Any:
        """Return the value stored under *key*, or ``None``.

        Raises
        ------
        StoreCorruptError
            If the document exists but is not a JSON object.
        """
        return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        """Store *value* under *key*, replacing the document atomically.

        ``OSError`` from the underlying filesystem propagates.
        """
        doc = self._read_for_update()
        doc[key] = value
        self._write(doc)

    def delete(self, key: str) -> None:
        """Remove *key*; a missing key is not an error."""
        doc = self._read_for_update()
        if key in doc:
            del doc[key]
            self._write(doc)

    # ── internal ────────────────────────────────────────────────────

    def _read(self) -> dict[str, Any]:
        try:
            raw = self._path.read_bytes()
        except FileNotFoundError:
            return {}
        except OSError as exc:
            raise StoreCorruptError(f"Cannot read {self._path}: {exc}") from exc

        try:
            doc = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            raise StoreCorruptError(f"Invalid JSON in {self._path}: {exc}") from exc
        if not isinstance(doc, dict):
            raise StoreCorruptError(f"Expected a JSON object in {self._path}")
        return doc

    def _read_for_update(self) -> dict[str, Any]:
        try:
            return self._read()
        except StoreCorruptError as exc:
            logger.warning("Discarding unreadable store document: %s", exc)
            return {}

    def _write(self, doc: dict[str, Any]) -> None:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self._path.with_name(self._path.name + ".tmp")
        with open(tmp_path, "wb") as fh:
            fh.write(orjson.dumps(doc))
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(tmp_path, self._path)


class AlertLogStore:
    """Bounded, deduplicated, persisted alert log.

    Parameters
    ----------
    store:
        Backing key-value store.
    key:
        Key the log lives under.
    max_entries:
        Maximum number of entries retained; the oldest are evicted first.
    clock:
        Returns the current local time; injectable for tests.
    timestamp_format:
        ``strftime`` format for the entry prefix.
    """

    def __init__(
        self,
        store: JsonFileStore,
        key: str = DEFAULT_LOG_KEY,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Optional[Callable[[], datetime]] = None,
        timestamp_format: str = DEFAULT_TIMESTAMP_FORMAT,
    ) -> None:
        self._store = store
        self._key = key
        self._max_entries = max_entries
        self._clock = clock or datetime.now
        self._timestamp_format = timestamp_format

    def load(self) -> list[str]:
        """Return the persisted log, oldest first.

        A missing or unreadable log yields an empty list.
        """
        try:
            value = self._store.get(self._key)
        except StoreCorruptError as exc:
            logger.debug("Alert log unreadable, starting empty: %s", exc)
            return []
        if not isinstance(value, list) or not all(isinstance(e, str) for e in value):
            if value is not None:
                logger.debug("Alert log under %r has unexpected shape", self._key)
            return []
        return value

    def save(self, entries: Iterable[str]) -> None:
        """Replace the whole persisted log with *entries* (capped)."""
        entries = list(entries)
        self._store.set(self._key, entries[-self._max_entries:])

    def append(self, device_id: str, message: str) -> bool:
        """Append a timestamped entry unless it repeats the last one.

        Returns ``True`` when the log changed and should be redrawn.
        """
        entry = f"{self._clock().strftime(self._timestamp_format)}: {message}"
        entries = self.load()
        if entries and entries[-1] == entry:
            logger.debug("Duplicate log entry for %s suppressed", device_id)
            return False

        entries.append(entry)
        self.save(entries)
        logger.info("Alert log [%s]: %s", device_id, message)
        return True

    def clear(self) -> None:
        """Delete the persisted log."""
        self._store.delete(self._key)
        logger.info("Alert log cleared")
