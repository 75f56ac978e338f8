"""Persistent, bounded search history.

Stored as ``search_history.json`` in the data directory. Only the most recent
``limit`` records are kept; the oldest are evicted first. Each append rewrites
the file atomically, so a record is either fully persisted or absent.
"""

from __future__ import annotations

import json
import logging
import threading
from collections.abc import Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from .errors import InternalError
from .models import SearchHistoryRecord
from .store import atomic_write

log = logging.getLogger(__name__)

HISTORY_FILENAME = "search_history.json"
SCHEMA_VERSION = 1


class SearchHistory:
    """Append-only log of searches, bounded to the most recent records."""

    def __init__(
        self,
        data_dir: Path,
        limit: int,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self._path = Path(data_dir) / HISTORY_FILENAME
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._limit = limit
        self._clock = clock or (lambda: datetime.now(UTC))
        self._lock = threading.Lock()
        self._records: tuple[SearchHistoryRecord, ...] = self._load()

    @property
    def limit(self) -> int:
        return self._limit

    def records(self) -> list[SearchHistoryRecord]:
        """Return records oldest first."""
        return list(self._records)

    def __len__(self) -> int:
        return len(self._records)

    def append(self, query: str, result_count: int) -> SearchHistoryRecord:
        """Record a search.

        Raises:
            InternalError: If the history file could not be written. The
                in-memory log is unchanged in that case.
        """
        record = SearchHistoryRecord(
            query=query,
            timestamp=self._clock(),
            result_count=result_count,
        )
        with self._lock:
            records = (*self._records, record)[-self._limit:]
            try:
                self._save(records)
            except OSError as e:
                log.error("Failed to persist search history: %s", e)
                raise InternalError() from e
            self._records = records
        return record

    def _save(self, records: tuple[SearchHistoryRecord, ...]) -> None:
        payload: dict[str, Any] = {
            "schema_version": SCHEMA_VERSION,
            "records": [r.model_dump(mode="json", by_alias=True) for r in records],
        }
        atomic_write(self._path, json.dumps(payload, indent=2))

    def _load(self) -> tuple[SearchHistoryRecord, ...]:
        if not self._path.exists():
            return ()

        try:
            payload: dict[str, Any] = json.loads(self._path.read_text(encoding="utf-8"))
        except (ValueError, OSError) as e:
            # ValueError covers both JSONDecodeError and UnicodeDecodeError
            log.warning("Ignoring unreadable search history %s: %s", self._path, e)
            return ()

        if not isinstance(payload, dict) or payload.get("schema_version") != SCHEMA_VERSION:
            log.warning("Resetting search history with unknown schema")
            return ()

        stored = payload.get("records", [])
        if not isinstance(stored, list):
            log.warning("Resetting search history with malformed records in %s", self._path)
            return ()

        records = []
        for data in stored:
            try:
                records.append(SearchHistoryRecord.model_validate(data))
            except PydanticValidationError:
                continue  # Skip malformed records
        return tuple(records[-self._limit:])
