"""
Bounded, persisted analysis history.

The whole history (newest first, at most ``capacity`` entries) is written as
one JSON array under ``STORAGE_KEY`` after every insert/delete/clear and read
back once when the store is created. Storage failures are logged and never
raised: a bad blob at startup simply yields an empty history.
"""

from __future__ import annotations

import json
import logging
import time
from collections import deque
from collections.abc import Callable, Iterable, Iterator
from datetime import datetime, timezone
from typing import Generic, Optional, TypeVar

import pydantic

from core.errors import PersistenceError
from core.models import AnalysisDraft, AnalysisRecord
from core.storage import KeyValueStore

logger = logging.getLogger(__name__)

STORAGE_KEY = "geopoliticalAnalysisHistory"
MAX_HISTORY_ITEMS = 20

T = TypeVar("T")


class BoundedSequence(Generic[T]):
    """Newest-first sequence that never holds more than *capacity* items.

    Pushing onto a full sequence evicts the oldest item (the last one).
    """

    def __init__(self, capacity: int, items: Iterable[T] = ()) -> None:
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._items: deque[T] = deque(list(items)[:capacity], maxlen=capacity)

    def push_front(self, item: T) -> Optional[T]:
        """Prepend *item*; return the evicted item, if any."""
        evicted = self._items[-1] if len(self._items) == self.capacity else None
        self._items.appendleft(item)
        return evicted

    def remove_first(self, predicate: Callable[[T], bool]) -> bool:
        """Remove the first item matching *predicate*; return whether one was found."""
        for item in self._items:
            if predicate(item):
                self._items.remove(item)
                return True
        return False

    def clear(self) -> None:
        self._items.clear()

    def snapshot(self) -> list[T]:
        return list(self._items)

    def __iter__(self) -> Iterator[T]:
        return iter(self.snapshot())

    def __len__(self) -> int:
        return len(self._items)


class HistoryStore:
    """Most-recent-first store of past analyses.

    Args:
        storage: Key-value collaborator holding the serialized history.
        capacity: Maximum number of records kept.
        clock: Returns the current time in milliseconds since the epoch.
    """

    def __init__(
        self,
        storage: KeyValueStore,
        capacity: int = MAX_HISTORY_ITEMS,
        clock: Callable[[], int] = lambda: time.time_ns() // 1_000_000,
    ) -> None:
        self.storage = storage
        self._clock = clock
        self._records: BoundedSequence[AnalysisRecord] = BoundedSequence(
            capacity, self._restore()
        )
        self._last_id = max((self._numeric(r.id) for r in self._records), default=0)

    # ── Persistence ────────────────────────────────────────────────────────

    def _restore(self) -> list[AnalysisRecord]:
        """Load the persisted history, or ``[]`` if it is absent or unreadable."""
        try:
            raw = self.storage.get(STORAGE_KEY)
        except PersistenceError as exc:
            logger.warning("Failed to read history from storage: %s", exc)
            return []
        if raw is None:
            return []

        try:
            entries = json.loads(raw)
        except json.JSONDecodeError as exc:
            logger.warning("Discarding corrupt history blob: %s", exc)
            return []
        if not isinstance(entries, list):
            logger.warning("Discarding history blob of type %s", type(entries).__name__)
            return []

        records: list[AnalysisRecord] = []
        for entry in entries:
            try:
                records.append(AnalysisRecord.model_validate(entry))
            except pydantic.ValidationError as exc:
                entry_id = entry.get("id") if isinstance(entry, dict) else None
                logger.warning("Skipping corrupt history entry id=%s: %s", entry_id, exc)

        logger.info("Restored %d history entries", len(records))
        return records

    def _persist(self) -> None:
        blob = json.dumps(
            [r.model_dump(mode="json", by_alias=True) for r in self._records]
        )
        try:
            self.storage.set(STORAGE_KEY, blob)
        except PersistenceError as exc:
            logger.warning("Failed to save history to storage: %s", exc)

    # ── Ids ────────────────────────────────────────────────────────────────

    @staticmethod
    def _numeric(record_id: str) -> int:
        try:
            return int(record_id)
        except ValueError:
            return 0

    def _next_id(self, now_ms: int) -> str:
        """Millisecond timestamp id, bumped when two inserts share a millisecond."""
        self._last_id = max(now_ms, self._last_id + 1)
        return str(self._last_id)

    # ── Operations ─────────────────────────────────────────────────────────

    def insert(self, draft: AnalysisDraft) -> AnalysisRecord:
        """Stamp *draft* with an id and creation time and prepend it.

        Returns:
            The stored ``AnalysisRecord``.
        """
        now_ms = self._clock()
        record = AnalysisRecord(
            id=self._next_id(now_ms),
            created_at=datetime.fromtimestamp(now_ms / 1000, tz=timezone.utc),
            request=draft.request,
            analysis=draft.analysis,
            citations=draft.citations,
            rendered_text=draft.rendered_text,
        )
        evicted = self._records.push_front(record)
        if evicted is not None:
            logger.info("History full; evicted entry id=%s", evicted.id)
        self._persist()
        logger.info("Saved history entry id=%s for country=%r", record.id, record.request.country)
        return record

    def list(self) -> list[AnalysisRecord]:
        """Return all records, newest first."""
        return self._records.snapshot()

    def load(self, record_id: str) -> Optional[AnalysisRecord]:
        """Return the record with *record_id*, or ``None`` if not found."""
        return next((r for r in self._records if r.id == record_id), None)

    def delete(self, record_id: str) -> bool:
        """Delete a record by id.

        Returns:
            True if a record was deleted, False if not found.
        """
        deleted = self._records.remove_first(lambda r: r.id == record_id)
        if deleted:
            self._persist()
            logger.info("Deleted history entry id=%s", record_id)
        return deleted

    def clear(self) -> None:
        """Remove every record. The caller confirms with the user first."""
        self._records.clear()
        self._persist()
        logger.info("Cleared history")

    def __len__(self) -> int:
        return len(self._records)
