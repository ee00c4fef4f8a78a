"""In-process query cache layered in front of a record store."""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, Mapping

from refgraph.models import BibliographicRecord, CitationEdge
from refgraph.store import RecordStore

logger = logging.getLogger(__name__)

_MISSING = object()


class QueryCache:
    """TTL key/value map with prefix invalidation."""

    def __init__(self, ttl_seconds: float = 300.0, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, key: str, default: Any = None) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return default
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return default
        return value

    def set(self, key: str, value: Any) -> None:
        self._entries[key] = (self._clock() + self.ttl_seconds, value)

    def invalidate(self, prefix: str = "") -> int:
        """Drop every entry whose key starts with *prefix*; returns the count."""
        stale = [key for key in self._entries if key.startswith(prefix)]
        for key in stale:
            del self._entries[key]
        if stale:
            logger.debug("Invalidated %d cache entries under %r", len(stale), prefix)
        return len(stale)

    def __len__(self) -> int:
        return len(self._entries)


class CachedRecordStore:
    """Wraps a `RecordStore`, caching reads and invalidating on writes.

    Record reads live under ``records:`` and edge reads under ``edges:``; a
    write to either family drops that whole family.
    """

    def __init__(self, inner: RecordStore, cache: QueryCache | None = None):
        self.inner = inner
        self.cache = cache or QueryCache()

    def _cached(self, key: str, load: Callable[[], Any]) -> Any:
        value = self.cache.get(key, _MISSING)
        if value is _MISSING:
            value = load()
            self.cache.set(key, value)
        return value

    # records

    def get_all_records(self) -> list[BibliographicRecord]:
        return list(self._cached("records:all", self.inner.get_all_records))

    def get_record(self, record_id: str) -> BibliographicRecord | None:
        return self._cached(f"records:id:{record_id}", lambda: self.inner.get_record(record_id))

    def insert_record(self, record: BibliographicRecord) -> str:
        record_id = self.inner.insert_record(record)
        self.cache.invalidate("records:")
        return record_id

    def update_record(self, record_id: str, fields: Mapping[str, Any]) -> None:
        try:
            self.inner.update_record(record_id, fields)
        finally:
            self.cache.invalidate("records:")

    def delete_record(self, record_id: str) -> None:
        self.inner.delete_record(record_id)
        self.cache.invalidate("records:")

    # edges

    def get_all_edges(self) -> list[CitationEdge]:
        return list(self._cached("edges:all", self.inner.get_all_edges))

    def get_edge(self, source_id: str, target_id: str) -> CitationEdge | None:
        return self._cached(
            f"edges:pair:{source_id}:{target_id}",
            lambda: self.inner.get_edge(source_id, target_id),
        )

    def get_edges_from(self, source_id: str) -> list[CitationEdge]:
        return list(
            self._cached(f"edges:from:{source_id}", lambda: self.inner.get_edges_from(source_id))
        )

    def get_edges_to(self, target_id: str) -> list[CitationEdge]:
        return list(
            self._cached(f"edges:to:{target_id}", lambda: self.inner.get_edges_to(target_id))
        )

    def insert_edge(self, edge: CitationEdge) -> None:
        try:
            self.inner.insert_edge(edge)
        finally:
            self.cache.invalidate("edges:")

    def update_edge(
        self, source_id: str, target_id: str, fields: Mapping[str, Any]
    ) -> None:
        try:
            self.inner.update_edge(source_id, target_id, fields)
        finally:
            self.cache.invalidate("edges:")

    def delete_edge(self, source_id: str, target_id: str) -> None:
        self.inner.delete_edge(source_id, target_id)
        self.cache.invalidate("edges:")

    def __getattr__(self, name: str) -> Any:
        return getattr(self.inner, name)
