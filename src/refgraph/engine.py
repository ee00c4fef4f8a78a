"""Wiring: one object exposing every engine operation over a single store."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Mapping

from refgraph.cache import CachedRecordStore, QueryCache
from refgraph.config import Config
from refgraph.db import SqliteStore
from refgraph.graph import CitationGraph
from refgraph.linker import CitationMatcher, ProgressCallback
from refgraph.models import (
    BatchLinkResult,
    BibliographicRecord,
    BulkImportResult,
    DegreeStats,
    LinkResult,
    MatchStrategy,
    ResolveResult,
    SweepResult,
)
from refgraph.resolver import EntityResolver
from refgraph.store import RecordStore
from refgraph.sweeper import DuplicateSweeper


@dataclass
class Engine:
    store: RecordStore
    resolver: EntityResolver
    sweeper: DuplicateSweeper
    matcher: CitationMatcher
    graph: CitationGraph

    @classmethod
    def from_store(cls, store: RecordStore, cfg: Config | None = None) -> "Engine":
        cfg = cfg or Config()
        return cls(
            store=store,
            resolver=EntityResolver(store, cfg.thresholds),
            sweeper=DuplicateSweeper(store, cfg.thresholds),
            matcher=CitationMatcher(store, cfg.linking),
            graph=CitationGraph(store),
        )

    def resolve(self, raw: Mapping[str, Any] | BibliographicRecord) -> ResolveResult:
        return self.resolver.resolve(raw)

    def bulk_import(self, inputs: Iterable[Mapping[str, Any]]) -> BulkImportResult:
        return self.resolver.bulk_import(inputs)

    def sweep(self, progress: ProgressCallback | None = None) -> SweepResult:
        return self.sweeper.sweep(progress)

    def link_citations(
        self, target_id: str, strategy: MatchStrategy | str = MatchStrategy.ALL
    ) -> LinkResult:
        return self.matcher.link_citations(target_id, strategy)

    def link_all_citations(
        self,
        strategy: MatchStrategy | str = MatchStrategy.ALL,
        progress: ProgressCallback | None = None,
    ) -> BatchLinkResult:
        return self.matcher.link_all_citations(strategy, progress)

    def degree_of(self, record_id: str) -> DegreeStats:
        return self.graph.degree_of(record_id)

    def batch_degrees(self, record_ids: Iterable[str]) -> list[DegreeStats]:
        return self.graph.batch_degrees(record_ids)

    def find_paths(
        self, source_id: str, target_id: str, max_depth: int = 3, max_paths: int = 10
    ) -> list[list[str]]:
        return self.graph.find_paths(source_id, target_id, max_depth, max_paths)

    def cleanup_orphans(self, valid_ids: Iterable[str] | None = None) -> int:
        if valid_ids is None:
            valid_ids = [r.id for r in self.store.get_all_records() if r.id]
        return self.graph.cleanup_orphans(valid_ids)


def build_engine(cfg: Config) -> Engine:
    """Open the configured SQLite store, with the query cache if enabled."""
    store: RecordStore = SqliteStore(
        cfg.db_path,
        retry_attempts=cfg.store.retry_attempts,
        retry_wait_max=cfg.store.retry_wait_max,
    )
    if cfg.cache.enabled:
        store = CachedRecordStore(store, QueryCache(cfg.cache.ttl_seconds))
    return Engine.from_store(store, cfg)
