import pytest

from refgraph.cache import CachedRecordStore, QueryCache
from refgraph.config import Config
from refgraph.db import SqliteStore
from refgraph.engine import Engine
from refgraph.errors import NotFoundError
from refgraph.models import BibliographicRecord, CitationEdge


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


class CountingStore(SqliteStore):
    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.calls = {}

    def _count(self, name):
        self.calls[name] = self.calls.get(name, 0) + 1

    def get_all_records(self):
        self._count("get_all_records")
        return super().get_all_records()

    def get_record(self, record_id):
        self._count("get_record")
        return super().get_record(record_id)

    def get_edges_from(self, source_id):
        self._count("get_edges_from")
        return super().get_edges_from(source_id)


@pytest.fixture
def inner(tmp_path):
    return CountingStore(tmp_path / "test.db", retry_wait_max=0)


@pytest.fixture
def cached(inner):
    return CachedRecordStore(inner, QueryCache(ttl_seconds=60))


# ── QueryCache ─────────────────────────────────────────────────────────────


def test_cache_entries_expire():
    clock = FakeClock()
    cache = QueryCache(ttl_seconds=10, clock=clock)
    cache.set("k", "v")
    clock.now = 9.9
    assert cache.get("k") == "v"
    clock.now = 10.0
    assert cache.get("k") is None
    assert len(cache) == 0


def test_cache_prefix_invalidation():
    cache = QueryCache()
    cache.set("records:all", [])
    cache.set("records:id:a", None)
    cache.set("edges:all", [])
    assert cache.invalidate("records:") == 2
    assert cache.get("records:all") is None
    assert cache.get("edges:all") == []


def test_cache_stores_none_values():
    cache = QueryCache()
    cache.set("records:id:missing", None)
    assert cache.get("records:id:missing", "sentinel") is None


# ── CachedRecordStore ──────────────────────────────────────────────────────


def test_repeated_reads_hit_cache(inner, cached):
    record_id = cached.insert_record(BibliographicRecord(title="T"))
    cached.get_all_records()
    cached.get_all_records()
    cached.get_record(record_id)
    cached.get_record(record_id)
    assert inner.calls == {"get_all_records": 1, "get_record": 1}


def test_record_writes_invalidate_record_reads(inner, cached):
    record_id = cached.insert_record(BibliographicRecord(title="T"))
    assert cached.get_record(record_id).abstract is None

    cached.update_record(record_id, {"abstract": "Now filled"})
    assert cached.get_record(record_id).abstract == "Now filled"

    cached.insert_record(BibliographicRecord(title="U"))
    assert len(cached.get_all_records()) == 2

    cached.delete_record(record_id)
    assert cached.get_record(record_id) is None
    assert len(cached.get_all_records()) == 1


def test_failed_update_still_invalidates(inner, cached):
    cached.get_all_records()
    with pytest.raises(NotFoundError):
        cached.update_record("missing", {"abstract": "x"})
    cached.get_all_records()
    assert inner.calls["get_all_records"] == 2


def test_edge_writes_leave_record_reads_cached(inner, cached):
    cached.get_all_records()
    cached.get_edges_from("a")
    cached.insert_edge(CitationEdge("a", "b"))

    assert [e.target_id for e in cached.get_edges_from("a")] == ["b"]
    cached.get_all_records()
    assert inner.calls == {"get_all_records": 1, "get_edges_from": 2}


def test_edge_updates_visible_through_cache(cached):
    cached.insert_edge(CitationEdge("a", "b"))
    assert cached.get_edge("a", "b").is_verified is False
    cached.update_edge("a", "b", {"is_verified": True})
    assert cached.get_edge("a", "b").is_verified is True
    cached.delete_edge("a", "b")
    assert cached.get_edge("a", "b") is None


def test_unwrapped_methods_delegate(cached):
    cached.insert_record(BibliographicRecord(title="T"))
    assert cached.summary()["records"] == 1


def test_engine_runs_over_cached_store(cached):
    engine = Engine.from_store(cached, Config())
    paper = {"title": "Deep Learning", "authors": ["A. Smith"], "year": 2020, "doi": "10.1/x"}
    first = engine.resolve(paper)
    second = engine.resolve({**paper, "title": "Deep learning!", "abstract": "An overview"})
    assert second.id == first.id
    assert cached.get_record(first.id).abstract == "An overview"
