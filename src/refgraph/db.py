"""SQLite schema, queries and the SQLite-backed record store."""

from __future__ import annotations

import json
import logging
import sqlite3
import uuid
from contextlib import contextmanager
from pathlib import Path
from typing import Any, Callable, Generator, Mapping, TypeVar

from tenacity import Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from refgraph.errors import (
    BusinessRuleError,
    DuplicateEdgeError,
    NotFoundError,
    StoreTransientError,
)
from refgraph.models import BibliographicRecord, CitationEdge, now_iso

logger = logging.getLogger(__name__)

T = TypeVar("T")

RECORD_COLUMNS = (
    "title",
    "authors",
    "year",
    "doi",
    "url",
    "abstract",
    "pdf_reference",
    "publication",
    "keywords",
)
EDGE_UPDATABLE = ("context", "is_verified")

_TRANSIENT_MARKERS = ("locked", "busy", "unable to open")


def _generate_id() -> str:
    return uuid.uuid4().hex[:12]


def init_db(db_path: Path) -> None:
    """Initialise the database, creating tables if they don't exist."""
    db_path.parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        conn.executescript(
            """
            PRAGMA journal_mode=WAL;

            CREATE TABLE IF NOT EXISTS records (
                id              TEXT PRIMARY KEY,
                title           TEXT NOT NULL,
                authors         TEXT NOT NULL DEFAULT '[]',
                year            INTEGER,
                doi             TEXT,
                url             TEXT,
                abstract        TEXT,
                pdf_reference   TEXT,
                publication     TEXT,
                keywords        TEXT NOT NULL DEFAULT '[]',
                created_at      TEXT NOT NULL,
                updated_at      TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_records_doi ON records(doi);

            CREATE TABLE IF NOT EXISTS citations (
                source_id           TEXT NOT NULL,
                target_id           TEXT NOT NULL,
                citation_type       TEXT NOT NULL,
                discovery_method    TEXT NOT NULL,
                confidence          REAL NOT NULL,
                is_verified         INTEGER NOT NULL DEFAULT 0,
                context             TEXT NOT NULL DEFAULT '',
                created_at          TEXT NOT NULL,
                PRIMARY KEY (source_id, target_id),
                CHECK (source_id <> target_id)
            );

            CREATE INDEX IF NOT EXISTS idx_citations_target ON citations(target_id);
            """
        )


@contextmanager
def get_conn(db_path: Path) -> Generator[sqlite3.Connection, None, None]:
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    except Exception:
        conn.rollback()
        raise
    finally:
        conn.close()


def _row_to_record(row: sqlite3.Row) -> BibliographicRecord:
    data = dict(row)
    data["authors"] = json.loads(data["authors"] or "[]")
    data["keywords"] = json.loads(data["keywords"] or "[]")
    return BibliographicRecord.from_dict(data)


def _row_to_edge(row: sqlite3.Row) -> CitationEdge:
    return CitationEdge(
        source_id=row["source_id"],
        target_id=row["target_id"],
        citation_type=row["citation_type"],
        discovery_method=row["discovery_method"],
        confidence=row["confidence"],
        is_verified=bool(row["is_verified"]),
        context=row["context"] or "",
        created_at=row["created_at"],
    )


def _encode(column: str, value: Any) -> Any:
    if column in ("authors", "keywords"):
        return json.dumps(list(value or []))
    return value


# ── records ────────────────────────────────────────────────────────────────


def insert_record(conn: sqlite3.Connection, record: BibliographicRecord) -> str:
    record_id = record.id or _generate_id()
    now = now_iso()
    params = {column: _encode(column, getattr(record, column)) for column in RECORD_COLUMNS}
    params.update(
        id=record_id,
        created_at=record.created_at or now,
        updated_at=now,
    )
    conn.execute(
        """
        INSERT INTO records
            (id, title, authors, year, doi, url, abstract, pdf_reference,
             publication, keywords, created_at, updated_at)
        VALUES
            (:id, :title, :authors, :year, :doi, :url, :abstract, :pdf_reference,
             :publication, :keywords, :created_at, :updated_at)
        """,
        params,
    )
    return record_id


def get_record(conn: sqlite3.Connection, record_id: str) -> BibliographicRecord | None:
    row = conn.execute("SELECT * FROM records WHERE id = ?", (record_id,)).fetchone()
    return _row_to_record(row) if row else None


def list_records(conn: sqlite3.Connection) -> list[BibliographicRecord]:
    rows = conn.execute("SELECT * FROM records ORDER BY rowid").fetchall()
    return [_row_to_record(r) for r in rows]


def update_record(
    conn: sqlite3.Connection, record_id: str, fields: Mapping[str, Any]
) -> int:
    unknown = set(fields) - set(RECORD_COLUMNS)
    if unknown:
        raise ValueError(f"Cannot update record columns: {sorted(unknown)}")
    assignments = ", ".join(f"{column} = :{column}" for column in fields)
    params = {column: _encode(column, value) for column, value in fields.items()}
    params.update(id=record_id, updated_at=now_iso())
    sets = f"{assignments}, updated_at = :updated_at" if assignments else "updated_at = :updated_at"
    cur = conn.execute(f"UPDATE records SET {sets} WHERE id = :id", params)
    return cur.rowcount


def delete_record(conn: sqlite3.Connection, record_id: str) -> int:
    return conn.execute("DELETE FROM records WHERE id = ?", (record_id,)).rowcount


# ── citations ──────────────────────────────────────────────────────────────


def insert_edge(conn: sqlite3.Connection, edge: CitationEdge) -> None:
    conn.execute(
        """
        INSERT INTO citations
            (source_id, target_id, citation_type, discovery_method,
             confidence, is_verified, context, created_at)
        VALUES
            (:source_id, :target_id, :citation_type, :discovery_method,
             :confidence, :is_verified, :context, :created_at)
        """,
        {
            "source_id": edge.source_id,
            "target_id": edge.target_id,
            "citation_type": edge.citation_type.value,
            "discovery_method": edge.discovery_method.value,
            "confidence": edge.confidence,
            "is_verified": 1 if edge.is_verified else 0,
            "context": edge.context,
            "created_at": edge.created_at or now_iso(),
        },
    )


def get_edge(
    conn: sqlite3.Connection, source_id: str, target_id: str
) -> CitationEdge | None:
    row = conn.execute(
        "SELECT * FROM citations WHERE source_id = ? AND target_id = ?",
        (source_id, target_id),
    ).fetchone()
    return _row_to_edge(row) if row else None


def list_edges(conn: sqlite3.Connection) -> list[CitationEdge]:
    rows = conn.execute("SELECT * FROM citations ORDER BY rowid").fetchall()
    return [_row_to_edge(r) for r in rows]


def list_edges_from(conn: sqlite3.Connection, source_id: str) -> list[CitationEdge]:
    rows = conn.execute(
        "SELECT * FROM citations WHERE source_id = ? ORDER BY rowid", (source_id,)
    ).fetchall()
    return [_row_to_edge(r) for r in rows]


def list_edges_to(conn: sqlite3.Connection, target_id: str) -> list[CitationEdge]:
    rows = conn.execute(
        "SELECT * FROM citations WHERE target_id = ? ORDER BY rowid", (target_id,)
    ).fetchall()
    return [_row_to_edge(r) for r in rows]


def update_edge(
    conn: sqlite3.Connection, source_id: str, target_id: str, fields: Mapping[str, Any]
) -> int:
    unknown = set(fields) - set(EDGE_UPDATABLE)
    if unknown:
        raise ValueError(f"Only {EDGE_UPDATABLE} may be updated on an edge")
    if not fields:
        return 0
    params = dict(fields)
    if "is_verified" in params:
        params["is_verified"] = 1 if params["is_verified"] else 0
    assignments = ", ".join(f"{column} = :{column}" for column in params)
    params.update(source_id=source_id, target_id=target_id)
    cur = conn.execute(
        f"UPDATE citations SET {assignments}"
        " WHERE source_id = :source_id AND target_id = :target_id",
        params,
    )
    return cur.rowcount


def delete_edge(conn: sqlite3.Connection, source_id: str, target_id: str) -> int:
    return conn.execute(
        "DELETE FROM citations WHERE source_id = ? AND target_id = ?",
        (source_id, target_id),
    ).rowcount


def db_summary(conn: sqlite3.Connection) -> dict[str, Any]:
    records = conn.execute("SELECT COUNT(*) FROM records").fetchone()[0]
    citations = conn.execute("SELECT COUNT(*) FROM citations").fetchone()[0]
    verified = conn.execute(
        "SELECT COUNT(*) FROM citations WHERE is_verified = 1"
    ).fetchone()[0]
    orphans = conn.execute(
        """
        SELECT COUNT(*) FROM citations c
        WHERE NOT EXISTS (SELECT 1 FROM records r WHERE r.id = c.source_id)
           OR NOT EXISTS (SELECT 1 FROM records r WHERE r.id = c.target_id)
        """
    ).fetchone()[0]
    return {
        "records": records,
        "citations": citations,
        "verified_citations": verified,
        "orphan_citations": orphans,
    }


# ── store ──────────────────────────────────────────────────────────────────


class SqliteStore:
    """`RecordStore` backed by one SQLite file.

    Each call opens its own connection. Locked/busy databases surface as
    `StoreTransientError` and are retried a few times with a short
    exponential backoff before the error reaches the caller.
    """

    def __init__(self, db_path: Path, retry_attempts: int = 3, retry_wait_max: float = 1.0):
        self.db_path = db_path
        init_db(db_path)
        self._retrying = Retrying(
            retry=retry_if_exception_type(StoreTransientError),
            stop=stop_after_attempt(max(1, retry_attempts)),
            wait=wait_exponential(multiplier=0.05, max=retry_wait_max),
            reraise=True,
        )

    def _run(
        self,
        operation: str,
        fn: Callable[[sqlite3.Connection], T],
        ids: tuple[str, ...] = (),
    ) -> T:
        def attempt() -> T:
            try:
                with get_conn(self.db_path) as conn:
                    return fn(conn)
            except sqlite3.OperationalError as exc:
                if any(marker in str(exc).lower() for marker in _TRANSIENT_MARKERS):
                    logger.warning("Store busy during %s: %s", operation, exc)
                    raise StoreTransientError(str(exc), operation=operation, ids=ids) from exc
                raise

        return self._retrying(attempt)

    def get_all_records(self) -> list[BibliographicRecord]:
        return self._run("get_all_records", list_records)

    def get_record(self, record_id: str) -> BibliographicRecord | None:
        return self._run("get_record", lambda c: get_record(c, record_id), (record_id,))

    def insert_record(self, record: BibliographicRecord) -> str:
        return self._run("insert_record", lambda c: insert_record(c, record))

    def update_record(self, record_id: str, fields: Mapping[str, Any]) -> None:
        updated = self._run(
            "update_record", lambda c: update_record(c, record_id, fields), (record_id,)
        )
        if not updated:
            raise NotFoundError(
                f"Record {record_id} not found", operation="update_record", ids=[record_id]
            )

    def delete_record(self, record_id: str) -> None:
        self._run("delete_record", lambda c: delete_record(c, record_id), (record_id,))

    def get_all_edges(self) -> list[CitationEdge]:
        return self._run("get_all_edges", list_edges)

    def get_edge(self, source_id: str, target_id: str) -> CitationEdge | None:
        return self._run(
            "get_edge", lambda c: get_edge(c, source_id, target_id), (source_id, target_id)
        )

    def get_edges_from(self, source_id: str) -> list[CitationEdge]:
        return self._run("get_edges_from", lambda c: list_edges_from(c, source_id), (source_id,))

    def get_edges_to(self, target_id: str) -> list[CitationEdge]:
        return self._run("get_edges_to", lambda c: list_edges_to(c, target_id), (target_id,))

    def insert_edge(self, edge: CitationEdge) -> None:
        try:
            self._run("insert_edge", lambda c: insert_edge(c, edge), edge.key)
        except sqlite3.IntegrityError as exc:
            if "CHECK" in str(exc):
                raise BusinessRuleError(
                    "A record cannot cite itself", operation="insert_edge", ids=edge.key
                ) from exc
            raise DuplicateEdgeError(
                "Citation already exists", operation="insert_edge", ids=edge.key
            ) from exc

    def update_edge(
        self, source_id: str, target_id: str, fields: Mapping[str, Any]
    ) -> None:
        updated = self._run(
            "update_edge",
            lambda c: update_edge(c, source_id, target_id, fields),
            (source_id, target_id),
        )
        if not updated:
            raise NotFoundError(
                "Citation not found", operation="update_edge", ids=[source_id, target_id]
            )

    def delete_edge(self, source_id: str, target_id: str) -> None:
        self._run(
            "delete_edge", lambda c: delete_edge(c, source_id, target_id), (source_id, target_id)
        )

    def summary(self) -> dict[str, Any]:
        return self._run("summary", db_summary)
