"""The record-store interface the engine reads from and proposes writes to."""

from __future__ import annotations

from typing import Any, Mapping, Protocol

from refgraph.models import BibliographicRecord, CitationEdge


class RecordStore(Protocol):
    """Persistence port for records and citation edges.

    Implementations own ids and timestamps. ``get_all_records`` returns
    records in creation order; the resolver and sweeper rely on that order
    to break ties.
    """

    def get_all_records(self) -> list[BibliographicRecord]: ...

    def get_record(self, record_id: str) -> BibliographicRecord | None: ...

    def insert_record(self, record: BibliographicRecord) -> str: ...

    def update_record(self, record_id: str, fields: Mapping[str, Any]) -> None: ...

    def delete_record(self, record_id: str) -> None: ...

    def get_all_edges(self) -> list[CitationEdge]: ...

    def get_edge(self, source_id: str, target_id: str) -> CitationEdge | None: ...

    def get_edges_from(self, source_id: str) -> list[CitationEdge]: ...

    def get_edges_to(self, target_id: str) -> list[CitationEdge]: ...

    def insert_edge(self, edge: CitationEdge) -> None: ...

    def update_edge(
        self, source_id: str, target_id: str, fields: Mapping[str, Any]
    ) -> None: ...

    def delete_edge(self, source_id: str, target_id: str) -> None: ...
