"""Citation-graph queries: degrees, bounded path search, orphan cleanup."""

from __future__ import annotations

import logging
from collections import deque
from typing import Any, Iterable

from refgraph.errors import NotFoundError
from refgraph.models import CitationEdge, DegreeStats
from refgraph.store import RecordStore

logger = logging.getLogger(__name__)


class CitationGraph:
    """Read-mostly view over the store's citation edges.

    Degrees are always recomputed from the current edges; nothing is cached
    here.
    """

    def __init__(self, store: RecordStore):
        self.store = store

    def degree_of(self, record_id: str) -> DegreeStats:
        in_degree = len(self.store.get_edges_to(record_id))
        out_degree = len(self.store.get_edges_from(record_id))
        return DegreeStats(
            id=record_id,
            in_degree=in_degree,
            out_degree=out_degree,
            total_degree=in_degree + out_degree,
        )

    def batch_degrees(self, record_ids: Iterable[str]) -> list[DegreeStats]:
        return [self.degree_of(record_id) for record_id in record_ids]

    def find_paths(
        self,
        source_id: str,
        target_id: str,
        max_depth: int = 3,
        max_paths: int = 10,
    ) -> list[list[str]]:
        """Breadth-first search along outgoing edges from *source_id*.

        A path holds at most *max_depth* nodes beyond the source. Once a node
        has been expanded it is never expanded again, so later (longer) paths
        through it are not reported.
        """
        paths: list[list[str]] = []
        visited: set[str] = set()
        queue: deque[list[str]] = deque([[source_id]])

        while queue and len(paths) < max_paths:
            path = queue.popleft()
            node = path[-1]

            if node == target_id:
                paths.append(path)
                continue

            if len(path) > max_depth or node in visited:
                continue
            visited.add(node)

            for edge in self.store.get_edges_from(node):
                if edge.target_id not in path:
                    queue.append(path + [edge.target_id])

        return paths

    def neighbourhood(self, record_ids: Iterable[str], max_depth: int = 2) -> list[CitationEdge]:
        """Edges reachable within *max_depth* hops of *record_ids*, either direction."""
        frontier = set(record_ids)
        seen_nodes = set(frontier)
        edges: dict[tuple[str, str], CitationEdge] = {}

        for _ in range(max_depth):
            next_frontier: set[str] = set()
            for node in frontier:
                for edge in self.store.get_edges_from(node) + self.store.get_edges_to(node):
                    edges.setdefault(edge.key, edge)
                    for neighbour in edge.key:
                        if neighbour not in seen_nodes:
                            seen_nodes.add(neighbour)
                            next_frontier.add(neighbour)
            if not next_frontier:
                break
            frontier = next_frontier

        return list(edges.values())

    def overview(self) -> dict[str, Any]:
        edges = self.store.get_all_edges()
        sources = {e.source_id for e in edges}
        targets = {e.target_id for e in edges}
        return {
            "total_citations": len(edges),
            "unique_sources": len(sources),
            "unique_targets": len(targets),
            "average_out_degree": len(edges) / len(sources) if sources else 0.0,
            "average_in_degree": len(edges) / len(targets) if targets else 0.0,
        }

    def update_context(self, source_id: str, target_id: str, context: str) -> None:
        self._require_edge(source_id, target_id, "update_context")
        self.store.update_edge(source_id, target_id, {"context": context})

    def verify(self, source_id: str, target_id: str) -> None:
        self._require_edge(source_id, target_id, "verify")
        self.store.update_edge(source_id, target_id, {"is_verified": True})

    def _require_edge(self, source_id: str, target_id: str, operation: str) -> CitationEdge:
        edge = self.store.get_edge(source_id, target_id)
        if edge is None:
            raise NotFoundError(
                "Citation not found", operation=operation, ids=[source_id, target_id]
            )
        return edge

    def delete_edges_for(self, record_id: str) -> int:
        edges = self.store.get_edges_from(record_id) + self.store.get_edges_to(record_id)
        for edge in edges:
            self.store.delete_edge(*edge.key)
        logger.info("Deleted %d citations for %s", len(edges), record_id)
        return len(edges)

    def cleanup_orphans(self, valid_ids: Iterable[str]) -> int:
        """Delete every edge with an endpoint outside *valid_ids*."""
        valid = set(valid_ids)
        orphans = [
            edge
            for edge in self.store.get_all_edges()
            if edge.source_id not in valid or edge.target_id not in valid
        ]
        for edge in orphans:
            self.store.delete_edge(*edge.key)
        if orphans:
            logger.info("Cleaned up %d orphaned citations", len(orphans))
        return len(orphans)
