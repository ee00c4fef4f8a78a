"""Citation discovery: infer "cites" edges between stored records.

Each candidate is scored against the target with up to three signals (DOI,
title, shared authors within a year). Unlike the duplicate scorer, the
combined confidence only divides by the weights of signals that fired.
Edges point from the candidate to the target record.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Sequence

from refgraph.config import LinkingConfig
from refgraph.errors import DuplicateEdgeError, EngineError, ItemError, NotFoundError
from refgraph.models import (
    BatchLinkResult,
    BibliographicRecord,
    CitationEdge,
    CitationType,
    DiscoveryMethod,
    LinkResult,
    MatchStrategy,
)
from refgraph.similarity import authors_match, edit_similarity, title_similarity
from refgraph.store import RecordStore

logger = logging.getLogger(__name__)

DOI_WEIGHT = 1.0
DOI_CONFIDENCE = 0.95
TITLE_WEIGHT = 0.8
TITLE_THRESHOLD = 0.85
AUTHOR_YEAR_WEIGHT = 0.7
AUTHOR_SIMILARITY_THRESHOLD = 0.8
MIN_COMMON_AUTHORS = 1
MAX_YEAR_GAP = 1
VERIFIED_CONFIDENCE = 0.9

_DOI_STRATEGIES = {MatchStrategy.ALL, MatchStrategy.DOI_ONLY, MatchStrategy.COMBINED}
_AUTHOR_YEAR_STRATEGIES = {MatchStrategy.ALL, MatchStrategy.AUTHOR_YEAR, MatchStrategy.COMBINED}

ProgressCallback = Callable[[float, int, int], None]


@dataclass
class CitationMatch:
    source: BibliographicRecord
    target: BibliographicRecord
    confidence: float
    method: str
    evidence: list[str] = field(default_factory=list)


def count_common_authors(authors1: Sequence[str], authors2: Sequence[str]) -> int:
    """Authors of the first list that loosely match any author of the second."""
    first = [a.lower().strip() for a in authors1 if a.strip()]
    second = [a.lower().strip() for a in authors2 if a.strip()]
    return sum(
        1
        for a in first
        if any(
            authors_match(a, b) or edit_similarity(a, b) > AUTHOR_SIMILARITY_THRESHOLD
            for b in second
        )
    )


def infer_citation_type(confidence: float, method: str) -> CitationType:
    if confidence >= 0.9:
        return CitationType.DIRECT
    if confidence >= 0.7:
        return CitationType.SUPPORTIVE
    if method == "author_year":
        return CitationType.METHODOLOGICAL
    return CitationType.BACKGROUND


def match_confidence(
    target: BibliographicRecord,
    candidate: BibliographicRecord,
    strategy: MatchStrategy = MatchStrategy.ALL,
    title_metric: str = "levenshtein",
) -> tuple[float, str, list[str]]:
    """Combine the signals that fire into ``(confidence, method, evidence)``.

    *method* names the signal that drove the match: ``doi``, ``title``
    (similarity above 0.9), ``author_year``, or ``combined``.
    """
    evidence: list[str] = []
    total = 0.0
    weight = 0.0
    doi_fired = False
    strong_title = False
    author_year_fired = False

    if strategy in _DOI_STRATEGIES and target.doi and candidate.doi:
        if target.doi == candidate.doi:
            evidence.append("DOI exact match")
            total += DOI_CONFIDENCE * DOI_WEIGHT
            weight += DOI_WEIGHT
            doi_fired = True

    if strategy != MatchStrategy.DOI_ONLY:
        if title_metric == "jaccard":
            similarity = title_similarity(target.title, candidate.title)
        else:
            similarity = edit_similarity(target.title.lower(), candidate.title.lower())
        if similarity >= TITLE_THRESHOLD:
            evidence.append(f"Title similarity: {similarity * 100:.1f}%")
            total += similarity * TITLE_WEIGHT
            weight += TITLE_WEIGHT
            strong_title = similarity > 0.9

    if (
        strategy in _AUTHOR_YEAR_STRATEGIES
        and target.year is not None
        and candidate.year is not None
    ):
        common = count_common_authors(target.authors, candidate.authors)
        year_gap = abs(target.year - candidate.year)
        if common >= MIN_COMMON_AUTHORS and year_gap <= MAX_YEAR_GAP:
            evidence.append(f"Common authors: {common}, Year diff: {year_gap}")
            author_count = max(len(target.authors), len(candidate.authors))
            signal = min(
                1.0,
                (common / author_count) * 0.8 + (0.2 if year_gap == 0 else 0.0),
            )
            total += signal * AUTHOR_YEAR_WEIGHT
            weight += AUTHOR_YEAR_WEIGHT
            author_year_fired = True

    if doi_fired:
        method = "doi"
    elif strong_title:
        method = "title"
    elif author_year_fired:
        method = "author_year"
    else:
        method = "combined"

    confidence = min(total / weight, 1.0) if weight > 0 else 0.0
    return confidence, method, evidence


class CitationMatcher:
    def __init__(
        self,
        store: RecordStore,
        config: LinkingConfig | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.store = store
        self.config = config or LinkingConfig()
        self._sleep = sleep

    def find_matches(
        self,
        target: BibliographicRecord,
        candidates: Sequence[BibliographicRecord],
        strategy: MatchStrategy = MatchStrategy.ALL,
    ) -> list[CitationMatch]:
        matches: list[CitationMatch] = []
        for candidate in candidates:
            if candidate.id == target.id:
                continue
            confidence, method, evidence = match_confidence(
                target, candidate, strategy, self.config.title_metric
            )
            if confidence >= self.config.min_confidence:
                logger.debug(
                    "Candidate %s -> %s: %.3f via %s", candidate.id, target.id, confidence, method
                )
                matches.append(
                    CitationMatch(
                        source=candidate,
                        target=target,
                        confidence=confidence,
                        method=method,
                        evidence=evidence,
                    )
                )
        matches.sort(key=lambda m: m.confidence, reverse=True)
        return matches

    def _create_links(self, matches: Sequence[CitationMatch]) -> tuple[int, int]:
        """Insert an edge per match unless one exists; returns (created, skipped).

        Existence check and insert are separate store calls; the store's
        primary key rejects a racing duplicate, which is counted as skipped.
        """
        created = skipped = 0
        cap = self.config.max_links_per_record
        for match in matches[:cap]:
            if self.store.get_edge(match.source.id, match.target.id) is not None:
                skipped += 1
                continue
            edge = CitationEdge(
                source_id=match.source.id,
                target_id=match.target.id,
                citation_type=infer_citation_type(match.confidence, match.method),
                discovery_method=DiscoveryMethod.AUTOMATIC,
                confidence=match.confidence,
                is_verified=match.confidence >= VERIFIED_CONFIDENCE,
                context="; ".join(match.evidence),
            )
            try:
                self.store.insert_edge(edge)
                created += 1
            except DuplicateEdgeError:
                skipped += 1
        skipped += max(0, len(matches) - cap)
        return created, skipped

    def _load(self, record_id: str, operation: str) -> BibliographicRecord:
        record = self.store.get_record(record_id)
        if record is None:
            raise NotFoundError(
                f"Record {record_id} not found", operation=operation, ids=[record_id]
            )
        return record

    def link_citations(
        self, target_id: str, strategy: MatchStrategy | str = MatchStrategy.ALL
    ) -> LinkResult:
        """Discover records citing *target_id* and create edges for them."""
        strategy = MatchStrategy(strategy)
        started = time.monotonic()
        target = self._load(target_id, "link_citations")

        candidates = [r for r in self.store.get_all_records() if r.id != target_id]
        matches = self.find_matches(target, candidates, strategy)
        created, skipped = self._create_links(matches)

        result = LinkResult(
            target_id=target_id,
            strategy=strategy,
            total_candidates=len(candidates),
            potential_matches=len(matches),
            created_links=created,
            skipped_links=skipped,
            average_confidence=(
                sum(m.confidence for m in matches) / len(matches) if matches else 0.0
            ),
            elapsed_seconds=time.monotonic() - started,
        )
        logger.info(
            "Linked %s: %d candidates, %d matches, %d created, %d skipped",
            target_id,
            result.total_candidates,
            result.potential_matches,
            created,
            skipped,
        )
        return result

    def link_bidirectional(self, first_id: str, second_id: str) -> dict[str, int]:
        """Check both directions between two records; returns link counts."""
        first = self._load(first_id, "link_bidirectional")
        second = self._load(second_id, "link_bidirectional")

        forward, _ = self._create_links(self.find_matches(second, [first]))
        backward, _ = self._create_links(self.find_matches(first, [second]))
        return {"forward_links": forward, "backward_links": backward}

    def link_all_citations(
        self,
        strategy: MatchStrategy | str = MatchStrategy.ALL,
        progress: ProgressCallback | None = None,
    ) -> BatchLinkResult:
        """Run `link_citations` for every record, one at a time.

        Pauses for ``delay_ms`` every ``batch_size`` records. A failing record
        is logged in ``errors`` and the loop moves on.
        """
        strategy = MatchStrategy(strategy)
        started = time.monotonic()
        records = self.store.get_all_records()
        total = len(records)
        result = BatchLinkResult(total_processed=total)
        logger.info("Linking citations for %d records", total)

        for index, record in enumerate(records):
            try:
                linked = self.link_citations(record.id, strategy)
                result.total_links_created += linked.created_links
                result.total_links_skipped += linked.skipped_links
            except EngineError as exc:
                result.errors.append(ItemError(index=index, item_id=record.id, message=str(exc)))
                logger.warning("Failed to link %s: %s", record.id, exc)

            if progress:
                progress((index + 1) / total * 100, index + 1, total)

            if index > 0 and index % self.config.batch_size == 0:
                self._sleep(self.config.delay_ms / 1000)

        result.elapsed_seconds = time.monotonic() - started
        return result
