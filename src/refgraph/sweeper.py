"""Batch duplicate sweep over the whole record set."""

from __future__ import annotations

import logging
from typing import Callable

from refgraph.config import ThresholdConfig
from refgraph.errors import EngineError, ItemError
from refgraph.models import BibliographicRecord, SweepResult
from refgraph.similarity import composite_score
from refgraph.store import RecordStore

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[float, int, int], None]


def completeness_score(record: BibliographicRecord) -> int:
    """Points for each populated field; used to pick a group's primary record."""
    score = 0
    if record.title:
        score += 2
    if record.authors:
        score += 2
    if record.abstract:
        score += 1
    if record.doi:
        score += 1
    if record.url:
        score += 1
    if record.year:
        score += 1
    if record.publication:
        score += 1
    if record.keywords:
        score += 1
    if record.pdf_reference:
        score += 1
    return score


def select_primary(group: list[BibliographicRecord]) -> BibliographicRecord:
    """Most complete record wins; the earliest one wins ties."""
    primary = group[0]
    for record in group[1:]:
        if completeness_score(record) > completeness_score(primary):
            primary = record
    return primary


def find_duplicate_groups(
    records: list[BibliographicRecord], threshold: float
) -> list[list[BibliographicRecord]]:
    """Group records scoring >= *threshold* against any member of a group.

    Groups grow transitively until no unprocessed record joins, so no two
    records left in different groups score >= *threshold* against each other.
    At least quadratic in the number of records; each record joins at most
    one group.
    """
    processed: set[str | None] = set()
    groups: list[list[BibliographicRecord]] = []

    for record in records:
        if record.id in processed:
            continue
        processed.add(record.id)
        group = [record]

        grown = True
        while grown:
            grown = False
            for other in records:
                if other.id in processed:
                    continue
                if any(composite_score(member, other).score >= threshold for member in group):
                    group.append(other)
                    processed.add(other.id)
                    grown = True

        if len(group) > 1:
            groups.append(group)
    return groups


class DuplicateSweeper:
    """Periodic maintenance job: collapse each duplicate group to one record.

    Deleting records leaves their citation edges behind; run
    `CitationGraph.cleanup_orphans` afterwards.
    """

    def __init__(self, store: RecordStore, thresholds: ThresholdConfig | None = None):
        self.store = store
        self.thresholds = thresholds or ThresholdConfig()

    def sweep(self, progress: ProgressCallback | None = None) -> SweepResult:
        records = self.store.get_all_records()
        groups = find_duplicate_groups(records, self.thresholds.high)
        result = SweepResult(duplicate_groups_found=len(groups))
        logger.info("Found %d duplicate groups among %d records", len(groups), len(records))

        for index, group in enumerate(groups):
            primary = select_primary(group)
            removed: list[str] = []
            for member in group:
                if member.id == primary.id:
                    continue
                try:
                    self.store.delete_record(member.id)
                    removed.append(member.id)
                except EngineError as exc:
                    result.errors.append(
                        ItemError(index=index, item_id=member.id, message=str(exc))
                    )
                    logger.warning("Could not remove duplicate %s: %s", member.id, exc)

            result.groups.append((primary.id, removed))
            result.records_removed += len(removed)
            logger.debug("Kept %s, removed %s", primary.id, removed)

            if progress:
                progress((index + 1) / len(groups) * 100, index + 1, len(groups))

        return result
