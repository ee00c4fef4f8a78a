"""Entity resolution: decide whether an incoming record is new or a duplicate."""

from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping

from refgraph.config import ThresholdConfig
from refgraph.errors import EngineError, ItemError, ValidationError
from refgraph.models import (
    MERGEABLE_FIELDS,
    BibliographicRecord,
    BulkImportResult,
    ResolveResult,
    SimilarityResult,
)
from refgraph.similarity import composite_score, title_similarity
from refgraph.store import RecordStore

logger = logging.getLogger(__name__)


def validate_input(raw: Mapping[str, Any] | BibliographicRecord) -> BibliographicRecord:
    """Check required fields and coerce *raw* into a fresh record (no id).

    Raises ValidationError if the title is empty or a field has the wrong shape.
    """
    if isinstance(raw, BibliographicRecord):
        data = raw.to_dict()
    elif isinstance(raw, Mapping):
        data = dict(raw)
    else:
        raise ValidationError("record must be a mapping", operation="resolve")

    title = data.get("title")
    if not isinstance(title, str) or not title.strip():
        raise ValidationError("title is required", operation="resolve")

    authors = data.get("authors") or []
    if isinstance(authors, str):
        authors = [a.strip() for a in authors.split(",") if a.strip()]
    if not all(isinstance(a, str) for a in authors):
        raise ValidationError("authors must be a list of strings", operation="resolve")

    year = data.get("year")
    if year is not None and year != "":
        try:
            year = int(year)
        except (TypeError, ValueError) as exc:
            raise ValidationError(f"year must be an integer, got {year!r}", operation="resolve") from exc
    else:
        year = None

    keywords: list[str] = []
    for keyword in data.get("keywords") or []:
        if keyword not in keywords:
            keywords.append(keyword)

    record = BibliographicRecord.from_dict(data)
    record.id = None
    record.created_at = None
    record.updated_at = None
    record.title = title.strip()
    record.authors = list(authors)
    record.year = year
    record.keywords = keywords
    return record


def merge_updates(
    existing: BibliographicRecord, incoming: BibliographicRecord
) -> dict[str, Any]:
    """Fields of *existing* that *incoming* can fill in without overwriting.

    Only the fixed mergeable fields are considered; keywords are unioned.
    """
    updates: dict[str, Any] = {}
    for name in MERGEABLE_FIELDS:
        if not getattr(existing, name) and getattr(incoming, name):
            updates[name] = getattr(incoming, name)

    new_keywords = [k for k in incoming.keywords if k not in existing.keywords]
    if new_keywords:
        updates["keywords"] = list(existing.keywords) + list(dict.fromkeys(new_keywords))
    return updates


class EntityResolver:
    def __init__(self, store: RecordStore, thresholds: ThresholdConfig | None = None):
        self.store = store
        self.thresholds = thresholds or ThresholdConfig()

    def find_similar(
        self,
        record: BibliographicRecord,
        limit: int | None = None,
        existing: Iterable[BibliographicRecord] | None = None,
    ) -> list[SimilarityResult]:
        """Score *record* against every stored record, keeping scores >= LOW.

        Sorted by descending score; ties keep store (creation) order.
        """
        pool = self.store.get_all_records() if existing is None else existing
        results = [
            result
            for result in (composite_score(record, candidate) for candidate in pool)
            if result.score >= self.thresholds.low
        ]
        results.sort(key=lambda r: r.score, reverse=True)
        return results[:limit] if limit is not None else results

    def find_by_title(
        self, title: str, threshold: float = 0.6, limit: int = 10
    ) -> list[tuple[BibliographicRecord, float]]:
        scored = [
            (record, title_similarity(title, record.title))
            for record in self.store.get_all_records()
        ]
        hits = [(record, score) for record, score in scored if score >= threshold]
        hits.sort(key=lambda pair: pair[1], reverse=True)
        return hits[:limit]

    def resolve(self, raw: Mapping[str, Any] | BibliographicRecord) -> ResolveResult:
        """Create the record, or merge it into an existing near-identical one.

        Callers that resolve concurrently must serialize calls themselves;
        scoring and the subsequent write are not atomic.
        """
        record = validate_input(raw)
        candidates = self.find_similar(record)

        high = next((r for r in candidates if r.score >= self.thresholds.high), None)
        if high is not None:
            return self._merge(high, record)

        medium = next(
            (r for r in candidates if self.thresholds.medium <= r.score < self.thresholds.high),
            None,
        )
        record_id = self.store.insert_record(record)

        if medium is not None:
            logger.info(
                "Created %s; possible duplicate of %s (score %.2f)",
                record_id,
                medium.candidate.id,
                medium.score,
            )
            return ResolveResult(
                id=record_id,
                is_new=True,
                operation="created",
                duplicate_score=medium.score,
                message=(
                    "Created new record (potential duplicate detected with "
                    f"score {medium.score:.2f})"
                ),
            )

        logger.info("Created record %s: %s", record_id, record.title)
        return ResolveResult(
            id=record_id, is_new=True, operation="created", message="Record created"
        )

    def _merge(self, match: SimilarityResult, incoming: BibliographicRecord) -> ResolveResult:
        existing = match.candidate
        updates = merge_updates(existing, incoming)
        if updates:
            self.store.update_record(existing.id, updates)

        merged_fields = list(updates)
        logger.info(
            "Merged into %s (score %.2f): %s",
            existing.id,
            match.score,
            ", ".join(merged_fields) or "no new fields",
        )
        return ResolveResult(
            id=existing.id,
            is_new=False,
            operation="merged",
            merged_fields=merged_fields,
            message=f"Merged {len(merged_fields)} fields into existing record",
        )

    def bulk_import(
        self, inputs: Iterable[Mapping[str, Any] | BibliographicRecord]
    ) -> BulkImportResult:
        """Resolve each input in turn; one bad item never stops the batch."""
        result = BulkImportResult()
        for index, raw in enumerate(inputs):
            result.total += 1
            try:
                outcome = self.resolve(raw)
            except EngineError as exc:
                result.failed += 1
                if isinstance(raw, Mapping):
                    title = raw.get("title")
                elif isinstance(raw, BibliographicRecord):
                    title = raw.title
                else:
                    title = None
                result.errors.append(ItemError(index=index, item_id=title, message=str(exc)))
                logger.warning("Import of item %d failed: %s", index, exc)
                continue

            result.results.append(outcome)
            if outcome.is_new:
                result.successful += 1
            else:
                result.duplicates += 1

        logger.info(
            "Imported %d records: %d new, %d merged, %d failed",
            result.total,
            result.successful,
            result.duplicates,
            result.failed,
        )
        return result
