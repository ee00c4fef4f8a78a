"""Record, edge and result types shared by the engine components."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Mapping

from refgraph.errors import BusinessRuleError, ItemError


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class CitationType(str, Enum):
    DIRECT = "direct"
    SUPPORTIVE = "supportive"
    METHODOLOGICAL = "methodological"
    BACKGROUND = "background"
    INDIRECT = "indirect"
    CONTRADICTORY = "contradictory"


class DiscoveryMethod(str, Enum):
    MANUAL = "manual"
    AUTOMATIC = "automatic"
    AI_INFERRED = "ai-inferred"


class MatchStrategy(str, Enum):
    ALL = "all"
    DOI_ONLY = "doi_only"
    TITLE_ONLY = "title_only"
    AUTHOR_YEAR = "author_year"
    COMBINED = "combined"


class ConfidenceLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# Fields the resolver may fill in on an existing record during a merge.
MERGEABLE_FIELDS: tuple[str, ...] = ("abstract", "doi", "url", "pdf_reference")


@dataclass
class BibliographicRecord:
    title: str
    authors: list[str] = field(default_factory=list)
    year: int | None = None
    doi: str | None = None
    url: str | None = None
    abstract: str | None = None
    pdf_reference: str | None = None
    publication: str | None = None
    keywords: list[str] = field(default_factory=list)
    id: str | None = None
    created_at: str | None = None
    updated_at: str | None = None

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "BibliographicRecord":
        return cls(
            id=raw.get("id"),
            title=raw.get("title") or "",
            authors=list(raw.get("authors") or []),
            year=raw.get("year"),
            doi=raw.get("doi"),
            url=raw.get("url"),
            abstract=raw.get("abstract"),
            pdf_reference=raw.get("pdf_reference"),
            publication=raw.get("publication"),
            keywords=list(raw.get("keywords") or []),
            created_at=raw.get("created_at"),
            updated_at=raw.get("updated_at"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class CitationEdge:
    """A directed "cites" relationship: *source_id* cites *target_id*."""

    source_id: str
    target_id: str
    citation_type: CitationType = CitationType.DIRECT
    discovery_method: DiscoveryMethod = DiscoveryMethod.MANUAL
    confidence: float = 1.0
    is_verified: bool = False
    context: str = ""
    created_at: str | None = None

    def __post_init__(self) -> None:
        if self.source_id == self.target_id:
            raise BusinessRuleError(
                "A record cannot cite itself",
                operation="citation_edge",
                ids=[self.source_id],
            )
        self.citation_type = CitationType(self.citation_type)
        self.discovery_method = DiscoveryMethod(self.discovery_method)

    @property
    def key(self) -> tuple[str, str]:
        return self.source_id, self.target_id


@dataclass
class SimilarityResult:
    candidate: BibliographicRecord
    score: float
    matched_fields: set[str] = field(default_factory=set)
    confidence_level: ConfidenceLevel = ConfidenceLevel.LOW


@dataclass
class DegreeStats:
    id: str
    in_degree: int
    out_degree: int
    total_degree: int
    computed_at: str = field(default_factory=now_iso)


# ── operation results ──────────────────────────────────────────────────────


@dataclass
class ResolveResult:
    id: str
    is_new: bool
    operation: str  # "created" | "merged"
    merged_fields: list[str] = field(default_factory=list)
    duplicate_score: float | None = None
    message: str = ""


@dataclass
class BulkImportResult:
    total: int = 0
    successful: int = 0
    failed: int = 0
    duplicates: int = 0
    results: list[ResolveResult] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)


@dataclass
class SweepResult:
    duplicate_groups_found: int = 0
    records_removed: int = 0
    groups: list[tuple[str, list[str]]] = field(default_factory=list)
    errors: list[ItemError] = field(default_factory=list)


@dataclass
class LinkResult:
    target_id: str
    strategy: MatchStrategy
    total_candidates: int = 0
    potential_matches: int = 0
    created_links: int = 0
    skipped_links: int = 0
    average_confidence: float = 0.0
    elapsed_seconds: float = 0.0


@dataclass
class BatchLinkResult:
    total_processed: int = 0
    total_links_created: int = 0
    total_links_skipped: int = 0
    elapsed_seconds: float = 0.0
    errors: list[ItemError] = field(default_factory=list)
