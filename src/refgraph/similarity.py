"""Field-level and composite similarity between bibliographic records.

All functions are pure. The composite score always divides by the sum of all
five field weights (which is 1.0), whether or not a field contributed; a
field that is missing on either side or falls below the inclusion gate simply
adds nothing to the numerator.
"""

from __future__ import annotations

import re
from typing import Sequence

from rapidfuzz.distance import Levenshtein

from refgraph.models import BibliographicRecord, ConfidenceLevel, SimilarityResult

TITLE_WEIGHT = 0.40
AUTHOR_WEIGHT = 0.25
DOI_WEIGHT = 0.20
YEAR_WEIGHT = 0.10
URL_WEIGHT = 0.05

# Title and author similarity only count once they exceed this.
FIELD_INCLUSION_GATE = 0.3

HIGH_THRESHOLD = 0.9
MEDIUM_THRESHOLD = 0.7
LOW_THRESHOLD = 0.5

_NON_WORD = re.compile(r"[^\w\s]")


def normalize_title(title: str) -> str:
    return _NON_WORD.sub("", title.lower().strip())


def title_similarity(a: str, b: str) -> float:
    """Jaccard similarity of the word sets of two normalized titles."""
    t1 = normalize_title(a or "")
    t2 = normalize_title(b or "")
    if t1 == t2:
        return 1.0

    words1 = set(t1.split())
    words2 = set(t2.split())
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def edit_similarity(a: str, b: str) -> float:
    """Normalized Levenshtein similarity: ``1 - distance / max(len)``."""
    max_len = max(len(a), len(b))
    if max_len == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(a, b) / max_len


def authors_match(a: str, b: str) -> bool:
    """Loose author match: either normalized string contains the other."""
    return a in b or b in a


def author_similarity(a: Sequence[str], b: Sequence[str]) -> float:
    """Jaccard similarity over normalized author sets.

    Two author strings count as the same set member when one contains the
    other ("smith" and "john smith"). Each author on either side is paired
    at most once so the result stays within [0, 1].
    """
    if not a and not b:
        return 1.0
    if not a or not b:
        return 0.0

    set_a = sorted({name.lower().strip() for name in a})
    set_b = sorted({name.lower().strip() for name in b})

    unpaired = list(set_b)
    common = 0
    for name in set_a:
        for other in unpaired:
            if authors_match(name, other):
                unpaired.remove(other)
                common += 1
                break

    union = len(set_a) + len(set_b) - common
    return common / union


def confidence_for(score: float) -> ConfidenceLevel:
    if score >= HIGH_THRESHOLD:
        return ConfidenceLevel.HIGH
    if score >= MEDIUM_THRESHOLD:
        return ConfidenceLevel.MEDIUM
    return ConfidenceLevel.LOW


def composite_score(
    record: BibliographicRecord, candidate: BibliographicRecord
) -> SimilarityResult:
    """Weighted multi-field similarity of *record* against *candidate*."""
    matched: set[str] = set()
    total = 0.0
    weight_sum = 0.0

    title_score = title_similarity(record.title, candidate.title)
    if title_score > FIELD_INCLUSION_GATE:
        matched.add("title")
        total += title_score * TITLE_WEIGHT
    weight_sum += TITLE_WEIGHT

    author_score = author_similarity(record.authors, candidate.authors)
    if author_score > FIELD_INCLUSION_GATE:
        matched.add("authors")
        total += author_score * AUTHOR_WEIGHT
    weight_sum += AUTHOR_WEIGHT

    if record.doi and candidate.doi and record.doi == candidate.doi:
        matched.add("doi")
        total += DOI_WEIGHT
    weight_sum += DOI_WEIGHT

    if record.year and candidate.year and record.year == candidate.year:
        matched.add("year")
        total += YEAR_WEIGHT
    weight_sum += YEAR_WEIGHT

    if record.url and candidate.url and record.url == candidate.url:
        matched.add("url")
        total += URL_WEIGHT
    weight_sum += URL_WEIGHT

    score = total / weight_sum if weight_sum > 0 else 0.0
    return SimilarityResult(
        candidate=candidate,
        score=score,
        matched_fields=matched,
        confidence_level=confidence_for(score),
    )
