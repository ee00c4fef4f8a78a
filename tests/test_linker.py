"""Tests for citation discovery and edge creation."""

import pytest

from refgraph.config import LinkingConfig
from refgraph.db import SqliteStore
from refgraph.errors import NotFoundError
from refgraph.linker import (
    CitationMatcher,
    count_common_authors,
    infer_citation_type,
    match_confidence,
)
from refgraph.models import (
    BibliographicRecord,
    CitationType,
    DiscoveryMethod,
    MatchStrategy,
)


@pytest.fixture
def store(tmp_path):
    return SqliteStore(tmp_path / "test.db", retry_wait_max=0)


@pytest.fixture
def matcher(store):
    return CitationMatcher(store, sleep=lambda _seconds: None)


FIVE_AUTHORS = ["Alice Adams", "Bob Brown", "Carol Chen", "Dmitri Orlov", "Eve Evans"]
THREE_SHARED = ["Alice Adams", "Bob Brown", "Carol Chen", "Xavier Young", "Zara Zulu"]


# ── scoring ────────────────────────────────────────────────────────────────


def test_doi_only_signal():
    target = BibliographicRecord(title="Alpha study", doi="10.1/d")
    candidate = BibliographicRecord(title="Completely different words here", doi="10.1/d")
    confidence, method, evidence = match_confidence(target, candidate)
    assert confidence == pytest.approx(0.95)
    assert method == "doi"
    assert evidence == ["DOI exact match"]


def test_doi_only_strategy_ignores_titles():
    target = BibliographicRecord(title="Attention is all you need")
    candidate = BibliographicRecord(title="Attention is all you need")
    assert match_confidence(target, candidate, MatchStrategy.DOI_ONLY)[0] == 0.0
    assert match_confidence(target, candidate, MatchStrategy.ALL)[:2] == (1.0, "title")


def test_title_signal():
    target = BibliographicRecord(title="Attention is all you need")
    candidate = BibliographicRecord(title="Attention Is All You Need.")
    confidence, method, evidence = match_confidence(target, candidate)
    assert confidence == pytest.approx(1 - 1 / 26)
    assert method == "title"
    assert evidence == ["Title similarity: 96.2%"]


def test_author_year_signal_methodological():
    target = BibliographicRecord(title="Protein folding dynamics", authors=FIVE_AUTHORS, year=2020)
    candidate = BibliographicRecord(
        title="Urban traffic simulation", authors=THREE_SHARED, year=2020
    )
    confidence, method, evidence = match_confidence(target, candidate)
    assert confidence == pytest.approx(0.68)
    assert method == "author_year"
    assert evidence == ["Common authors: 3, Year diff: 0"]
    assert infer_citation_type(confidence, method) == CitationType.METHODOLOGICAL


def test_author_year_signal_supportive():
    target = BibliographicRecord(
        title="Protein folding dynamics", authors=FIVE_AUTHORS[:4], year=2020
    )
    candidate = BibliographicRecord(
        title="Urban traffic simulation", authors=THREE_SHARED[:3] + ["Zara Zulu"], year=2020
    )
    confidence, method, _ = match_confidence(target, candidate)
    assert confidence == pytest.approx(0.8)
    assert infer_citation_type(confidence, method) == CitationType.SUPPORTIVE


def test_author_year_gap_of_one_lowers_confidence():
    target = BibliographicRecord(title="Protein folding dynamics", authors=FIVE_AUTHORS, year=2020)
    candidate = BibliographicRecord(
        title="Urban traffic simulation", authors=THREE_SHARED, year=2021
    )
    assert match_confidence(target, candidate)[0] == pytest.approx(0.48)


def test_author_year_gap_of_two_does_not_fire():
    target = BibliographicRecord(title="Protein folding dynamics", authors=FIVE_AUTHORS, year=2020)
    candidate = BibliographicRecord(
        title="Urban traffic simulation", authors=THREE_SHARED, year=2022
    )
    confidence, method, evidence = match_confidence(target, candidate)
    assert confidence == 0.0
    assert method == "combined"
    assert evidence == []


def test_count_common_authors_is_loose():
    assert count_common_authors(["Smith", "Jones"], ["John Smith", "Jane Doe"]) == 1
    assert count_common_authors(["Alice Adams"], ["Alice Adam"]) == 1
    assert count_common_authors([], ["A"]) == 0


def test_infer_citation_type_bands():
    assert infer_citation_type(0.95, "doi") == CitationType.DIRECT
    assert infer_citation_type(0.75, "title") == CitationType.SUPPORTIVE
    assert infer_citation_type(0.65, "author_year") == CitationType.METHODOLOGICAL
    assert infer_citation_type(0.65, "combined") == CitationType.BACKGROUND


def test_infer_citation_type_band_edges():
    assert infer_citation_type(0.9, "title") == CitationType.DIRECT
    assert infer_citation_type(0.89, "title") == CitationType.SUPPORTIVE
    assert infer_citation_type(0.7, "author_year") == CitationType.SUPPORTIVE
    assert infer_citation_type(0.69, "author_year") == CitationType.METHODOLOGICAL
    assert infer_citation_type(0.6, "title") == CitationType.BACKGROUND


def test_match_at_minimum_confidence_is_kept(matcher):
    # one of two authors shared, same year: 0.5 * 0.8 + 0.2
    target = BibliographicRecord(
        id="t", title="Protein folding dynamics", authors=["Alice Adams", "Bob Brown"], year=2020
    )
    candidate = BibliographicRecord(
        id="c", title="Urban traffic simulation", authors=["Alice Adams", "Xavier Young"], year=2020
    )
    [match] = matcher.find_matches(target, [candidate])
    assert match.confidence == pytest.approx(0.6)
    assert match.confidence >= matcher.config.min_confidence
    assert match.method == "author_year"
    assert infer_citation_type(match.confidence, match.method) == CitationType.METHODOLOGICAL


def test_match_below_minimum_confidence_is_dropped(matcher):
    # one of three authors shared, same year: 0.8 / 3 + 0.2
    target = BibliographicRecord(
        id="t",
        title="Protein folding dynamics",
        authors=["Alice Adams", "Bob Brown", "Carol Chen"],
        year=2020,
    )
    candidate = BibliographicRecord(
        id="c",
        title="Urban traffic simulation",
        authors=["Alice Adams", "Xavier Young", "Zara Zulu"],
        year=2020,
    )
    assert match_confidence(target, candidate)[0] == pytest.approx(0.8 / 3 + 0.2)
    assert matcher.find_matches(target, [candidate]) == []


def test_five_of_eight_shared_authors_scores_point_seven():
    # 5 of 8 authors shared, same year: 0.625 * 0.8 + 0.2 == 0.7
    shared = [f"Author {name}" for name in ("Adams", "Brown", "Chen", "Dorsey", "Evans")]
    target = BibliographicRecord(
        id="t",
        title="Protein folding dynamics",
        authors=shared + ["Author Fischer", "Author Garcia", "Author Huang"],
        year=2020,
    )
    candidate = BibliographicRecord(
        id="c",
        title="Urban traffic simulation",
        authors=shared + ["Writer Kowalski", "Writer Larsen", "Writer Moreau"],
        year=2020,
    )
    confidence, method, evidence = match_confidence(target, candidate)
    assert confidence == pytest.approx(0.7)
    assert method == "author_year"
    assert evidence == ["Common authors: 5, Year diff: 0"]


def test_jaccard_title_metric_ignores_word_order(store):
    target = BibliographicRecord(id="t", title="Graph Neural Networks")
    candidate = BibliographicRecord(id="c", title="networks neural graph")

    levenshtein = CitationMatcher(store, LinkingConfig(title_metric="levenshtein"))
    jaccard = CitationMatcher(store, LinkingConfig(title_metric="jaccard"))

    assert levenshtein.find_matches(target, [candidate]) == []
    [match] = jaccard.find_matches(target, [candidate])
    assert match.confidence == 1.0
    assert match.method == "title"


def test_find_matches_skips_the_target_itself(matcher):
    target = BibliographicRecord(id="t", title="Attention is all you need")
    assert matcher.find_matches(target, [target]) == []


# ── link_citations ─────────────────────────────────────────────────────────


def test_link_citations_creates_edge_from_candidate(store, matcher):
    target_id = store.insert_record(BibliographicRecord(title="Alpha study", doi="10.1/d"))
    citing_id = store.insert_record(
        BibliographicRecord(title="Completely different words here", doi="10.1/d")
    )
    store.insert_record(BibliographicRecord(title="Unrelated", year=1990))

    result = matcher.link_citations(target_id)

    assert result.target_id == target_id
    assert result.strategy == MatchStrategy.ALL
    assert result.total_candidates == 2
    assert result.potential_matches == 1
    assert result.created_links == 1
    assert result.skipped_links == 0
    assert result.average_confidence == pytest.approx(0.95)

    edge = store.get_edge(citing_id, target_id)
    assert edge.citation_type == CitationType.DIRECT
    assert edge.discovery_method == DiscoveryMethod.AUTOMATIC
    assert edge.is_verified is True
    assert edge.context == "DOI exact match"
    assert store.get_edge(target_id, citing_id) is None
    assert store.get_edge(target_id, target_id) is None


def test_link_citations_twice_skips_existing(store, matcher):
    target_id = store.insert_record(BibliographicRecord(title="Alpha study", doi="10.1/d"))
    store.insert_record(BibliographicRecord(title="Beta", doi="10.1/d"))

    matcher.link_citations(target_id)
    again = matcher.link_citations(target_id)

    assert again.created_links == 0
    assert again.skipped_links == 1
    assert len(store.get_all_edges()) == 1


def test_link_citations_below_verified_confidence(store, matcher):
    target_id = store.insert_record(
        BibliographicRecord(title="Protein folding dynamics", authors=FIVE_AUTHORS, year=2020)
    )
    citing_id = store.insert_record(
        BibliographicRecord(title="Urban traffic simulation", authors=THREE_SHARED, year=2020)
    )
    matcher.link_citations(target_id, "author_year")

    edge = store.get_edge(citing_id, target_id)
    assert edge.citation_type == CitationType.METHODOLOGICAL
    assert edge.is_verified is False


def test_link_citations_unknown_target(matcher):
    with pytest.raises(NotFoundError) as exc_info:
        matcher.link_citations("missing")
    assert exc_info.value.ids == ("missing",)


def test_link_citations_respects_link_cap(store):
    matcher = CitationMatcher(store, LinkingConfig(max_links_per_record=1))
    target_id = store.insert_record(BibliographicRecord(title="Alpha study", doi="10.1/d"))
    store.insert_record(BibliographicRecord(title="Beta", doi="10.1/d"))
    store.insert_record(BibliographicRecord(title="Gamma", doi="10.1/d"))

    result = matcher.link_citations(target_id)
    assert result.potential_matches == 2
    assert result.created_links == 1
    assert result.skipped_links == 1


def test_link_bidirectional(store, matcher):
    first = store.insert_record(BibliographicRecord(title="Alpha study", doi="10.1/d"))
    second = store.insert_record(BibliographicRecord(title="Beta", doi="10.1/d"))

    assert matcher.link_bidirectional(first, second) == {"forward_links": 1, "backward_links": 1}
    assert store.get_edge(first, second) is not None
    assert store.get_edge(second, first) is not None
    assert matcher.link_bidirectional(first, second) == {"forward_links": 0, "backward_links": 0}


# ── link_all_citations ─────────────────────────────────────────────────────


def test_link_all_reports_progress_and_pauses(store):
    sleeps = []
    matcher = CitationMatcher(
        store, LinkingConfig(batch_size=1, delay_ms=10), sleep=sleeps.append
    )
    store.insert_record(BibliographicRecord(title="Alpha study", doi="10.1/d"))
    store.insert_record(BibliographicRecord(title="Beta", doi="10.1/d"))
    store.insert_record(BibliographicRecord(title="Unrelated", year=1990))

    calls = []
    result = matcher.link_all_citations(progress=lambda pct, i, n: calls.append((i, n)))

    assert result.total_processed == 3
    assert result.total_links_created == 2
    assert result.errors == []
    assert calls == [(1, 3), (2, 3), (3, 3)]
    assert sleeps == [0.01, 0.01]


class VanishingStore(SqliteStore):
    """Lists a record that then cannot be loaded."""

    vanished: set = set()

    def get_record(self, record_id):
        if record_id in self.vanished:
            return None
        return super().get_record(record_id)


def test_link_all_continues_past_failures(tmp_path):
    store = VanishingStore(tmp_path / "test.db", retry_wait_max=0)
    first = store.insert_record(BibliographicRecord(title="Alpha study", doi="10.1/d"))
    store.insert_record(BibliographicRecord(title="Beta", doi="10.1/d"))
    store.vanished = {first}

    result = CitationMatcher(store, sleep=lambda _s: None).link_all_citations()

    assert result.total_processed == 2
    assert len(result.errors) == 1
    assert result.errors[0].index == 0
    assert result.errors[0].item_id == first
    assert result.total_links_created == 1
