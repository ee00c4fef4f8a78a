import pytest

from refgraph.models import BibliographicRecord, CitationEdge, DegreeStats
from refgraph.report import build_report


@pytest.fixture
def record():
    return BibliographicRecord(
        id="main",
        title="Main Paper",
        authors=["Author 1"],
        year=2020,
        doi="10.1/main",
        abstract="What it is about.",
        keywords=["graphs"],
    )


@pytest.fixture
def titles(record):
    return {
        "main": record,
        "citing": BibliographicRecord(id="citing", title='A "Quoted" Follow-up'),
        "cited": BibliographicRecord(id="cited", title="Earlier Work"),
    }


def test_build_report(record, titles):
    outgoing = [CitationEdge("main", "cited", citation_type="background", confidence=0.65)]
    incoming = [
        CitationEdge(
            "citing",
            "main",
            citation_type="direct",
            confidence=0.95,
            is_verified=True,
            context="DOI exact match",
        )
    ]
    degree = DegreeStats(id="main", in_degree=1, out_degree=1, total_degree=2)

    report = build_report(record, degree, outgoing, incoming, titles)

    assert "# Main Paper" in report
    assert "*Author 1*" in report
    assert "*DOI: 10.1/main*" in report
    assert "*Keywords: graphs*" in report
    assert "## Abstract" in report
    assert "Cited by **1**, cites **1** (total 2)." in report
    assert "```mermaid" in report
    assert "R -->|background| O1" in report
    assert "I1 -->|direct| R" in report
    assert 'A \\"Quoted\\" Follow-up' in report
    assert "## Cites (1)" in report
    assert "## Cited By (1)" in report
    assert "| Earlier Work | `background` | 0.65 | ✗ |  |" in report
    assert "| DOI exact match |" in report


def test_build_report_without_citations(record):
    degree = DegreeStats(id="main", in_degree=0, out_degree=0, total_degree=0)
    report = build_report(record, degree, [], [], {})
    assert "## No citations recorded for this record." in report
    assert "mermaid" not in report
    assert "## Cites" not in report


def test_build_report_labels_missing_records(record):
    degree = DegreeStats(id="main", in_degree=0, out_degree=1, total_degree=1)
    outgoing = [CitationEdge("main", "deleted")]
    report = build_report(record, degree, outgoing, [], {})
    assert "Missing record deleted" in report
    assert "| deleted | `direct` |" in report
