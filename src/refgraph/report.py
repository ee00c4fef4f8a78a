"""Markdown report assembly for a single record's citation neighbourhood."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Mapping

from refgraph.models import BibliographicRecord, CitationEdge, DegreeStats


def _format_authors(authors: list[str]) -> str:
    return ", ".join(authors) if authors else "Unknown authors"


def _label(record: BibliographicRecord | None, record_id: str) -> str:
    title = record.title if record else f"Missing record {record_id}"
    return title.replace('"', '\\"')


def _build_citation_graph(
    record: BibliographicRecord,
    outgoing: list[CitationEdge],
    incoming: list[CitationEdge],
    titles: Mapping[str, BibliographicRecord],
) -> str:
    lines = ["```mermaid", "graph TD", f'  R["{_label(record, record.id or "")}"]']
    for idx, edge in enumerate(outgoing, 1):
        node = f"O{idx}"
        lines.append(f'  {node}["{_label(titles.get(edge.target_id), edge.target_id)}"]')
        lines.append(f"  R -->|{edge.citation_type.value}| {node}")
    for idx, edge in enumerate(incoming, 1):
        node = f"I{idx}"
        lines.append(f'  {node}["{_label(titles.get(edge.source_id), edge.source_id)}"]')
        lines.append(f"  {node} -->|{edge.citation_type.value}| R")
    lines.append("```")
    return "\n".join(lines)


def _edge_rows(
    edges: list[CitationEdge],
    titles: Mapping[str, BibliographicRecord],
    other_end: str,
) -> list[str]:
    rows = [
        "| Record | Type | Confidence | Verified | Evidence |",
        "|---|---|---|---|---|",
    ]
    for edge in edges:
        other_id = edge.target_id if other_end == "target" else edge.source_id
        other = titles.get(other_id)
        rows.append(
            f"| {other.title if other else other_id} "
            f"| `{edge.citation_type.value}` "
            f"| {edge.confidence:.2f} "
            f"| {'✓' if edge.is_verified else '✗'} "
            f"| {edge.context or ''} |"
        )
    return rows


def build_report(
    record: BibliographicRecord,
    degree: DegreeStats,
    outgoing: list[CitationEdge],
    incoming: list[CitationEdge],
    titles: Mapping[str, BibliographicRecord],
) -> str:
    """
    Build a Markdown report for one record.

    *outgoing* are edges where the record is the source (works it cites),
    *incoming* are edges where it is the target. *titles* maps record ids to
    records for labelling the other end of each edge.
    """
    lines: list[str] = []
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")

    lines.append(f"# {record.title}")
    lines.append(f"*{_format_authors(record.authors)}*  ")
    if record.year:
        lines.append(f"*Year: {record.year}*  ")
    if record.publication:
        lines.append(f"*Published in: {record.publication}*  ")
    if record.doi:
        lines.append(f"*DOI: {record.doi}*  ")
    if record.url:
        lines.append(f"*URL: {record.url}*  ")
    if record.keywords:
        lines.append(f"*Keywords: {', '.join(record.keywords)}*  ")
    lines.append(f"\n*Generated: {now}*\n")

    if record.abstract:
        lines.append("## Abstract\n")
        lines.append(record.abstract + "\n")

    lines.append("## Degree\n")
    lines.append(
        f"Cited by **{degree.in_degree}**, cites **{degree.out_degree}** "
        f"(total {degree.total_degree}).\n"
    )

    if outgoing or incoming:
        lines.append("## Citation Graph\n")
        lines.append(_build_citation_graph(record, outgoing, incoming, titles))
        lines.append("")
    else:
        lines.append("## No citations recorded for this record.\n")

    if outgoing:
        lines.append(f"## Cites ({len(outgoing)})\n")
        lines.extend(_edge_rows(outgoing, titles, other_end="target"))
        lines.append("")

    if incoming:
        lines.append(f"## Cited By ({len(incoming)})\n")
        lines.extend(_edge_rows(incoming, titles, other_end="source"))
        lines.append("")

    return "\n".join(lines)
