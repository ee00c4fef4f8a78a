"""Click CLI entry point for refgraph."""

from __future__ import annotations

import logging
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Any, Callable, TypeVar

import click
import yaml
from rich.console import Console
from rich.markdown import Markdown
from rich.progress import Progress
from rich.table import Table

from refgraph.config import load_config
from refgraph.engine import Engine, build_engine
from refgraph.errors import EngineError
from refgraph.models import MatchStrategy
from refgraph.report import build_report

console = Console()
logger = logging.getLogger(__name__)

T = TypeVar("T")

STRATEGY_CHOICE = click.Choice([s.value for s in MatchStrategy])


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def _get_engine(ctx: click.Context) -> Engine:
    if "engine" not in ctx.obj:
        cfg = ctx.obj["cfg"]
        cfg.data_dir.mkdir(parents=True, exist_ok=True)
        ctx.obj["engine"] = build_engine(cfg)
    return ctx.obj["engine"]


def _guard(fn: Callable[[], T]) -> T:
    """Run an engine call, turning engine errors into a red message and exit 1."""
    try:
        return fn()
    except EngineError as exc:
        console.print(f"[red]{exc}[/red]")
        sys.exit(1)


def _print_markdown(content: str) -> None:
    """Print Markdown content using glow (if available) or rich."""
    if shutil.which("glow"):
        try:
            subprocess.run(["glow", "-"], input=content.encode(), check=True)
            return
        except (OSError, subprocess.CalledProcessError) as exc:
            logger.debug("glow failed, falling back to rich: %s", exc)
    console.print(Markdown(content))


@click.group()
@click.option("--config", "config_path", default=None, help="Path to config.yaml")
@click.option("--env", "env_path", default=None, help="Path to .env file")
@click.option("--verbose", is_flag=True, default=False)
@click.pass_context
def main(
    ctx: click.Context,
    config_path: str | None,
    env_path: str | None,
    verbose: bool,
) -> None:
    """refgraph: deduplicate bibliographic records and map their citations."""
    _setup_logging(verbose)
    ctx.ensure_object(dict)
    ctx.obj["cfg"] = load_config(
        config_path=Path(config_path) if config_path else None,
        env_path=Path(env_path) if env_path else None,
    )


# ── add / import ───────────────────────────────────────────────────────────


@main.command("add")
@click.option("--title", required=True, help="Title of the work")
@click.option("--author", "authors", multiple=True, help="Author (repeatable)")
@click.option("--year", type=int, default=None)
@click.option("--doi", default=None)
@click.option("--url", default=None)
@click.option("--abstract", default=None)
@click.option("--pdf", "pdf_reference", default=None, help="Path or URL of the PDF")
@click.option("--publication", default=None, help="Journal or venue")
@click.option("--keyword", "keywords", multiple=True, help="Keyword (repeatable)")
@click.pass_context
def add_record(ctx: click.Context, **fields: Any) -> None:
    """Add a record, merging it into an existing duplicate if there is one."""
    engine = _get_engine(ctx)
    fields["authors"] = list(fields["authors"])
    fields["keywords"] = list(fields["keywords"])
    result = _guard(lambda: engine.resolve(fields))

    if result.operation == "merged":
        merged = ", ".join(result.merged_fields) or "nothing new"
        console.print(f"[yellow]Merged into existing record (id={result.id}): {merged}[/yellow]")
    elif result.duplicate_score is not None:
        console.print(
            f"[yellow]Added record (id={result.id}); possible duplicate "
            f"(score {result.duplicate_score:.2f})[/yellow]"
        )
    else:
        console.print(f"[green]Added record (id={result.id}): {fields['title']}[/green]")


@main.command("import")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_records(ctx: click.Context, path: str) -> None:
    """Import a YAML or JSON list of records."""
    engine = _get_engine(ctx)
    with open(path) as f:
        raw = yaml.safe_load(f) or []
    if not isinstance(raw, list):
        console.print("[red]Expected a list of records.[/red]")
        sys.exit(1)

    result = engine.bulk_import(raw)
    console.print(
        f"[bold green]Imported {result.total}[/bold green]: "
        f"{result.successful} new, {result.duplicates} merged, {result.failed} failed"
    )
    for error in result.errors:
        console.print(f"[red]  #{error.index} {error.item_id or ''}: {error.message}[/red]")


# ── list / show ────────────────────────────────────────────────────────────


@main.command("list")
@click.pass_context
def list_records(ctx: click.Context) -> None:
    """List all records."""
    engine = _get_engine(ctx)
    records = _guard(engine.store.get_all_records)

    if not records:
        console.print("No records.")
        return

    table = Table(title="Records")
    table.add_column("ID")
    table.add_column("Title")
    table.add_column("Authors")
    table.add_column("Year")
    table.add_column("DOI/URL")

    for r in records:
        table.add_row(
            r.id or "",
            r.title[:60],
            ", ".join(r.authors)[:40],
            str(r.year or ""),
            (r.doi or r.url or "")[:40],
        )
    console.print(table)


@main.command("show")
@click.option("--id", "record_id", required=True, help="ID of the record")
@click.option("--save", is_flag=True, default=False, help="Also write the report to disk")
@click.pass_context
def show(ctx: click.Context, record_id: str, save: bool) -> None:
    """Show a record with its citations as a Markdown report."""
    engine = _get_engine(ctx)
    record = _guard(lambda: engine.store.get_record(record_id))
    if record is None:
        console.print("[red]Record not found.[/red]")
        sys.exit(1)

    outgoing = engine.store.get_edges_from(record_id)
    incoming = engine.store.get_edges_to(record_id)
    titles = {r.id: r for r in engine.store.get_all_records() if r.id}
    report = build_report(record, engine.degree_of(record_id), outgoing, incoming, titles)
    _print_markdown(report)

    if save:
        reports_dir = ctx.obj["cfg"].reports_dir
        reports_dir.mkdir(parents=True, exist_ok=True)
        report_path = reports_dir / f"{record_id}.md"
        report_path.write_text(report)
        console.print(f"[bold green]Report saved to: {report_path}[/bold green]")


# ── maintenance ────────────────────────────────────────────────────────────


@main.command("sweep")
@click.option("--keep-orphans", is_flag=True, default=False, help="Skip orphan cleanup")
@click.pass_context
def sweep(ctx: click.Context, keep_orphans: bool) -> None:
    """Find duplicate groups and keep only the most complete record of each."""
    engine = _get_engine(ctx)
    result = _guard(engine.sweep)
    console.print(
        f"[bold green]Done.[/bold green] Groups: {result.duplicate_groups_found}, "
        f"Removed: {result.records_removed}, Errors: {len(result.errors)}"
    )
    if not keep_orphans and result.records_removed:
        removed = _guard(engine.cleanup_orphans)
        console.print(f"Removed {removed} orphaned citations.")


@main.command("link")
@click.option("--id", "record_id", required=True, help="Record to find citing records for")
@click.option("--strategy", type=STRATEGY_CHOICE, default="all", show_default=True)
@click.pass_context
def link(ctx: click.Context, record_id: str, strategy: str) -> None:
    """Discover records that cite one record and link them."""
    engine = _get_engine(ctx)
    result = _guard(lambda: engine.link_citations(record_id, strategy))
    console.print(
        f"Candidates: {result.total_candidates}, Matches: {result.potential_matches}, "
        f"Created: {result.created_links}, Skipped: {result.skipped_links}, "
        f"Avg confidence: {result.average_confidence:.2f}"
    )


@main.command("link-all")
@click.option("--strategy", type=STRATEGY_CHOICE, default="all", show_default=True)
@click.pass_context
def link_all(ctx: click.Context, strategy: str) -> None:
    """Run citation discovery for every record."""
    engine = _get_engine(ctx)
    with Progress(console=console) as progress:
        task = progress.add_task("Linking", total=100)
        result = _guard(
            lambda: engine.link_all_citations(
                strategy,
                progress=lambda pct, _current, _total: progress.update(task, completed=pct),
            )
        )

    console.print(
        f"\n[bold green]Done.[/bold green] Processed: {result.total_processed}, "
        f"Created: {result.total_links_created}, Skipped: {result.total_links_skipped}, "
        f"Errors: {len(result.errors)}"
    )
    for error in result.errors:
        console.print(f"[red]  {error.item_id}: {error.message}[/red]")


@main.command("cleanup")
@click.pass_context
def cleanup(ctx: click.Context) -> None:
    """Delete citations whose records no longer exist."""
    engine = _get_engine(ctx)
    removed = _guard(engine.cleanup_orphans)
    console.print(f"Removed {removed} orphaned citations.")


# ── graph queries ──────────────────────────────────────────────────────────


@main.command("degree")
@click.argument("record_ids", nargs=-1, required=True)
@click.pass_context
def degree(ctx: click.Context, record_ids: tuple[str, ...]) -> None:
    """Show in/out/total citation degree for records."""
    engine = _get_engine(ctx)
    stats = _guard(lambda: engine.batch_degrees(record_ids))

    table = Table(title="Citation Degree")
    table.add_column("ID")
    table.add_column("In", justify="right")
    table.add_column("Out", justify="right")
    table.add_column("Total", justify="right")
    for s in stats:
        table.add_row(s.id, str(s.in_degree), str(s.out_degree), str(s.total_degree))
    console.print(table)


@main.command("paths")
@click.argument("source_id")
@click.argument("target_id")
@click.option("--max-depth", default=3, show_default=True, type=int)
@click.option("--max-paths", default=10, show_default=True, type=int)
@click.pass_context
def paths(
    ctx: click.Context, source_id: str, target_id: str, max_depth: int, max_paths: int
) -> None:
    """Find citation paths from one record to another."""
    engine = _get_engine(ctx)
    found = _guard(lambda: engine.find_paths(source_id, target_id, max_depth, max_paths))
    if not found:
        console.print("No paths found.")
        return
    for path in found:
        console.print(" → ".join(path))


@main.command("status")
@click.pass_context
def status(ctx: click.Context) -> None:
    """Show record and citation counts."""
    engine = _get_engine(ctx)
    summary = _guard(engine.store.summary)  # type: ignore[attr-defined]
    overview = _guard(engine.graph.overview)

    table = Table(title="refgraph Status")
    table.add_column("Metric")
    table.add_column("Value", justify="right")
    table.add_row("Records", str(summary["records"]))
    table.add_row("Citations", str(summary["citations"]))
    table.add_row("Verified citations", str(summary["verified_citations"]))
    table.add_row("Orphaned citations", str(summary["orphan_citations"]))
    table.add_row("Avg out-degree", f"{overview['average_out_degree']:.2f}")
    table.add_row("Avg in-degree", f"{overview['average_in_degree']:.2f}")
    console.print(table)
