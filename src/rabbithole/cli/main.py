"""CLI application using Typer for inspecting and recomputing rabbit hole snapshots."""

import json
from pathlib import Path
from typing import Optional

import pandas as pd
import typer
from rich.console import Console
from rich.table import Table

from ..core.models import WEIGHT_PRESETS, PaperRecord
from ..dedup.resolver import IdentityResolver
from ..enrich.centrality import graph_statistics
from ..graph.store import GraphStore
from ..io.snapshot import apply_snapshot, read_snapshot_file, snapshot_from_store, write_snapshot_file
from ..layout.ego import EgoLayoutOptions
from ..utils.logging import get_logger

app = typer.Typer(
    name="rabbithole",
    help="Rabbit Hole - research graph scoring, clustering and layout",
    add_completion=False,
)

console = Console()
logger = get_logger(__name__)


def _truncate(text: str, width: int = 50) -> str:
    return text[: width - 3] + "..." if len(text) > width else text


def _load_store(snapshot_path: Path) -> GraphStore:
    snapshot = read_snapshot_file(snapshot_path)
    if snapshot is None:
        console.print(f"[red]Error: {snapshot_path} is not a valid snapshot[/red]")
        raise typer.Exit(1)
    return apply_snapshot(GraphStore(snapshot_path.stem), snapshot)


def _save_store(store: GraphStore, snapshot_path: Path) -> None:
    write_snapshot_file(snapshot_path, snapshot_from_store(store))
    console.print(f"Saved: {snapshot_path}")


@app.command()
def version() -> None:
    """Show version information."""
    from .. import __version__
    console.print(f"Rabbit Hole v{__version__}")


@app.command()
def inspect(
    snapshot_path: Path = typer.Argument(..., help="Snapshot JSON file", exists=True),
) -> None:
    """Show node, edge and cluster counts plus graph statistics."""
    store = _load_store(snapshot_path)
    active = store.active_nodes()

    table = Table(title=f"Rabbit Hole: {snapshot_path.stem}")
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green", justify="right")
    table.add_row("Nodes", str(len(store.nodes)))
    table.add_row("  frontier", str(len(store.frontier_nodes())))
    table.add_row("  materialized", str(len(store.materialized_nodes())))
    table.add_row("  archived", str(len(store.nodes) - len(active)))
    table.add_row("Edges", str(len(store.edges)))
    table.add_row("Clusters", str(len(store.clusters)))
    table.add_row("Annotations", str(len(store.annotations)))
    for key, value in graph_statistics(active, store.edges).items():
        table.add_row(key.replace("_", " ").capitalize(), f"{value:.3f}" if isinstance(value, float) else str(value))
    console.print(table)

    if store.clusters:
        clusters_table = Table(title="Clusters")
        clusters_table.add_column("Label", style="white")
        clusters_table.add_column("Size", style="yellow", justify="right")
        clusters_table.add_column("Color")
        for cluster in sorted(store.clusters, key=lambda c: len(c.node_ids), reverse=True):
            clusters_table.add_row(cluster.label, str(len(cluster.node_ids)), f"[{cluster.color}]{cluster.color}[/]")
        console.print(clusters_table)


@app.command()
def score(
    snapshot_path: Path = typer.Argument(..., help="Snapshot JSON file", exists=True),
    preset: Optional[str] = typer.Option(None, "--preset", "-p", help="Weight preset (foundational, cutting-edge, balanced)"),
    top: int = typer.Option(10, "--top", "-n", help="Rows to display"),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the full ranking as CSV"),
    write: bool = typer.Option(False, "--write/--no-write", help="Save recomputed scores back into the snapshot"),
) -> None:
    """Recompute relevance and print the ranking."""
    store = _load_store(snapshot_path)
    if preset is not None:
        if preset not in WEIGHT_PRESETS:
            console.print(f"[red]Unknown preset: {preset}. Choose from {', '.join(WEIGHT_PRESETS)}[/red]")
            raise typer.Exit(1)
        store.weights = WEIGHT_PRESETS[preset].model_copy()

    store.recalculate_scores()
    df = store.score_engine.score_table(store.nodes.values(), store.weights)

    table = Table(title="Most Relevant Papers")
    table.add_column("Rank", style="cyan", width=4)
    table.add_column("Title", style="white", width=50)
    table.add_column("Year", style="green", width=4)
    table.add_column("Citations", style="yellow", justify="right", width=9)
    table.add_column("Relevance", style="magenta", justify="right", width=9)
    for _, row in df.head(top).iterrows():
        table.add_row(
            str(row["rank"]),
            _truncate(row["title"]),
            str(int(row["year"])) if pd.notna(row["year"]) else "N/A",
            str(row["citation_count"]),
            f"{row['relevance']:.3f}",
        )
    console.print(table)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        df.to_csv(output, index=False)
        console.print(f"Saved: {output}")
    if write:
        _save_store(store, snapshot_path)


@app.command()
def cluster(
    snapshot_path: Path = typer.Argument(..., help="Snapshot JSON file", exists=True),
    write: bool = typer.Option(False, "--write/--no-write", help="Save the new clusters back into the snapshot"),
) -> None:
    """Re-detect communities among active nodes."""
    store = _load_store(snapshot_path)
    store.recalculate_clusters()

    table = Table(title="Communities")
    table.add_column("Label", style="white")
    table.add_column("Size", style="yellow", justify="right")
    table.add_column("Id", style="cyan")
    for c in sorted(store.clusters, key=lambda c: len(c.node_ids), reverse=True):
        table.add_row(c.label, str(len(c.node_ids)), c.id)
    console.print(table)
    console.print(f"[green]✓ {len(store.clusters)} communities across {len(store.active_nodes())} nodes[/green]")
    if write:
        _save_store(store, snapshot_path)


@app.command()
def layout(
    snapshot_path: Path = typer.Argument(..., help="Snapshot JSON file", exists=True),
    mode: str = typer.Option("full", "--mode", "-m", help="Layout mode: full or ego"),
    focus: Optional[str] = typer.Option(None, "--focus", "-f", help="Focus node id (ego mode)"),
    max_hops: Optional[int] = typer.Option(None, "--max-hops", help="Ego layout depth"),
    write: bool = typer.Option(False, "--write/--no-write", help="Save positions back into the snapshot"),
) -> None:
    """Compute node positions with the full force layout or around a focus node."""
    store = _load_store(snapshot_path)
    if mode == "full":
        positions = store.relayout()
    elif mode == "ego":
        if focus is None or focus not in store.nodes:
            console.print("[red]Error: ego mode needs --focus with a known node id[/red]")
            raise typer.Exit(1)
        options = EgoLayoutOptions()
        if max_hops is not None:
            options.max_hops = max_hops
        positions = store.ego_layout(focus, options)
        store.update_node_positions(positions)
    else:
        console.print(f"[red]Unknown layout mode: {mode}[/red]")
        raise typer.Exit(1)

    table = Table(title=f"Layout ({mode})")
    table.add_column("Node", style="cyan")
    table.add_column("Title", style="white", width=50)
    table.add_column("x", justify="right")
    table.add_column("y", justify="right")
    for node_id, position in positions.items():
        node = store.nodes[node_id]
        table.add_row(node_id, _truncate(node.data.title), f"{position.x:.1f}", f"{position.y:.1f}")
    console.print(table)
    if write:
        _save_store(store, snapshot_path)


@app.command()
def dedup(
    papers_path: Path = typer.Argument(..., help="JSON array of paper records", exists=True),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write the deduplicated records here"),
    threshold: Optional[float] = typer.Option(None, "--threshold", help="Title similarity threshold (0-1)"),
) -> None:
    """Resolve identities and collapse duplicate paper records."""
    raw = json.loads(papers_path.read_text(encoding="utf-8"))
    if not isinstance(raw, list):
        console.print(f"[red]Error: {papers_path} must contain a JSON array[/red]")
        raise typer.Exit(1)

    papers = []
    for item in raw:
        try:
            papers.append(PaperRecord.model_validate(item))
        except ValueError as e:
            logger.warning(f"Skipping invalid paper record: {e}")

    resolver = IdentityResolver(title_threshold=threshold)
    records, groups = resolver.deduplicate(papers)
    console.print(f"[green]✓ Deduplicated: {len(papers)} -> {len(records)} papers[/green]")

    if groups:
        table = Table(title="Duplicate Groups")
        table.add_column("Canonical", style="cyan")
        table.add_column("Duplicates", style="white")
        table.add_column("Match", style="green")
        table.add_column("Confidence", style="magenta", justify="right")
        for group in groups:
            table.add_row(
                group.canonical_id,
                ", ".join(group.duplicate_ids),
                group.match_type,
                f"{group.confidence:.2f}",
            )
        console.print(table)

    if output is not None:
        output.parent.mkdir(parents=True, exist_ok=True)
        output.write_text(json.dumps([r.to_wire() for r in records], indent=2), encoding="utf-8")
        console.print(f"Saved: {output}")


@app.command()
def search(
    snapshot_path: Path = typer.Argument(..., help="Snapshot JSON file", exists=True),
    query: str = typer.Argument(..., help="Search terms"),
    limit: int = typer.Option(10, "--limit", "-n", help="Maximum results"),
) -> None:
    """Search titles, abstracts, notes, authors and venues in the graph."""
    store = _load_store(snapshot_path)
    hits = store.search(query, limit)
    if not hits:
        console.print("[yellow]No matches[/yellow]")
        return

    table = Table(title=f"Results for '{query}'")
    table.add_column("Score", style="magenta", justify="right")
    table.add_column("Field", style="green")
    table.add_column("Title", style="white", width=50)
    table.add_column("Snippet", style="dim")
    for hit in hits:
        table.add_row(
            f"{hit.score:.2f}",
            hit.match_field,
            _truncate(store.nodes[hit.node_id].data.title),
            hit.snippet or "",
        )
    console.print(table)


if __name__ == "__main__":
    app()
