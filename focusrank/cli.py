"""
focusrank Admin CLI
Runs the ranking pipeline over JSON chunk files and inspects configuration
"""

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from focusrank.kernel.errors import InvalidConfigurationError
from focusrank.kernel.lexical_scorer import bm25_scores
from focusrank.kernel.pipeline import RankingPipeline
from focusrank.kernel.retrieval_config import RetrievalConfigManager
from focusrank.kernel.types import (
    Chunk,
    QueryProfile,
    SelectionOptions,
    parse_timestamp,
    ranked_list,
)


app = typer.Typer(help="focusrank Admin CLI")
console = Console()
config_app = typer.Typer(help="Retrieval configuration commands")
app.add_typer(config_app, name="config")


def _load_chunks(path: Path) -> list[Chunk]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Failed to read chunks from {path}: {e}[/red]")
        raise typer.Exit(1) from e

    records = data.get("chunks", []) if isinstance(data, dict) else data
    try:
        return [Chunk.from_dict(record) for record in records]
    except (KeyError, TypeError, ValueError) as e:
        console.print(f"[red]Invalid chunk record in {path}: {e}[/red]")
        raise typer.Exit(1) from e


def _load_vector_ranking(path: Path, chunks: list[Chunk]):
    """Vector hits file: list of {"id", "score"} ordered best first"""
    try:
        hits = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        console.print(f"[red]Failed to read vector ranking from {path}: {e}[/red]")
        raise typer.Exit(1) from e

    by_id = {chunk.id: chunk for chunk in chunks}
    try:
        pairs = [
            (by_id[str(hit["id"])], hit.get("score"))
            for hit in hits
            if str(hit["id"]) in by_id
        ]
    except (KeyError, TypeError, AttributeError) as e:
        console.print(f"[red]Invalid vector hit in {path}: {e}[/red]")
        raise typer.Exit(1) from e
    return ranked_list(pairs)


def _settings(config: Path | None):
    try:
        return RetrievalConfigManager(str(config) if config else None).get_settings()
    except InvalidConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1) from e


@app.command("rank")
def rank(
    query: str = typer.Argument(..., help="Query text"),
    chunks_file: Path = typer.Argument(..., help="JSON file with chunk records"),
    vector_file: Optional[Path] = typer.Option(None, "--vector", help="JSON vector hits (id, score)"),
    config: Optional[Path] = typer.Option(None, help="Path to retrieval.yaml"),
    domain: str = typer.Option("general", help="Query domain"),
    complexity: str = typer.Option("moderate", help="simple|moderate|complex|analytical"),
    intent: str = typer.Option("general", help="Primary intent"),
    expected_sources: int = typer.Option(0, help="Expected source count (0 = profile default)"),
    confidence: float = typer.Option(0.8, help="Classifier confidence"),
    time_scope: str = typer.Option("broad", help="recent|historical|specific|broad"),
    budget: Optional[int] = typer.Option(None, help="Max token budget"),
    min_quality: Optional[float] = typer.Option(None, help="Min quality threshold"),
    prioritize_cost: bool = typer.Option(False, "--prioritize-cost", help="Trim target count ~30%"),
    recent: bool = typer.Option(False, "--recent", help="Bias toward fresh content"),
    now: Optional[str] = typer.Option(None, help="Reference time (ISO 8601)"),
    explain: bool = typer.Option(False, "--explain", help="Show pipeline diagnostics"),
    as_json: bool = typer.Option(False, "--json", help="Print the SelectionResult as JSON"),
):
    """Rank and select sources for a query"""
    chunks = _load_chunks(chunks_file)
    vector_ranking = _load_vector_ranking(vector_file, chunks) if vector_file else None

    profile = QueryProfile(
        domain=domain,
        complexity=complexity,
        primary_intent=intent,
        expected_source_count=expected_sources,
        confidence=confidence,
        time_scope=time_scope,
    )
    options = SelectionOptions(
        prioritize_cost=prioritize_cost,
        max_token_budget=budget,
        min_quality_threshold=min_quality,
        include_recent_bias=recent,
    )

    pipeline = RankingPipeline(_settings(config))
    try:
        result = pipeline.run(
            query,
            chunks,
            profile,
            vector_ranking=vector_ranking,
            options=options,
            now=parse_timestamp(now),
        )
    except InvalidConfigurationError as e:
        console.print(f"[red]Configuration error: {e}[/red]")
        raise typer.Exit(1) from e

    selection = result.selection
    if as_json:
        print(json.dumps(selection.to_dict(), indent=2, sort_keys=True))
        return

    console.print(f"\n[bold]Query:[/bold] {query}")
    table = Table(title=f"Selected {len(selection.chunks)} of {selection.total_available}")
    table.add_column("#", style="cyan")
    table.add_column("ID", style="magenta")
    table.add_column("Type", style="green")
    table.add_column("Content")

    for position, chunk in enumerate(selection.chunks, start=1):
        preview = chunk.content if len(chunk.content) <= 60 else chunk.content[:57] + "..."
        table.add_row(str(position), chunk.id, chunk.content_type, preview)
    console.print(table)

    console.print(f"Estimated tokens: {selection.estimated_tokens}")
    console.print(f"Estimated cost: ${selection.estimated_cost:.6f}")
    console.print(f"Confidence: {selection.confidence:.2f}")
    console.print(f"Strategy: {', '.join(selection.strategy_tags)}")
    if selection.budget_exhausted:
        console.print("[yellow]Token budget exhausted: kept best-effort candidate[/yellow]")

    if explain:
        diag = result.diagnostics
        console.print("\n[bold]Diagnostics[/bold]")
        for stage, count in diag.stage_counts.items():
            timing = diag.stage_timings_ms.get(stage)
            suffix = f" ({timing:.2f}ms)" if timing is not None else ""
            console.print(f"  {stage}: {count}{suffix}")
        console.print(f"  distribution: {diag.score_distribution.as_dict()}")
        console.print(f"  total: {diag.total_time_ms:.2f}ms")
        if diag.warnings:
            console.print(f"  [yellow]warnings: {', '.join(diag.warnings)}[/yellow]")
    console.print()


@app.command("bm25")
def bm25(
    query: str = typer.Argument(..., help="Query text"),
    chunks_file: Path = typer.Argument(..., help="JSON file with chunk records"),
    top: int = typer.Option(10, help="Number of results to show"),
):
    """Show raw BM25 scores for a query"""
    chunks = _load_chunks(chunks_file)
    scores = bm25_scores(query, chunks)
    ranked = sorted(zip(chunks, scores), key=lambda item: (-item[1], item[0].id))

    table = Table(title=f"BM25: {query}")
    table.add_column("Rank", style="cyan")
    table.add_column("ID", style="magenta")
    table.add_column("Score", style="yellow")
    for position, (chunk, score) in enumerate(ranked[:top], start=1):
        table.add_row(str(position), chunk.id, f"{score:.4f}")
    console.print(table)


@config_app.command("show")
def config_show(
    config: Optional[Path] = typer.Option(None, help="Path to retrieval.yaml"),
):
    """Show effective retrieval configuration"""
    settings = _settings(config)
    console.print("\n[bold]Retrieval Configuration[/bold]\n")
    for section, values in settings.model_dump().items():
        console.print(f"[cyan]{section}[/cyan]")
        for key, value in values.items():
            console.print(f"  {key}: {value}")
    console.print()


def main():
    """Entry point for CLI"""
    app()


if __name__ == "__main__":
    main()
