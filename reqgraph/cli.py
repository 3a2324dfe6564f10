"""
Command-line interface for reqgraph.

Extraction runs through the same job dispatcher a service would use, so
the CLI reports job status, chunk failures and token usage the same way.
"""

import asyncio
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn
from rich.table import Table

from reqgraph import __version__
from reqgraph.config import Settings, get_settings
from reqgraph.document_processor.extractor import create_document_extractor
from reqgraph.extraction.orchestrator import create_extraction_orchestrator
from reqgraph.graph_db import create_graph_store
from reqgraph.jobs import ExtractionJobHandler, JobDispatcher, JobTracker
from reqgraph.llm.embedder import create_embedding_generator
from reqgraph.models import (
    ExtractionJobInput,
    ExtractionOptions,
    JobStatus,
    Priority,
    RequirementStatus,
    RequirementType,
    ResponseFormat,
    SearchFilters,
)
from reqgraph.utils.errors import ReqGraphException
from reqgraph.utils.logging import setup_logging

app = typer.Typer(
    name="reqgraph",
    help="Extract requirements from documents into a searchable knowledge graph",
    add_completion=False,
)
console = Console()


def _settings_for(store: Optional[str]) -> Settings:
    settings = get_settings()
    if store:
        settings = settings.model_copy(update={"graph_backend": store})
    return settings


def _spinner() -> Progress:
    return Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
    )


@app.command("init-db")
def init_db(
    clear: bool = typer.Option(False, "--clear", help="Delete all requirement data first"),
):
    """Create constraints and indexes in the graph database."""

    async def _init():
        graph_store = create_graph_store(get_settings())
        try:
            with _spinner() as progress:
                progress.add_task("Initializing graph database...", total=None)
                await graph_store.initialize()
                if clear:
                    await graph_store.clear()
            console.print("[green]✓[/green] Graph database ready")
        except ReqGraphException as e:
            console.print(f"[red]✗[/red] Initialization failed: {e}")
            raise typer.Exit(1)
        finally:
            await graph_store.close()

    asyncio.run(_init())


@app.command()
def extract(
    files: list[Path] = typer.Argument(..., help="Documents to extract requirements from"),
    project: str = typer.Option(..., "--project", "-p", help="Application the requirements belong to"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="Generation model override"),
    store: Optional[str] = typer.Option(None, "--store", help="Graph backend: neo4j or memory"),
    no_persist: bool = typer.Option(False, "--no-persist", help="Do not write to the graph"),
    response_format: ResponseFormat = typer.Option(
        ResponseFormat.TOON, "--format", "-f", help="Format requested from the model"
    ),
    token_sync_limit: Optional[int] = typer.Option(
        None, "--sync-limit", help="Prompt tokens above which the text is chunked"
    ),
):
    """Extract requirements from documents and store them in the graph."""

    async def _extract():
        settings = _settings_for(store)
        graph_store = None if no_persist else create_graph_store(settings)
        orchestrator = create_extraction_orchestrator(settings, graph_store=graph_store)
        tracker = JobTracker()
        dispatcher = JobDispatcher(
            ExtractionJobHandler(tracker, create_document_extractor(), orchestrator),
            worker_count=settings.worker_count,
        )

        try:
            if graph_store is not None:
                await graph_store.initialize()

            job = dispatcher.submit(
                ExtractionJobInput(
                    document_paths=[str(path) for path in files],
                    project_name=project,
                    model=model,
                    options=ExtractionOptions(
                        token_sync_limit=token_sync_limit,
                        persist=not no_persist,
                        response_format=response_format,
                    ),
                )
            )

            with _spinner() as progress:
                progress.add_task(f"Extracting requirements from {len(files)} document(s)...", total=None)
                dispatcher.start()
                await dispatcher.join()
            await dispatcher.stop()

            job = tracker.get(job.id)
        except ReqGraphException as e:
            console.print(f"[red]✗[/red] Extraction failed: {e}")
            raise typer.Exit(1)
        finally:
            await orchestrator.generator.close()
            await orchestrator.embedder.close()
            if graph_store is not None:
                await graph_store.close()

        if job.status != JobStatus.COMPLETED:
            console.print(f"[red]✗[/red] Job {job.id} failed: {job.error_message}")
            raise typer.Exit(1)

        requirements = job.result.requirements if job.result else []
        table = Table(title=f"Requirements for {project} ({len(requirements)})")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Type", style="magenta")
        table.add_column("Priority", justify="center")
        table.add_column("Category", style="dim")
        for requirement in requirements:
            table.add_row(
                requirement.identifier,
                requirement.name,
                requirement.requirement_type.value,
                requirement.priority.value,
                requirement.category,
            )
        console.print(table)

        metadata = job.metadata
        tokens = metadata.get("token_stats", {})
        console.print(
            f"Chunks: {metadata.get('chunks_succeeded', 0)} ok, {metadata.get('chunks_failed', 0)} failed | "
            f"Tokens: {tokens.get('total_tokens', 0)} | "
            f"Persisted: {'yes' if metadata.get('persisted') else 'no'}"
        )
        for failure in metadata.get("documents_failed", []):
            console.print(f"[yellow]Skipped[/yellow] {failure['path']}: {failure['error']}")

    asyncio.run(_extract())


@app.command()
def search(
    query: str = typer.Argument(..., help="Search text"),
    requirement_type: Optional[RequirementType] = typer.Option(None, "--type", "-t"),
    priority: Optional[Priority] = typer.Option(None, "--priority"),
    status: Optional[RequirementStatus] = typer.Option(None, "--status"),
    limit: Optional[int] = typer.Option(None, "--limit", "-n"),
    min_similarity: Optional[float] = typer.Option(None, "--min-similarity"),
    store: Optional[str] = typer.Option(None, "--store", help="Graph backend: neo4j or memory"),
):
    """Hybrid semantic and keyword search over stored requirements."""

    async def _search():
        settings = _settings_for(store)
        graph_store = create_graph_store(settings)
        embedder = create_embedding_generator(settings)
        try:
            await graph_store.initialize()
            with _spinner() as progress:
                progress.add_task("Searching...", total=None)
                query_embedding = await embedder.embed(query)
                results = await graph_store.search(
                    query_embedding,
                    query,
                    filters=SearchFilters(requirement_type=requirement_type, priority=priority, status=status),
                    limit=limit or settings.search_default_limit,
                    min_similarity=min_similarity,
                )
        except ReqGraphException as e:
            console.print(f"[red]✗[/red] Search failed: {e}")
            raise typer.Exit(1)
        finally:
            await embedder.close()
            await graph_store.close()

        if not results:
            console.print("No matching requirements")
            return

        table = Table(title=f"Results for '{query}'")
        table.add_column("Score", justify="right")
        table.add_column("Similarity", justify="right", style="dim")
        table.add_column("Boost", justify="right", style="dim")
        table.add_column("ID", style="cyan")
        table.add_column("Name")
        table.add_column("Category")
        for result in results:
            table.add_row(
                f"{result.score:.3f}",
                f"{result.similarity:.3f}",
                f"{result.keyword_boost:.2f}",
                result.requirement.identifier,
                result.requirement.name,
                result.requirement.category,
            )
        console.print(table)

    asyncio.run(_search())


@app.command()
def stats(
    store: Optional[str] = typer.Option(None, "--store", help="Graph backend: neo4j or memory"),
):
    """Show graph statistics."""

    async def _stats():
        graph_store = create_graph_store(_settings_for(store))
        try:
            await graph_store.initialize()
            statistics = await graph_store.get_statistics()
        except ReqGraphException as e:
            console.print(f"[red]✗[/red] Could not read statistics: {e}")
            raise typer.Exit(1)
        finally:
            await graph_store.close()

        table = Table(title="Graph Statistics")
        table.add_column("Kind", style="cyan")
        table.add_column("Name")
        table.add_column("Count", justify="right")
        for label, count in sorted(statistics["nodes"].items()):
            table.add_row("node", label, str(count))
        for edge, count in sorted(statistics["relationships"].items()):
            table.add_row("edge", edge, str(count))
        table.add_row("", "with embeddings", str(statistics["requirements_with_embeddings"]))
        console.print(table)

    asyncio.run(_stats())


@app.command()
def version():
    """Show the installed version."""
    console.print(f"reqgraph {__version__}")


@app.callback()
def main(
    debug: bool = typer.Option(False, "--debug", help="Enable debug logging"),
):
    """reqgraph - extract requirements from documents into a knowledge graph."""
    settings = get_settings()
    setup_logging(
        log_level="DEBUG" if debug else settings.log_level,
        log_file_path=settings.log_file_path,
        use_structured_logging=settings.structured_logging,
    )


if __name__ == "__main__":
    app()
