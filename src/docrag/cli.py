"""Command line interface for docrag."""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from docrag.config import AppConfig
from docrag.errors import DocRagError
from docrag.models import RetrievalMode, SearchQuery
from docrag.session import RAGSession

console = Console()
app = typer.Typer(help="docrag - retrieval-augmented question answering over a document")


def _setup_logging(verbose: bool) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(level=level, format="[%(levelname)s] %(message)s")


def _build_config(db: Optional[Path], **overrides) -> AppConfig:
    return AppConfig.from_env(db_path=db, **overrides)


@app.command()
def ingest(
    source: str = typer.Argument(..., help="URL or path of the document to index."),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    collection: str = typer.Option(None, help="Collection name"),
    index_name: str = typer.Option(None, "--index-name", help="Search index name"),
    chunk_size: int = typer.Option(None, help="Chunk size in characters"),
    chunk_overlap: int = typer.Option(None, help="Chunk overlap in characters"),
    poll_interval: float = typer.Option(None, help="Seconds between index status polls"),
    timeout: float = typer.Option(None, help="Seconds to wait for the index to be READY"),
    save_to: Path = typer.Option(None, "--save-to", help="Also write the fetched bytes here"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Fetch, chunk, embed and index one document."""
    _setup_logging(verbose)
    config = _build_config(
        db,
        collection=collection,
        index_name=index_name,
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        poll_interval=poll_interval,
        build_timeout=timeout,
    )

    async def run():
        async with RAGSession(config) as session:
            return await session.ingest(source, save_to=save_to)

    console.print(f"Indexing [bold]{source}[/bold] into {config.resolve_db_path(Path.cwd())}...")
    try:
        handle = asyncio.run(run())
    except DocRagError as exc:
        console.print(f"[red]Ingestion failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc
    console.print(
        f"Inserted {handle.inserted} chunks; index [bold]{handle.name}[/bold] is READY."
    )


@app.command()
def search(
    query: str = typer.Argument(..., help="Query text"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    mode: RetrievalMode = typer.Option(RetrievalMode.SIMILARITY, help="Retrieval mode"),
    k: int = typer.Option(3, help="Number of results to display"),
    fetch_k: int = typer.Option(10, help="Candidates fetched before MMR re-ranking"),
    lambda_mult: float = typer.Option(0.5, "--lambda", help="MMR relevance/diversity trade-off"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Run a similarity or MMR search without generation."""
    _setup_logging(verbose)
    config = _build_config(db)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    async def run():
        async with RAGSession(config) as session:
            return await session.search(
                SearchQuery(text=query, k=k, fetch_k=fetch_k, lambda_mult=lambda_mult), mode
            )

    try:
        results = asyncio.run(run())
    except DocRagError as exc:
        console.print(f"[red]Search failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    if not results:
        console.print("[yellow]No matches found.[/yellow]")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Score")
    table.add_column("Chunk")
    table.add_column("Offsets")
    table.add_column("Snippet")

    for result in results:
        chunk = result.chunk
        snippet = chunk.text.replace("\n", " ")
        table.add_row(
            f"{result.score:.4f}",
            str(chunk.metadata.get("chunk_index", "")),
            f"{chunk.start}-{chunk.end}",
            snippet[:180],
        )

    console.print(table)


@app.command()
def ask(
    question: str = typer.Argument(..., help="Question to answer"),
    db: Path = typer.Option(None, "--db", help="SQLite database path"),
    mode: RetrievalMode = typer.Option(RetrievalMode.SIMILARITY, help="Retrieval mode"),
    k: int = typer.Option(None, help="Number of chunks passed as context"),
    model: str = typer.Option(None, help="Chat model name"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose logging"),
) -> None:
    """Answer a question grounded in the indexed document."""
    _setup_logging(verbose)
    config = _build_config(db, llm_model=model)
    resolved_db = config.resolve_db_path(Path.cwd())
    if not resolved_db.exists():
        raise typer.BadParameter(f"Database not found: {resolved_db}")

    async def run():
        async with RAGSession(config) as session:
            return await session.answer(question, k=k, mode=mode)

    try:
        result = asyncio.run(run())
    except DocRagError as exc:
        console.print(f"[red]Answering failed:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    console.print(f"[bold]Question:[/bold] {result.question}")
    console.print(f"[bold]Answer:[/bold] {result.answer}")
    if verbose:
        console.print(f"[dim]Context chunks used: {len(result.context_used)}[/dim]")


@app.command()
def web(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(8000, help="Server port"),
) -> None:
    """Start the HTTP API."""
    try:
        import uvicorn
    except ImportError as exc:  # pragma: no cover - defensive
        raise typer.BadParameter(
            "uvicorn is not installed. Install the web extras with \"python -m pip install '.[web]'\""
        ) from exc

    from docrag.web.app import app as web_app

    console.print(f"Starting docrag API on http://{host}:{port}")
    uvicorn.run(web_app, host=host, port=port, reload=False, log_level="info")


if __name__ == "__main__":  # pragma: no cover
    app()
