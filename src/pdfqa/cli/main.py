import os
import re
from typing import Optional

import typer
from rich.console import Console
from rich.markdown import Markdown
from rich.markup import escape
from rich.table import Table

from pdfqa.cli.config_manager import get_config_manager
from pdfqa.core.answer import answer_question
from pdfqa.core.config import get_database_url
from pdfqa.core.errors import PdfQAError
from pdfqa.core.ingest import ingest_pdf
from pdfqa.core.logging_config import configure_logging
from pdfqa.core.retrieve import DEFAULT_MIN_SIMILARITY, DEFAULT_TOP_K, retrieve
from pdfqa.core.store import get_document_store

app = typer.Typer(help="pdfqa: question answering over PDF documents")
console = Console()


@app.callback()
def main():
    """Load persisted settings and initialize structured logging."""
    get_config_manager().apply_to_environment()
    configure_logging(
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        json_logs=os.getenv("JSON_LOGS", "false").lower() == "true"
    )


def _redact(url: str) -> str:
    return re.sub(r"://([^:/@]+):[^@]*@", r"://\1:***@", url)


@app.command("init-db")
def init_db():
    """Create the pgvector extension, tables and indexes."""
    store = None
    try:
        store = get_document_store()
        with console.status("[bold green]Creating schema..."):
            store.create_schema()
        console.print("[green]✅ Database schema ready[/]")
    except PdfQAError as e:
        console.print(f"[red]Error creating schema:[/] {escape(str(e))}")
        raise typer.Exit(1)
    finally:
        if store is not None:
            store.close()


@app.command()
def ingest(
    url: str,
    chunk_size: Optional[int] = typer.Option(None, help="Characters per chunk (default 2000)"),
    overlap: Optional[int] = typer.Option(None, help="Characters shared by neighbouring chunks (default 200)"),
):
    """Download a PDF and store its embedded chunks."""
    console.print(f"[bold]Ingesting PDF:[/] {url}")

    try:
        with console.status("[bold green]Processing PDF..."):
            result = ingest_pdf(url, chunk_size=chunk_size, overlap=overlap)
    except PdfQAError as e:
        console.print(f"[red]Error during ingestion:[/] {escape(str(e))}")
        raise typer.Exit(1)

    if result.skipped:
        console.print("[yellow]Document unchanged, skipped.[/]")
    else:
        console.print("[green]✅ Ingestion complete![/]")
    console.print(f"[bold]Document ID:[/] {result.document_id}")
    console.print(f"[bold]Chunks stored:[/] {result.chunk_count}")


@app.command()
def search(
    question: str,
    top_k: int = typer.Option(DEFAULT_TOP_K, help="Maximum number of results"),
    min_similarity: float = typer.Option(DEFAULT_MIN_SIMILARITY, help="Minimum cosine similarity"),
    source_url: Optional[str] = typer.Option(None, help="Only search chunks of the document at this URL"),
    document_id: Optional[str] = typer.Option(None, help="Only search chunks of the document with this id"),
):
    """Find the stored chunks most similar to a question."""
    try:
        with console.status("[bold green]Searching..."):
            contexts = retrieve(
                question,
                top_k=top_k,
                min_similarity=min_similarity,
                source_url=source_url,
                document_id=document_id
            )
    except PdfQAError as e:
        console.print(f"[red]Error during search:[/] {escape(str(e))}")
        raise typer.Exit(1)

    if not contexts:
        console.print("[yellow]No results found.[/]")
        return

    table = Table(title=f"Top {len(contexts)} matches")
    table.add_column("#", justify="right")
    table.add_column("Similarity", justify="right")
    table.add_column("Page", justify="right")
    table.add_column("Source")
    table.add_column("Snippet")
    for i, ctx in enumerate(contexts, 1):
        snippet = ctx.content[:160] + ("..." if len(ctx.content) > 160 else "")
        table.add_row(
            str(i),
            f"{ctx.similarity:.3f}",
            str(ctx.page) if ctx.page is not None else "-",
            escape(ctx.source_url or "-"),
            escape(snippet),
        )
    console.print(table)


@app.command()
def ask(
    question: str,
    top_k: int = typer.Option(DEFAULT_TOP_K, help="Number of contexts given to the model"),
    min_similarity: float = typer.Option(DEFAULT_MIN_SIMILARITY, help="Minimum cosine similarity"),
    source_url: Optional[str] = typer.Option(None, help="Only use chunks of the document at this URL"),
    document_id: Optional[str] = typer.Option(None, help="Only use chunks of the document with this id"),
):
    """Answer a question from the ingested documents."""
    try:
        with console.status("[bold green]Retrieving context..."):
            contexts = retrieve(
                question,
                top_k=top_k,
                min_similarity=min_similarity,
                source_url=source_url,
                document_id=document_id
            )
        with console.status("[bold green]Generating answer..."):
            answer = answer_question(question, contexts)
    except PdfQAError as e:
        console.print(f"[red]Error answering question:[/] {escape(str(e))}")
        raise typer.Exit(1)

    console.print(Markdown(answer))
    if contexts:
        console.print()
        console.print("[bold]Sources:[/]")
        for i, ctx in enumerate(contexts, 1):
            page = f" p.{ctx.page}" if ctx.page else ""
            console.print(f"  [blue]{escape(f'[#{i}{page}]')}[/] {escape(ctx.source_url or '-')} ({ctx.similarity:.3f})")


@app.command()
def status():
    """Show document and chunk counts."""
    store = None
    try:
        store = get_document_store()
        stats = store.stats()
    except PdfQAError as e:
        console.print(f"[red]Error getting status:[/] {escape(str(e))}")
        raise typer.Exit(1)
    finally:
        if store is not None:
            store.close()

    console.print("[bold]📊 pdfqa Status[/]")
    console.print(f"  Documents: {stats['documents']}")
    console.print(f"  Chunks: {stats['chunks']}")
    console.print(f"[bold]🗄️  Database:[/] {_redact(get_database_url())}")


@app.command()
def config(
    action: str = typer.Argument(..., help="Action: show, set, reset, validate"),
    key: Optional[str] = typer.Argument(None, help="Configuration key"),
    value: Optional[str] = typer.Argument(None, help="Configuration value")
):
    """Manage persisted pdfqa settings."""
    manager = get_config_manager()

    try:
        if action == "show":
            console.print("[bold]Current Configuration:[/]")
            for k, v in manager.get_all().items():
                console.print(f"  [blue]{k}:[/] {escape(str(v))}")
        elif action == "set":
            if not key or value is None:
                console.print("[red]Error:[/] Both key and value required for 'set' action")
                raise typer.Exit(1)
            manager.set(key, value)
            console.print(f"[green]✅ Set {key}[/]")
        elif action == "reset":
            if not key:
                console.print("[red]Error:[/] Key required for 'reset' action")
                raise typer.Exit(1)
            manager.reset(key)
            console.print(f"[green]✅ Reset {key} to default[/]")
        elif action == "validate":
            result = manager.validate()
            for warning in result["warnings"]:
                console.print(f"[yellow]Warning:[/] {warning}")
            if not result["valid"]:
                console.print("[red]❌ Configuration issues found:[/]")
                for issue in result["issues"]:
                    console.print(f"  • {issue}")
                raise typer.Exit(1)
            console.print("[green]✅ Configuration validation passed![/]")
        else:
            console.print(f"[red]Error:[/] Unknown action: {action}")
            console.print("Available actions: show, set, reset, validate")
            raise typer.Exit(1)
    except PdfQAError as e:
        console.print(f"[red]Error:[/] {escape(str(e))}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
