"""Typer CLI for text-vector-embeddings."""

import asyncio
import json
from contextlib import asynccontextmanager
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from text_vector_embeddings.config import bot_settings

app = typer.Typer(
    name="tve",
    help="GitHub embeddings bot: duplicate detection, annotation and contributor matching.",
)
console = Console()


@asynccontextmanager
async def open_context(db_path: str = ""):
    """PluginContext over the configured store, queue, embedder and GitHub client."""
    from text_vector_embeddings.embeddings.providers import create_embedder
    from text_vector_embeddings.github.client import GitHubClient
    from text_vector_embeddings.handlers.context import PluginContext
    from text_vector_embeddings.queue.embedding_queue import EmbeddingQueue
    from text_vector_embeddings.store.document_store import DocumentStore

    path = db_path or bot_settings.store_db_path
    store = DocumentStore(path)
    queue = EmbeddingQueue(path)
    try:
        async with GitHubClient() as client:
            yield PluginContext(
                settings=bot_settings,
                store=store,
                queue=queue,
                embedder=create_embedder(bot_settings),
                github=client,
            )
    finally:
        queue.close()
        store.close()


@app.command(name="process-queue")
def process_queue(
    limit: int = typer.Option(0, "--limit", help="Max jobs this run (0 = config default)"),
    db_path: str = typer.Option("", "--db", help="SQLite database path (default from settings)"),
):
    """Run one tick of the deferred embedding queue."""
    from text_vector_embeddings.queue.embedding_queue import process_embedding_queue

    async def _run():
        async with open_context(db_path) as context:
            return await process_embedding_queue(
                context.settings, context.store, context.queue, context.embedder,
                max_per_run=limit or None,
            )

    result = asyncio.run(_run())

    table = Table(title="Embedding Queue")
    table.add_column("Processed", style="green")
    table.add_column("Retried", style="yellow")
    table.add_column("Failed", style="red")
    table.add_column("Skipped", style="dim")
    table.add_column("Stopped Early")
    table.add_row(
        str(result.processed), str(result.retried), str(result.failed),
        str(result.skipped), "yes" if result.stopped_early else "no",
    )
    console.print(table)


@app.command()
def backfill(
    db_path: str = typer.Option("", "--db", help="SQLite database path (default from settings)"),
):
    """Embed stored documents that still lack an embedding."""
    from text_vector_embeddings.queue.backfill import process_pending_embeddings

    async def _run():
        async with open_context(db_path) as context:
            return await process_pending_embeddings(context.settings, context.store, context.embedder)

    result = asyncio.run(_run())

    table = Table(title="Pending Embeddings")
    table.add_column("Issues", style="green")
    table.add_column("Comments", style="green")
    table.add_column("Stopped Early")
    table.add_row(
        str(result.issues_processed), str(result.comments_processed),
        "[yellow]yes (rate limited)[/yellow]" if result.stopped_early else "no",
    )
    console.print(table)


@app.command(name="handle-event")
def handle_event(
    event: str = typer.Argument(help="Event name, e.g. issues.edited"),
    payload_path: Path = typer.Argument(help="Path to the webhook payload JSON"),
    db_path: str = typer.Option("", "--db", help="SQLite database path (default from settings)"),
):
    """Dispatch one webhook delivery."""
    from text_vector_embeddings.plugin import run_plugin

    payload = json.loads(payload_path.read_text(encoding="utf-8"))

    async def _run():
        async with open_context(db_path) as context:
            return await run_plugin(context, event, payload)

    handled = asyncio.run(_run())
    if handled:
        console.print(f"[green]Handled[/green] {event}")
    else:
        console.print(f"[yellow]Unsupported event:[/yellow] {event}")
        raise typer.Exit(code=1)


@app.command(name="dedupe-issue")
def dedupe_issue(
    owner: str = typer.Argument(help="GitHub repo owner"),
    repo: str = typer.Argument(help="GitHub repo name"),
    issue_number: int = typer.Argument(help="Issue number"),
    db_path: str = typer.Option("", "--db", help="SQLite database path (default from settings)"),
):
    """Run duplicate detection on one issue."""
    from text_vector_embeddings.github.ingest import normalize_issue
    from text_vector_embeddings.handlers.dedupe import decide_and_apply_dedupe

    async def _run():
        async with open_context(db_path) as context:
            raw = await context.github.get_issue(owner, repo, issue_number)
            issue = normalize_issue(raw)
            return await decide_and_apply_dedupe(context, issue)

    action = asyncio.run(_run())
    styles = {"none": "green", "warned": "yellow", "closed": "red"}
    style = styles[action.value]
    console.print(f"{owner}/{repo}#{issue_number}: [{style}]{action.value}[/{style}]")


@app.command()
def reprocess(
    owner: str = typer.Argument(help="GitHub repo owner"),
    repo: str = typer.Argument(help="GitHub repo name"),
    state: str = typer.Option("open", "--state", help="Issue state: open, closed or all"),
    keep_update_comment: bool = typer.Option(
        True, "--keep-update-comment/--drop-update-comment",
        help="Re-append the bot's update marker to rewritten bodies",
    ),
    db_path: str = typer.Option("", "--db", help="SQLite database path (default from settings)"),
):
    """Store, match and dedupe every issue in a repository again."""
    from text_vector_embeddings.handlers.reprocess import reprocess_repository

    async def _run():
        async with open_context(db_path) as context:
            return await reprocess_repository(
                context, owner, repo, state=state, keep_update_comment=keep_update_comment,
            )

    result = asyncio.run(_run())

    table = Table(title=f"Reprocess: {owner}/{repo}")
    table.add_column("Processed", style="green")
    table.add_column("Warned", style="yellow")
    table.add_column("Closed", style="red")
    table.add_column("Skipped PRs", style="dim")
    table.add_column("Failed", style="red")
    table.add_row(
        str(result.processed), str(result.actions.get("warned", 0)), str(result.actions.get("closed", 0)),
        str(result.skipped), str(result.failed),
    )
    console.print(table)
    if result.failed:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
