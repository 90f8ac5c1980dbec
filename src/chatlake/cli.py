"""
ChatLake CLI - Main command-line interface for ChatLake.

Imports chat exports and runs the derived computations (segmentation,
embeddings, clustering, similarity, topics, drift). Suggestions can be
reviewed here or through the API.
"""

import uuid
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from chatlake.exceptions import ChatLakeError
from chatlake.logging_config import setup_logging

app = typer.Typer(
    name="chatlake",
    help="ChatLake - Chat export archive and project discovery",
    no_args_is_help=True,
)
projects_app = typer.Typer(help="Manage projects", no_args_is_help=True)
app.add_typer(projects_app, name="projects")

console = Console()


@app.callback()
def main() -> None:
    """Configure logging before any command runs."""
    try:
        setup_logging(context="cli")
    except PermissionError:
        import logging

        logging.basicConfig(level=logging.INFO)


def _fail(message: str) -> None:
    console.print(f"[bold red]Error:[/bold red] {message}")
    raise typer.Exit(1)


def _provider():
    from chatlake.providers import create_provider

    try:
        return create_provider()
    except ValueError as e:
        _fail(str(e))


def _fmt_time(value) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else "-"


@app.command("init-db")
def init_db_command() -> None:
    """Create the database schema."""
    from chatlake.db.connection import check_connection, init_db

    if not check_connection():
        _fail("Cannot connect to the database")
    init_db()
    console.print("[green]✓ Database schema ready[/green]")


@app.command("import")
def import_command(
    paths: List[Path] = typer.Argument(..., help="Export files to import as one batch"),
    artifact_type: str = typer.Option("chatgpt", "--type", help="Export format (chatgpt, claude)"),
    label: Optional[str] = typer.Option(None, help="Label for the import batch"),
    imported_by: Optional[str] = typer.Option(None, help="Who ran the import"),
    notes: Optional[str] = typer.Option(None, help="Free-text notes"),
) -> None:
    """
    Import one or more export files.

    All files form a single batch. The batch commits when at least one file
    was ingested and fails otherwise.
    """
    from chatlake.db.connection import db_session
    from chatlake.pipeline.orchestrator import ImportFile, ImportOrchestrator

    for path in paths:
        if not path.is_file():
            _fail(f"File not found: {path}")

    console.print(f"[bold blue]Importing {len(paths)} file(s)[/bold blue] as {artifact_type}")

    def on_progress(result) -> None:
        console.print(
            f"  [cyan]…[/cyan] {result.conversations_seen} conversations read "
            f"({result.conversations_created} new)"
        )

    try:
        with db_session() as session:
            orchestrator = ImportOrchestrator(session)
            batch = orchestrator.run_import(
                [ImportFile(artifact_type=artifact_type, path=p) for p in paths],
                source_system=artifact_type,
                imported_by=imported_by,
                import_label=label,
                notes=notes,
                on_progress=on_progress,
            )
            status = batch.status.value
            batch_id = batch.id
            processed = batch.processed_conversation_count
            error = batch.error_message
    except ChatLakeError as e:
        _fail(str(e))

    console.print()
    console.print("[bold]Summary:[/bold]")
    console.print(f"  Batch: {batch_id}")
    console.print(f"  Status: {status}")
    console.print(f"  Conversations processed: {processed}")
    if error:
        console.print(f"  [red]Error:[/red] {error}")
        raise typer.Exit(1)


@app.command()
def batches(limit: int = typer.Option(20, help="Number of batches to show")) -> None:
    """List recent import batches."""
    from chatlake.db.connection import db_session
    from chatlake.pipeline.orchestrator import ImportOrchestrator

    with db_session() as session:
        rows = ImportOrchestrator(session).list_batches(limit=limit)
        table = Table(title="Import batches")
        for column in ("ID", "Source", "Status", "Artifacts", "Conversations", "Created"):
            table.add_column(column)
        for batch in rows:
            table.add_row(
                str(batch.id),
                batch.source_system,
                batch.status.value,
                str(batch.artifact_count),
                str(batch.processed_conversation_count),
                _fmt_time(batch.created_at),
            )
        console.print(table)


@app.command("batch-status")
def batch_status(batch_id: uuid.UUID = typer.Argument(..., help="Import batch ID")) -> None:
    """Show a batch's progress and parsing failures."""
    from chatlake.db.connection import db_session
    from chatlake.pipeline.failure_tracking import get_failures
    from chatlake.pipeline.orchestrator import ImportOrchestrator

    with db_session() as session:
        batch = ImportOrchestrator(session).get_status(batch_id)
        if batch is None:
            _fail(f"Import batch {batch_id} not found")
        console.print(f"[bold]Batch {batch.id}[/bold]")
        console.print(f"  Source: {batch.source_system}")
        console.print(f"  Status: {batch.status.value}")
        console.print(f"  Artifacts: {batch.artifact_count}")
        console.print(
            f"  Conversations: {batch.processed_conversation_count}"
            f"/{batch.total_conversation_count if batch.total_conversation_count is not None else '?'}"
        )
        console.print(f"  Last heartbeat: {_fmt_time(batch.last_heartbeat_at)}")
        if batch.error_message:
            console.print(f"  [red]Error:[/red] {batch.error_message}")
        failures = get_failures(session, batch.id)
        if failures:
            console.print(f"\n[yellow]{len(failures)} parsing failure(s):[/yellow]")
            for failure in failures[:20]:
                target = failure.external_conversation_id or "artifact"
                console.print(escape(f"  [{failure.failure_stage}] {target}: {failure.failure_message}"))


@app.command()
def cleanup(
    batch_id: Optional[uuid.UUID] = typer.Argument(None, help="Batch to remove"),
    all_failed: bool = typer.Option(
        False, "--all", help="Remove every failed or abandoned batch"
    ),
) -> None:
    """Remove failed or abandoned import batches and their data."""
    from chatlake.db.connection import db_session
    from chatlake.pipeline.cleanup import ImportCleanupService

    if batch_id is None and not all_failed:
        _fail("Pass a batch ID or --all")

    try:
        with db_session() as session:
            service = ImportCleanupService(session)
            if all_failed:
                result = service.cleanup_all_failed()
            else:
                result = service.cleanup_batch(batch_id)
    except ChatLakeError as e:
        _fail(str(e))

    console.print(f"[green]✓ {result.message}[/green]")
    console.print(f"  Conversations deleted: {result.conversations_deleted}")
    console.print(f"  Messages deleted: {result.messages_deleted}")
    console.print(f"  Files deleted: {result.files_deleted}")


@app.command()
def segment() -> None:
    """Segment every conversation that has no segments yet."""
    from chatlake.db.connection import db_session
    from chatlake.inference.segmentation import SegmentationEngine

    provider = _provider()
    try:
        with db_session() as session:
            result = SegmentationEngine(session, provider).segment_all()
    except ChatLakeError as e:
        _fail(str(e))

    if result.run_id is None:
        console.print("[yellow]No unsegmented conversations[/yellow]")
        return
    console.print(f"[green]✓ Segmentation run {result.run_id}[/green]")
    console.print(f"  Conversations processed: {result.conversations_processed}")
    console.print(f"  Conversations skipped: {result.conversations_skipped}")
    console.print(f"  Conversations failed: {result.conversations_failed}")
    console.print(f"  Segments created: {result.segments_created}")


@app.command("reset-segments")
def reset_segments(
    yes: bool = typer.Option(False, "--yes", help="Skip confirmation"),
) -> None:
    """Delete all segments and their embeddings."""
    from chatlake.db.connection import db_session
    from chatlake.inference.segmentation import SegmentationEngine

    if not yes:
        typer.confirm("Delete all segments and embeddings?", abort=True)
    with db_session() as session:
        deleted = SegmentationEngine(session, provider=None).reset_all_segments()
    console.print(f"[green]✓ Deleted {deleted} segments[/green]")


@app.command()
def embed() -> None:
    """Generate embeddings for segments that lack a valid one."""
    from chatlake.db.connection import db_session
    from chatlake.inference.embeddings import EmbeddingCache

    provider = _provider()
    try:
        with db_session() as session:
            result = EmbeddingCache(session, provider).generate_missing()
    except ChatLakeError as e:
        _fail(str(e))

    console.print(f"[green]✓ Embedded {result.embeddings_generated} segment(s)[/green]")
    console.print(f"  Already cached: {result.already_cached}")
    console.print(f"  Failed: {result.embeddings_failed}")


@app.command("invalidate-embeddings")
def invalidate_embeddings() -> None:
    """Drop embeddings whose segment content changed."""
    from chatlake.db.connection import db_session
    from chatlake.inference.embeddings import EmbeddingCache

    provider = _provider()
    with db_session() as session:
        count = EmbeddingCache(session, provider).invalidate_stale()
    console.print(f"[green]✓ Invalidated {count} embedding(s)[/green]")


@app.command()
def cluster() -> None:
    """Cluster segment embeddings into project suggestions."""
    from chatlake.db.connection import db_session
    from chatlake.inference.clustering import ClusteringOrchestrator
    from chatlake.inference.embeddings import EmbeddingCache
    from chatlake.inference.segmentation import SegmentationEngine

    provider = _provider()
    try:
        with db_session() as session:
            orchestrator = ClusteringOrchestrator(
                session,
                EmbeddingCache(session, provider),
                segmentation=SegmentationEngine(session, provider),
            )
            result = orchestrator.run()
            summaries = orchestrator.get_cluster_summaries(result.run_id)
    except ChatLakeError as e:
        _fail(str(e))

    console.print(f"[green]✓ Clustering run {result.run_id}[/green]")
    console.print(f"  Segments: {result.segment_count}")
    console.print(f"  Clusters: {result.cluster_count}")
    console.print(f"  Noise: {result.noise_count}")
    for summary in summaries:
        console.print(
            f"  • {summary.suggested_name} ({summary.conversation_count} conversations, "
            f"confidence {summary.confidence:.2f})"
        )


@app.command()
def suggestions(
    status: str = typer.Option("pending", help="pending, accepted, rejected or merged"),
) -> None:
    """List project suggestions."""
    from chatlake.db.connection import db_session
    from chatlake.inference.suggestions import SuggestionService
    from chatlake.models.db import SuggestionStatus

    try:
        wanted = SuggestionStatus(status)
    except ValueError:
        _fail(f"Unknown status: {status}")

    with db_session() as session:
        rows = SuggestionService(session).list_by_status(wanted)
        table = Table(title=f"{wanted.value.capitalize()} suggestions")
        for column in ("ID", "Name", "Conversations", "Confidence"):
            table.add_column(column)
        for suggestion in rows:
            table.add_row(
                str(suggestion.id),
                suggestion.suggested_name,
                str(suggestion.unique_conversation_count),
                f"{suggestion.confidence:.2f}",
            )
        console.print(table)


@app.command()
def accept(suggestion_id: uuid.UUID = typer.Argument(..., help="Suggestion ID")) -> None:
    """Accept a suggestion as a new project."""
    from chatlake.db.connection import db_session
    from chatlake.inference.suggestions import SuggestionService

    try:
        with db_session() as session:
            project = SuggestionService(session).accept(suggestion_id)
            name, project_id = project.name, project.id
    except ChatLakeError as e:
        _fail(str(e))
    console.print(f"[green]✓ Created project '{name}'[/green] ({project_id})")


@app.command()
def reject(suggestion_id: uuid.UUID = typer.Argument(..., help="Suggestion ID")) -> None:
    """Reject a suggestion."""
    from chatlake.db.connection import db_session
    from chatlake.inference.suggestions import SuggestionService

    try:
        with db_session() as session:
            SuggestionService(session).reject(suggestion_id)
    except ChatLakeError as e:
        _fail(str(e))
    console.print(f"[green]✓ Rejected suggestion {suggestion_id}[/green]")


@app.command()
def merge(
    suggestion_id: uuid.UUID = typer.Argument(..., help="Suggestion ID"),
    project_id: uuid.UUID = typer.Argument(..., help="Target project ID"),
) -> None:
    """Merge a suggestion's conversations into an existing project."""
    from chatlake.db.connection import db_session
    from chatlake.inference.suggestions import SuggestionService

    try:
        with db_session() as session:
            project = SuggestionService(session).merge(suggestion_id, project_id)
            name = project.name
    except ChatLakeError as e:
        _fail(str(e))
    console.print(f"[green]✓ Merged into project '{name}'[/green]")


@app.command()
def similarity(
    method: str = typer.Option("tfidf_cosine", help="tfidf_cosine or segment_embedding"),
    min_similarity: Optional[float] = typer.Option(None, help="Minimum score to store"),
    max_pairs: Optional[int] = typer.Option(None, help="Maximum partners per conversation"),
) -> None:
    """Compute conversation-to-conversation similarity."""
    from chatlake.db.connection import db_session
    from chatlake.inference.embeddings import EmbeddingCache
    from chatlake.inference.similarity import SimilarityEngine, SimilarityOptions
    from chatlake.models.db import SimilarityMethod

    try:
        similarity_method = SimilarityMethod(method)
    except ValueError:
        _fail(f"Unknown method: {method}")

    options = SimilarityOptions(method=similarity_method)
    if min_similarity is not None:
        options.min_similarity = min_similarity
    if max_pairs is not None:
        options.max_pairs_per_conversation = max_pairs

    try:
        with db_session() as session:
            cache = None
            if similarity_method == SimilarityMethod.SEGMENT_EMBEDDING:
                cache = EmbeddingCache(session, _provider())
            result = SimilarityEngine(session, options, embedding_cache=cache).calculate()
    except ChatLakeError as e:
        _fail(str(e))

    console.print(f"[green]✓ Similarity run {result.run_id}[/green]")
    console.print(f"  Conversations: {result.conversation_count}")
    console.print(f"  Pairs stored: {result.pairs_stored}")


@app.command()
def similar(
    conversation_id: uuid.UUID = typer.Argument(..., help="Conversation ID"),
    limit: int = typer.Option(10, help="Number of results"),
) -> None:
    """Show the conversations most similar to one conversation."""
    from chatlake.db.connection import db_session
    from chatlake.inference.similarity import SimilarityEngine

    try:
        with db_session() as session:
            results = SimilarityEngine(session).find_similar(conversation_id, limit=limit)
    except ChatLakeError as e:
        _fail(str(e))

    if not results:
        console.print("[yellow]No similar conversations[/yellow]")
        return
    for item in results:
        console.print(f"  {item.similarity:.3f}  {item.title}  [dim]{item.conversation_id}[/dim]")


@app.command()
def topics(
    list_only: bool = typer.Option(False, "--list", help="Show the latest topics without extracting"),
    count: Optional[int] = typer.Option(None, help="Number of topics to extract"),
) -> None:
    """Extract topics from all conversations and show them."""
    from chatlake.db.connection import db_session
    from chatlake.inference.topics import TopicExtractor, TopicOptions

    options = TopicOptions()
    if count is not None:
        options.topic_count = count

    try:
        with db_session() as session:
            extractor = TopicExtractor(session, options)
            run_id = None
            if not list_only:
                result = extractor.extract()
                run_id = result.run_id
                if run_id is not None:
                    console.print(
                        f"[green]✓ Topics run {run_id}[/green] "
                        f"({result.conversation_count} conversations)"
                    )
            summaries = extractor.get_topics(run_id)
    except ChatLakeError as e:
        _fail(str(e))

    if not summaries:
        console.print("[yellow]No topics[/yellow]")
        return
    for summary in summaries:
        console.print(
            f"  [bold]{summary.label}[/bold] ({summary.conversation_count} conversations): "
            f"{', '.join(summary.keywords)}"
        )


@app.command()
def drift(
    project_id: Optional[uuid.UUID] = typer.Option(None, "--project", help="Only this project"),
    limit: int = typer.Option(10, help="Projects to list"),
) -> None:
    """Compute topic drift per project and list the highest-drift projects."""
    from chatlake.db.connection import db_session
    from chatlake.inference.drift import HIGH_DRIFT_THRESHOLD, DriftEngine

    try:
        with db_session() as session:
            engine = DriftEngine(session)
            if project_id is not None:
                result = engine.calculate_project_drift(project_id)
            else:
                result = engine.calculate_drift()
            summaries = engine.get_high_drift_projects(limit=limit)
    except ChatLakeError as e:
        _fail(str(e))

    if result.run_id is None:
        console.print("[yellow]No projects to analyze[/yellow]")
        return
    console.print(f"[green]✓ Drift run {result.run_id}[/green]")
    console.print(f"  Projects analyzed: {result.projects_analyzed}")
    console.print(f"  Windows stored: {result.metrics_created}")
    for summary in summaries:
        color = "red" if summary.latest_drift_score >= HIGH_DRIFT_THRESHOLD else "green"
        console.print(
            f"  [{color}]{summary.latest_drift_score:.3f}[/{color}] {summary.project_name} "
            f"({summary.window_count} windows)"
        )


@projects_app.command("list")
def projects_list(
    active_only: bool = typer.Option(False, "--active", help="Hide archived projects"),
) -> None:
    """List projects."""
    from chatlake.db.connection import db_session
    from chatlake.services.projects import ProjectService

    with db_session() as session:
        listings = ProjectService(session).list(include_archived=not active_only)
        table = Table(title="Projects")
        for column in ("ID", "Name", "Status", "Conversations", "Origin"):
            table.add_column(column)
        for listing in listings:
            project = listing.project
            table.add_row(
                str(project.id),
                project.name,
                project.status.value,
                str(listing.conversation_count),
                "suggested" if project.is_system_generated else "manual",
            )
        console.print(table)


@projects_app.command("create")
def projects_create(
    name: str = typer.Argument(..., help="Project name"),
    description: Optional[str] = typer.Option(None, help="Description"),
) -> None:
    """Create a project."""
    from chatlake.db.connection import db_session
    from chatlake.services.projects import ProjectService

    try:
        with db_session() as session:
            project = ProjectService(session).create(name, description)
            project_id = project.id
    except ValueError as e:
        _fail(str(e))
    console.print(f"[green]✓ Created project '{name}'[/green] ({project_id})")


@projects_app.command("rename")
def projects_rename(
    project_id: uuid.UUID = typer.Argument(..., help="Project ID"),
    name: str = typer.Argument(..., help="New name"),
) -> None:
    """Rename a project."""
    from chatlake.db.connection import db_session
    from chatlake.services.projects import ProjectService

    try:
        with db_session() as session:
            ProjectService(session).rename(project_id, name)
    except (ChatLakeError, ValueError) as e:
        _fail(str(e))
    console.print(f"[green]✓ Renamed project to '{name}'[/green]")


@projects_app.command("archive")
def projects_archive(project_id: uuid.UUID = typer.Argument(..., help="Project ID")) -> None:
    """Archive a project."""
    from chatlake.db.connection import db_session
    from chatlake.services.projects import ProjectService

    try:
        with db_session() as session:
            ProjectService(session).archive(project_id)
    except ChatLakeError as e:
        _fail(str(e))
    console.print(f"[green]✓ Archived project {project_id}[/green]")


@projects_app.command("add")
def projects_add(
    project_id: uuid.UUID = typer.Argument(..., help="Project ID"),
    conversation_id: uuid.UUID = typer.Argument(..., help="Conversation ID"),
) -> None:
    """Assign a conversation to a project."""
    from chatlake.db.connection import db_session
    from chatlake.services.projects import ProjectService

    try:
        with db_session() as session:
            added = ProjectService(session).add_conversation(project_id, conversation_id)
    except ChatLakeError as e:
        _fail(str(e))
    if added:
        console.print("[green]✓ Conversation assigned[/green]")
    else:
        console.print("[yellow]Conversation was already assigned[/yellow]")


@projects_app.command("remove")
def projects_remove(
    project_id: uuid.UUID = typer.Argument(..., help="Project ID"),
    conversation_id: uuid.UUID = typer.Argument(..., help="Conversation ID"),
) -> None:
    """Remove a conversation from a project."""
    from chatlake.db.connection import db_session
    from chatlake.services.projects import ProjectService

    try:
        with db_session() as session:
            removed = ProjectService(session).remove_conversation(project_id, conversation_id)
    except ChatLakeError as e:
        _fail(str(e))
    if removed:
        console.print("[green]✓ Conversation removed[/green]")
    else:
        console.print("[yellow]Conversation was not assigned[/yellow]")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Host to bind to"),
    port: Optional[int] = typer.Option(None, help="Port to bind to"),
    reload: Optional[bool] = typer.Option(None, help="Enable auto-reload"),
) -> None:
    """
    Start the FastAPI server.

    Serves the review API for batches, runs, suggestions, similarity and drift.
    """
    import uvicorn

    from chatlake.config import settings

    host = host or settings.api_host
    port = port or settings.api_port
    reload = settings.api_reload if reload is None else reload

    console.print("[bold green]Starting ChatLake API server...[/bold green]")
    console.print(f"  Host: {host}")
    console.print(f"  Port: {port}")
    console.print(f"  Reload: {reload}")
    console.print(f"\n  API docs: http://{host}:{port}/docs")

    uvicorn.run(
        "chatlake.api.app:app",
        host=host,
        port=port,
        reload=reload,
    )


if __name__ == "__main__":
    app()
