import os
from pathlib import Path
from typing import Any, Dict, List, Optional
import typer
from rich.console import Console
from rich.table import Table
from docsift.core.config import PARSE_MODES, PipelineConfig, describe_issues
from docsift.core.embed import OpenAIEmbedder, get_embedding_config
from docsift.core.errors import DocsiftError
from docsift.core.llm import ExtractionService
from docsift.core.logging_config import configure_logging
from docsift.core.pipeline import EnrichmentPipeline
from docsift.core.publish import FaissIndexPublisher
from docsift.core.propagate import propagate_metadata
from docsift.core.chunking import regenerate_chunks
from docsift.core.parse import ParseMode, parse_staged_documents
from docsift.core.stage import StageResult
from docsift.core.store import PostgresDocumentStore
from docsift.cli.config_manager import get_config_manager

app = typer.Typer(help="docsift: incremental document enrichment and chunking")
config_app = typer.Typer(help="Show and validate configuration")
app.add_typer(config_app, name="config")
console = Console()

# Initialize structured logging
configure_logging(
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    json_logs=os.getenv("JSON_LOGS", "false").lower() == "true"
)

FOLDER_HELP = "SQL LIKE filter on the document path, e.g. 'Clinical/%'"


def _load_config(**overrides: Any) -> PipelineConfig:
    try:
        return get_config_manager().pipeline_config(overrides)
    except DocsiftError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        raise typer.Exit(1)


def _store(config: PipelineConfig) -> PostgresDocumentStore:
    return PostgresDocumentStore(config.database_url)


def _publisher(config: PipelineConfig) -> FaissIndexPublisher:
    embedder = OpenAIEmbedder(get_embedding_config(config.embed_model, config.embed_batch_size))
    return FaissIndexPublisher(config.index_path, embedder, config.target_lag_seconds)


def _print_stage(result: StageResult) -> None:
    color = "green" if result.failed == 0 else "yellow"
    console.print(
        f"[{color}]{result.stage}:[/] {result.succeeded}/{result.selected} succeeded, "
        f"{result.failed} failed, {result.skipped} skipped "
        f"[dim]({result.elapsed_ms:.0f}ms)[/]"
    )
    for filepath, error in list(result.errors.items())[:10]:
        console.print(f"   [dim]{filepath}: {error}[/]")
    if len(result.errors) > 10:
        console.print(f"   [dim]... and {len(result.errors) - 10} more[/]")


def _run_enrichment(stage: str, folder: Optional[str]) -> None:
    config = _load_config(folder_filter=folder)
    try:
        pipeline = EnrichmentPipeline(_store(config), ExtractionService(config.llm_model), config)
        with console.status(f"[bold green]Running {stage} stage..."):
            result = getattr(pipeline, stage)()
        _print_stage(result)
    except DocsiftError as e:
        console.print(f"[red]Error during {stage}:[/] {e}")
        raise typer.Exit(1)


@app.command("init-db")
def init_db():
    """Create the page, chunk and figure tables and the signature view."""
    config = _load_config()
    try:
        _store(config).ensure_schema()
        console.print("[green]✅ Schema ready[/]")
    except DocsiftError as e:
        console.print(f"[red]Error creating schema:[/] {e}")
        raise typer.Exit(1)


@app.command()
def parse(
    folder: Optional[str] = typer.Option(None, help=FOLDER_HELP),
    mode: Optional[str] = typer.Option(None, help=f"Parse mode: {', '.join(PARSE_MODES)}"),
    stage_dir: Optional[str] = typer.Option(None, help="Directory holding staged PDFs"),
    no_ocr: bool = typer.Option(False, "--no-ocr", help="Disable OCR fallback"),
):
    """Parse staged PDFs that have no page rows yet."""
    config = _load_config(folder_filter=folder, parse_mode=mode, stage_dir=stage_dir)
    console.print(f"[bold]Parsing staged PDFs from:[/] {config.stage_dir}")

    if not Path(config.stage_dir).is_dir():
        console.print(f"[red]Error:[/] Stage directory {config.stage_dir} does not exist")
        raise typer.Exit(1)

    try:
        with console.status("[bold green]Processing PDFs..."):
            result = parse_staged_documents(
                _store(config),
                Path(config.stage_dir),
                config.folder_filter,
                ParseMode(config.parse_mode),
                ocr_fallback=not no_ocr,
            )
        _print_stage(result)
    except DocsiftError as e:
        console.print(f"[red]Error during parsing:[/] {e}")
        raise typer.Exit(1)


@app.command()
def metadata(folder: Optional[str] = typer.Option(None, help=FOLDER_HELP)):
    """Extract title, print date and language for documents without a title."""
    _run_enrichment("metadata", folder)


@app.command()
def summarize(folder: Optional[str] = typer.Option(None, help=FOLDER_HELP)):
    """Summarize documents without a summary."""
    _run_enrichment("summarize", folder)


@app.command()
def signatures(folder: Optional[str] = typer.Option(None, help=FOLDER_HELP)):
    """Extract and validate handwritten signatures."""
    _run_enrichment("signatures", folder)


@app.command()
def figures(folder: Optional[str] = typer.Option(None, help=FOLDER_HELP)):
    """Extract figure numbers, titles and image references from pages with images."""
    _run_enrichment("figures", folder)


@app.command()
def propagate(folder: Optional[str] = typer.Option(None, help=FOLDER_HELP)):
    """Copy document fields from page 0 onto the other pages."""
    config = _load_config(folder_filter=folder)
    try:
        _print_stage(propagate_metadata(_store(config), config.folder_filter))
    except DocsiftError as e:
        console.print(f"[red]Error during propagation:[/] {e}")
        raise typer.Exit(1)


@app.command()
def chunk():
    """Regenerate the whole chunk set from the current pages."""
    config = _load_config()
    try:
        with console.status("[bold green]Generating chunks..."):
            result = regenerate_chunks(_store(config), config)
        console.print(f"[green]✅ {result.succeeded} chunks from {result.selected} pages[/]")
    except DocsiftError as e:
        console.print(f"[red]Error generating chunks:[/] {e}")
        raise typer.Exit(1)


@app.command()
def publish(
    force: bool = typer.Option(False, "--force", help="Publish even if the chunk set is unchanged"),
    if_due: bool = typer.Option(False, "--if-due", help="Publish only when past the target lag"),
    index_path: Optional[str] = typer.Option(None, help="Directory of the search index"),
):
    """Publish the chunk set as a searchable FAISS index."""
    config = _load_config(index_path=index_path)
    try:
        chunks = _store(config).chunks()
        publisher = _publisher(config)
        with console.status(f"[bold green]Publishing {len(chunks)} chunks..."):
            result = publisher.publish_if_due(chunks) if if_due else publisher.publish(chunks, force=force)

        if result is None:
            console.print(f"[yellow]Index is {publisher.freshness(chunks)}; not due for publishing[/]")
        elif result.published:
            console.print("[green]✅ Index published![/]")
            console.print(f"[bold]Generation:[/] {result.generation}")
            console.print(f"[bold]Chunks:[/] {result.chunk_count}")
            console.print(f"[bold]Index saved to:[/] {config.index_path}")
        else:
            console.print("[green]Index already up to date[/]")
    except DocsiftError as e:
        console.print(f"[red]Error publishing index:[/] {e}")
        raise typer.Exit(1)


@app.command()
def run(
    folder: Optional[str] = typer.Option(None, help=FOLDER_HELP),
    parse_first: bool = typer.Option(False, "--parse", help="Parse newly staged files first"),
    publish_index: bool = typer.Option(True, "--publish/--no-publish", help="Publish the index afterwards"),
    force_publish: bool = typer.Option(False, "--force-publish", help="Publish even if unchanged"),
):
    """Run every stage once: enrich, propagate, chunk, publish."""
    config = _load_config(folder_filter=folder)
    try:
        pipeline = EnrichmentPipeline(_store(config), ExtractionService(config.llm_model), config)
        publisher = _publisher(config) if publish_index else None
        with console.status("[bold green]Running pipeline..."):
            report = pipeline.run(publisher=publisher, parse=parse_first, force_publish=force_publish)
    except DocsiftError as e:
        console.print(f"[red]Pipeline aborted:[/] {e}")
        raise typer.Exit(1)

    console.rule("[bold]Pipeline report")
    for result in report.stages:
        _print_stage(result)
    if report.publish is not None:
        state = "published" if report.publish.published else "unchanged"
        console.print(f"[bold]index:[/] {state} ({report.publish.chunk_count} chunks)")
    console.print(f"[dim]Finished in {report.elapsed_ms / 1000:.1f}s[/]")


def _mark(value: bool) -> str:
    return "[green]✓[/]" if value else "[red]✗[/]"


@app.command()
def status(folder: Optional[str] = typer.Option(None, help=FOLDER_HELP)):
    """Show which document fields are populated or missing."""
    config = _load_config(folder_filter=folder)
    try:
        store = _store(config)
        statuses = store.document_status(config.folder_filter)
        stats = store.stats(config.folder_filter)
    except DocsiftError as e:
        console.print(f"[red]Error getting status:[/] {e}")
        raise typer.Exit(1)

    table = Table(title="Document enrichment status")
    table.add_column("Document", overflow="fold")
    table.add_column("Pages", justify="right")
    for name in ("Title", "Print date", "Language", "Summary", "Signatures"):
        table.add_column(name, justify="center")

    for s in statuses:
        if s.signatures:
            sig_cell = _mark(True)
        elif s.signatures_checked:
            sig_cell = "[dim]none[/]"
        else:
            sig_cell = _mark(False)
        table.add_row(
            s.filepath,
            str(s.page_count),
            _mark(s.title),
            _mark(s.print_date),
            _mark(s.language),
            _mark(s.summary),
            sig_cell,
        )
    console.print(table)

    console.print()
    console.print(f"[bold]Documents:[/] {stats['total_documents']} ({stats['total_pages']} pages)")
    console.print(f"[bold]With title:[/] {stats['with_title']}")
    console.print(f"[bold]With summary:[/] {stats['with_summary']}")
    console.print(f"[bold]With signatures:[/] {stats['with_signatures']}")
    console.print(f"[bold]Chunks:[/] {stats['total_chunks']} ({stats['chunks_with_signatures']} carrying signatures)")
    console.print(f"[bold]Pages with figures:[/] {stats['pages_with_figures']}")

    manifest = FaissIndexPublisher(config.index_path, embed_fn=None).manifest()
    if manifest:
        console.print(f"[bold]Index:[/] {manifest['chunk_count']} chunks, published {manifest['published_at']}")
    else:
        console.print("[bold]Index:[/] not published")


@app.command("list-signatures")
def list_signatures(folder: Optional[str] = typer.Option(None, help=FOLDER_HELP)):
    """List every valid handwritten signature with its document."""
    config = _load_config(folder_filter=folder)
    try:
        rows = _store(config).signature_rows(config.folder_filter)
    except DocsiftError as e:
        console.print(f"[red]Error listing signatures:[/] {e}")
        raise typer.Exit(1)

    if not rows:
        console.print("[yellow]No signatures found[/]")
        return

    table = Table(title=f"Handwritten signatures ({len(rows)})")
    table.add_column("Document", overflow="fold")
    table.add_column("Signer")
    table.add_column("Title")
    table.add_column("Date")
    for row in rows:
        table.add_row(row.filepath, row.signer_name, row.signer_title, row.signature_date)
    console.print(table)


@app.command("list-figures")
def list_figures(folder: Optional[str] = typer.Option(None, help=FOLDER_HELP)):
    """List extracted figures by document and page."""
    config = _load_config(folder_filter=folder)
    try:
        rows = _store(config).figures(config.folder_filter)
    except DocsiftError as e:
        console.print(f"[red]Error listing figures:[/] {e}")
        raise typer.Exit(1)

    if not rows:
        console.print("[yellow]No figures found[/]")
        return

    table = Table(title=f"Page figures ({len(rows)})")
    table.add_column("Document", overflow="fold")
    table.add_column("Page", justify="right")
    table.add_column("Figure")
    table.add_column("Title", overflow="fold")
    table.add_column("Images")
    for row in rows:
        table.add_row(
            row.filepath,
            str(row.page_index),
            row.figure_number or "",
            row.figure_title or "",
            row.image_references or "",
        )
    console.print(table)


def _parse_pairs(values: Optional[List[str]], option: str) -> Dict[str, Any]:
    pairs: Dict[str, Any] = {}
    for item in values or []:
        if "=" not in item:
            console.print(f"[red]Error:[/] {option} expects attr=value, got {item!r}")
            raise typer.Exit(1)
        key, value = item.split("=", 1)
        pairs[key] = int(value) if key == "page_index" and value.isdigit() else value
    return pairs


def build_filter(eq: Optional[List[str]], contains: Optional[List[str]]) -> Optional[Dict[str, Any]]:
    """Turn repeated --eq/--contains options into one filter expression."""
    clauses = [{"@eq": {k: v}} for k, v in _parse_pairs(eq, "--eq").items()]
    clauses += [{"@contains": {k: v}} for k, v in _parse_pairs(contains, "--contains").items()]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    return {"@and": clauses}


@app.command()
def search(
    query: str = typer.Argument(..., help="Search query"),
    limit: int = typer.Option(10, help="Maximum number of results"),
    eq: Optional[List[str]] = typer.Option(None, "--eq", help="attr=value exact match"),
    contains: Optional[List[str]] = typer.Option(None, "--contains", help="attr=value substring match"),
):
    """Search the published chunk index."""
    config = _load_config()
    filter_spec = build_filter(eq, contains)
    try:
        hits = _publisher(config).search(query, k=limit, filter_spec=filter_spec)
    except DocsiftError as e:
        console.print(f"[red]Error during search:[/] {e}")
        raise typer.Exit(1)

    if not hits:
        console.print("[yellow]No results found[/]")
        return

    console.print(f"[bold]Found {len(hits)} results for:[/] {query}")
    for i, hit in enumerate(hits, 1):
        console.print()
        console.print(f"[bold blue]{i}. {hit['title'] or hit['filename']}[/] [dim](score={hit['score']:.3f})[/]")
        console.print(f"   [dim]{hit['filepath']} page {hit['page_index']}[/]")
        if hit.get("file_url"):
            console.print(f"   [dim]{hit['file_url']}[/]")
        preview = hit["chunk"].replace("\n", " ")
        console.print(f"   {preview[:200]}{'...' if len(preview) > 200 else ''}")


@config_app.command("show")
def config_show():
    """Display effective configuration."""
    manager = get_config_manager()
    try:
        settings = manager.effective()
    except DocsiftError as e:
        console.print(f"[red]Configuration error:[/] {e}")
        raise typer.Exit(1)

    console.print("\n[bold]Current Configuration:[/]")
    for key, item in settings.items():
        value = item["value"]
        if key == "database_url" and "@" in str(value):
            value = "***@" + str(value).split("@", 1)[1]
        console.print(f"  [blue]{key}:[/] {value} [dim]({item['source']})[/]")
    console.print(f"  [blue]openai_api_key:[/] {'***' if os.getenv('OPENAI_API_KEY') else 'Not set'}")
    console.print(f"  [blue]log_level:[/] {os.getenv('LOG_LEVEL', 'INFO')}")


@config_app.command("set")
def config_set(key: str, value: str):
    """Save a setting to the config file."""
    try:
        coerced = get_config_manager().set(key, value)
    except DocsiftError as e:
        console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(1)
    console.print(f"[green]✅ Set {key} = {coerced}[/]")


@config_app.command("reset")
def config_reset(key: str):
    """Remove a saved setting."""
    try:
        removed = get_config_manager().reset(key)
    except DocsiftError as e:
        console.print(f"[red]Error:[/] {e}")
        raise typer.Exit(1)
    if removed:
        console.print(f"[green]✅ Reset {key} to default[/]")
    else:
        console.print(f"[yellow]Note:[/] {key} was not set")


@config_app.command("validate")
def config_validate():
    """Validate configuration and database connectivity."""
    console.print("[bold]Validating configuration...[/]")
    manager = get_config_manager()
    validation = manager.validate()
    issues = list(validation["issues"])

    if validation["valid"]:
        db_error = manager.check_database(manager.pipeline_config().database_url)
        if db_error is None:
            console.print("[green]✅ Database connection: OK[/]")
        else:
            issues.append(f"Database connection failed: {db_error}")

    for line in describe_issues({"issues": [], "warnings": validation["warnings"]}):
        console.print(f"  [yellow]{line}[/]")

    if issues:
        console.print(f"\n[red]❌ Configuration issues found:[/]")
        for issue in issues:
            console.print(f"  • {issue}")
        raise typer.Exit(1)
    console.print(f"\n[green]✅ Configuration validation passed![/]")


if __name__ == "__main__":
    app()
