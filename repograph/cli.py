"""Typer-based CLI for repograph."""

from __future__ import annotations

import logging
import re
from dataclasses import asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.table import Table

from . import __version__, config, config_manager
from .config_manager import (
    SyncSettings,
    init_config,
    load_sync_settings,
    save_embedding_config,
    save_sync_setting,
)
from .errors import JobConflictError, RepographError, UnsafeQueryError
from .graph import GraphManager
from .jobs import JobStore
from .models import JobStatus, JobType, SymbolNode
from .parser import ParserFacade
from .source_tree import DirectorySourceTree, GitSourceTree
from .storage import GraphStore, graph_db_path
from .sync import SyncOrchestrator

console = Console()

app = typer.Typer(
    help="repograph: multi-language code knowledge graph.",
    no_args_is_help=True,
    rich_markup_mode="rich",
)

_MUTATING_RE = re.compile(
    r"\b(DELETE|CREATE|MERGE|SET|REMOVE|DROP|DETACH|INSERT|UPDATE|ALTER|REPLACE|ATTACH|PRAGMA|VACUUM|REINDEX)\b",
    re.IGNORECASE,
)


def screen_query(raw: str) -> str:
    """Reject free-text queries containing a mutating keyword."""
    match = _MUTATING_RE.search(raw)
    if match:
        raise UnsafeQueryError(f"query contains forbidden keyword: {match.group(1).upper()}")
    return raw


# ===================================================================
# Helpers
# ===================================================================

def _current_file() -> Path:
    return config.BASE_DIR / "current_repo.txt"


def _set_current_repo(repo_id: str) -> None:
    config.BASE_DIR.mkdir(parents=True, exist_ok=True)
    _current_file().write_text(repo_id, encoding="utf-8")


def _resolve_repo(repo: Optional[str]) -> str:
    if repo:
        return repo
    path = _current_file()
    if path.exists():
        current = path.read_text(encoding="utf-8").strip()
        if current:
            return current
    raise typer.BadParameter("No repository selected. Run 'repograph sync <path>' or pass --repo.")


def _open_graph(repo_id: str) -> GraphManager:
    db_path = graph_db_path(repo_id, config.GRAPH_DIR)
    if not db_path.exists():
        raise typer.BadParameter(f"Repository '{repo_id}' has not been synced.")
    return GraphManager(repo_id, GraphStore(db_path, repo_id))


def _symbol_table(title: str, symbols: List[SymbolNode]) -> Table:
    table = Table(title=title)
    table.add_column("Symbol", style="cyan")
    table.add_column("Kind")
    table.add_column("Location", style="dim")
    table.add_column("Complexity", justify="right")
    for s in symbols:
        table.add_row(s.qualified_name, s.kind.value, f"{s.file}:{s.start_line}", str(s.complexity))
    return table


def version_callback(value: bool):
    if value:
        typer.echo(f"repograph v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", help="Enable debug logging."),
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        "-V",
        help="Show version and exit.",
        callback=version_callback,
        is_eager=True,
    ),
):
    """Build and query code knowledge graphs."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


# ===================================================================
# Sync
# ===================================================================

@app.command("sync")
def sync(
    path: Path = typer.Argument(..., exists=True, file_okay=False, help="Repository or directory to sync."),
    job_type: JobType = typer.Option(JobType.FULL, "--type", "-t", help="full, delta or incremental."),
    ref: Optional[str] = typer.Option(None, "--ref", help="Git ref to sync (default HEAD)."),
    repo_id: Optional[str] = typer.Option(None, "--repo-id", help="Repository id (default: directory name)."),
    embed: bool = typer.Option(True, "--embed/--no-embed", help="Embed and index chunks."),
):
    """Sync a repository into its graph, running the job in-process."""
    root = path.resolve()
    repo = repo_id or root.name.replace(" ", "_")
    settings = load_sync_settings()
    config.ensure_base_dirs()

    if (root / ".git").exists():
        tree = GitSourceTree()
    else:
        tree = DirectorySourceTree(state_dir=config.DATA_DIR / "snapshots")
    tree.register(repo, root)

    embedder = vector_store = None
    if embed:
        from .embeddings import get_embedder
        from .vector_store import LANCE_AVAILABLE, VectorStore

        if LANCE_AVAILABLE:
            embedder = get_embedder(settings.embedding_model)
            vector_store = VectorStore(config.VECTOR_DIR, embedder.model_key)
        else:
            console.print("[yellow]lancedb not installed; skipping vector indexing.[/yellow]")

    parser = ParserFacade()
    init = parser.initialize()
    if not init.ok:
        console.print("[red]No tree-sitter grammars available.[/red]")
        raise typer.Exit(code=1)

    stores: List[GraphStore] = []

    def graph_factory(rid: str) -> GraphManager:
        store = GraphStore(graph_db_path(rid, config.GRAPH_DIR), rid)
        stores.append(store)
        return GraphManager(rid, store)

    job_store = JobStore(config.JOBS_DB)
    orchestrator = SyncOrchestrator(
        parser, tree, job_store, None, graph_factory,
        embedder=embedder, vector_store=vector_store, settings=settings,
    )
    try:
        job = orchestrator.sync_now(repo, job_type, ref)
    except JobConflictError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        orchestrator.close()
        for store in stores:
            store.close()
        job_store.close()

    _set_current_repo(repo)
    color = "green" if job.status == JobStatus.COMPLETED else "red"
    console.print(f"Synced '{root}' as repository '{repo}': [{color}]{job.status.value}[/{color}]")
    console.print(
        f"Nodes: {job.nodes_created} | Edges: {job.edges_created} | Vectors: {job.vectors_created}"
    )
    for err in job.file_errors[:10]:
        console.print(f"  [yellow]![/yellow] {err}")
    if job.error_message:
        console.print(f"[dim]{job.error_message}[/dim]")
    if job.status != JobStatus.COMPLETED:
        raise typer.Exit(code=1)


@app.command("jobs")
def jobs(
    repo: Optional[str] = typer.Option(None, "--repo", "-r", help="Only this repository."),
    limit: int = typer.Option(10, "--limit", min=1, max=200),
):
    """Show recent sync jobs."""
    store = JobStore(config.JOBS_DB)
    try:
        recent = store.list_jobs(repo, limit)
    finally:
        store.close()
    if not recent:
        typer.echo("No sync jobs yet.")
        return
    table = Table(title="Sync jobs")
    for col in ("Job", "Repository", "Type", "Status", "Progress", "Nodes", "Edges", "Errors"):
        table.add_column(col)
    for job in recent:
        table.add_row(
            job.id[:12], job.repo_id, job.job_type.value, job.status.value,
            f"{job.progress}%", str(job.nodes_created), str(job.edges_created),
            str(len(job.file_errors)),
        )
    console.print(table)


@app.command("languages")
def languages():
    """List languages whose grammars are installed."""
    result = ParserFacade().initialize()
    for lang in result.languages:
        console.print(f"[green]+[/green] {lang.value}")
    for lang, err in result.errors.items():
        console.print(f"[red]-[/red] {lang.value}  [dim]{err}[/dim]")


# ===================================================================
# Graph reads
# ===================================================================

RepoOption = typer.Option(None, "--repo", "-r", help="Repository id (default: last synced).")


@app.command("stats")
def stats(repo: Optional[str] = RepoOption):
    """Node and edge counts."""
    graph = _open_graph(_resolve_repo(repo))
    s = graph.get_stats()
    graph.store.close()
    table = Table(title=f"Graph: {graph.repo_id}")
    table.add_column("Metric")
    table.add_column("Count", justify="right")
    table.add_row("Files", str(s.file_count))
    table.add_row("Symbols", str(s.symbol_count))
    table.add_row("Functions / methods", str(s.function_count))
    table.add_row("Classes / interfaces", str(s.class_count))
    table.add_row("Commits", str(s.nodes_by_label.get("Commit", 0)))
    for edge_type, count in sorted(s.relationships_by_type.items()):
        table.add_row(edge_type, str(count))
    console.print(table)


@app.command("callers")
def callers(symbol: str = typer.Argument(...), repo: Optional[str] = RepoOption):
    """Symbols that call SYMBOL."""
    graph = _open_graph(_resolve_repo(repo))
    found = graph.get_symbol(symbol)
    result = graph.get_callers(symbol)
    graph.store.close()
    if found is None:
        typer.echo(f"Symbol '{symbol}' not found.")
        raise typer.Exit(code=1)
    if not result:
        typer.echo(f"No callers of {found.qualified_name}.")
        return
    console.print(_symbol_table(f"Callers of {found.qualified_name}", result))


@app.command("callees")
def callees(symbol: str = typer.Argument(...), repo: Optional[str] = RepoOption):
    """Symbols that SYMBOL calls."""
    graph = _open_graph(_resolve_repo(repo))
    found = graph.get_symbol(symbol)
    result = graph.get_callees(symbol)
    graph.store.close()
    if found is None:
        typer.echo(f"Symbol '{symbol}' not found.")
        raise typer.Exit(code=1)
    if not result:
        typer.echo(f"{found.qualified_name} calls nothing known.")
        return
    console.print(_symbol_table(f"Callees of {found.qualified_name}", result))


@app.command("usage")
def usage(symbol: str = typer.Argument(...), repo: Optional[str] = RepoOption):
    """A symbol with its direct callers and callees."""
    graph = _open_graph(_resolve_repo(repo))
    info = graph.get_symbol_usage(symbol)
    graph.store.close()
    if info is None:
        typer.echo(f"Symbol '{symbol}' not found.")
        raise typer.Exit(code=1)
    s = info.symbol
    console.print(f"[bold cyan]{s.qualified_name}[/bold cyan] ({s.kind.value}, {s.visibility.value})")
    if s.signature:
        console.print(f"  {s.signature}")
    console.print(f"  {s.file}:{s.start_line}-{s.end_line}  complexity={s.complexity}")
    console.print(f"  callers: {info.caller_count}  callees: {info.callee_count}")
    for c in info.callers:
        console.print(f"  <- {c.qualified_name}")
    for c in info.callees:
        console.print(f"  -> {c.qualified_name}")


@app.command("paths")
def paths(
    from_symbol: str = typer.Argument(..., metavar="FROM"),
    to_symbol: str = typer.Argument(..., metavar="TO"),
    max_depth: int = typer.Option(10, "--max-depth", min=1, max=50),
    repo: Optional[str] = RepoOption,
):
    """Call paths from FROM to TO."""
    graph = _open_graph(_resolve_repo(repo))
    found = graph.find_call_paths(from_symbol, to_symbol, max_depth)
    graph.store.close()
    if not found:
        typer.echo(f"No call path within {max_depth} hops.")
        return
    for p in found:
        typer.echo(" -> ".join(p.path))


@app.command("impact")
def impact(
    symbol: str = typer.Argument(...),
    hops: int = typer.Option(2, min=1, max=6, help="Caller traversal depth."),
    repo: Optional[str] = RepoOption,
):
    """Symbols that transitively call SYMBOL."""
    graph = _open_graph(_resolve_repo(repo))
    found = graph.get_symbol(symbol)
    result = graph.get_impact(symbol, hops)
    graph.store.close()
    if found is None:
        typer.echo(f"Symbol '{symbol}' not found.")
        raise typer.Exit(code=1)
    if not result:
        typer.echo(f"Nothing depends on {found.qualified_name}.")
        return
    console.print(_symbol_table(f"Impact of {found.qualified_name} ({hops} hops)", result))


@app.command("dead-code")
def dead_code(repo: Optional[str] = RepoOption):
    """Non-exported functions and methods nothing calls."""
    graph = _open_graph(_resolve_repo(repo))
    result = graph.find_dead_code()
    graph.store.close()
    if not result:
        typer.echo("No dead code found.")
        return
    console.print(_symbol_table("Uncalled symbols", result))


@app.command("hotspots")
def hotspots(
    threshold: int = typer.Option(10, "--threshold", min=1),
    limit: int = typer.Option(50, "--limit", min=1),
    repo: Optional[str] = RepoOption,
):
    """Symbols at or above a cyclomatic complexity threshold."""
    graph = _open_graph(_resolve_repo(repo))
    result = graph.find_complexity_hotspots(threshold, limit)
    graph.store.close()
    if not result:
        typer.echo(f"No symbols with complexity >= {threshold}.")
        return
    console.print(_symbol_table(f"Complexity >= {threshold}", result))


@app.command("history")
def history(
    path: str = typer.Argument(..., help="Repository-relative file path."),
    limit: int = typer.Option(20, "--limit", min=1),
    repo: Optional[str] = RepoOption,
):
    """Commits that touched PATH, newest first."""
    graph = _open_graph(_resolve_repo(repo))
    found = graph.get_file_node(path)
    result = graph.get_file_history(path, limit)
    graph.store.close()
    if found is None:
        typer.echo(f"File '{path}' not found.")
        raise typer.Exit(code=1)
    if not result:
        typer.echo(f"No recorded commits for {path}.")
        return
    table = Table(title=f"History of {path}")
    table.add_column("Commit", style="cyan")
    table.add_column("Change")
    table.add_column("Author")
    table.add_column("Date")
    table.add_column("Message")
    for c in result:
        when = datetime.fromtimestamp(c.timestamp, tz=timezone.utc).strftime("%Y-%m-%d") if c.timestamp else ""
        table.add_row(c.sha[:10], c.change_type or "", c.author, when, c.message)
    console.print(table)


@app.command("query")
def query(sql: str = typer.Argument(..., help="Read-only SQL over files, symbols and edges."), repo: Optional[str] = RepoOption):
    """Run a read-only query against the graph tables."""
    try:
        screen_query(sql)
    except UnsafeQueryError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=2)
    graph = _open_graph(_resolve_repo(repo))
    try:
        rows = graph.query(sql)
    except RepographError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=1)
    finally:
        graph.store.close()
    if not rows:
        typer.echo("No rows.")
        return
    table = Table()
    for col in rows[0].keys():
        table.add_column(str(col))
    for row in rows:
        table.add_row(*("" if v is None else str(v) for v in row.values()))
    console.print(table)


@app.command("search")
def search(
    text: str = typer.Argument(..., help="Natural-language or code query."),
    top_k: int = typer.Option(5, min=1, max=30),
    repo: Optional[str] = RepoOption,
):
    """Semantic search over indexed chunks."""
    from .embeddings import get_embedder
    from .vector_store import LANCE_AVAILABLE, VectorStore

    repo_id = _resolve_repo(repo)
    if not LANCE_AVAILABLE:
        typer.echo("lancedb is not installed. Install with: pip install lancedb pyarrow")
        raise typer.Exit(code=1)
    embedder = get_embedder(load_sync_settings().embedding_model)
    store = VectorStore(config.VECTOR_DIR, embedder.model_key)
    hits = store.search(embedder.embed_text(text), repo_id=repo_id, n_results=top_k)
    if not hits:
        typer.echo("No matches found.")
        return
    for hit in hits:
        typer.echo(f"[{hit['symbol_kind']}] {hit['symbol_name']}  score={hit['score']:.3f}")
        typer.echo(f"  {hit['file_path']}:{hit['start_line']}-{hit['end_line']}")


# ===================================================================
# Configuration
# ===================================================================

config_app = typer.Typer(help="Show and edit config.toml.")
app.add_typer(config_app, name="config")


@config_app.command("init")
def config_init():
    """Write a default config file."""
    if init_config():
        typer.echo(f"Wrote {config_manager.CONFIG_FILE}")
    else:
        typer.echo(f"{config_manager.CONFIG_FILE} already exists.")


@config_app.command("show")
def config_show():
    """Print the effective sync settings."""
    table = Table(title="Sync settings")
    table.add_column("Key")
    table.add_column("Value")
    for key, value in asdict(load_sync_settings()).items():
        table.add_row(key, str(value))
    console.print(table)


@config_app.command("set")
def config_set(key: str = typer.Argument(...), value: str = typer.Argument(...)):
    """Set one [sync] value."""
    defaults = asdict(SyncSettings())
    if key not in defaults:
        raise typer.BadParameter(f"Unknown setting '{key}'. Known: {', '.join(sorted(defaults))}")
    try:
        parsed = type(defaults[key])(value)
    except ValueError:
        raise typer.BadParameter(f"'{value}' is not a valid {type(defaults[key]).__name__}")
    save_sync_setting(key, parsed)
    typer.echo(f"{key} = {parsed}")


@config_app.command("set-embedding")
def config_set_embedding(model: str = typer.Argument(..., help="Embedding model key.")):
    """Choose the embedding model."""
    from .embeddings import EMBEDDING_MODELS

    if model not in EMBEDDING_MODELS:
        raise typer.BadParameter(f"Unknown model '{model}'. Known: {', '.join(EMBEDDING_MODELS)}")
    save_embedding_config(model)
    typer.echo(f"Embedding model set to '{model}'.")


if __name__ == "__main__":
    app()
