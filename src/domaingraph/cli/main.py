"""domaingraph CLI: build, sync and query cross-file dependency graphs."""

from __future__ import annotations

import json
import logging
import shlex
import uuid
from collections.abc import Callable
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from domaingraph import __version__
from domaingraph.config.settings import (
    ANALYZER_CMD_ENV,
    ENRICHER_CMD_ENV,
    STATE_DIR_ENV,
    STATE_DIR_NAME,
)
from domaingraph.core.graph.graph import ProjectGraph
from domaingraph.core.graph.registry import GraphRegistry
from domaingraph.core.parsers.base import SourceParser
from domaingraph.core.storage.memory import InMemoryClassStore
from domaingraph.core.storage.state import ProjectState, ProjectStateStore

console = Console()

app = typer.Typer(
    name="domaingraph",
    help="domaingraph: dependency graphs of your code, kept in sync with git.",
    no_args_is_help=True,
)

_STATE_DIR_OPTION = typer.Option(
    None,
    "--state-dir",
    envvar=STATE_DIR_ENV,
    help=f"Where graph state is kept (default: <repo>/{STATE_DIR_NAME}).",
)


def _version_callback(value: bool) -> None:
    """Print the version and exit."""
    if value:
        console.print(f"domaingraph v{__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: Optional[bool] = typer.Option(  # noqa: N803
        None,
        "--version",
        "-v",
        help="Show version and exit.",
        callback=_version_callback,
        is_eager=True,
    ),
    verbose: bool = typer.Option(False, "--verbose", help="Log progress to stderr."),
) -> None:
    """domaingraph: dependency graphs of your code, kept in sync with git."""
    if verbose:
        logging.basicConfig(
            level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s"
        )


def _resolve_repo(path: Path) -> Path:
    repo_path = path.resolve()
    if not repo_path.is_dir():
        console.print(f"[red]Error:[/red] {repo_path} is not a directory.")
        raise typer.Exit(code=1)
    return repo_path


def _state_store(repo_path: Path, state_dir: Path | None) -> ProjectStateStore:
    return ProjectStateStore((state_dir or repo_path / STATE_DIR_NAME).resolve())


def _load_state(state_store: ProjectStateStore, repo_path: Path) -> ProjectState:
    state = state_store.load()
    if state is None:
        console.print(
            f"[red]Error:[/red] No graph found for {repo_path}. Run 'domaingraph analyze' first."
        )
        raise typer.Exit(code=1)
    return state


def _split_command(command: str | None) -> list[str] | None:
    return shlex.split(command) if command else None


def _persister(
    state_store: ProjectStateStore, store: InMemoryClassStore
) -> Callable[[ProjectState], None]:
    """Return a callback saving both the project state and the record store."""

    def persist(state: ProjectState) -> None:
        stats = None
        if state.graph_json is not None:
            stats = ProjectGraph.from_json(state.graph_json).stats()
        state_store.state_dir.mkdir(parents=True, exist_ok=True)
        store.dump(state_store.records_path)
        state_store.save(state, stats=stats)

    return persist


@app.command()
def analyze(
    path: Path = typer.Argument(Path("."), help="Path to the repository to analyse."),
    state_dir: Optional[Path] = _STATE_DIR_OPTION,
    language: Optional[str] = typer.Option(
        None, "--language", "-l", help="Force a language instead of detecting it."
    ),
    analyzer_cmd: Optional[str] = typer.Option(
        None,
        "--analyzer-cmd",
        envvar=ANALYZER_CMD_ENV,
        help="External per-file analyzer for TypeScript/JavaScript.",
    ),
    enricher_cmd: Optional[str] = typer.Option(
        None,
        "--enricher-cmd",
        envvar=ENRICHER_CMD_ENV,
        help="External command that enriches classes with descriptions.",
    ),
) -> None:
    """Build the dependency graph of a repository from scratch."""
    from domaingraph.core.ingestion.pipeline import AnalysisResult, run_analysis
    from domaingraph.core.parsers import detect_parser, get_parser
    from domaingraph.core.sync.enrichment import CommandEnricher
    from domaingraph.core.sync.vcs import GitVersionControl

    repo_path = _resolve_repo(path)
    state_store = _state_store(repo_path, state_dir)
    previous = state_store.load()

    try:
        if language:
            parser = get_parser(language, _split_command(analyzer_cmd))
        else:
            parser = detect_parser(repo_path, _split_command(analyzer_cmd))
    except ValueError as exc:
        console.print(f"[red]Error:[/red] {exc}")
        raise typer.Exit(code=1) from exc

    state = ProjectState(
        id=previous.id if previous is not None else uuid.uuid4().hex,
        name=repo_path.name,
        repo_path=str(repo_path),
        language=parser.language,
    )
    store = InMemoryClassStore.load(state_store.records_path)
    enricher_command = _split_command(enricher_cmd)
    enricher = CommandEnricher(enricher_command) if enricher_command else None

    console.print(f"[bold]Analysing[/bold] {repo_path} ({parser.language})")

    result: AnalysisResult | None = None
    with Progress(
        SpinnerColumn(),
        TextColumn("[progress.description]{task.description}"),
        console=console,
        transient=True,
    ) as progress:
        task = progress.add_task("Starting...", total=None)

        def on_progress(phase: str, pct: float) -> None:
            progress.update(task, description=f"{phase} ({pct:.0%})")

        try:
            _, result = run_analysis(
                repo_path=repo_path,
                store=store,
                registry=GraphRegistry(),
                state=state,
                parser=parser,
                vcs=GitVersionControl(),
                enricher=enricher,
                progress_callback=on_progress,
                persist_state=_persister(state_store, store),
            )
        except (ValueError, RuntimeError, OSError) as exc:
            console.print(f"[red]Error:[/red] Analysis failed: {exc}")
            raise typer.Exit(code=1) from exc

    console.print()
    console.print("[bold green]Analysis complete.[/bold green]")
    console.print(f"  Files:          {result.files}")
    console.print(f"  Nodes:          {result.nodes}")
    console.print(f"  Edges:          {result.edges}")
    console.print(f"  Entry points:   {result.entry_points}")
    console.print(f"  Methods:        {result.methods}")
    console.print(f"  Endpoints:      {result.endpoints}")
    if result.parse_failures > 0:
        console.print(f"  Parse failures: {result.parse_failures}")
    if enricher is not None:
        console.print(f"  Enriched:       {result.enriched} ({result.enrichment_failed} failed)")
    if result.commit_hash:
        console.print(f"  Commit:         {result.commit_hash[:12]}")
    console.print(f"  Duration:       {result.duration_seconds:.2f}s")


@app.command()
def sync(
    path: Path = typer.Argument(Path("."), help="Path to the repository to sync."),
    state_dir: Optional[Path] = _STATE_DIR_OPTION,
    analyzer_cmd: Optional[str] = typer.Option(
        None,
        "--analyzer-cmd",
        envvar=ANALYZER_CMD_ENV,
        help="External per-file analyzer for TypeScript/JavaScript.",
    ),
    enricher_cmd: Optional[str] = typer.Option(
        None,
        "--enricher-cmd",
        envvar=ENRICHER_CMD_ENV,
        help="External command that enriches classes with descriptions.",
    ),
) -> None:
    """Bring a saved graph up to the repository's current commit."""
    from domaingraph.core.parsers import detect_parser, get_parser
    from domaingraph.core.sync.engine import IncrementalSyncEngine, SyncStatus
    from domaingraph.core.sync.enrichment import CommandEnricher
    from domaingraph.core.sync.vcs import GitVersionControl

    repo_path = _resolve_repo(path)
    state_store = _state_store(repo_path, state_dir)
    state = _load_state(state_store, repo_path)
    store = InMemoryClassStore.load(state_store.records_path)
    command = _split_command(analyzer_cmd)
    enricher_command = _split_command(enricher_cmd)

    def make_parser(project: ProjectState) -> SourceParser:
        if project.language:
            return get_parser(project.language, command)
        return detect_parser(Path(project.repo_path), command)

    engine = IncrementalSyncEngine(
        store=store,
        registry=GraphRegistry(),
        vcs=GitVersionControl(),
        enricher=CommandEnricher(enricher_command) if enricher_command else None,
        persist_state=_persister(state_store, store),
        parser_factory=make_parser,
    )
    result = engine.sync(state)

    match result.status:
        case SyncStatus.SKIPPED:
            console.print(f"[bold]Up to date[/bold] at {(result.commit_hash or '')[:12]}")
        case SyncStatus.COMPLETED:
            console.print(f"[bold green]Synced[/bold green] to {(result.commit_hash or '')[:12]}")
            if result.full_resync:
                console.print("  (full resync)")
            console.print(f"  Added:          {len(result.added)}")
            console.print(f"  Updated:        {len(result.updated)}")
            console.print(f"  Deleted:        {len(result.deleted)}")
            console.print(f"  Unchanged:      {len(result.unchanged)}")
            if result.enriched or result.enrichment_failed:
                console.print(
                    f"  Enriched:       {result.enriched} ({result.enrichment_failed} failed)"
                )
            console.print(f"  Duration:       {result.duration_seconds:.2f}s")
        case SyncStatus.FAILED:
            console.print(f"[red]Sync failed:[/red] {result.error}")
            raise typer.Exit(code=1)


def _load_registry(repo_path: Path, state_dir: Path | None) -> tuple[ProjectState, GraphRegistry]:
    state = _load_state(_state_store(repo_path, state_dir), repo_path)
    registry = GraphRegistry()
    if not registry.reload(state):
        console.print(f"[red]Error:[/red] Saved graph for {repo_path} is missing or unreadable.")
        raise typer.Exit(code=1)
    return state, registry


@app.command()
def query(
    q: str = typer.Argument(..., help="Graph query, e.g. 'shop:UserService:methods'."),
    path: Path = typer.Argument(Path("."), help="Path to the repository."),
    state_dir: Optional[Path] = _STATE_DIR_OPTION,
    as_json: bool = typer.Option(False, "--json", help="Print the raw JSON result."),
) -> None:
    """Run a graph query against the saved graph."""
    from domaingraph.core.query.service import GraphQueryService

    _, registry = _load_registry(_resolve_repo(path), state_dir)
    result = GraphQueryService(registry).execute(q)

    if as_json:
        typer.echo(json.dumps(result.to_dict(), indent=2))
    elif result.error is not None:
        console.print(f"[red]{result.error.kind.value}:[/red] {result.error.message}")
    else:
        console.print(f"[bold]{result.result_type}[/bold] ({result.count})")
        for item in result.results:
            console.print(_format_item(item))
    if result.error is not None:
        raise typer.Exit(code=1)


def _format_item(item: dict) -> str:
    head = item.get("className") or item.get("methodName") or ""
    parts = [f"  {head}"]
    if item.get("classType"):
        parts.append(f"[{item['classType']}]")
    if "methodName" in item and item.get("className"):
        parts.append(f"#{item['methodName']}")
    if item.get("httpMethod"):
        parts.append(f"{item['httpMethod']} {item.get('httpPath') or ''}".rstrip())
    if "exists" in item:
        parts.append("exists" if item["exists"] else "missing")
    line = " ".join(parts)
    if item.get("description"):
        line += f"\n      {item['description']}"
    return line


@app.command()
def context(
    path: Path = typer.Argument(Path("."), help="Path to the repository."),
    trace: Path = typer.Option(..., "--trace", "-t", help="File containing a stack trace."),
    state_dir: Optional[Path] = _STATE_DIR_OPTION,
) -> None:
    """Map a stack trace onto the saved graph."""
    from domaingraph.core.context import build_context, parse_stack_trace

    state, registry = _load_registry(_resolve_repo(path), state_dir)
    try:
        text = trace.read_text(encoding="utf-8")
    except OSError as exc:
        console.print(f"[red]Error:[/red] Cannot read {trace}: {exc}")
        raise typer.Exit(code=1) from exc

    frames = parse_stack_trace(text)
    if not frames:
        console.print("[yellow]No stack frames recognised.[/yellow]")
        raise typer.Exit(code=1)

    graph = registry.get(state.id)
    result = build_context(graph, frames)
    console.print(f"[bold]Execution path[/bold] ({len(result.execution_path)} frames)")
    for entry in result.execution_path:
        marker = "[green]+[/green]" if entry.found else "[red]-[/red]"
        console.print(f"  {marker} {entry.order}. {entry.class_name}#{entry.method_name}")
        if entry.description:
            console.print(f"      {entry.description}")
    if result.related:
        console.print("[bold]Related[/bold]")
        for entry in result.related:
            label = f"{entry.class_name}#{entry.method_name}" if entry.method_name else entry.class_name
            console.print(f"  {label}")


@app.command()
def status(
    path: Path = typer.Argument(Path("."), help="Path to the repository."),
    state_dir: Optional[Path] = _STATE_DIR_OPTION,
) -> None:
    """Show graph status for a repository."""
    repo_path = _resolve_repo(path)
    state_store = _state_store(repo_path, state_dir)
    meta = state_store.load_meta()
    if not meta:
        console.print(
            f"[red]Error:[/red] No graph found for {repo_path}. Run 'domaingraph analyze' first."
        )
        raise typer.Exit(code=1)

    stats = meta.get("stats", {})
    console.print(f"[bold]Graph status for[/bold] {repo_path}")
    console.print(f"  Version:        {meta.get('version', '?')}")
    console.print(f"  Language:       {meta.get('language') or '?'}")
    console.print(f"  Status:         {meta.get('status', '?')}")
    console.print(f"  Anchor:         {(meta.get('anchor') or '-')[:12]}")
    console.print(f"  Last synced:    {meta.get('last_synced_at') or '?'}")
    console.print(f"  Nodes:          {stats.get('nodes', '?')}")
    console.print(f"  Edges:          {stats.get('edges', '?')}")
    console.print(f"  Entry points:   {stats.get('entry_points', '?')}")
    console.print(f"  Methods:        {stats.get('methods', '?')}")
    if meta.get("error"):
        console.print(f"  [red]Error:[/red]          {meta['error']}")


@app.command()
def clean(
    path: Path = typer.Argument(Path("."), help="Path to the repository."),
    state_dir: Optional[Path] = _STATE_DIR_OPTION,
    force: bool = typer.Option(False, "--force", "-f", help="Skip confirmation prompt."),
) -> None:
    """Delete the saved graph for a repository."""
    repo_path = _resolve_repo(path)
    state_store = _state_store(repo_path, state_dir)

    if not state_store.state_dir.exists():
        console.print(f"[red]Error:[/red] No graph found at {repo_path}. Nothing to clean.")
        raise typer.Exit(code=1)

    if not force:
        confirm = typer.confirm(f"Delete graph state at {state_store.state_dir}?")
        if not confirm:
            console.print("Aborted.")
            raise typer.Exit()

    state_store.clear()
    console.print(f"[green]Deleted[/green] {state_store.state_dir}")
