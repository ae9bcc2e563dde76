"""Command-line interface for the memory graph.

Entry point: `mg` command (defined in pyproject.toml).
"""

import logging

import click
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from memory_graph.config import Config

console = Console()


def setup_logging(verbose: bool = False) -> None:
    """Configure logging with rich handler."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=console, rich_tracebacks=True)],
    )


def _open_store(ctx: click.Context):
    from memory_graph.graph.store import open_store

    if "store" not in ctx.obj:
        ctx.obj["store"] = ctx.with_resource(open_store(ctx.obj["config"]))
    return ctx.obj["store"]


def _entities(ctx: click.Context):
    from memory_graph.graph.entities import GraphEntities

    return GraphEntities(_open_store(ctx))


def _ingestor(ctx: click.Context):
    from memory_graph.agents.ingestor import IngestorAgent
    from memory_graph.extract.providers import build_completion_fn
    from memory_graph.graph.dedup import AliasResolver

    config = ctx.obj["config"]
    try:
        extract_fn = ctx.obj.get("extract_fn") or build_completion_fn(config)
    except ValueError as e:
        raise click.ClickException(str(e))
    return IngestorAgent(_entities(ctx), extract_fn, AliasResolver(config))


def _print_ingest_result(result) -> None:
    if result.success:
        console.print(
            f"[green]Ingested run {result.source_info['run_id']}:[/green] "
            f"{len(result.nodes)} nodes, {len(result.edges)} edges, "
            f"{len(result.errors)} item errors"
        )
    console.print_json(data=result.to_dict())


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging.")
@click.option(
    "--backend",
    type=click.Choice(["sqlite", "neo4j"]),
    default=None,
    help="Graph backend (default: MEMORY_GRAPH_BACKEND or sqlite).",
)
@click.option("--db", "sqlite_path", default=None, help="SQLite database path.")
@click.pass_context
def main(ctx: click.Context, verbose: bool, backend: str | None, sqlite_path: str | None) -> None:
    """Memory graph of services, env vars and incidents."""
    setup_logging(verbose)
    # Per-invocation copy; the open store is cached on it.
    ctx.obj = dict(ctx.obj or {})
    config = ctx.obj.get("config") or Config()
    updates = {}
    if backend:
        updates["backend"] = backend
    if sqlite_path:
        updates["sqlite_path"] = sqlite_path
    ctx.obj["config"] = config.model_copy(update=updates)


@main.command()
@click.option("--verify/--no-verify", default=True, help="Verify Neo4j schema after creation.")
@click.pass_context
def schema(ctx: click.Context, verify: bool) -> None:
    """Create the graph schema. Idempotent, safe to run repeatedly."""
    store = _open_store(ctx)
    store.init_schema()
    console.print(f"[green]Schema ready ({ctx.obj['config'].backend})[/green]")

    if verify and ctx.obj["config"].backend == "neo4j":
        from memory_graph.graph.schema import verify_schema

        result = verify_schema(store.driver, store.database)
        console.print(f"  Constraints: {', '.join(result['constraint_names']) or '-'}")
        console.print(f"  Indexes:     {', '.join(result['index_names']) or '-'}")
        if result["missing"]:
            console.print(f"[red]Missing: {', '.join(result['missing'])}[/red]")


@main.command()
@click.argument("text")
@click.option("--run-id", default=None, help="Ingestion run id (default: ingest-<ms>).")
@click.option("--source-file", default=None, help="Source file recorded as provenance.")
@click.option("--line-number", type=int, default=None, help="Line number in the source file.")
@click.pass_context
def ingest(
    ctx: click.Context,
    text: str,
    run_id: str | None,
    source_file: str | None,
    line_number: int | None,
) -> None:
    """Extract entities from TEXT and upsert them into the graph."""
    result = _ingestor(ctx).ingest(
        text, run_id=run_id, source_file=source_file, line_number=line_number
    )
    _print_ingest_result(result)
    if not result.success:
        ctx.exit(1)


@main.command(name="ingest-file")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.option("--run-id", default=None, help="Ingestion run id shared by all lines.")
@click.pass_context
def ingest_file(ctx: click.Context, path: str, run_id: str | None) -> None:
    """Ingest a text file line by line, recording line numbers."""
    from pathlib import Path

    try:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    except UnicodeDecodeError as e:
        raise click.ClickException(f"{path} is not valid UTF-8 text: {e}")
    summary = _ingestor(ctx).ingest_lines(
        lines, source_file=path, run_id=run_id, show_progress=True
    )

    console.print("\n[green]Ingestion complete:[/green]")
    console.print(f"  Lines:        {summary['total']}")
    console.print(f"  Succeeded:    {summary['succeeded']}")
    console.print(f"  Failed:       {summary['failed']}")
    console.print(f"  Nodes:        {summary['nodes']}")
    console.print(f"  Edges:        {summary['edges']}")
    console.print(f"  Item errors:  {summary['item_errors']}")

    if summary["errors"]:
        console.print("\n[yellow]Failed lines:[/yellow]")
        for err in summary["errors"][:20]:
            console.print(f"  - line {err['line_number']}: {err['error']}")
        if len(summary["errors"]) > 20:
            console.print(f"  ... and {len(summary['errors']) - 20} more")


@main.command(name="ingest-deployment")
@click.argument("text")
@click.option("--service", "service_name", default=None, help="Service the log belongs to.")
@click.pass_context
def ingest_deployment(ctx: click.Context, text: str, service_name: str | None) -> None:
    """Ingest a deployment log or README snippet."""
    result = _ingestor(ctx).ingest_deployment_info(text, service_name)
    _print_ingest_result(result)
    if not result.success:
        ctx.exit(1)


@main.command(name="ingest-incident")
@click.argument("text")
@click.option("--incident", "incident_id", default=None, help="Incident id, e.g. INC-101.")
@click.pass_context
def ingest_incident(ctx: click.Context, text: str, incident_id: str | None) -> None:
    """Ingest an incident report."""
    result = _ingestor(ctx).ingest_incident_info(text, incident_id)
    _print_ingest_result(result)
    if not result.success:
        ctx.exit(1)


@main.command()
@click.argument("question")
@click.option("--service", "service_name", default=None, help="Service the question is about.")
@click.option("--incident", "incident_id", default=None, help="Incident the question is about.")
@click.option(
    "--present",
    "present_env_vars",
    multiple=True,
    help="Env var that is already set (repeatable).",
)
@click.pass_context
def ask(
    ctx: click.Context,
    question: str,
    service_name: str | None,
    incident_id: str | None,
    present_env_vars: tuple[str, ...],
) -> None:
    """Answer a rollout QUESTION from graph content only."""
    from memory_graph.agents.planner import PlannerAgent

    planner = PlannerAgent(_entities(ctx))
    result = planner.answer_question(
        question,
        {
            "service_name": service_name,
            "incident_id": incident_id,
            "present_env_vars": list(present_env_vars),
        },
    )
    console.print_json(data=result)
    if not result.get("success"):
        ctx.exit(1)


@main.command()
@click.argument("node_id")
@click.pass_context
def node(ctx: click.Context, node_id: str) -> None:
    """Show a node and its edges."""
    store = _open_store(ctx)
    found = store.get_node(node_id)
    if found is None:
        console.print(f"[red]Node {node_id!r} not found[/red]")
        ctx.exit(1)
    edges = store.get_edges_by_node(node_id)
    console.print_json(
        data={"node": found.to_dict(), "edges": [e.to_dict() for e in edges]}
    )


@main.command()
@click.argument("node_id")
@click.option("--edge-type", default=None, help="Only follow edges of this type.")
@click.option("--hops", type=int, default=1, show_default=True)
@click.pass_context
def neighbors(ctx: click.Context, node_id: str, edge_type: str | None, hops: int) -> None:
    """List nodes within HOPS of NODE_ID."""
    found = _open_store(ctx).get_neighbors(node_id, edge_type, hops)
    console.print_json(data=[n.to_dict() for n in found])


@main.command()
@click.argument("node_ids", nargs=-1, required=True)
@click.option("--hops", type=int, default=2, show_default=True)
@click.pass_context
def subgraph(ctx: click.Context, node_ids: tuple[str, ...], hops: int) -> None:
    """Dump the subgraph within HOPS of the given seed nodes as JSON."""
    result = _open_store(ctx).get_subgraph(list(node_ids), hops)
    console.print_json(data=result.to_dict())


@main.command()
@click.pass_context
def stats(ctx: click.Context) -> None:
    """Count nodes and edges by type."""
    store = _open_store(ctx)
    table = Table(title="Memory graph")
    table.add_column("Kind")
    table.add_column("Type")
    table.add_column("Count", justify="right")
    for node_type, count in store.count_nodes().items():
        table.add_row("node", node_type, str(count))
    for edge_type, count in store.count_edges().items():
        table.add_row("edge", edge_type, str(count))
    console.print(table)


@main.command()
@click.argument("node_type", type=click.Choice(["Service", "EnvVar", "Incident"]))
@click.argument("alias")
@click.argument("canonical")
@click.pass_context
def alias(ctx: click.Context, node_type: str, alias: str, canonical: str) -> None:
    """Register ALIAS as another spelling of CANONICAL."""
    from memory_graph.graph.dedup import AliasResolver

    resolver = AliasResolver(ctx.obj["config"])
    resolver.add_alias(node_type, alias, canonical)
    resolver.save()
    console.print(f"[green]{node_type} alias {alias!r} -> {canonical!r}[/green]")


if __name__ == "__main__":
    main()
