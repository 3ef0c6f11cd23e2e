#!/usr/bin/env python3
"""
Paged Graph CLI - inspect and manage per-user knowledge graphs
"""

import asyncio
import json
import logging

import click
from pydantic import ValidationError
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from paged_graph import __version__
from paged_graph.graph.storage import PagedGraphStorage
from paged_graph.models import KnowledgeGraph
from paged_graph.settings import settings

console = Console()


def _configure_logging() -> None:
    level = (settings.log_level or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def get_storage(backend=None) -> PagedGraphStorage:
    """Build storage from settings, optionally overriding the backend."""
    cfg = settings.model_copy(update={"backend": backend}) if backend else settings
    return PagedGraphStorage.from_settings(cfg)


def run_with_storage(backend, fn):
    async def _main():
        async with get_storage(backend) as storage:
            return await fn(storage)

    return asyncio.run(_main())


@click.group()
@click.option("--backend", default=None, help="Override PAGED_GRAPH_BACKEND (memory|arango)")
@click.pass_context
def cli(ctx, backend):
    """Paged Graph - per-user knowledge graph storage"""
    _configure_logging()
    ctx.ensure_object(dict)
    ctx.obj["backend"] = backend


@cli.command()
def version():
    """Print the package version"""
    click.echo(__version__)


@cli.command()
@click.pass_context
def users(ctx):
    """List users that own at least one entity"""
    found = run_with_storage(ctx.obj["backend"], lambda s: s.list_users())
    if not found:
        console.print("[yellow]No users found[/yellow]")
        return
    for user_id in found:
        click.echo(user_id)


@cli.command()
@click.argument("user_id")
@click.pass_context
def summary(ctx, user_id):
    """Show the summary index of a user"""
    result = run_with_storage(ctx.obj["backend"], lambda s: s.get_user_summary(user_id))

    table = Table(title=f"Graph summary: {user_id}")
    table.add_column("Field", style="cyan")
    table.add_column("Value")
    table.add_row("Entities", str(result.total_entities))
    table.add_row("Relations", str(result.total_relations))
    table.add_row("Entity types", ", ".join(f"{k}={v}" for k, v in sorted(result.entity_types.items())))
    table.add_row("Recent", ", ".join(result.recent_entities))
    table.add_row("Frequent terms", ", ".join(result.search_index.frequent_terms))
    table.add_row("Updated", result.updated_at.isoformat())
    console.print(table)


@cli.command()
@click.argument("user_id")
@click.argument("entity_id")
@click.option("--depth", default=1, type=int, help="Maximum number of hops")
@click.pass_context
def neighbors(ctx, user_id, entity_id, depth):
    """Show the entities within DEPTH hops of an entity"""
    graph = run_with_storage(ctx.obj["backend"], lambda s: s.get_connected_entities(user_id, entity_id, depth))
    if not graph.entities:
        console.print(f"[yellow]Entity {entity_id} not found[/yellow]")
        return

    table = Table(title=f"Within {depth} hop(s) of {entity_id}")
    table.add_column("Entity", style="cyan")
    table.add_column("Type", style="green")
    table.add_column("Name")
    for e in graph.entities:
        table.add_row(e.entity_id, e.entity_type, e.name)
    console.print(table)

    for r in graph.relations:
        console.print(f"  {r.from_entity_id} -[{r.relation_type}]-> {r.to_entity_id}", markup=False)


@cli.command()
@click.argument("user_id")
@click.argument("query")
@click.option("--limit", default=20, help="Number of results")
@click.pass_context
def search(ctx, user_id, query, limit):
    """Search a user's entities"""
    results = run_with_storage(ctx.obj["backend"], lambda s: s.search_entities(user_id, query, limit))
    if not results:
        console.print("[yellow]No results found[/yellow]")
        return
    for i, e in enumerate(results, 1):
        console.print(f"{i}. [cyan]{escape(e.name)}[/cyan] ({escape(e.entity_type)}) [dim]{escape(e.entity_id)}[/dim]")


@cli.command(name="export")
@click.argument("user_id")
@click.option("--output", "-o", type=click.Path(), help="Write to file instead of stdout")
@click.pass_context
def export_graph(ctx, user_id, output):
    """Export a user's whole graph as JSON"""
    graph = run_with_storage(ctx.obj["backend"], lambda s: s.load_for_user(user_id))
    data = json.dumps(graph.model_dump(mode="json"), indent=2, ensure_ascii=False)
    if output:
        with open(output, "w", encoding="utf-8") as f:
            f.write(data)
        console.print(
            f"[green]Exported {len(graph.entities)} entities and {len(graph.relations)} relations to {output}[/green]"
        )
    else:
        click.echo(data)


@cli.command(name="import")
@click.argument("user_id")
@click.argument("path", type=click.Path(exists=True, dir_okay=False))
@click.pass_context
def import_graph(ctx, user_id, path):
    """Import a JSON knowledge graph for a user"""
    try:
        with open(path, encoding="utf-8") as f:
            graph = KnowledgeGraph.model_validate(json.load(f))
    except json.JSONDecodeError as e:
        raise click.ClickException(f"{path} is not valid JSON: {e}") from e
    except ValidationError as e:
        raise click.ClickException(f"{path} is not a knowledge graph: {e}") from e
    run_with_storage(ctx.obj["backend"], lambda s: s.save_for_user(user_id, graph))
    console.print(f"[green]Imported {len(graph.entities)} entities and {len(graph.relations)} relations[/green]")


@cli.command()
@click.pass_context
def cleanup(ctx):
    """Remove orphaned relations and refresh every summary"""
    removed = run_with_storage(ctx.obj["backend"], lambda s: s.cleanup())
    console.print(f"[green]Removed {removed} orphaned relations[/green]")


@cli.command()
@click.option("--host", default=None, help="Bind host")
@click.option("--port", default=None, type=int, help="Bind port")
@click.pass_context
def serve(ctx, host, port):
    """Serve the HTTP API"""
    import uvicorn

    from paged_graph.api.app import create_app

    app = create_app(get_storage(ctx.obj["backend"]))
    uvicorn.run(
        app,
        host=host or settings.bind_host,
        port=port or settings.bind_port,
        log_level=(settings.log_level or "info").lower(),
    )


if __name__ == "__main__":
    cli()
