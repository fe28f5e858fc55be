"""schemaloom - Main entry point."""

import json
import logging
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from .analysis import analyze_patterns, diff_snapshots
from .config import Settings
from .database import SchemaSnapshot, create_executor
from .discovery import DiscoveryResult, SchemaDiscovery
from .errors import SchemaError

app = typer.Typer(
    name="schemaloom",
    help="Introspect relational schemas and the relationships between their tables",
    add_completion=False,
)

console = Console()


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj["settings"]


def _discover(ctx: typer.Context) -> DiscoveryResult:
    settings = _settings(ctx)
    config = settings.to_discovery_config()
    try:
        with create_executor(settings.dialect, settings.database) as executor:
            result = SchemaDiscovery.for_executor(executor, config).run()
    except SchemaError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)

    for error in result.errors:
        console.print(f"[yellow]Warning: {error.message}[/yellow]")
    return result


@app.callback()
def main(
    ctx: typer.Context,
    database: Optional[str] = typer.Option(None, "--database", "-d", help="Database file or PostgreSQL DSN"),
    dialect: Optional[str] = typer.Option(None, "--dialect", help="sqlite, postgres or duckdb"),
    namespace: Optional[str] = typer.Option(None, "--namespace", "-n", help="Schema to introspect"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    schemaloom - discover a database's tables, keys and relationships.

    Settings are read from SCHEMALOOM_* environment variables or a .env
    file; options given here override them.

    Examples:

        schemaloom -d app.db inspect

        schemaloom -d app.db relationships --all

        schemaloom --dialect postgres -d postgresql://localhost/app snapshot -o schema.json
    """
    settings = Settings()
    overrides = {
        key: value
        for key, value in (("database", database), ("dialect", dialect), ("namespace", namespace))
        if value is not None
    }
    if overrides:
        settings = settings.model_copy(update=overrides)

    level = logging.DEBUG if verbose else getattr(logging, settings.log_level.upper(), logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    ctx.obj = {"settings": settings}


@app.command()
def config(ctx: typer.Context):
    """Show current configuration."""
    settings = _settings(ctx)
    console.print("[bold]Current Configuration[/bold]")
    console.print(f"  Dialect: {settings.dialect}")
    console.print(f"  Database: {settings.database}")
    console.print(f"  Namespace: {settings.namespace or 'default'}")
    console.print(f"  Include tables: {', '.join(settings.include_tables) or 'all'}")
    console.print(f"  Exclude tables: {', '.join(settings.exclude_tables) or 'none'}")
    console.print(f"  Include views: {'Yes' if settings.include_views else 'No'}")
    console.print(f"  Cache TTL: {settings.cache_ttl if settings.cache_ttl is not None else 'Not set'}")
    console.print(f"  Type overrides: {len(settings.type_overrides)}")


@app.command()
def inspect(
    ctx: typer.Context,
    table: Optional[str] = typer.Option(None, "--table", "-t", help="Show the columns of one table"),
):
    """List discovered tables, or the columns of one table."""
    result = _discover(ctx)
    snapshot = result.snapshot

    if table is None:
        output = Table(title=f"Tables ({snapshot.dialect})")
        output.add_column("Table", style="cyan")
        output.add_column("Kind")
        output.add_column("Columns", justify="right")
        output.add_column("Primary key")
        output.add_column("Foreign keys", justify="right")
        for t in snapshot:
            name = f"{t.name} [yellow](partial)[/yellow]" if t.partial else t.name
            output.add_row(
                name,
                "view" if t.is_view else "table",
                str(len(t.columns)),
                ", ".join(t.primary_key) or "-",
                str(len(t.foreign_keys)),
            )
        console.print(output)
        return

    try:
        descriptor = snapshot.table(table)
    except SchemaError as e:
        console.print(f"[red]Error: {e.message}[/red]")
        raise typer.Exit(1)

    output = Table(title=descriptor.name)
    output.add_column("Column", style="cyan")
    output.add_column("Type")
    output.add_column("Native type")
    output.add_column("Null")
    output.add_column("Key")
    for col in descriptor.columns:
        key = "PK" if col.primary_key else ""
        if col.auto_increment:
            key = f"{key} auto".strip()
        logical = col.logical_type.value
        if col.enum_values:
            logical = f"{logical}({', '.join(col.enum_values)})"
        output.add_row(col.name, logical, col.native_type, "yes" if col.nullable else "no", key)
    console.print(output)

    for fk in descriptor.foreign_keys:
        marker = "" if fk.resolved else " [yellow](unresolved)[/yellow]"
        console.print(
            f"  FK {fk.identity}: ({', '.join(fk.columns)}) -> "
            f"{fk.target_table}({', '.join(fk.target_columns)}){marker}"
        )


@app.command()
def relationships(
    ctx: typer.Context,
    table: Optional[str] = typer.Option(None, "--table", "-t", help="Only relationships from this table"),
    show_all: bool = typer.Option(False, "--all", "-a", help="Include inverse and many-to-many relationships"),
):
    """Show relationships inferred from foreign keys."""
    result = _discover(ctx)

    rels = list(result.graph) if show_all else result.relationships
    if table is not None:
        rels = [r for r in rels if r.source_table == table]

    output = Table(title="Relationships")
    output.add_column("Source", style="cyan")
    output.add_column("Name", style="green")
    output.add_column("Cardinality")
    output.add_column("Target", style="cyan")
    output.add_column("Via")
    for rel in rels:
        output.add_row(
            f"{rel.source_table}({', '.join(rel.source_columns)})",
            rel.name,
            rel.cardinality.value,
            f"{rel.target_table}({', '.join(rel.target_columns)})",
            rel.via.table if rel.via is not None else "",
        )
    console.print(output)

    for warning in result.ambiguities:
        console.print(f"[yellow]Warning: {warning.message}[/yellow]")


@app.command()
def patterns(ctx: typer.Context):
    """Report self references, junction tables and foreign key cycles."""
    result = _discover(ctx)
    summary = analyze_patterns(result.snapshot, result.relationships)

    console.print("[bold]Relationship patterns[/bold]")
    console.print(f"  One-to-one: {summary.one_to_one}")
    console.print(f"  Many-to-one: {summary.many_to_one}")
    console.print(f"  Junction tables: {', '.join(summary.junction_tables) or 'none'}")
    console.print(f"  Self references: {', '.join(summary.self_referencing) or 'none'}")
    if summary.circular_references:
        console.print("  Cycles:")
        for cycle in summary.circular_references:
            console.print(f"    {' -> '.join(cycle)}")
    else:
        console.print("  Cycles: none")


@app.command()
def snapshot(
    ctx: typer.Context,
    output: Optional[str] = typer.Option(None, "--output", "-o", help="Output file path"),
):
    """Write the discovered schema as JSON."""
    result = _discover(ctx)
    text = json.dumps(result.snapshot.to_dict(), indent=2)

    if output:
        Path(output).write_text(text)
        console.print(f"[green]Saved snapshot with {len(result.snapshot)} tables to {output}[/green]")
    else:
        console.print_json(text)


@app.command()
def diff(
    ctx: typer.Context,
    against: str = typer.Option(..., "--against", help="Snapshot JSON file to compare with"),
):
    """Compare the live schema with a saved snapshot."""
    path = Path(against)
    if not path.exists():
        console.print(f"[red]Error: File not found: {against}[/red]")
        raise typer.Exit(1)

    try:
        before = SchemaSnapshot.from_dict(json.loads(path.read_text()))
    except (ValueError, KeyError) as e:
        console.print(f"[red]Error: Cannot read snapshot {against}: {e}[/red]")
        raise typer.Exit(1)

    result = _discover(ctx)
    changes = diff_snapshots(before, result.snapshot)
    if not changes:
        console.print("[green]No changes[/green]")
        return

    for change in changes:
        console.print(f"  {change}")
    console.print(f"[bold]{len(changes)} change(s)[/bold]")


if __name__ == "__main__":
    app()
