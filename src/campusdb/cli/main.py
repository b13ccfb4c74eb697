"""campusdb CLI - process entry point for the startup sequence."""

from dataclasses import replace
from typing import Annotated

import typer

import campusdb
from campusdb.bootstrap import bootstrap, build_registry
from campusdb.cli.output import OutputFormatter
from campusdb.core.config import Settings, configure_logging
from campusdb.core.connection import DatabaseConnection
from campusdb.exceptions import CampusDBError

app = typer.Typer(
    name="campusdb",
    help="campusdb - schema relationship orchestration for the school backend",
    no_args_is_help=True,
)


@app.callback()
def main_callback(
    ctx: typer.Context,
    database: Annotated[
        str | None,
        typer.Option("--database", "-d", help="Database URL (default: $CAMPUSDB_URL)"),
    ] = None,
    schema: Annotated[
        str | None,
        typer.Option("--schema", help="Catalog schema to introspect (PostgreSQL)"),
    ] = None,
    echo: Annotated[bool, typer.Option("--echo", "-e", help="Echo SQL statements")] = False,
    json_output: Annotated[
        bool, typer.Option("--json", "-j", help="Output as JSON (machine-readable)")
    ] = False,
    log_level: Annotated[
        str | None, typer.Option("--log-level", help="Log level (default: $CAMPUSDB_LOG_LEVEL)")
    ] = None,
) -> None:
    """Resolve settings from the environment, overridden by global options."""
    settings = Settings.from_env()
    settings = replace(
        settings,
        database_url=database or settings.database_url,
        schema=schema or settings.schema,
        echo=echo or settings.echo,
        log_level=(log_level or settings.log_level).upper(),
    )
    configure_logging(settings.log_level)
    ctx.obj = {"settings": settings, "formatter": OutputFormatter(json_output)}


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"campusdb v{campusdb.__version__}")


@app.command()
def sync(
    ctx: typer.Context,
    force: Annotated[
        bool, typer.Option("--force", help="Drop join tables, then drop and recreate every table")
    ] = False,
    alter: Annotated[
        bool, typer.Option("--alter/--no-alter", help="Add missing columns to existing tables")
    ] = True,
) -> None:
    """Apply relationships and synchronize tables.

    Exits with code 1 when a base table cannot be synchronized.

    Examples:

        campusdb sync
        campusdb -d postgresql://localhost/school sync --no-alter
    """
    settings: Settings = ctx.obj["settings"]
    formatter: OutputFormatter = ctx.obj["formatter"]
    connection = DatabaseConnection(settings.database_url, echo=settings.echo, schema=settings.schema)

    try:
        result = bootstrap(connection, force=force or settings.force, alter=alter and settings.alter)
    except CampusDBError as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)
    finally:
        connection.close()

    if formatter.json_mode:
        formatter.print_json(result.to_dict())
        return

    formatter.print_sync_report(result.sync)
    formatter.print_success(
        "Database synchronized",
        {
            "relationships": f"{result.relationships.applied} of {result.relationships.total} applied",
            "tables": len(result.tables),
        },
    )


@app.command()
def relationships(ctx: typer.Context) -> None:
    """List declared relationships in application order."""
    formatter: OutputFormatter = ctx.obj["formatter"]

    try:
        registry = build_registry()
    except CampusDBError as e:
        formatter.print_error(e)
        raise typer.Exit(code=1)

    rows = [d.to_dict() for d in registry.resolve_application_order()]
    formatter.print_table(
        "Relationships (application order)",
        rows,
        ["source", "kind", "target", "alias", "foreign_key", "through", "owning_module"],
    )


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
