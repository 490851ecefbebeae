"""docrel CLI - Main entry point."""

import logging
from typing import Annotated

import typer

import docrel
from docrel.cli.context import CLIContext, get_database_url, load_environment
from docrel.cli.output import OutputFormatter

app = typer.Typer(
    name="docrel",
    help="docrel CLI - tables and relations over JSON documents",
    no_args_is_help=True,
)

TargetArgument = Annotated[
    str,
    typer.Argument(help="Environment to load, as 'module:attribute'"),
]


@app.callback()
def main_callback(
    ctx: typer.Context,
    database: Annotated[
        str | None,
        typer.Option(
            "--database",
            "-d",
            envvar="DOCREL_DATABASE_URL",
            help="Database URL (PostgreSQL or SQLite)",
        ),
    ] = None,
    echo: Annotated[
        bool,
        typer.Option(
            "--echo",
            "-e",
            help="Echo SQL statements to console",
        ),
    ] = False,
    json_output: Annotated[
        bool,
        typer.Option(
            "--json",
            "-j",
            help="Output as JSON (machine-readable)",
        ),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option(
            "--verbose",
            "-v",
            help="Log schema setup to stderr",
        ),
    ] = False,
) -> None:
    """Initialize CLI context with global options."""
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    ctx.obj = CLIContext(
        database_url=get_database_url(database),
        echo=echo,
        json_output=json_output,
    )


@app.command()
def version() -> None:
    """Show version information."""
    typer.echo(f"docrel v{docrel.__version__}")


@app.command()
def sync(ctx: typer.Context, target: TargetArgument) -> None:
    """Create the tables and indexes of an environment. Safe to repeat.

    Examples:

        docrel sync myapp.tables:env
        docrel --database postgresql://localhost/mydb sync myapp.tables:env
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        env = load_environment(target)
        cli_ctx.get_db().sync(env)
        formatter.print_success(
            f"Synced {len(env)} tables",
            {
                "database": cli_ctx.database_url,
                "tables": [table.name for table in env.get_all_tables()],
            },
        )
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1) from e
    finally:
        cli_ctx.close()


@app.command()
def describe(
    ctx: typer.Context,
    target: TargetArgument,
    table: Annotated[
        str | None,
        typer.Option("--table", "-t", help="Describe a single table"),
    ] = None,
) -> None:
    """Show the tables, fields, indexes and relations of an environment.

    Examples:

        docrel describe myapp.tables:env
        docrel --json describe myapp.tables:env --table user
    """
    cli_ctx: CLIContext = ctx.obj
    formatter = OutputFormatter(cli_ctx.json_output)

    try:
        env = load_environment(target)
        if table:
            formatter.print_table_info(env.get_table(table).describe())
        else:
            formatter.print_schema(env.describe())
    except Exception as e:
        formatter.print_error(e)
        raise typer.Exit(code=1) from e


def main() -> None:
    """Main entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
