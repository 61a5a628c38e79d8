"""
Command-line interface for tablekeeper.
"""

import asyncio
import sys
import time
from functools import wraps
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import click
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from . import __version__
from .config import ModelConfig, RefreshSettings, TablekeeperConfig
from .database.connection import ConnectionConfig, ConnectionPool
from .database.store import PostgresRelationStore
from .exceptions import ConfigurationError, TablekeeperError
from .logging_config import configure_logging
from .resolver import QueryResolver
from .schema.executor import ExecutionMode
from .schema.refresher import RefreshPlan, RefreshResult, RefreshStatus, TableRefresher


console = Console()


def handle_errors(func):
    """Decorator to handle errors gracefully in CLI commands."""
    @wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except TablekeeperError as e:
            console.print(f"[red]Error:[/red] {e}")
            sys.exit(1)
        except KeyboardInterrupt:
            console.print("\n[yellow]Interrupted by user[/yellow]")
            sys.exit(0)
        except Exception as e:
            console.print(f"[red]Unexpected error:[/red] {e}")
            if "--debug" in sys.argv:
                import traceback
                traceback.print_exc()
            sys.exit(1)
    return wrapper


@click.group()
@click.version_option(__version__)
@click.option(
    "--debug", is_flag=True, help="Enable debug mode"
)
@click.pass_context
def main(ctx, debug):
    """tablekeeper: Refresh tables from queries without breaking their identity."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


@main.command()
@click.option(
    "--output",
    "-o",
    type=click.Path(),
    default="tablekeeper.yaml",
    help="Output configuration file path",
)
@handle_errors
def init(output: str):
    """Initialize a new tablekeeper configuration file."""
    if Path(output).exists():
        if not click.confirm(f"Configuration file {output} already exists. Overwrite?"):
            return

    config = _create_default_config()
    config.to_yaml(output)

    console.print(f"[green]✓[/green] Configuration file created: {output}")
    console.print("\n[yellow]Next steps:[/yellow]")
    console.print("1. Edit the configuration file with your database details and models")
    console.print("2. Run: tablekeeper validate-config -c your-config.yaml")
    console.print("3. Run: tablekeeper plan -c your-config.yaml")
    console.print("4. Run: tablekeeper refresh -c your-config.yaml")


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def validate_config(config: str):
    """Validate configuration file."""
    console.print(f"Validating configuration: {config}")

    try:
        tk_config = TablekeeperConfig.from_yaml(config)
        tk_config.validate_config()

        console.print("[green]✓[/green] Configuration is valid")

        _display_config_summary(tk_config)

    except ConfigurationError as e:
        console.print(f"[red]✗[/red] Configuration error: {e}")
        sys.exit(1)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--model",
    "-m",
    "models",
    multiple=True,
    help="Model to plan (repeatable; defaults to all models)",
)
@click.pass_context
@handle_errors
def plan(ctx, config: str, models: Tuple[str, ...]):
    """Show which refresh strategy each model would use."""
    tk_config = _load_config(config, ctx.obj.get("debug", False))
    selected = _select_models(tk_config, models)

    async def run_plan() -> List[RefreshPlan]:
        async with ConnectionPool(tk_config.database) as pool:
            refresher = _create_refresher(tk_config, pool, ExecutionMode.DRY_RUN)
            return [await refresher.plan(model) for model in selected]

    plans = asyncio.run(run_plan())

    plan_table = Table(title="Refresh Plan")
    plan_table.add_column("Model", style="cyan")
    plan_table.add_column("Table", style="magenta")
    plan_table.add_column("Strategy", style="green")
    plan_table.add_column("Add", style="yellow")
    plan_table.add_column("Drop", style="red")

    for model, refresh_plan in zip(selected, plans):
        additions = refresh_plan.diff.columns_to_add if refresh_plan.diff else []
        drops = refresh_plan.diff.columns_to_drop if refresh_plan.diff else []
        strategy = refresh_plan.strategy.value
        if refresh_plan.replaces_relation:
            strategy += f" (replaces {refresh_plan.existing.type.value})"

        plan_table.add_row(
            model.name,
            refresh_plan.relation.name,
            strategy,
            ", ".join(f"{a.name} {a.definition}" for a in additions),
            ", ".join(drops),
        )

    console.print(plan_table)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@click.option(
    "--model",
    "-m",
    "models",
    multiple=True,
    help="Model to refresh (repeatable; defaults to all models)",
)
@click.option(
    "--dry-run",
    is_flag=True,
    help="Show the statements that would run without making changes",
)
@click.pass_context
@handle_errors
def refresh(ctx, config: str, models: Tuple[str, ...], dry_run: bool):
    """Refresh model tables."""
    tk_config = _load_config(config, ctx.obj.get("debug", False))
    selected = _select_models(tk_config, models)

    mode = ExecutionMode.DRY_RUN if dry_run or tk_config.dry_run else ExecutionMode.EXECUTE
    if mode == ExecutionMode.DRY_RUN:
        console.print("[yellow]Dry run mode - no changes will be made[/yellow]")

    console.print(f"[blue]Refreshing {len(selected)} model(s)...[/blue]")

    async def run_refresh() -> Dict[str, RefreshResult]:
        async with ConnectionPool(tk_config.database) as pool:
            refresher = _create_refresher(tk_config, pool, mode)
            return await refresher.refresh_all(selected)

    results = asyncio.run(run_refresh())
    _display_results(results, show_sql=mode == ExecutionMode.DRY_RUN)

    if any(r.status != RefreshStatus.SUCCESS for r in results.values()):
        sys.exit(1)


@main.command()
@click.option(
    "--config",
    "-c",
    type=click.Path(exists=True),
    required=True,
    help="Configuration file path",
)
@handle_errors
def test_connection(config: str):
    """Test the database connection."""
    console.print("[blue]Testing connection...[/blue]")

    tk_config = TablekeeperConfig.from_yaml(config)

    async def run_connection_test() -> int:
        console.print(f"\nTesting database: [yellow]{tk_config.database.to_dsn()}[/yellow]")

        try:
            start_time = time.time()
            async with ConnectionPool(tk_config.database) as pool:
                version = await pool.fetchval("SELECT version()")
            response_time = (time.time() - start_time) * 1000

            console.print(f"  ✅ [green]Connected successfully[/green] ({response_time:.1f}ms)")
            console.print(f"     PostgreSQL version: {str(version).split(',')[0]}")
            return 0

        except TablekeeperError as e:
            console.print(f"  ❌ [red]Connection failed: {e}[/red]")
            return 1

    sys.exit(asyncio.run(run_connection_test()))


def _load_config(path: str, debug: bool) -> TablekeeperConfig:
    config = TablekeeperConfig.from_yaml(path)
    config.validate_config()
    configure_logging(config.logging, debug=debug or config.debug)
    return config


def _select_models(config: TablekeeperConfig, names: Tuple[str, ...]) -> List[ModelConfig]:
    if not names:
        if not config.models:
            raise ConfigurationError("No models configured")
        return list(config.models)
    return [config.get_model(name) for name in names]


def _create_refresher(
    config: TablekeeperConfig,
    pool: ConnectionPool,
    mode: ExecutionMode,
) -> TableRefresher:
    return TableRefresher(
        store=PostgresRelationStore(pool),
        database=config.database.database,
        settings=config.refresh,
        resolver=QueryResolver(config),
        mode=mode,
    )


def _create_default_config() -> TablekeeperConfig:
    """Create a default configuration with examples."""
    return TablekeeperConfig(
        database=ConnectionConfig(
            host="${POSTGRES_HOST}",
            port=5432,
            database="${POSTGRES_DB}",
            user="${POSTGRES_USER}",
            password="${POSTGRES_PASSWORD}",
        ),
        refresh=RefreshSettings(),
        models=[
            ModelConfig(
                name="daily_orders",
                schema_name="analytics",
                sql="SELECT order_date, count(*) AS order_count FROM orders GROUP BY order_date",
            ),
            ModelConfig(
                name="customer_summary",
                schema_name="analytics",
                sql_file="models/customer_summary.sql",
            ),
        ],
    )


def _display_config_summary(config: TablekeeperConfig):
    """Display a summary of the configuration."""
    console.print("\n[blue]Configuration Summary[/blue]")

    db_table = Table(title="Database")
    db_table.add_column("Host", style="cyan")
    db_table.add_column("Database", style="green")
    db_table.add_column("Alter In Place", style="yellow")
    db_table.add_row(
        config.database.host,
        config.database.database,
        "yes" if config.refresh.alter_in_place else "no",
    )
    console.print(db_table)

    if config.models:
        model_table = Table(title="Models")
        model_table.add_column("Name", style="cyan")
        model_table.add_column("Table", style="magenta")
        model_table.add_column("Source", style="green")

        for model in config.models:
            model_table.add_row(
                model.name,
                f"{config.schema_for(model)}.{model.identifier}",
                model.sql_file or "inline",
            )

        console.print(model_table)


def _display_results(results: Dict[str, RefreshResult], show_sql: bool = False):
    """Display refresh results."""
    result_table = Table(title="Refresh Results")
    result_table.add_column("Model", style="cyan")
    result_table.add_column("Table", style="magenta")
    result_table.add_column("Strategy", style="green")
    result_table.add_column("Status")
    result_table.add_column("Rows", justify="right")
    result_table.add_column("Time", justify="right")

    status_styles = {
        RefreshStatus.SUCCESS: "green",
        RefreshStatus.PARTIAL: "red",
        RefreshStatus.FAILED: "red",
        RefreshStatus.SKIPPED: "yellow",
    }

    for name, result in results.items():
        style = status_styles[result.status]
        rows: Optional[int] = result.rows_inserted
        result_table.add_row(
            name,
            result.relation.name,
            result.strategy.value if result.strategy else "-",
            f"[{style}]{result.status.value}[/{style}]",
            str(rows) if rows is not None else "-",
            f"{result.execution_time_ms:.1f}ms",
        )

    console.print(result_table)

    for name, result in results.items():
        for error in result.errors:
            console.print(f"[red]✗ {name}:[/red] {escape(error)}")
        if result.needs_manual_rerun:
            console.print(
                f"[yellow]⚠ {result.relation.name} may be truncated or partially altered; "
                f"re-run the refresh[/yellow]"
            )
        if show_sql:
            for statement in result.statements:
                console.print(f"[dim]-- {escape(statement.description)}[/dim]")
                console.print(escape(f"{statement.sql};"))


if __name__ == "__main__":
    main()
