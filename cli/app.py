import typer
import logging
from pathlib import Path
from typing import Optional
from rich.console import Console
from rich.table import Table

from reportgrid.dashboard_configs import DashboardConfigStore
from reportgrid.services import (
    LocalSnapshotStore,
    ServiceContainer,
    SnapshotStoreInterface,
    create_widget_manager,
    register_default_services,
    shutdown_services,
)
from reportgrid.utils.config import SETTINGS, Settings, get_configuration_summary
from reportgrid.utils.exceptions import ReportGridError, ValidationError
from reportgrid.utils.logging import set_log_scope, setup_logging
from reportgrid.utils.validation import validate_scope

app = typer.Typer(add_completion=False, help="ReportGrid - Inspect and manage report widget layouts")
console = Console()


@app.callback()
def _init(
    ctx: typer.Context,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable verbose logging"),
    log_file: bool = typer.Option(True, "--log-file/--no-log-file", help="Write logs to file"),
    data_dir: Optional[Path] = typer.Option(None, "--data-dir", help="Override data directory (logs are written under it)"),
    snapshot_dir: Optional[Path] = typer.Option(None, "--snapshot-dir", help="Override snapshot directory"),
    configs_file: Optional[Path] = typer.Option(None, "--configs-file", help="Override dashboard configurations file"),
    offline: bool = typer.Option(False, "--offline", help="Skip remote replication")
):
    """Initialize logging and services for all commands."""
    overrides = {}
    if data_dir:
        overrides["data_dir"] = data_dir
    if snapshot_dir:
        overrides["snapshot_dir"] = snapshot_dir
    if configs_file:
        overrides["dashboard_config_file"] = configs_file
    if offline:
        overrides["remote_url"] = None
    settings = SETTINGS.model_copy(update=overrides) if overrides else SETTINGS

    setup_logging(
        logging.DEBUG if verbose else logging.INFO,
        log_file=log_file,
        log_dir=settings.data_dir / "logs"
    )
    container = register_default_services(ServiceContainer(), settings)
    ctx.obj = container
    ctx.call_on_close(lambda: shutdown_services(container))


def _settings(ctx: typer.Context) -> Settings:
    return ctx.obj.resolve(Settings)


def _open_manager(ctx: typer.Context, client: str, year: str):
    client_id, fiscal_year = validate_scope(client, year)
    set_log_scope(client_id, str(fiscal_year))
    manager = create_widget_manager(client_id, fiscal_year, container=ctx.obj)
    found = manager.load_from_storage()
    return manager, found


def _close_manager(ctx: typer.Context, manager) -> None:
    manager.close()
    settings = _settings(ctx)
    timeout = settings.remote_timeout_seconds * settings.remote_sync_attempts
    if not manager.persistence.wait_idle(timeout):
        console.print("[yellow]Remote replication still in progress[/yellow]")
    error = manager.persistence.last_error
    if error is not None:
        console.print(f"[yellow]Warning: {error.message}[/yellow]")


def _fail(error: ReportGridError) -> None:
    if isinstance(error, ValidationError):
        console.print(f"[red]Validation Error: {error.message}[/red]")
    else:
        console.print(f"[red]Error: {error.message}[/red]")
    raise typer.Exit(1)


@app.command("widgets")
def cmd_widgets(
    ctx: typer.Context,
    client: str = typer.Argument(..., help="Client id"),
    year: str = typer.Argument(..., help="Fiscal year")
):
    """List stored widgets and their grid positions."""
    try:
        manager, found = _open_manager(ctx, client, year)
        try:
            if not found:
                console.print(f"[yellow]No widgets stored for {client}/{year}[/yellow]")
                return

            table = Table(title=f"Widgets for {client} / {year}")
            table.add_column("ID", style="cyan", no_wrap=True)
            table.add_column("Type", style="magenta")
            table.add_column("Title", style="white")
            table.add_column("Section", style="dim")
            table.add_column("Position", style="yellow")
            table.add_column("Size", style="yellow")

            layouts = {l.i: l for l in manager.layouts}
            for section, widgets in manager.widgets_by_section().items():
                for widget in widgets:
                    layout = layouts[widget.id]
                    table.add_row(
                        widget.id,
                        widget.type.value,
                        widget.title,
                        section,
                        f"{layout.x},{layout.y}",
                        f"{layout.w}x{layout.h}"
                    )
            console.print(table)
        finally:
            _close_manager(ctx, manager)
    except ReportGridError as e:
        _fail(e)


@app.command("remove")
def cmd_remove(
    ctx: typer.Context,
    client: str = typer.Argument(..., help="Client id"),
    year: str = typer.Argument(..., help="Fiscal year"),
    widget_id: str = typer.Argument(..., help="Widget id to remove")
):
    """Remove one widget and its layout entry."""
    try:
        manager, _ = _open_manager(ctx, client, year)
        try:
            if manager.remove_widget(widget_id):
                console.print(f"[green]✓[/green] Removed widget [cyan]{widget_id}[/cyan]")
            else:
                console.print(f"[yellow]Widget {widget_id} not found; nothing removed[/yellow]")
        finally:
            _close_manager(ctx, manager)
    except ReportGridError as e:
        _fail(e)


@app.command("clear")
def cmd_clear(
    ctx: typer.Context,
    client: str = typer.Argument(..., help="Client id"),
    year: str = typer.Argument(..., help="Fiscal year"),
    yes: bool = typer.Option(False, "--yes", "-y", help="Do not ask for confirmation")
):
    """Remove every widget stored for a report view."""
    try:
        client_id, fiscal_year = validate_scope(client, year)
        if not yes and not typer.confirm(f"Clear all widgets for {client_id}/{fiscal_year}?"):
            raise typer.Exit(0)
        manager, _ = _open_manager(ctx, client_id, str(fiscal_year))
        try:
            manager.clear_widgets()
        finally:
            _close_manager(ctx, manager)
        console.print(f"[green]✓[/green] Cleared widgets for {client_id}/{fiscal_year}")
    except ReportGridError as e:
        _fail(e)


@app.command("scopes")
def cmd_scopes(ctx: typer.Context):
    """List report views that have stored widgets."""
    store = ctx.obj.resolve(SnapshotStoreInterface)
    if not isinstance(store, LocalSnapshotStore):
        console.print("[yellow]Configured snapshot store cannot list scopes[/yellow]")
        return

    snapshots = store.list_scopes()
    if not snapshots:
        console.print("[yellow]No stored report views[/yellow]")
        return

    table = Table(title="Stored Report Views")
    table.add_column("Client", style="cyan", no_wrap=True)
    table.add_column("Year", style="magenta")
    table.add_column("Widgets", style="yellow", justify="right")
    table.add_column("Saved", style="dim")
    for snapshot in snapshots:
        table.add_row(
            snapshot.client_id,
            str(snapshot.fiscal_year),
            str(len(snapshot.widgets)),
            snapshot.saved_at.strftime("%Y-%m-%d %H:%M")
        )
    console.print(table)


def _config_store(ctx: typer.Context) -> DashboardConfigStore:
    return DashboardConfigStore(_settings(ctx).dashboard_config_file)


@app.command("configs")
def cmd_configs(ctx: typer.Context):
    """List saved dashboard configurations."""
    try:
        configs = _config_store(ctx).list()
    except ReportGridError as e:
        _fail(e)
        return

    if not configs:
        console.print("[yellow]No dashboard configurations saved[/yellow]")
        return

    table = Table(title="Dashboard Configurations")
    table.add_column("ID", style="cyan", no_wrap=True)
    table.add_column("Name", style="white")
    table.add_column("Widgets", style="yellow", justify="right")
    table.add_column("Updated", style="dim")
    for config in configs:
        table.add_row(
            config.id,
            config.name,
            str(len(config.widgets)),
            config.metadata.updated_at.strftime("%Y-%m-%d %H:%M")
        )
    console.print(table)


@app.command("save-config")
def cmd_save_config(
    ctx: typer.Context,
    client: str = typer.Argument(..., help="Client id"),
    year: str = typer.Argument(..., help="Fiscal year"),
    name: str = typer.Argument(..., help="Configuration name"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="Optional description")
):
    """Save a report view's widgets as a named configuration."""
    try:
        manager, _ = _open_manager(ctx, client, year)
        try:
            config = _config_store(ctx).save_current(manager, name, description)
        finally:
            _close_manager(ctx, manager)
        console.print(f"[green]✓[/green] Saved configuration [cyan]{config.name}[/cyan] ({config.id})")
    except ReportGridError as e:
        _fail(e)


@app.command("load-config")
def cmd_load_config(
    ctx: typer.Context,
    client: str = typer.Argument(..., help="Client id"),
    year: str = typer.Argument(..., help="Fiscal year"),
    config_id: str = typer.Argument(..., help="Configuration id")
):
    """Replace a report view's widgets with a saved configuration."""
    try:
        manager, _ = _open_manager(ctx, client, year)
        try:
            config = _config_store(ctx).load_into(manager, config_id)
        finally:
            _close_manager(ctx, manager)
        console.print(
            f"[green]✓[/green] Loaded [cyan]{config.name}[/cyan] "
            f"({len(config.widgets)} widgets) into {client}/{year}"
        )
    except ReportGridError as e:
        _fail(e)


@app.command("export-config")
def cmd_export_config(
    ctx: typer.Context,
    config_id: str = typer.Argument(..., help="Configuration id"),
    directory: Path = typer.Argument(Path("."), help="Output directory")
):
    """Export a configuration to a JSON file."""
    try:
        path = _config_store(ctx).export(config_id, directory)
        console.print(f"[green]✓[/green] Exported to [cyan]{path}[/cyan]")
    except ReportGridError as e:
        _fail(e)


@app.command("import-config")
def cmd_import_config(
    ctx: typer.Context,
    file: Path = typer.Argument(..., help="Configuration JSON file")
):
    """Import a configuration from a JSON file."""
    try:
        config = _config_store(ctx).import_file(file)
        console.print(f"[green]✓[/green] Imported [cyan]{config.name}[/cyan] ({config.id})")
    except ReportGridError as e:
        _fail(e)


@app.command("config")
def cmd_config(ctx: typer.Context):
    """Show current configuration."""
    table = Table(title="ReportGrid Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="yellow")

    config = get_configuration_summary(_settings(ctx))

    table.add_row("Environment", config['environment'])
    table.add_row("Data Directory", config['data_directory'])
    table.add_row("Snapshot Directory", config['snapshot_directory'])
    table.add_row("Dashboard Configs", config['dashboard_config_file'])
    table.add_row("Grid Columns", str(config['grid_columns']))
    table.add_row("Row Height (px)", str(config['row_height_px']))
    table.add_row("Row Range", config['row_range'])
    table.add_row("Persist Delay (s)", str(config['persist_delay_seconds']))
    table.add_row("Cache Size", str(config['cache_max_size']))
    table.add_row("Cache TTL (s)", str(config['cache_default_ttl_seconds']))
    table.add_row("Remote URL", config['remote_url'])
    table.add_row("Remote Table", config['remote_table'])
    table.add_row("Remote Attempts", str(config['remote_sync_attempts']))
    table.add_row("Remote API Key", config['remote_api_key'])

    console.print(table)


def main():
    app()


if __name__ == "__main__":
    main()
