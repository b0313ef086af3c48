"""
hassbridge CLI - Command line interface for the Home Assistant Matter bridge.
"""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import click
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import DEFAULT_DATA_DIR, Config
from .discovery import HassDiscovery
from .errors import HassBridgeError
from .hub.client import HomeAssistant
from .matter.bridge import MatterBridge
from .matter.runtime import InMemoryRuntime
from .platform import HassPlatform

console = Console()


def setup_logging(verbose: bool = False):
    """Set up logging configuration."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        handlers=[logging.StreamHandler()]
    )


def run_async(coro):
    """Run an async function."""
    return asyncio.run(coro)


def _load_config(ctx) -> Config:
    return Config.load(ctx.obj.get('data_dir'))


def _require_token(config: Config) -> bool:
    if not config.token:
        console.print("[red]No access token configured. Run 'hassbridge init' first.[/red]")
        return False
    return True


@click.group()
@click.option('-v', '--verbose', is_flag=True, help='Enable verbose output')
@click.option('--data-dir', type=click.Path(), help='Data directory')
@click.version_option(__version__, prog_name="hassbridge")
@click.pass_context
def main(ctx, verbose, data_dir):
    """hassbridge - expose Home Assistant entities as Matter devices"""
    ctx.ensure_object(dict)
    ctx.obj['verbose'] = verbose
    ctx.obj['data_dir'] = Path(data_dir).expanduser() if data_dir else DEFAULT_DATA_DIR
    setup_logging(verbose)


@main.command()
@click.option('--host', '-h', help='Home Assistant URL (ws:// or wss://)')
@click.option('--token', '-t', help='Long-lived access token')
@click.option('--bridge-path', type=click.Path(), help='Path to the matter.js bridge script')
@click.pass_context
def init(ctx, host: Optional[str], token: Optional[str], bridge_path: Optional[str]):
    """Write the bridge configuration."""
    data_dir = ctx.obj['data_dir']
    config = Config.load(data_dir)

    console.print("\n[bold blue]hassbridge initialization[/bold blue]\n")

    if Config.exists(data_dir) and not click.confirm("Configuration exists. Overwrite connection settings?"):
        return

    if not host:
        instances = run_async(HassDiscovery().discover(timeout=3.0))
        default_host = instances[0].ws_url if instances else config.host
        if instances:
            console.print(f"[green]✓ Found Home Assistant at {default_host}[/green]")
        host = click.prompt("Home Assistant URL", default=default_host)
    if not token:
        token = click.prompt("Access token", hide_input=True)

    config.host = host
    config.token = token
    if bridge_path:
        config.matter.bridge_path = bridge_path
        config.matter.auto_start = True
    config.save()

    console.print("\n[bold green]✓ Configuration saved[/bold green]")
    console.print(f"   {config.config_path}")
    console.print("\n[dim]Next steps:[/dim]")
    console.print("  hassbridge check     Verify the connection")
    console.print("  hassbridge devices   Preview the bridged devices")
    console.print("  hassbridge run       Start the bridge")
    console.print()


@main.command()
@click.option('--timeout', default=3.0, type=float, help='Seconds to browse')
def discover(timeout: float):
    """Find Home Assistant instances on the local network."""
    console.print("\n[dim]Browsing for Home Assistant...[/dim]\n")
    instances = run_async(HassDiscovery().discover(timeout=timeout))

    if not instances:
        console.print("[yellow]No Home Assistant instances found.[/yellow]\n")
        return

    table = Table(title="Home Assistant instances")
    table.add_column("Location", style="cyan")
    table.add_column("URL")
    table.add_column("WebSocket")
    table.add_column("Version", style="dim")
    for instance in instances:
        table.add_row(instance.location_name or instance.name, instance.url, instance.ws_url, instance.version or "")
    console.print(table)
    console.print()


async def _check(config: Config) -> HomeAssistant:
    hub = HomeAssistant(config.host, config.token or "", config.session_config())
    try:
        await hub.connect()
        await hub.fetch_data()
    finally:
        await hub.close()
    return hub


@main.command()
@click.pass_context
def check(ctx):
    """Connect to Home Assistant and show what it reports."""
    config = _load_config(ctx)
    if not _require_token(config):
        return

    try:
        hub = run_async(_check(config))
    except HassBridgeError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise SystemExit(1)

    table = Table(show_header=False, box=None)
    table.add_column("Key", style="dim")
    table.add_column("Value")
    table.add_row("URL", config.host)
    table.add_row("Version", f"[cyan]{hub.session.ha_version}[/cyan]")
    if hub.core_config:
        table.add_row("Location", hub.core_config.location_name or "")
    table.add_row("Devices", str(len(hub.devices)))
    table.add_row("Entities", str(len(hub.entities)))
    table.add_row("States", str(len(hub.states)))
    table.add_row("Areas", str(len(hub.areas)))
    table.add_row("Labels", str(len(hub.labels)))

    console.print("\n[bold green]✓ Connected[/bold green]\n")
    console.print(table)
    console.print()


async def _preview(config: Config):
    runtime = InMemoryRuntime()
    platform = HassPlatform(config, runtime)
    try:
        await platform.hub.connect()
        await platform.hub.fetch_data()
        await runtime.start()
        await platform.sync()
        return platform.summary()
    finally:
        await platform.shutdown()


@main.command()
@click.pass_context
def devices(ctx):
    """Preview the Matter devices that would be bridged."""
    config = _load_config(ctx)
    config.unregister_on_shutdown = False
    if not _require_token(config):
        return

    try:
        rows = run_async(_preview(config))
    except HassBridgeError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise SystemExit(1)

    table = Table(title=f"Bridged devices ({len(rows)})")
    table.add_column("Name", style="cyan")
    table.add_column("Source", style="dim")
    table.add_column("Endpoints")
    table.add_column("Device types")
    for row in rows:
        table.add_row(row["name"], row["key"], ", ".join(row["endpoints"]), ", ".join(row["device_types"]))
    console.print(table)


async def _run(config: Config, dry_run: bool) -> None:
    if dry_run:
        runtime = InMemoryRuntime()
    else:
        runtime = MatterBridge(config.matter.bridge_config(config.data_dir))
    platform = HassPlatform(config, runtime)
    try:
        await platform.start()
        console.print(f"[green]✓ Bridging {len(platform.devices)} device(s). Press Ctrl+C to stop[/green]")
        await asyncio.Event().wait()
    finally:
        await platform.shutdown()


@main.command()
@click.option('--dry-run', is_flag=True, help='Use the in-memory runtime instead of matter.js')
@click.pass_context
def run(ctx, dry_run: bool):
    """Start the bridge."""
    config = _load_config(ctx)
    if not _require_token(config):
        return

    mode = "dry run" if dry_run else f"matter.js at {config.matter.host}:{config.matter.port}"
    console.print(f"\n[bold blue]Starting hassbridge[/bold blue] ({mode})")
    console.print(f"   Home Assistant: {config.host}\n")

    try:
        run_async(_run(config, dry_run))
    except KeyboardInterrupt:
        console.print("\n[dim]Stopped[/dim]")
    except HassBridgeError as e:
        console.print(f"[red]✗ {e}[/red]")
        raise SystemExit(1)


@main.command()
@click.pass_context
def status(ctx):
    """Show the current configuration."""
    data_dir = ctx.obj['data_dir']
    if not Config.exists(data_dir):
        console.print("[yellow]Not configured. Run 'hassbridge init' first.[/yellow]")
        return

    config = Config.load(data_dir)
    lines = [
        f"[dim]Home Assistant:[/dim] {config.host}",
        f"[dim]Token:[/dim] {'set' if config.token else '[red]missing[/red]'}",
        f"[dim]Matter bridge:[/dim] {config.matter.host}:{config.matter.port}"
        + (f" ({config.matter.bridge_path})" if config.matter.bridge_path else ""),
        f"[dim]Area filter:[/dim] {config.filter_by_area or '-'}",
        f"[dim]Label filter:[/dim] {config.filter_by_label or '-'}",
        f"[dim]White list:[/dim] {len(config.white_list)} [dim]Black list:[/dim] {len(config.black_list)}",
        f"[dim]Split entities:[/dim] {len(config.split_entities)}",
        f"[dim]Data directory:[/dim] {config.data_dir}",
    ]
    console.print(Panel("\n".join(lines), title="hassbridge status", expand=False))


if __name__ == "__main__":
    main()
