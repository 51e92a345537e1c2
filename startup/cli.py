"""CLI entrypoint for deferload."""

import asyncio
import logging
from pathlib import Path
from typing import Optional

import typer
from rich import print as rprint
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table

from cli.commands.plugins import get_installer, load_entries, plugins_app
from orchestrator import AsyncioIdleSignal, Orchestrator, StartupContextDetector
from orchestrator.context import VALUE_OPTIONS
from plugins import Tier
from plugins.loader import LoadedEntry
from startup import __version__
from startup.config import Config, ConfigError, get_config, reload_config

app = typer.Typer(
    name="deferload",
    help="Deferred, conditional loading of editor extensions.",
    add_completion=False,
)
console = Console()

app.add_typer(plugins_app, name="plugins")


def setup_logging(level: str) -> None:
    """Route log records through rich."""
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.WARNING),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=Console(stderr=True), rich_tracebacks=False, show_path=False)],
        force=True,
    )


@app.callback()
def main_callback(
    config_path: Optional[Path] = typer.Option(
        None,
        "--config",
        help="Path to deferload.toml (default: search current and parent directories)",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        "-l",
        help="Log level (DEBUG, INFO, WARNING, ERROR)",
    ),
) -> None:
    """Load configuration and set up logging for every command."""
    try:
        config = reload_config(config_path)
    except ConfigError as e:
        rprint(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(1)
    setup_logging(log_level or config.logging.level)


def build_orchestrator(config: Config, files: list[str], installer=None, idle_signal=None) -> Orchestrator:
    """Create an orchestrator for a simulated editor launch with FILES."""
    detector = StartupContextDetector(
        ["editor", *files],
        value_options=VALUE_OPTIONS | frozenset(config.startup.value_options),
    )
    return Orchestrator(installer, idle_signal=idle_signal, detector=detector)


async def _simulate_startup(
    config: Config, entries: list[LoadedEntry], files: list[str], installer
) -> tuple[Orchestrator, list[Exception]]:
    signal = AsyncioIdleSignal(delay=config.scheduler.idle_delay)
    orchestrator = build_orchestrator(config, files, installer=installer, idle_signal=signal)

    errors = orchestrator.declare_all(entries)
    now_results = orchestrator.startup()
    rprint(f"[dim]First paint after {len(now_results)} now-tier task(s)[/dim]")

    await signal.wait()
    return orchestrator, errors


@app.command()
def run(
    files: Optional[list[str]] = typer.Argument(
        None,
        help="Editor arguments to simulate (use -- before editor flags)",
    ),
    manifest: Optional[Path] = typer.Option(
        None,
        "--manifest",
        "-m",
        help="Path to plugins.yaml",
    ),
    no_install: bool = typer.Option(
        False,
        "--no-install",
        help="Skip installing missing extensions (configure only)",
    ),
) -> None:
    """Simulate editor startup: drain the now tier, then the later tier on idle.

    Examples:
        deferload run
        deferload run init.lua
        deferload run -- -u NONE notes.md
    """
    config = get_config()
    files = files or []
    entries = load_entries(config, manifest)

    installer = None if no_install or not config.installer.enabled else get_installer(config)
    orchestrator, errors = asyncio.run(_simulate_startup(config, entries, files, installer))

    rprint(f"[bold blue]deferload[/bold blue] v{__version__}")
    rprint(f"[dim]File argument: {'yes' if orchestrator.context.has_file_argument else 'no'}[/dim]")
    rprint()

    table = Table(title="Startup")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Extension", style="cyan")
    table.add_column("Tier", style="green")
    table.add_column("Status")
    table.add_column("Error", style="red")

    for i, result in enumerate(orchestrator.results, 1):
        status = orchestrator.registry.status(result.name)
        table.add_row(
            str(i),
            result.name,
            result.tier.value,
            "[green]ok[/green]" if result.ok else f"[red]{status.value}[/red]",
            str(result.error.cause) if result.error else "",
        )

    console.print(table)

    for error in errors:
        rprint(f"[red]Not declared:[/red] {error}")

    if errors or orchestrator.scheduler.failures:
        raise typer.Exit(1)


@app.command()
def plan(
    files: Optional[list[str]] = typer.Argument(
        None,
        help="Editor arguments to simulate (use -- before editor flags)",
    ),
    manifest: Optional[Path] = typer.Option(
        None,
        "--manifest",
        "-m",
        help="Path to plugins.yaml",
    ),
) -> None:
    """Show which tier each extension lands in, without running anything.

    Examples:
        deferload plan
        deferload plan init.lua
    """
    config = get_config()
    entries = load_entries(config, manifest)

    orchestrator = build_orchestrator(config, files or [])
    errors = orchestrator.declare_all(entries)

    rprint(f"[dim]File argument: {'yes' if orchestrator.context.has_file_argument else 'no'}[/dim]")

    table = Table(title="Load Plan")
    table.add_column("Order", justify="right", style="dim")
    table.add_column("Extension", style="cyan")
    table.add_column("Requested")
    table.add_column("Tier", style="green")
    table.add_column("Depends")

    order = {tier: orchestrator.scheduler.pending(tier) for tier in Tier}
    for tier in Tier:
        for i, name in enumerate(order[tier], 1):
            registered = orchestrator.registry.get(name)
            table.add_row(
                f"{tier.value}:{i}",
                name,
                registered.requested_tier.value,
                registered.tier.value,
                ", ".join(registered.dependency_names) or "-",
            )

    console.print(table)

    for error in errors:
        rprint(f"[red]Not declared:[/red] {error}")

    if errors:
        raise typer.Exit(1)


@app.command()
def version() -> None:
    """Show version information."""
    rprint(f"[bold blue]deferload[/bold blue] v{__version__}")


@app.command("config-show")
def config_show() -> None:
    """Show current configuration."""
    cfg = get_config()

    table = Table(title="Current Configuration")
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")

    table.add_row("startup.manifest", cfg.startup.manifest or "(search)")
    table.add_row("startup.config_dir", cfg.startup.config_dir or "(manifest dir)")
    table.add_row("startup.value_options", ", ".join(cfg.startup.value_options) or "-")
    table.add_row("startup.disabled_plugins", ", ".join(cfg.startup.disabled_plugins) or "-")
    table.add_row("installer.enabled", str(cfg.installer.enabled))
    table.add_row("installer.packages_dir", str(cfg.installer.resolved_packages_dir()))
    table.add_row("installer.base_url", cfg.installer.base_url)
    table.add_row("installer.timeout", str(cfg.installer.timeout))
    table.add_row("scheduler.idle_delay", str(cfg.scheduler.idle_delay))
    table.add_row("scheduler.command_timeout", str(cfg.scheduler.command_timeout))
    table.add_row("logging.level", cfg.logging.level)

    console.print(table)


def main() -> None:
    app()


if __name__ == "__main__":
    main()
