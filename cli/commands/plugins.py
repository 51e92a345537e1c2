"""Plugins CLI commands for deferload.

Inspect, update and clean extensions declared in plugins.yaml.
"""

import shutil
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from plugins import GitInstaller, PluginLoader, PluginLoadError
from plugins.loader import LoadedEntry
from plugins.installer import InstallOutcome
from startup.config import Config, get_config

console = Console()

plugins_app = typer.Typer(
    name="plugins",
    help="Inspect and manage declared extensions.",
)


def resolve_manifest(config: Config, manifest: Optional[Path]) -> Path:
    """Find the manifest from the option, the config or the cwd."""
    if manifest is not None:
        return manifest
    if config.startup.manifest:
        return Path(config.startup.manifest).expanduser()

    found = PluginLoader.find_manifest()
    if found is None:
        console.print(f"[red]No {PluginLoader.MANIFEST_FILE} found[/red]")
        console.print("[dim]Pass --manifest or set startup.manifest in deferload.toml[/dim]")
        raise typer.Exit(1)
    return found


def get_loader(config: Config, manifest_path: Path) -> PluginLoader:
    """Get plugin loader."""
    config_dir = Path(config.startup.config_dir).expanduser() if config.startup.config_dir else manifest_path.parent
    return PluginLoader(
        config_dir=config_dir,
        packages_dir=config.installer.resolved_packages_dir(),
        disabled_plugins=config.startup.disabled_plugins,
        command_timeout=config.scheduler.command_timeout,
    )


def get_installer(config: Config) -> GitInstaller:
    """Get git installer."""
    return GitInstaller(
        packages_dir=config.installer.resolved_packages_dir(),
        base_url=config.installer.base_url,
        git_executable=config.installer.git_executable,
        timeout=config.installer.timeout,
    )


def load_entries(config: Config, manifest: Optional[Path]) -> list[LoadedEntry]:
    """Load manifest entries or exit with an error."""
    manifest_path = resolve_manifest(config, manifest)
    try:
        return get_loader(config, manifest_path).load(manifest_path)
    except PluginLoadError as e:
        console.print(f"[red]Error loading {manifest_path}: {e}[/red]")
        raise typer.Exit(1)


ManifestOption = typer.Option(
    None,
    "--manifest",
    "-m",
    help="Path to plugins.yaml (default: search current and parent directories)",
)


@plugins_app.command("list")
def list_plugins(manifest: Optional[Path] = ManifestOption) -> None:
    """List declared extensions.

    Examples:
        deferload plugins list
        deferload plugins list -m ~/.config/editor/plugins.yaml
    """
    config = get_config()
    entries = load_entries(config, manifest)
    installer = get_installer(config)

    if not entries:
        console.print("[yellow]No plugins declared[/yellow]")
        return

    table = Table(title="Declared Plugins")
    table.add_column("Name", style="cyan")
    table.add_column("Source")
    table.add_column("When", style="green")
    table.add_column("Checkout")
    table.add_column("Depends")
    table.add_column("Installed", justify="center")

    for entry in entries:
        decl = entry.declaration
        if decl.is_installable:
            installed = "[green]yes[/green]" if installer.is_installed(decl) else "[dim]no[/dim]"
        else:
            installed = "[dim]bundled[/dim]"
        table.add_row(
            decl.name,
            decl.source or "-",
            entry.schedule.value,
            decl.checkout or "-",
            ", ".join(d.name for d in decl.dependencies) or "-",
            installed,
        )

    console.print(table)
    console.print(f"\n[dim]Total: {len(entries)} plugins[/dim]")


@plugins_app.command("show")
def show(
    name: str = typer.Argument(..., help="Extension name"),
    manifest: Optional[Path] = ManifestOption,
) -> None:
    """Show details of a declared extension.

    Example:
        deferload plugins show nvim-treesitter
    """
    config = get_config()
    entries = {e.declaration.name: e for e in load_entries(config, manifest)}

    entry = entries.get(name)
    if entry is None:
        console.print(f"[red]Plugin '{name}' is not declared[/red]")
        raise typer.Exit(1)

    decl = entry.declaration
    installer = get_installer(config)

    console.print(f"\n[bold cyan]{decl.name}[/bold cyan]")
    console.print(f"[dim]{decl.source}[/dim]\n")

    console.print("[bold]Loading[/bold]")
    console.print(f"  When: {entry.schedule.value}")
    console.print(f"  Checkout: {decl.checkout or 'default branch'}")
    if decl.is_installable:
        console.print(f"  Path: {installer.target_dir(decl)}")
        console.print(f"  Installed: {'yes' if installer.is_installed(decl) else 'no'}")

    if decl.dependencies:
        console.print("\n[bold]Dependencies[/bold]")
        for dep in decl.dependencies:
            console.print(f"  - {dep.name} ({dep.source})")

    hooks = [
        ("post_install", decl.post_install_hook),
        ("post_checkout", decl.post_checkout_hook),
        ("configure", decl.configure),
    ]
    if any(callback for _, callback in hooks):
        console.print("\n[bold]Actions[/bold]")
        for label, callback in hooks:
            if callback is not None:
                console.print(f"  {label}: {callback!r}")


@plugins_app.command("update")
def update(
    names: Optional[list[str]] = typer.Argument(None, help="Extensions to update (omit for all)"),
    manifest: Optional[Path] = ManifestOption,
) -> None:
    """Update extension checkouts and run post-checkout hooks.

    Examples:
        deferload plugins update
        deferload plugins update nvim-treesitter conform.nvim
    """
    from orchestrator import Orchestrator

    config = get_config()
    entries = load_entries(config, manifest)

    orchestrator = Orchestrator(get_installer(config), argv=["deferload"])
    orchestrator.declare_all(entries)

    try:
        outcomes = orchestrator.update(names or None)
    except KeyError as e:
        console.print(f"[red]{e.args[0]}[/red]")
        raise typer.Exit(1)

    failed = 0
    for name, outcome in outcomes.items():
        if isinstance(outcome, Exception):
            failed += 1
            console.print(f"[red]✗ {name}: {outcome}[/red]")
        elif outcome == InstallOutcome.UNCHANGED:
            console.print(f"[dim]  {name}: up to date[/dim]")
        else:
            console.print(f"[green]✓ {name}: {outcome.value}[/green]")

    if failed:
        raise typer.Exit(1)


@plugins_app.command("clean")
def clean(
    manifest: Optional[Path] = ManifestOption,
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation"),
) -> None:
    """Remove checkouts of extensions no longer declared.

    Checkouts of plugins listed in startup.disabled_plugins are kept.

    Example:
        deferload plugins clean --yes
    """
    config = get_config()
    entries = load_entries(config, manifest)
    packages_dir = config.installer.resolved_packages_dir()

    # Disabled plugins keep their checkouts
    declared: set[str] = set(config.startup.disabled_plugins)
    for entry in entries:
        declared.add(entry.declaration.name)
        declared.update(d.name for d in entry.declaration.dependencies)

    if not packages_dir.exists():
        console.print("[yellow]Nothing installed[/yellow]")
        return

    stale = sorted(p for p in packages_dir.iterdir() if p.is_dir() and p.name not in declared)
    if not stale:
        console.print("[green]No stale checkouts[/green]")
        return

    for path in stale:
        console.print(f"  - {path.name}")

    if not yes:
        if not typer.confirm(f"Remove {len(stale)} checkout(s)?"):
            raise typer.Exit(0)

    for path in stale:
        shutil.rmtree(path)
    console.print(f"[green]✓ Removed {len(stale)} checkout(s)[/green]")
