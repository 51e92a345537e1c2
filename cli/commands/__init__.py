"""CLI command modules for deferload."""

from cli.commands.plugins import plugins_app

__all__ = ["plugins_app"]
