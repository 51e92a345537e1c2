"""Extension declarations, registry and installation.

Extensions are declared in code or in plugins.yaml:

    plugins:
      - source: nvim-treesitter/nvim-treesitter
        when: now_if_args
        hooks:
          post_checkout: {run: [nvim, --headless, +TSUpdate, +qa]}

      - source: stevearc/conform.nvim
        when: later
        configure: editor_config.formatting:setup

      - source: rafamadriz/friendly-snippets
        when: later

Installed checkouts live in ~/.local/share/deferload/pack/ by default.
"""

from .declaration import ExtensionDeclaration, HookEvent, Tier
from .installer import GitInstaller, InstallError, InstallOutcome
from .loader import PluginLoader, PluginLoadError
from .manifest import PluginsManifest, PluginSpec, Schedule
from .registry import CyclicDependencyError, DuplicateNameError, ExtensionRegistry

__all__ = [
    "CyclicDependencyError",
    "DuplicateNameError",
    "ExtensionDeclaration",
    "ExtensionRegistry",
    "GitInstaller",
    "HookEvent",
    "InstallError",
    "InstallOutcome",
    "PluginLoadError",
    "PluginLoader",
    "PluginSpec",
    "PluginsManifest",
    "Schedule",
    "Tier",
]
