"""Plugin loader for plugins.yaml.

Reads and validates the manifest, resolves configure/hook actions to
callables and links declared dependencies.
"""

from __future__ import annotations

import importlib
import importlib.util
import logging
import subprocess
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

import yaml
from pydantic import ValidationError

from .declaration import ExtensionDeclaration, HookEvent
from .manifest import ActionSpec, PluginSpec, PluginsManifest, Schedule

logger = logging.getLogger(__name__)


class PluginLoadError(Exception):
    """Error loading the plugin manifest or one of its actions."""

    pass


class CommandError(RuntimeError):
    """An external hook or configure command failed."""

    pass


@dataclass
class LoadedEntry:
    """A declaration built from plugins.yaml with its requested schedule."""

    declaration: ExtensionDeclaration
    schedule: Schedule


class CommandAction:
    """Runs an external program, e.g. a parser build step.

    The call blocks until the program exits. It runs inside the extension's
    checkout when that directory exists.
    """

    def __init__(self, argv: list[str], cwd: Path | None = None, timeout: int = 300) -> None:
        self.argv = list(argv)
        self.cwd = cwd
        self.timeout = timeout

    def __call__(self) -> None:
        cwd = self.cwd if self.cwd is not None and self.cwd.is_dir() else None
        logger.debug("Running %s (cwd: %s)", self.argv, cwd)
        try:
            result = subprocess.run(
                self.argv,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise CommandError(f"{self.argv[0]}: {e}") from e

        if result.returncode != 0:
            raise CommandError(f"{self.argv[0]} exited with {result.returncode}: {result.stderr.strip()}")

    def __repr__(self) -> str:
        return f"CommandAction({self.argv!r})"


class PluginLoader:
    """Loads extension declarations from plugins.yaml.

    Callables named in the manifest ("module:function") are looked up in the
    config directory first, then on the import path.
    """

    MANIFEST_FILE = "plugins.yaml"

    def __init__(
        self,
        config_dir: Path | None = None,
        packages_dir: Path | None = None,
        disabled_plugins: list[str] | None = None,
        command_timeout: int = 300,
    ) -> None:
        """Initialize plugin loader.

        Args:
            config_dir: Directory with user modules referenced by 'call' actions
            packages_dir: Installer packages directory (working dir for 'run' actions)
            disabled_plugins: Names of entries to skip
            command_timeout: Timeout in seconds for 'run' actions
        """
        self.config_dir = Path(config_dir) if config_dir else None
        self.packages_dir = Path(packages_dir) if packages_dir else None
        self.disabled_plugins = set(disabled_plugins or [])
        self.command_timeout = command_timeout

    def load_manifest(self, manifest_path: Path) -> PluginsManifest:
        """Load and validate plugins.yaml.

        Raises:
            PluginLoadError: If the file is missing or invalid
        """
        try:
            with open(manifest_path) as f:
                data = yaml.safe_load(f)
        except FileNotFoundError:
            raise PluginLoadError(f"Manifest not found: {manifest_path}")
        except yaml.YAMLError as e:
            raise PluginLoadError(f"Invalid YAML in manifest: {e}")

        if data is None:
            data = {}
        if isinstance(data, list):
            data = {"plugins": data}

        try:
            return PluginsManifest(**data)
        except (TypeError, ValidationError) as e:
            raise PluginLoadError(f"Invalid manifest: {e}")

    def load(self, manifest_path: Path) -> list[LoadedEntry]:
        """Build declarations for every enabled entry, in file order.

        Raises:
            PluginLoadError: If the manifest or an action cannot be loaded
        """
        manifest = self.load_manifest(manifest_path)
        return self.build(manifest)

    def build(self, manifest: PluginsManifest) -> list[LoadedEntry]:
        """Build declarations from a validated manifest."""
        by_name: dict[str, ExtensionDeclaration] = {}
        by_source: dict[str, ExtensionDeclaration] = {}
        entries: list[LoadedEntry] = []
        built: list[tuple[PluginSpec, ExtensionDeclaration]] = []

        for spec in manifest.plugins:
            declaration = self.build_declaration(spec)
            built.append((spec, declaration))
            by_name.setdefault(declaration.name, declaration)
            by_source.setdefault(spec.source, declaration)
            if declaration.name in self.disabled_plugins:
                logger.info("Plugin %s is disabled", declaration.name)
                continue
            entries.append(LoadedEntry(declaration=declaration, schedule=spec.when))

        # Link dependencies once every entry has a declaration
        for spec, declaration in built:
            for dep in spec.depends:
                target = by_name.get(dep) or by_source.get(dep)
                if target is None:
                    target = ExtensionDeclaration.from_source(dep)
                    by_name[target.name] = target
                    by_source[dep] = target
                    logger.debug("Implicit dependency %s of %s", target.name, declaration.name)
                elif target.name in self.disabled_plugins and declaration.name not in self.disabled_plugins:
                    logger.info(
                        "Plugin %s is disabled but still loaded as a dependency of %s", target.name, declaration.name
                    )
                declaration.dependencies.append(target)

        logger.info("Loaded %d plugin declarations", len(entries))
        return entries

    def build_declaration(self, spec: PluginSpec) -> ExtensionDeclaration:
        name = spec.resolved_name
        return ExtensionDeclaration(
            name=name,
            source=spec.source,
            checkout=spec.checkout,
            post_install_hook=self._hook(spec, HookEvent.POST_INSTALL),
            post_checkout_hook=self._hook(spec, HookEvent.POST_CHECKOUT),
            configure=self.build_action(spec.configure, name) if spec.configure else None,
            installable=spec.install,
        )

    def _hook(self, spec: PluginSpec, event: HookEvent) -> Callable[[], None] | None:
        action = spec.hooks.get(event)
        return self.build_action(action, spec.resolved_name) if action else None

    def build_action(self, action: ActionSpec, name: str) -> Callable[[], None]:
        """Turn an action spec into a zero-argument callable."""
        if action.run is not None:
            cwd = self.packages_dir / name if self.packages_dir else None
            return CommandAction(action.run, cwd=cwd, timeout=self.command_timeout)
        return self.resolve_callable(action.call or "")

    def resolve_callable(self, path: str) -> Callable[[], None]:
        """Resolve 'module:function' or 'module.function' to a callable.

        Raises:
            PluginLoadError: If the module or attribute cannot be loaded
        """
        if ":" in path:
            module_name, attr = path.split(":", 1)
        else:
            module_name, attr = path.rsplit(".", 1)

        module = self._load_module(module_name)

        target: Any = module
        for part in attr.split("."):
            if not hasattr(target, part):
                raise PluginLoadError(f"'{attr}' not found in module '{module_name}'")
            target = getattr(target, part)

        if not callable(target):
            raise PluginLoadError(f"'{path}' is not callable")
        return target

    def _load_module(self, module_name: str) -> Any:
        if self.config_dir is not None:
            module_file = self.config_dir / f"{module_name.replace('.', '/')}.py"
            if module_file.exists():
                return self._load_module_from_file(module_name, module_file)

        try:
            return importlib.import_module(module_name)
        except ImportError as e:
            raise PluginLoadError(f"Cannot import module '{module_name}': {e}")

    def _load_module_from_file(self, module_name: str, module_file: Path) -> Any:
        # Unique name to avoid clashing with installed packages
        unique_module_name = f"deferload_config.{module_name}"
        if unique_module_name in sys.modules:
            return sys.modules[unique_module_name]

        spec = importlib.util.spec_from_file_location(unique_module_name, module_file)
        if spec is None or spec.loader is None:
            raise PluginLoadError(f"Cannot load module spec: {module_file}")

        module = importlib.util.module_from_spec(spec)
        sys.modules[unique_module_name] = module
        try:
            spec.loader.exec_module(module)
        except Exception as e:
            del sys.modules[unique_module_name]
            raise PluginLoadError(f"Failed to load {module_file}: {e}")
        return module

    @staticmethod
    def find_manifest(start: Path | None = None) -> Path | None:
        """Find plugins.yaml in a directory or its parents."""
        current = Path(start or Path.cwd())
        for directory in [current, *current.parents]:
            candidate = directory / PluginLoader.MANIFEST_FILE
            if candidate.exists():
                return candidate
        return None
