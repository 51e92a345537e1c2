"""Extension loading orchestration.

Owns the startup context, registry, scheduler, hook runner, setup invoker
and installer for one editor session.
"""

import logging
from typing import Iterable, Sequence

from plugins.declaration import ExtensionDeclaration, HookEvent, Tier
from plugins.installer import Installer, InstallOutcome
from plugins.loader import LoadedEntry
from plugins.manifest import Schedule
from plugins.registry import ExtensionRegistry, ExtensionStatus

from .context import StartupContext, StartupContextDetector
from .hooks import HookRunner
from .invoker import SetupInvoker
from .scheduler import DeferredScheduler, IdleSignal, TaskResult

logger = logging.getLogger(__name__)

# Hook events reported by each install outcome, in firing order
OUTCOME_EVENTS: dict[InstallOutcome, tuple[HookEvent, ...]] = {
    InstallOutcome.INSTALLED: (HookEvent.POST_INSTALL, HookEvent.POST_CHECKOUT),
    InstallOutcome.UPDATED: (HookEvent.POST_CHECKOUT,),
    InstallOutcome.UNCHANGED: (),
}

INSTALLED_STATUSES = {ExtensionStatus.INSTALLED, ExtensionStatus.READY}


class DependencyError(RuntimeError):
    """A dependency has not completed installation."""

    pass


def dependency_order(entries: Iterable[LoadedEntry]) -> list[LoadedEntry]:
    """Order manifest entries so that entries a declaration depends on come first.

    Otherwise file order is kept. Dependencies that are not entries themselves
    are left to the registry, and cycles are left for it to report.
    """
    entries = list(entries)
    by_declaration = {id(entry.declaration): entry for entry in entries}
    ordered: list[LoadedEntry] = []
    done: set[int] = set()
    path: set[int] = set()

    def visit(entry: LoadedEntry) -> None:
        key = id(entry.declaration)
        if key in done or key in path:
            return
        path.add(key)
        for dep in entry.declaration.dependencies:
            dep_entry = by_declaration.get(id(dep))
            if dep_entry is not None:
                visit(dep_entry)
        path.discard(key)
        done.add(key)
        ordered.append(entry)

    for entry in entries:
        visit(entry)
    return ordered


class Orchestrator:
    """Schedules install and configure work for declared extensions.

    Typical use:
        >>> orchestrator = Orchestrator(installer, argv=sys.argv, idle_signal=signal)
        >>> orchestrator.now_if_args(treesitter)
        >>> orchestrator.later(snippets)
        >>> orchestrator.startup()    # before first render
        # ... first idle tick drains the later tier
    """

    def __init__(
        self,
        installer: Installer | None = None,
        argv: Sequence[str] | None = None,
        idle_signal: IdleSignal | None = None,
        detector: StartupContextDetector | None = None,
    ) -> None:
        """Initialize orchestrator and detect the startup context.

        Args:
            installer: Installs and updates extension files (None = skip installs)
            argv: Editor argument vector (default: sys.argv)
            idle_signal: Host idle-tick primitive for the later tier
            detector: Custom startup context detector (overrides argv)
        """
        self.detector = detector or StartupContextDetector(argv)
        self.context: StartupContext = self.detector.detect()
        self.installer = installer
        self.scheduler = DeferredScheduler(idle_signal)
        self.registry = ExtensionRegistry(self.scheduler, self._build_task)
        self.hooks = HookRunner()
        self.invoker = SetupInvoker()

    def add(self, declaration: ExtensionDeclaration, tier: Tier = Tier.NOW) -> Tier:
        """Declare an extension in a tier.

        Returns:
            Effective tier after dependency placement
        """
        return self.registry.declare(declaration, tier)

    def now(self, declaration: ExtensionDeclaration) -> Tier:
        return self.add(declaration, Tier.NOW)

    def later(self, declaration: ExtensionDeclaration) -> Tier:
        return self.add(declaration, Tier.LATER)

    def now_if_args(self, declaration: ExtensionDeclaration) -> Tier:
        """Declare NOW if a file was given on the command line, else LATER."""
        return self.add(declaration, self.tier_for(Schedule.NOW_IF_ARGS))

    def schedule(self, declaration: ExtensionDeclaration, schedule: Schedule) -> Tier:
        return self.add(declaration, self.tier_for(schedule))

    def tier_for(self, schedule: Schedule) -> Tier:
        if schedule == Schedule.NOW:
            return Tier.NOW
        if schedule == Schedule.LATER:
            return Tier.LATER
        return Tier.NOW if self.context.has_file_argument else Tier.LATER

    def declare_all(self, entries: Iterable[LoadedEntry]) -> list[Exception]:
        """Declare loaded manifest entries, continuing past rejected ones.

        Entries listed as dependencies of other entries are declared before
        their dependents, each with its own schedule.

        Returns:
            Registration errors (duplicates, cycles) in declaration order
        """
        errors: list[Exception] = []
        for entry in dependency_order(entries):
            try:
                self.schedule(entry.declaration, entry.schedule)
            except ValueError as e:
                logger.error("Cannot declare %s: %s", entry.declaration.name, e)
                errors.append(e)
        return errors

    def startup(self) -> list[TaskResult]:
        """Startup checkpoint: drain the now tier and wait for idle.

        Returns:
            Results of the now-tier tasks
        """
        results = self.scheduler.drain(Tier.NOW)
        if self.scheduler.has_idle_signal:
            self.scheduler.subscribe_idle()
        return results

    def notify(self, name: str, event: HookEvent) -> bool:
        """Report a lifecycle event for an extension.

        Runs the extension's hook for the event unless it already ran.

        Returns:
            True if a hook ran now

        Raises:
            KeyError: If the extension is not registered
        """
        registered = self.registry.get(name)
        if registered is None:
            raise KeyError(f"Extension '{name}' is not registered")

        callback = registered.declaration.hook_for(event)
        if callback is None:
            return False
        return self.hooks.fire_once(name, event, callback)

    def update(self, names: Iterable[str] | None = None) -> dict[str, InstallOutcome | Exception]:
        """Update installed extensions and fire post-checkout hooks.

        Args:
            names: Extensions to update (None = all registered)

        Returns:
            Outcome or error per extension
        """
        if self.installer is None:
            raise RuntimeError("No installer configured")

        outcomes: dict[str, InstallOutcome | Exception] = {}
        for registered in self._select(names):
            declaration = registered.declaration
            if not declaration.is_installable:
                continue
            try:
                outcome = self.installer.update(declaration)
                self._fire_for_outcome(declaration, outcome)
            except Exception as e:
                logger.error("Failed to update %s: %s", declaration.name, e, exc_info=e)
                outcomes[declaration.name] = e
            else:
                outcomes[declaration.name] = outcome
        return outcomes

    def reconfigure(self, names: Iterable[str] | None = None) -> list[str]:
        """Re-run configure callbacks on user request (config reload).

        Returns:
            Names of extensions that were configured
        """
        configured: list[str] = []
        for registered in self._select(names):
            try:
                if self.invoker.invoke_configure(registered.declaration, manual=True):
                    configured.append(registered.name)
            except Exception as e:
                logger.error("Failed to configure %s: %s", registered.name, e, exc_info=e)
        return configured

    @property
    def results(self) -> list[TaskResult]:
        return self.scheduler.results

    def _select(self, names: Iterable[str] | None):
        if names is None:
            return self.registry.list_all()
        selected = []
        for name in names:
            registered = self.registry.get(name)
            if registered is None:
                raise KeyError(f"Extension '{name}' is not registered")
            selected.append(registered)
        return selected

    def _build_task(self, declaration: ExtensionDeclaration):
        def task() -> None:
            self.registry.mark(declaration.name, ExtensionStatus.RUNNING)
            try:
                self._check_dependencies(declaration)
                if declaration.is_installable and self.installer is not None:
                    outcome = self.installer.install(declaration)
                    self.registry.mark(declaration.name, ExtensionStatus.INSTALLED)
                    self._fire_for_outcome(declaration, outcome)
                else:
                    self.registry.mark(declaration.name, ExtensionStatus.INSTALLED)
                self.invoker.invoke_configure(declaration)
            except Exception:
                self.registry.mark(declaration.name, ExtensionStatus.FAILED)
                raise
            self.registry.mark(declaration.name, ExtensionStatus.READY)

        return task

    def _check_dependencies(self, declaration: ExtensionDeclaration) -> None:
        missing = [
            dep.name
            for dep in declaration.dependencies
            if self.registry.status(dep.name) not in INSTALLED_STATUSES
        ]
        if missing:
            raise DependencyError(f"Dependencies of '{declaration.name}' not installed: {', '.join(missing)}")

    def _fire_for_outcome(self, declaration: ExtensionDeclaration, outcome: InstallOutcome) -> None:
        for event in OUTCOME_EVENTS[outcome]:
            callback = declaration.hook_for(event)
            if callback is not None:
                self.hooks.fire_once(declaration.name, event, callback)
