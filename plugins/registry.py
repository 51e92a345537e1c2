"""Extension registry.

Records declared extensions, validates the dependency graph and places
each extension in a scheduler tier.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Callable

from .declaration import ExtensionDeclaration, Tier

if TYPE_CHECKING:
    from orchestrator.scheduler import DeferredScheduler

logger = logging.getLogger(__name__)

TaskFactory = Callable[[ExtensionDeclaration], Callable[[], None]]


class DuplicateNameError(ValueError):
    """An extension with the same name is already registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Extension '{name}' is already registered")


class CyclicDependencyError(ValueError):
    """Registering an extension would create a dependency cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"Dependency cycle: {' -> '.join(cycle)}")


class ExtensionStatus(str, Enum):
    """Progress of a registered extension."""

    QUEUED = "queued"
    RUNNING = "running"
    INSTALLED = "installed"
    READY = "ready"
    FAILED = "failed"


@dataclass
class RegisteredExtension:
    """A declaration accepted by the registry."""

    declaration: ExtensionDeclaration
    requested_tier: Tier
    tier: Tier
    status: ExtensionStatus = ExtensionStatus.QUEUED

    @property
    def name(self) -> str:
        return self.declaration.name

    @property
    def dependency_names(self) -> list[str]:
        return [dep.name for dep in self.declaration.dependencies]


def place(requested: Tier, dependency_tiers: list[Tier]) -> Tier:
    """Choose the tier for a declaration given its dependencies' tiers.

    A LATER dependency pulls the declaration into LATER, so a NOW task never
    waits on a LATER one. Otherwise a declaration whose dependencies are all
    NOW is placed in NOW with them.
    """
    if not dependency_tiers:
        return requested
    return max(dependency_tiers)


class ExtensionRegistry:
    """Registry for declared extensions.

    Provides access by name and hands each accepted declaration's task to
    the scheduler, dependencies first.
    """

    def __init__(self, scheduler: DeferredScheduler, task_factory: TaskFactory) -> None:
        """Initialize registry.

        Args:
            scheduler: Scheduler receiving one task per accepted extension
            task_factory: Builds the task that installs and configures a declaration
        """
        self.scheduler = scheduler
        self.task_factory = task_factory
        self._extensions: dict[str, RegisteredExtension] = {}

    def declare(self, declaration: ExtensionDeclaration, tier: Tier = Tier.NOW) -> Tier:
        """Register an extension and queue its task.

        Unregistered dependencies are declared first with the same requested
        tier. Dependencies already registered by name are reused.

        Args:
            declaration: Extension to register
            tier: Requested tier

        Returns:
            Effective tier of the declaration

        Raises:
            DuplicateNameError: If the name is already registered
            CyclicDependencyError: If the dependency graph would contain a cycle
        """
        if declaration.name in self._extensions:
            raise DuplicateNameError(declaration.name)

        order = self._resolve(declaration)

        placed: dict[str, Tier] = {}
        for decl in order:
            dep_tiers = [self._tier_of(dep.name, placed) for dep in decl.dependencies]
            placed[decl.name] = place(Tier(tier), dep_tiers)

        for decl in order:
            effective = placed[decl.name]
            self._extensions[decl.name] = RegisteredExtension(
                declaration=decl,
                requested_tier=Tier(tier),
                tier=effective,
            )
            if effective != tier:
                logger.info("Placed %s in %s (requested %s)", decl.name, effective.value, Tier(tier).value)
            else:
                logger.debug("Registered %s in %s", decl.name, effective.value)
            self.scheduler.schedule(decl.name, effective, self.task_factory(decl))

        return placed[declaration.name]

    def _tier_of(self, name: str, placed: dict[str, Tier]) -> Tier:
        if name in placed:
            return placed[name]
        return self._extensions[name].tier

    def _resolve(self, root: ExtensionDeclaration) -> list[ExtensionDeclaration]:
        """Depth-first walk returning unregistered declarations, dependencies first.

        Raises:
            CyclicDependencyError: If a dependency path leads back to itself
        """
        order: list[ExtensionDeclaration] = []
        done: set[str] = set()
        path: list[str] = []

        def visit(decl: ExtensionDeclaration) -> None:
            if decl.name in path:
                start = path.index(decl.name)
                raise CyclicDependencyError([*path[start:], decl.name])
            if decl.name in done:
                return
            if decl is not root and decl.name in self._extensions:
                done.add(decl.name)
                return

            path.append(decl.name)
            for dep in decl.dependencies:
                visit(dep)
            path.pop()

            done.add(decl.name)
            order.append(decl)

        visit(root)
        return order

    def get(self, name: str) -> RegisteredExtension | None:
        """Get a registered extension by name."""
        return self._extensions.get(name)

    def tier(self, name: str) -> Tier:
        """Effective tier of a registered extension.

        Raises:
            KeyError: If the extension is not registered
        """
        return self._extensions[name].tier

    def status(self, name: str) -> ExtensionStatus:
        return self._extensions[name].status

    def mark(self, name: str, status: ExtensionStatus) -> None:
        """Record progress for a registered extension."""
        self._extensions[name].status = status

    def list_all(self) -> list[RegisteredExtension]:
        """List registered extensions in registration order."""
        return list(self._extensions.values())

    def list_for_tier(self, tier: Tier) -> list[RegisteredExtension]:
        return [ext for ext in self._extensions.values() if ext.tier == tier]

    def __len__(self) -> int:
        """Number of registered extensions."""
        return len(self._extensions)

    def __contains__(self, name: str) -> bool:
        """Check if extension is registered."""
        return name in self._extensions
