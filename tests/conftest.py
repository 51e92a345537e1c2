"""Shared fixtures for deferload tests."""

from __future__ import annotations

import pytest

from orchestrator import ManualIdleSignal, Orchestrator
from plugins.declaration import ExtensionDeclaration
from plugins.installer import InstallError, InstallOutcome


class FakeInstaller:
    """In-memory installer recording calls.

    Attributes:
        installed: Names considered present on disk
        calls: ("install" | "update", name) in call order
        fail: Names whose install/update raises InstallError
        updates: Names whose next update reports UPDATED
    """

    def __init__(self, installed: set[str] | None = None) -> None:
        self.installed = set(installed or [])
        self.calls: list[tuple[str, str]] = []
        self.fail: set[str] = set()
        self.updates: set[str] = set()

    def install(self, declaration: ExtensionDeclaration) -> InstallOutcome:
        self.calls.append(("install", declaration.name))
        if declaration.name in self.fail:
            raise InstallError(f"cannot install {declaration.name}")
        if declaration.name in self.installed:
            return InstallOutcome.UNCHANGED
        self.installed.add(declaration.name)
        return InstallOutcome.INSTALLED

    def update(self, declaration: ExtensionDeclaration) -> InstallOutcome:
        self.calls.append(("update", declaration.name))
        if declaration.name in self.fail:
            raise InstallError(f"cannot update {declaration.name}")
        if declaration.name not in self.installed:
            self.installed.add(declaration.name)
            return InstallOutcome.INSTALLED
        if declaration.name in self.updates:
            self.updates.discard(declaration.name)
            return InstallOutcome.UPDATED
        return InstallOutcome.UNCHANGED


class Recorder:
    """Collects labels of executed callbacks."""

    def __init__(self) -> None:
        self.events: list[str] = []

    def callback(self, label: str):
        def _record() -> None:
            self.events.append(label)

        return _record

    def failing(self, label: str, message: str = "boom"):
        def _fail() -> None:
            self.events.append(label)
            raise RuntimeError(message)

        return _fail


@pytest.fixture
def installer():
    return FakeInstaller()


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def idle():
    return ManualIdleSignal()


@pytest.fixture
def make_orchestrator(installer, idle):
    def _make(argv: list[str] | None = None) -> Orchestrator:
        return Orchestrator(installer, argv=argv or ["nvim"], idle_signal=idle)

    return _make
