"""Extension declarations.

An extension is declared once, with an opaque source identifier handed to
the installer, an optional ref to check out, its dependencies and the
callbacks it supports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Callable

Callback = Callable[[], None]


class Tier(str, Enum):
    """When an extension's setup runs relative to startup.

    Ordered NOW < LATER.
    """

    NOW = "now"
    LATER = "later"

    @property
    def rank(self) -> int:
        return 0 if self is Tier.NOW else 1

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, Tier):
            return NotImplemented
        return self.rank >= other.rank


class HookEvent(str, Enum):
    """Extension lifecycle events that can carry a hook."""

    POST_INSTALL = "post_install"
    POST_CHECKOUT = "post_checkout"


@dataclass(eq=False)
class ExtensionDeclaration:
    """A declared extension.

    Attributes:
        name: Unique extension name.
        source: Identifier handed to the installer (e.g. "user/repo").
            Defaults to the name.
        checkout: Branch, tag or commit to check out (None = default branch).
        dependencies: Extensions that must be installed first, in order.
        post_install_hook: Runs once after a fresh install.
        post_checkout_hook: Runs once after a checkout (install or update).
        configure: Configuration entry point.
        installable: False for extensions that ship with the editor and only
            need configuring.
    """

    name: str
    source: str | None = None
    checkout: str | None = None
    dependencies: list[ExtensionDeclaration] = field(default_factory=list)
    post_install_hook: Callback | None = None
    post_checkout_hook: Callback | None = None
    configure: Callback | None = None
    installable: bool = True

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Extension name is required")
        if self.source is None:
            self.source = self.name

    @classmethod
    def from_source(cls, source: str, **kwargs) -> ExtensionDeclaration:
        """Create a declaration named after the last component of its source.

        Example:
            >>> ExtensionDeclaration.from_source("stevearc/conform.nvim").name
            'conform.nvim'
        """
        name = kwargs.pop("name", None) or source.rstrip("/").rsplit("/", 1)[-1]
        return cls(name=name, source=source, **kwargs)

    @property
    def is_installable(self) -> bool:
        return self.installable and bool(self.source)

    @property
    def is_configurable(self) -> bool:
        return self.configure is not None

    @property
    def is_hookable(self) -> bool:
        return self.post_install_hook is not None or self.post_checkout_hook is not None

    def hook_for(self, event: HookEvent) -> Callback | None:
        """Get the hook declared for a lifecycle event."""
        if event == HookEvent.POST_INSTALL:
            return self.post_install_hook
        return self.post_checkout_hook

    def __repr__(self) -> str:
        deps = ", ".join(d.name for d in self.dependencies)
        return f"ExtensionDeclaration(name={self.name!r}, source={self.source!r}, dependencies=[{deps}])"
