"""At-most-once lifecycle hooks.

Installers can report the same event several times in quick succession
(e.g. an update notification per fetched ref). Hooks are debounced by a
fire record kept for the lifetime of the process, not by time.
"""

import logging
from typing import Callable

from plugins.declaration import HookEvent

logger = logging.getLogger(__name__)


class HookRunner:
    """Runs named hooks at most once per (extension, event)."""

    def __init__(self) -> None:
        self._fired: dict[tuple[str, HookEvent], bool] = {}

    def fire_once(self, extension_name: str, hook_event: HookEvent, callback: Callable[[], None]) -> bool:
        """Run a hook unless it already fired for this extension and event.

        The record is set before the callback runs: a hook that raises still
        counts as fired and its error propagates to the caller.

        Args:
            extension_name: Extension the hook belongs to
            hook_event: Lifecycle event that triggered it
            callback: Hook to run

        Returns:
            True if the hook fired now, False if it had already fired
        """
        key = (extension_name, HookEvent(hook_event))
        if self._fired.get(key):
            logger.debug("Hook %s for %s already fired", key[1].value, extension_name)
            return False

        self._fired[key] = True
        logger.info("Running %s hook for %s", key[1].value, extension_name)
        callback()
        return True

    def has_fired(self, extension_name: str, hook_event: HookEvent) -> bool:
        return self._fired.get((extension_name, HookEvent(hook_event)), False)

    def __len__(self) -> int:
        return len(self._fired)
