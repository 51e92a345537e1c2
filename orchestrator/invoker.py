"""Configure-call invocation for declared extensions."""

import logging

from plugins.declaration import ExtensionDeclaration

logger = logging.getLogger(__name__)


class SetupInvoker:
    """Calls extension configure entry points.

    Automatic calls (startup) happen at most once per declaration. Manual
    calls (e.g. after the user edits their config) always run; extensions
    are responsible for their own internal idempotence.
    """

    def __init__(self) -> None:
        self._configured: set[str] = set()

    def invoke_configure(self, declaration: ExtensionDeclaration, manual: bool = False) -> bool:
        """Invoke a declaration's configure callback.

        Args:
            declaration: Extension to configure
            manual: True for user-triggered re-invocation

        Returns:
            True if configure was called
        """
        if declaration.configure is None:
            return False

        if not manual:
            if declaration.name in self._configured:
                logger.debug("Skipping repeated automatic configure for %s", declaration.name)
                return False
            self._configured.add(declaration.name)

        logger.debug("Configuring %s%s", declaration.name, " (manual)" if manual else "")
        declaration.configure()
        return True

    def was_configured(self, name: str) -> bool:
        return name in self._configured
