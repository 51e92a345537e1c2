"""Startup context detection.

Decides whether the editor was launched with a file to open. Extensions
needed to display a file (parsers, language servers) load before the first
render in that case; otherwise they can wait for the first idle tick.
"""

from __future__ import annotations

import logging
import sys
from dataclasses import dataclass
from typing import Sequence

logger = logging.getLogger(__name__)

# Editor options that consume the following argument
VALUE_OPTIONS = frozenset(
    {
        "-c",
        "--cmd",
        "-i",
        "-l",
        "--listen",
        "-q",
        "-s",
        "-S",
        "--server",
        "--startuptime",
        "-t",
        "-T",
        "-u",
        "-w",
        "-W",
    }
)


@dataclass(frozen=True)
class StartupContext:
    """Immutable snapshot of how the editor was launched."""

    has_file_argument: bool


class StartupContextDetector:
    """Detects the startup context from a process argument vector.

    The first call to ``detect`` computes the context; later calls return
    the same snapshot, so tiers chosen from it never change after startup.
    """

    def __init__(self, argv: Sequence[str] | None = None, value_options: frozenset[str] | None = None) -> None:
        """Initialize detector.

        Args:
            argv: Argument vector including the program name (default: sys.argv)
            value_options: Options that take a value argument
        """
        self._argv = list(sys.argv if argv is None else argv)
        self.value_options = VALUE_OPTIONS if value_options is None else frozenset(value_options)
        self._context: StartupContext | None = None

    def detect(self) -> StartupContext:
        if self._context is None:
            files = file_arguments(self._argv[1:], self.value_options)
            self._context = StartupContext(has_file_argument=bool(files))
            logger.debug("Startup context: %s (files: %s)", self._context, files)
        return self._context


def file_arguments(args: Sequence[str], value_options: frozenset[str] = VALUE_OPTIONS) -> list[str]:
    """Extract the file arguments from editor arguments (without argv[0])."""
    files: list[str] = []
    skip_next = False
    only_files = False

    for arg in args:
        if only_files:
            files.append(arg)
        elif skip_next:
            skip_next = False
        elif arg == "--":
            only_files = True
        elif arg in value_options:
            skip_next = True
        elif arg.startswith(("-", "+")) and arg != "-":
            continue
        elif arg:
            files.append(arg)

    return files
