"""Orchestrator module for deferload.

Deferred, conditional extension loading with:
- Startup context detection (was a file given on the command line)
- Two scheduling tiers drained before first render and on first idle
- At-most-once lifecycle hooks
- Single automatic configure call per extension
"""

from .context import StartupContext, StartupContextDetector
from .hooks import HookRunner
from .invoker import SetupInvoker
from .runner import DependencyError, Orchestrator
from .scheduler import (
    AsyncioIdleSignal,
    DeferredScheduler,
    ManualIdleSignal,
    TaskExecutionError,
    TaskResult,
    TierState,
)

__all__ = [
    "AsyncioIdleSignal",
    "DeferredScheduler",
    "DependencyError",
    "HookRunner",
    "ManualIdleSignal",
    "Orchestrator",
    "SetupInvoker",
    "StartupContext",
    "StartupContextDetector",
    "TaskExecutionError",
    "TaskResult",
    "TierState",
]
