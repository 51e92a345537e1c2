"""Two-tier deferred scheduler.

Tasks are queued per tier and drained in insertion order:
- NOW drains synchronously at the startup checkpoint, before first render
- LATER drains on the first idle tick after the initial paint

Once a tier has drained, newly scheduled tasks for it run immediately.
A failing task is logged and recorded; the rest of the queue still runs.
"""

from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Protocol

from plugins.declaration import Tier

logger = logging.getLogger(__name__)

Task = Callable[[], None]


class TierState(str, Enum):
    """Lifecycle of a tier's queue."""

    PENDING = "pending"
    DRAINING = "draining"
    DRAINED = "drained"


class TaskExecutionError(Exception):
    """A queued task raised while running."""

    def __init__(self, name: str, tier: Tier, cause: BaseException) -> None:
        self.name = name
        self.tier = tier
        self.cause = cause
        super().__init__(f"Task for '{name}' ({tier.value}) failed: {cause}")


@dataclass
class TaskResult:
    """Outcome of one executed task."""

    name: str
    tier: Tier
    error: TaskExecutionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class IdleSignal(Protocol):
    """Host primitive that reports the first idle moment after startup."""

    def subscribe(self, callback: Callable[[], None]) -> None: ...


class ManualIdleSignal:
    """Idle signal fired explicitly by the caller."""

    def __init__(self) -> None:
        self._callbacks: list[Callable[[], None]] = []
        self.fired = False

    def subscribe(self, callback: Callable[[], None]) -> None:
        self._callbacks.append(callback)

    def fire(self) -> None:
        self.fired = True
        callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            callback()


class AsyncioIdleSignal:
    """Idle signal backed by an asyncio event loop.

    Callbacks run via ``loop.call_later`` once the loop gets a chance to
    process them, i.e. after the synchronous startup work has returned.
    """

    def __init__(self, loop: asyncio.AbstractEventLoop | None = None, delay: float = 0.0) -> None:
        self._loop = loop
        self.delay = delay
        self.done = asyncio.Event()

    def subscribe(self, callback: Callable[[], None]) -> None:
        loop = self._loop or asyncio.get_running_loop()

        def _tick() -> None:
            try:
                callback()
            finally:
                self.done.set()

        loop.call_later(self.delay, _tick)

    async def wait(self) -> None:
        """Wait until subscribed callbacks have run."""
        await self.done.wait()


class DeferredScheduler:
    """Queues zero-argument tasks in NOW and LATER tiers.

    Tasks are keyed by extension name; a name can only be scheduled once.
    """

    def __init__(self, idle_signal: IdleSignal | None = None) -> None:
        self._queues: dict[Tier, deque[tuple[str, Task]]] = {tier: deque() for tier in Tier}
        self._states: dict[Tier, TierState] = {tier: TierState.PENDING for tier in Tier}
        self._scheduled: set[str] = set()
        self._idle_signal = idle_signal
        self._subscribed = False
        self.results: list[TaskResult] = []

    def state(self, tier: Tier) -> TierState:
        return self._states[tier]

    @property
    def has_idle_signal(self) -> bool:
        return self._idle_signal is not None

    def pending(self, tier: Tier) -> list[str]:
        """Names still waiting in a tier's queue, in execution order."""
        return [name for name, _ in self._queues[tier]]

    def is_scheduled(self, name: str) -> bool:
        return name in self._scheduled

    def schedule(self, name: str, tier: Tier, task: Task) -> TaskResult | None:
        """Queue a task, or run it now if its tier has already drained.

        Args:
            name: Extension name the task belongs to
            tier: Tier to queue into
            task: Zero-argument callable

        Returns:
            TaskResult if the task ran immediately, None if it was queued

        Raises:
            ValueError: If a task is already scheduled for this name
        """
        if name in self._scheduled:
            raise ValueError(f"Task for '{name}' is already scheduled")
        self._scheduled.add(name)

        if self._states[tier] == TierState.DRAINED:
            logger.debug("Tier %s already drained, running %s immediately", tier.value, name)
            return self._run(name, tier, task)

        self._queues[tier].append((name, task))
        logger.debug("Queued %s in tier %s", name, tier.value)
        return None

    def drain(self, tier: Tier) -> list[TaskResult]:
        """Run every queued task of a tier in insertion order.

        Draining LATER first drains NOW if it has not happened yet.
        Calling drain on a tier that is not PENDING does nothing.

        Returns:
            Results of the tasks run by this call
        """
        if self._states[tier] != TierState.PENDING:
            logger.debug("Tier %s is %s, nothing to drain", tier.value, self._states[tier].value)
            return []

        results: list[TaskResult] = []
        if tier == Tier.LATER and self._states[Tier.NOW] == TierState.PENDING:
            logger.warning("Idle tick before startup checkpoint, draining now-tier first")
            results.extend(self.drain(Tier.NOW))

        self._states[tier] = TierState.DRAINING
        queue = self._queues[tier]
        logger.info("Draining %d %s task(s)", len(queue), tier.value)

        # Tasks scheduled while draining are appended to this same deque
        while queue:
            name, task = queue.popleft()
            results.append(self._run(name, tier, task))

        self._states[tier] = TierState.DRAINED
        return results

    def subscribe_idle(self) -> None:
        """Subscribe LATER draining to the idle signal (once)."""
        if self._subscribed:
            return
        if self._idle_signal is None:
            raise RuntimeError("No idle signal configured")
        self._subscribed = True
        self._idle_signal.subscribe(self._on_idle)

    def _on_idle(self) -> None:
        self.drain(Tier.LATER)

    def _run(self, name: str, tier: Tier, task: Task) -> TaskResult:
        try:
            task()
        except Exception as e:
            error = TaskExecutionError(name, tier, e)
            logger.error("%s", error, exc_info=e)
            result = TaskResult(name=name, tier=tier, error=error)
        else:
            result = TaskResult(name=name, tier=tier)
        self.results.append(result)
        return result

    @property
    def failures(self) -> list[TaskResult]:
        return [r for r in self.results if not r.ok]
