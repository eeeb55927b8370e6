"""Host scheduling primitive used by guarded callbacks.

Guards never run their own loop. They only ask the host for "run on the next
turn" and "run after a duration". Any :py:class:`asyncio.AbstractEventLoop`
provides both, as does :py:class:`callguard.testing.ManualScheduler`.
"""

from __future__ import annotations

import asyncio
from typing import Any, Callable, Optional

from typing_extensions import Protocol, runtime_checkable

import callguard.exceptions


@runtime_checkable
class Cancellable(Protocol):
    """Handle to a scheduled callback."""

    def cancel(self) -> None:
        """Prevent the callback from running if it has not run yet."""
        ...


@runtime_checkable
class Scheduler(Protocol):
    """The subset of :py:class:`asyncio.AbstractEventLoop` a guard needs."""

    def call_soon(self, callback: Callable[..., object], *args: Any) -> Cancellable:
        """Run the callback on the next scheduling turn."""
        ...

    def call_later(
        self, delay: float, callback: Callable[..., object], *args: Any
    ) -> Cancellable:
        """Run the callback after ``delay`` seconds."""
        ...

    def time(self) -> float:
        """Current time in seconds according to this scheduler's clock."""
        ...


def resolve_scheduler(scheduler: Optional[Scheduler] = None) -> Scheduler:
    """Return the scheduler to use for a new guard.

    Args:
        scheduler: Explicit scheduler. If unset, the running asyncio loop is
            used.

    Returns:
        The scheduler.

    Raises:
        callguard.exceptions.InvalidArgumentError: The explicit scheduler does
            not have the required methods, or none was given and no asyncio
            loop is running.
    """
    if scheduler is not None:
        if not isinstance(scheduler, Scheduler):
            raise callguard.exceptions.InvalidArgumentError(
                f"Scheduler must provide call_soon, call_later and time, got {type(scheduler).__name__}"
            )
        return scheduler
    try:
        return asyncio.get_running_loop()
    except RuntimeError as err:
        raise callguard.exceptions.InvalidArgumentError(
            "No scheduler given and no running event loop"
        ) from err
