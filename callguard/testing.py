"""Test framework for guarded callbacks.

:py:class:`ManualScheduler` is a deterministic stand-in for an asyncio loop.
Its clock only moves when told to, and each scheduling turn is run
explicitly, so tests can observe exactly which turn a callback fires in.
"""

from __future__ import annotations

import collections
import heapq
import itertools
import logging
from typing import Any, Callable, Deque, List, Optional, Sequence, Tuple

logger = logging.getLogger(__name__)


class ManualHandle:
    """Handle to a callback scheduled on a :py:class:`ManualScheduler`."""

    def __init__(
        self,
        when: float,
        callback: Callable[..., object],
        args: Sequence[Any],
        scheduler: Optional[ManualScheduler] = None,
    ) -> None:
        """Create a handle. Use the scheduler methods instead."""
        self._when = when
        self._callback = callback
        self._args = tuple(args)
        self._cancelled = False
        # Only set for timers, so the scheduler can drop them from its heap
        self._scheduler = scheduler

    def cancel(self) -> None:
        """Prevent the callback from running."""
        if self._cancelled:
            return
        self._cancelled = True
        if self._scheduler is not None:
            self._scheduler._timer_handle_cancelled()
            self._scheduler = None

    def cancelled(self) -> bool:
        """Whether :py:meth:`cancel` was called."""
        return self._cancelled

    def when(self) -> float:
        """Scheduler time, in seconds, at which the callback becomes ready."""
        return self._when

    def _run(self) -> None:
        self._callback(*self._args)

    def __repr__(self) -> str:
        state = " cancelled" if self._cancelled else ""
        return f"<ManualHandle when={self._when}{state} {self._callback!r}>"


class ManualScheduler:
    """Scheduler with a virtual clock and explicit scheduling turns.

    Callbacks added with :py:meth:`call_soon` run on the next call to
    :py:meth:`run_once`. Callbacks they schedule with :py:meth:`call_soon` in
    turn wait for the turn after that. Timers only fire from
    :py:meth:`advance`.
    """

    def __init__(self) -> None:
        """Create a scheduler with its clock at zero."""
        self._time_ns = 0
        self._ready: Deque[ManualHandle] = collections.deque()
        self._timers: List[Tuple[int, int, ManualHandle]] = []
        self._seq = itertools.count()
        self._turns = 0
        self._timer_cancelled_count = 0

    def call_soon(self, callback: Callable[..., object], *args: Any) -> ManualHandle:
        """Queue the callback for the next turn."""
        handle = ManualHandle(self.time(), callback, args)
        self._ready.append(handle)
        return handle

    def call_later(
        self, delay: float, callback: Callable[..., object], *args: Any
    ) -> ManualHandle:
        """Register the callback to become ready ``delay`` seconds from now."""
        if delay < 0:
            raise RuntimeError("Attempting to schedule timer with negative delay")
        when_ns = self._time_ns + round(delay * 1e9)
        handle = ManualHandle(when_ns / 1e9, callback, args, self)
        heapq.heappush(self._timers, (when_ns, next(self._seq), handle))
        return handle

    def _timer_handle_cancelled(self) -> None:
        self._timer_cancelled_count += 1
        # Rebuild once cancelled timers are the majority of the heap
        if self._timer_cancelled_count * 2 > len(self._timers):
            self._timers = [t for t in self._timers if not t[2].cancelled()]
            heapq.heapify(self._timers)
            self._timer_cancelled_count = 0

    def time(self) -> float:
        """Current virtual time in seconds."""
        return self._time_ns / 1e9

    @property
    def turns(self) -> int:
        """Number of turns run so far."""
        return self._turns

    @property
    def pending(self) -> int:
        """Number of uncancelled callbacks that are ready or waiting on a timer."""
        return sum(1 for h in self._ready if not h.cancelled()) + sum(
            1 for _, _, h in self._timers if not h.cancelled()
        )

    def run_once(self) -> int:
        """Run one turn: every handle that was ready when the turn started.

        Exceptions raised by a callback propagate to the caller. Handles still
        queued stay queued for the next turn.

        Returns:
            Number of callbacks run.
        """
        self._turns += 1
        ran = 0
        for _ in range(len(self._ready)):
            handle = self._ready.popleft()
            if handle.cancelled():
                continue
            handle._run()
            ran += 1
        return ran

    def run_until_idle(self) -> int:
        """Run turns until nothing is ready, without moving the clock.

        Returns:
            Number of callbacks run.
        """
        ran = 0
        while self._ready:
            ran += self.run_once()
        return ran

    def advance(self, seconds: float) -> int:
        """Move the clock forward, firing timers as they come due.

        Ready turns are drained before each timer fires and again at the end,
        so work scheduled by one timer runs before a later timer.

        Returns:
            Number of callbacks run.
        """
        if seconds < 0:
            raise RuntimeError("Cannot move the clock backwards")
        target_ns = self._time_ns + round(seconds * 1e9)
        ran = self.run_until_idle()
        while self._timers and self._timers[0][0] <= target_ns:
            when_ns, _, handle = heapq.heappop(self._timers)
            if handle.cancelled():
                self._timer_cancelled_count -= 1
                continue
            handle._scheduler = None
            self._time_ns = when_ns
            self._ready.append(handle)
            ran += self.run_until_idle()
        self._time_ns = target_ns
        ran += self.run_until_idle()
        logger.debug("Advanced manual scheduler to %ss, ran %s callbacks", self.time(), ran)
        return ran
