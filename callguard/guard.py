"""Guarded callbacks.

A guarded callback wraps a completion function so that it is invoked at most
once, never synchronously inside the turn that created the guard, and
optionally fails with a :py:class:`callguard.exceptions.TimeoutError` when
nothing calls it in time.
"""

from __future__ import annotations

import contextvars
import dataclasses
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import (
    Any,
    Callable,
    Dict,
    Generic,
    Mapping,
    MutableMapping,
    Optional,
    Tuple,
    TypeVar,
)

from typing_extensions import ParamSpec, Self

import callguard.common
import callguard.exceptions
import callguard.scheduler
from callguard._log_utils import (
    GuardLogExtraMode,
    _apply_guard_context_to_extra,
)
from callguard.common import GuardPhase

_log = logging.getLogger(__name__)

_P = ParamSpec("_P")
_T = TypeVar("_T")


@dataclass(frozen=True)
class _Delivery:
    guard: GuardedCallback[...]
    deferred: bool


_current_delivery: contextvars.ContextVar[Optional[_Delivery]] = (
    contextvars.ContextVar("__callguard_delivery", default=None)
)


@dataclass
class GuardState:
    """Per-guard record of what has happened so far.

    Owned by exactly one :py:class:`GuardedCallback`. ``fired`` goes from False
    to True once, when the wrapped function or the timeout path runs, and never
    back.
    """

    fired: bool = False
    """Whether the wrapped function or the timeout path has run."""

    timer_handle: Optional[callguard.scheduler.Cancellable] = None
    """Pending timeout timer, if any."""

    pending_args: Optional[Tuple[Tuple[Any, ...], Dict[str, Any]]] = None
    """Arguments of the first call, captured until the boundary opens."""

    boundary_handle: Optional[callguard.scheduler.Cancellable] = None
    """Pending callback that opens the boundary."""

    boundary_open: bool = False
    """Whether calls are now delivered immediately."""

    phase: GuardPhase = GuardPhase.IDLE
    """Current lifecycle phase."""

    def _transition(self, phase: GuardPhase) -> None:
        if self.phase.terminal:
            raise callguard.exceptions.AlreadyFiredError(self.phase)
        self.phase = phase
        if phase in (GuardPhase.FIRED, GuardPhase.TIMED_OUT):
            self.fired = True

    def _cancel_timers(self) -> None:
        if self.timer_handle is not None:
            self.timer_handle.cancel()
            self.timer_handle = None
        if self.boundary_handle is not None:
            self.boundary_handle.cancel()
            self.boundary_handle = None


class GuardedCallback(Generic[_P]):
    """Callable wrapper delivering to a function at most once, never early.

    Use :py:func:`wrap` to create one. Calling the guard before its boundary
    captures the arguments and delivers them when the boundary opens, which is
    at least one scheduling turn after creation. Calling it after the boundary
    delivers immediately. Only the first call counts; later calls are dropped.

    The scheduler keeps references to the guard's pending callbacks, so a
    guard with a pending boundary or timeout stays alive until they run or
    :py:meth:`dispose` cancels them.
    """

    def __init__(
        self,
        fn: Callable[_P, Any],
        options: callguard.common.GuardOptions,
        scheduler: Optional[callguard.scheduler.Scheduler] = None,
    ) -> None:
        """Create a guard. Most users should use :py:func:`wrap` instead."""
        if not callable(fn):
            raise callguard.exceptions.InvalidArgumentError(
                f"Callback must be callable, got {type(fn).__name__}"
            )
        options._validate()
        self._fn = fn
        self._options = options
        self._scheduler = callguard.scheduler.resolve_scheduler(scheduler)
        self._state = GuardState()

        min_delay = options.min_delay.total_seconds()
        if min_delay > 0:
            self._state.boundary_handle = self._scheduler.call_later(
                min_delay, self._open_boundary
            )
        else:
            self._state.boundary_handle = self._scheduler.call_soon(
                self._open_boundary
            )
        if options.timeout is not None:
            self._state.timer_handle = self._scheduler.call_later(
                options.timeout.total_seconds(), self._expire
            )
        _log.debug(
            "Wrapped %s (min_delay=%s, timeout=%s)",
            self._display_name,
            options.min_delay,
            options.timeout,
        )

    def __call__(self, *args: _P.args, **kwargs: _P.kwargs) -> None:
        """Hand the arguments to the wrapped function.

        Always returns None, whether delivery happens now or on a later turn.
        """
        state = self._state
        if state.phase is not GuardPhase.IDLE:
            _log.debug(
                "Dropping call to %s in phase %s",
                self._display_name,
                state.phase.name,
            )
            return
        if state.timer_handle is not None:
            state.timer_handle.cancel()
            state.timer_handle = None
        state._transition(GuardPhase.FIRING)
        if state.boundary_open:
            self._deliver(args, kwargs, deferred=False)
            return
        state.pending_args = (args, kwargs)
        _log.debug("Deferring call to %s until its boundary", self._display_name)

    @property
    def name(self) -> Optional[str]:
        """Name given in the options, if any."""
        return self._options.name

    @property
    def options(self) -> callguard.common.GuardOptions:
        """Options this guard was created with."""
        return self._options

    @property
    def phase(self) -> GuardPhase:
        """Current lifecycle phase."""
        return self._state.phase

    @property
    def fired(self) -> bool:
        """Whether the wrapped function or the timeout path has run."""
        return self._state.fired

    @property
    def pending(self) -> bool:
        """Whether a captured call is waiting for the boundary."""
        return self._state.pending_args is not None

    @property
    def disposed(self) -> bool:
        """Whether the guard was disposed before it settled."""
        return self._state.phase is GuardPhase.DISPOSED

    def dispose(self) -> None:
        """Cancel pending timers and make every later call a no-op.

        A guard that already fired or timed out keeps that phase. Disposing
        more than once is allowed.
        """
        state = self._state
        state._cancel_timers()
        state.pending_args = None
        if not state.phase.terminal:
            state._transition(GuardPhase.DISPOSED)
            _log.debug("Disposed %s before it settled", self._display_name)

    def __enter__(self) -> Self:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.dispose()

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self._display_name!r} phase={self._state.phase.name}>"

    @property
    def _display_name(self) -> str:
        if self._options.name:
            return self._options.name
        return getattr(self._fn, "__qualname__", None) or repr(self._fn)

    @property
    def _logger_details(self) -> Mapping[str, Any]:
        return {"name": self._display_name, "phase": self._state.phase.name}

    def _open_boundary(self) -> None:
        state = self._state
        state.boundary_handle = None
        if state.phase.terminal:
            return
        state.boundary_open = True
        if state.pending_args is not None:
            args, kwargs = state.pending_args
            self._deliver(args, kwargs, deferred=True)

    def _expire(self) -> None:
        state = self._state
        state.timer_handle = None
        if state.phase is not GuardPhase.IDLE:
            return
        state._transition(GuardPhase.TIMED_OUT)
        state._cancel_timers()
        timeout = self._options.timeout or timedelta()
        err = callguard.exceptions.TimeoutError(
            f"No call within {timeout.total_seconds()}s",
            timeout=timeout,
            name=self._options.name,
        )
        _log.debug("Guard %s timed out", self._display_name)
        on_timeout = self._options.on_timeout or self._default_on_timeout
        self._run(on_timeout, (err,), {}, deferred=True)

    def _deliver(
        self, args: Tuple[Any, ...], kwargs: Dict[str, Any], *, deferred: bool
    ) -> None:
        self._state._transition(GuardPhase.FIRED)
        self._state.pending_args = None
        self._run(self._fn, args, kwargs, deferred=deferred)

    def _run(
        self,
        fn: Callable[..., Any],
        args: Tuple[Any, ...],
        kwargs: Dict[str, Any],
        *,
        deferred: bool,
    ) -> None:
        token = _current_delivery.set(_Delivery(self, deferred))
        try:
            fn(*args, **kwargs)
        finally:
            _current_delivery.reset(token)

    def _default_on_timeout(self, err: callguard.exceptions.TimeoutError) -> None:
        _log.warning(
            "Guarded callback %s timed out after %s",
            self._display_name,
            err.timeout,
        )


class GuardedResultCallback(GuardedCallback[...], Generic[_T]):
    """Guard delivering a single :py:class:`callguard.common.Result`.

    Call it with a value to deliver a success, or use :py:meth:`fail` to
    deliver a failure. Both share the same at-most-once latch. Without an
    ``on_timeout`` callback, a timeout is delivered to the wrapped function as
    a failed result.
    """

    def __call__(self, value: _T) -> None:  # type: ignore[override]
        """Deliver a successful result carrying ``value``."""
        super().__call__(callguard.common.Result.success(value))

    def fail(self, error: BaseException) -> None:
        """Deliver a failed result carrying ``error``."""
        super().__call__(callguard.common.Result.failure(error))

    def _default_on_timeout(self, err: callguard.exceptions.TimeoutError) -> None:
        self._fn(callguard.common.Result.failure(err))


def _merge_options(
    options: Optional[callguard.common.GuardOptions],
    *,
    min_delay: Optional[callguard.common.Duration],
    timeout: Optional[callguard.common.Duration],
    on_timeout: Optional[Callable[[callguard.exceptions.TimeoutError], Any]],
    name: Optional[str],
) -> callguard.common.GuardOptions:
    if options is None:
        options = callguard.common.GuardOptions()
    elif not isinstance(options, callguard.common.GuardOptions):
        raise callguard.exceptions.InvalidArgumentError(
            f"Options must be GuardOptions, got {type(options).__name__}"
        )
    overrides: Dict[str, Any] = {}
    if min_delay is not None:
        overrides["min_delay"] = callguard.common._to_timedelta(min_delay, "min_delay")
    if timeout is not None:
        overrides["timeout"] = callguard.common._to_timedelta(timeout, "timeout")
    if on_timeout is not None:
        overrides["on_timeout"] = on_timeout
    if name is not None:
        overrides["name"] = name
    return dataclasses.replace(options, **overrides)


def wrap(
    fn: Callable[_P, Any],
    options: Optional[callguard.common.GuardOptions] = None,
    *,
    min_delay: Optional[callguard.common.Duration] = None,
    timeout: Optional[callguard.common.Duration] = None,
    on_timeout: Optional[Callable[[callguard.exceptions.TimeoutError], Any]] = None,
    name: Optional[str] = None,
    scheduler: Optional[callguard.scheduler.Scheduler] = None,
) -> GuardedCallback[_P]:
    """Wrap a completion function in a guard.

    Keyword arguments override the matching fields of ``options``.

    Args:
        fn: Function to deliver to.
        options: Base options.
        min_delay: Boundary before which calls are deferred, as a timedelta or
            seconds. Zero defers to the next scheduling turn.
        timeout: Time to wait for a call, as a timedelta or seconds.
        on_timeout: Invoked once with a
            :py:class:`callguard.exceptions.TimeoutError` if the timeout
            elapses first. Defaults to logging a warning.
        name: Label for logs and ``repr``.
        scheduler: Host scheduler. Defaults to the running asyncio loop.

    Returns:
        The guarded callback.

    Raises:
        callguard.exceptions.InvalidArgumentError: ``fn`` is not callable, an
            option is invalid, or no scheduler is available.
    """
    return GuardedCallback(
        fn,
        _merge_options(
            options,
            min_delay=min_delay,
            timeout=timeout,
            on_timeout=on_timeout,
            name=name,
        ),
        scheduler,
    )


def wrap_result(
    fn: Callable[[callguard.common.Result[_T]], Any],
    options: Optional[callguard.common.GuardOptions] = None,
    *,
    min_delay: Optional[callguard.common.Duration] = None,
    timeout: Optional[callguard.common.Duration] = None,
    on_timeout: Optional[Callable[[callguard.exceptions.TimeoutError], Any]] = None,
    name: Optional[str] = None,
    scheduler: Optional[callguard.scheduler.Scheduler] = None,
) -> GuardedResultCallback[_T]:
    """Wrap a function taking a :py:class:`callguard.common.Result`.

    Same as :py:func:`wrap`, except the guard is called with a single value (or
    :py:meth:`GuardedResultCallback.fail` with an error) and a timeout without
    ``on_timeout`` reaches ``fn`` as a failed result.
    """
    return GuardedResultCallback(
        fn,
        _merge_options(
            options,
            min_delay=min_delay,
            timeout=timeout,
            on_timeout=on_timeout,
            name=name,
        ),
        scheduler,
    )


class LoggerAdapter(logging.LoggerAdapter):
    """Adapter that adds details about the delivering guard to the log.

    Only calls made while a guard is delivering (inside the wrapped function
    or a timeout callback) get guard details.

    Attributes:
        guard_info_on_message: Boolean for whether a string representation of
            a dict of guard details will be appended to each message.
            Default is True.
        guard_info_on_extra: Boolean for whether guard details will be added
            to the ``extra`` dictionary, making them present on the
            ``LogRecord.__dict__`` for use by others. Default is True.
        guard_extra_mode: How details are added to ``extra``. See
            :py:data:`callguard._log_utils.GuardLogExtraMode`. Default is
            ``"dict"``, under the ``callguard_guard`` key.

    Values added to ``extra`` are merged with the ``extra`` dictionary from a
    logging call, with values from the logging call taking precedence.
    """

    def __init__(
        self, logger: logging.Logger, extra: Optional[Mapping[str, Any]]
    ) -> None:
        """Create the logger adapter."""
        super().__init__(logger, extra or {})
        self.guard_info_on_message = True
        self.guard_info_on_extra = True
        self.guard_extra_mode: GuardLogExtraMode = "dict"

    def process(
        self, msg: Any, kwargs: MutableMapping[str, Any]
    ) -> Tuple[Any, MutableMapping[str, Any]]:
        """Override to add guard details."""
        extra: Dict[str, Any] = {}
        msg_extra: Dict[str, Any] = {}

        delivery = _current_delivery.get()
        if delivery and (self.guard_info_on_message or self.guard_info_on_extra):
            details = {
                **delivery.guard._logger_details,
                "deferred": delivery.deferred,
            }
            if self.guard_info_on_message:
                msg_extra.update(details)
            if self.guard_info_on_extra:
                _apply_guard_context_to_extra(
                    extra,
                    key="callguard_guard",
                    prefix="callguard.guard",
                    ctx=details,
                    mode=self.guard_extra_mode,
                )

        kwargs["extra"] = {**extra, **(kwargs.get("extra") or {})}
        if msg_extra:
            msg = f"{msg} ({msg_extra})"
        return (msg, kwargs)

    @property
    def base_logger(self) -> logging.Logger:
        """Underlying logger usable for actions such as adding
        handlers/formatters.
        """
        return self.logger


logger = LoggerAdapter(logging.getLogger(__name__), None)
"""Logger for use inside guarded callbacks.

Records logged while a guard delivers include that guard's details.
"""
