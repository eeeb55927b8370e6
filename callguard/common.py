"""Common code used by callguard."""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import timedelta
from enum import IntEnum
from typing import Any, Callable, Generic, Optional, TypeVar, Union

from typing_extensions import Self, TypeAlias

import callguard.exceptions

_T = TypeVar("_T")

Duration: TypeAlias = Union[timedelta, int, float]
"""A duration as a :py:class:`datetime.timedelta` or a number of seconds."""


class GuardPhase(IntEnum):
    """Lifecycle phase of a guarded callback.

    ``FIRED``, ``TIMED_OUT`` and ``DISPOSED`` are terminal.
    """

    IDLE = 1
    """No call and no timeout yet."""

    FIRING = 2
    """First call received; delivery is pending until the boundary opens."""

    FIRED = 3
    """The wrapped function was invoked."""

    TIMED_OUT = 4
    """The timeout elapsed before any call arrived."""

    DISPOSED = 5
    """The guard was disposed before it settled."""

    @property
    def terminal(self) -> bool:
        """Whether no further transition is allowed from this phase."""
        return self in (GuardPhase.FIRED, GuardPhase.TIMED_OUT, GuardPhase.DISPOSED)


def _to_timedelta(value: Duration, field: str) -> timedelta:
    if isinstance(value, timedelta):
        return value
    # bool is an int, but True seconds is never what the caller meant
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        if math.isnan(value) or math.isinf(value):
            raise callguard.exceptions.InvalidArgumentError(
                f"{field} must be a finite number of seconds, got {value}"
            )
        try:
            return timedelta(seconds=value)
        except (ValueError, OverflowError) as err:
            raise callguard.exceptions.InvalidArgumentError(
                f"{field} is out of range, got {value}"
            ) from err
    raise callguard.exceptions.InvalidArgumentError(
        f"{field} must be a timedelta or a number of seconds, got {type(value).__name__}"
    )


@dataclass
class GuardOptions:
    """Options for wrapping a callback."""

    min_delay: timedelta = timedelta()
    """Boundary before which calls are deferred. Default 0, meaning calls are
    always deferred to at least the next scheduling turn.
    """

    timeout: Optional[timedelta] = None
    """How long to wait for a call before the timeout path runs. Default is no
    timeout.
    """

    on_timeout: Optional[Callable[[callguard.exceptions.TimeoutError], Any]] = None
    """Invoked once with a :py:class:`callguard.exceptions.TimeoutError` when
    the timeout elapses. If unset, the wrapper's default failure callback is
    used.
    """

    name: Optional[str] = None
    """Label used in logs and in the guard's ``repr``."""

    def _validate(self) -> None:
        if not isinstance(self.min_delay, timedelta):
            raise callguard.exceptions.InvalidArgumentError(
                "Minimum delay must be a timedelta"
            )
        if self.min_delay < timedelta():
            raise callguard.exceptions.InvalidArgumentError(
                "Minimum delay cannot be negative"
            )
        if self.timeout is not None:
            if not isinstance(self.timeout, timedelta):
                raise callguard.exceptions.InvalidArgumentError(
                    "Timeout must be a timedelta"
                )
            if self.timeout <= timedelta():
                raise callguard.exceptions.InvalidArgumentError(
                    "Timeout must be positive"
                )
        if self.on_timeout is not None and not callable(self.on_timeout):
            raise callguard.exceptions.InvalidArgumentError(
                "Timeout callback must be callable"
            )


@dataclass(frozen=True)
class Result(Generic[_T]):
    """Outcome delivered to a result callback: a value or an error.

    Exactly one of the two is meaningful. A result with an ``error`` is a
    failure regardless of ``value``.
    """

    value: Optional[_T] = None
    """Success payload."""

    error: Optional[BaseException] = None
    """Failure, if any."""

    @classmethod
    def success(cls, value: _T) -> Self:
        """Create a successful result."""
        return cls(value=value)

    @classmethod
    def failure(cls, error: BaseException) -> Self:
        """Create a failed result."""
        if not isinstance(error, BaseException):
            raise callguard.exceptions.InvalidArgumentError(
                "Failure requires an exception instance"
            )
        return cls(error=error)

    @property
    def succeeded(self) -> bool:
        """Whether this result carries a value rather than an error."""
        return self.error is None

    def unwrap(self) -> Optional[_T]:
        """Return the value, or raise the error if this is a failure."""
        if self.error is not None:
            raise self.error
        return self.value
