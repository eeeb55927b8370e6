"""Common callguard exceptions."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from callguard.common import GuardPhase


class CallGuardError(Exception):
    """Base for all callguard exceptions."""

    @property
    def cause(self) -> BaseException | None:
        """Cause of the exception.

        This is the same as ``Exception.__cause__``.
        """
        return self.__cause__


class InvalidArgumentError(CallGuardError):
    """Raised at wrap time when the callback or its options are unusable.

    Construction problems never wait until the guarded callback is called.
    """


class TimeoutError(CallGuardError):
    """Error delivered when no call reached a guarded callback in time.

    This is never raised across the scheduling boundary. It is handed to the
    ``on_timeout`` callback, or wrapped in a failed
    :py:class:`callguard.common.Result` for result callbacks.
    """

    def __init__(
        self,
        message: str,
        *,
        timeout: timedelta,
        name: Optional[str] = None,
    ) -> None:
        """Initialize a timeout error."""
        super().__init__(message)
        self._message = message
        self._timeout = timeout
        self._name = name

    @property
    def message(self) -> str:
        """Message."""
        return self._message

    @property
    def timeout(self) -> timedelta:
        """Timeout that elapsed without a call."""
        return self._timeout

    @property
    def name(self) -> Optional[str]:
        """Name of the guard that timed out, if it was given one."""
        return self._name


class AlreadyFiredError(CallGuardError):
    """Raised internally when a guard leaves a terminal phase.

    Guarded callbacks check their phase before transitioning, so callers of a
    guarded callback never see this. Redundant calls are dropped instead.
    """

    def __init__(self, phase: GuardPhase) -> None:
        """Initialize an already fired error."""
        super().__init__(f"Guard already settled in phase {phase.name}")
        self.phase = phase
