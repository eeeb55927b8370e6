"""Guarded callbacks for asyncio programs.

:py:func:`wrap` turns a completion function into a callback that is invoked
at most once, never synchronously inside the turn that created it, and that
can fail with a typed timeout when nobody calls it in time.

Most users only need :py:mod:`callguard.guard`. Configuration defaults live in
:py:mod:`callguard.envconfig` and a deterministic scheduler for tests lives in
:py:mod:`callguard.testing`.
"""

from .common import GuardOptions, GuardPhase, Result
from .exceptions import CallGuardError, InvalidArgumentError, TimeoutError
from .guard import GuardedCallback, GuardedResultCallback, logger, wrap, wrap_result

__version__ = "1.0.0"

__all__ = [
    "CallGuardError",
    "GuardOptions",
    "GuardPhase",
    "GuardedCallback",
    "GuardedResultCallback",
    "InvalidArgumentError",
    "Result",
    "TimeoutError",
    "logger",
    "wrap",
    "wrap_result",
]
