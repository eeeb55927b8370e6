import logging
import traceback
from datetime import timedelta

from callguard.common import GuardPhase
from callguard.exceptions import (
    AlreadyFiredError,
    CallGuardError,
    InvalidArgumentError,
    TimeoutError,
)


def test_exception_format():
    # Cause a nested exception
    actual_err: Exception
    try:
        try:
            raise ValueError("bad delay")
        except Exception as err:
            raise InvalidArgumentError("Minimum delay invalid") from err
    except Exception as err:
        actual_err = err
    assert isinstance(actual_err, CallGuardError)
    assert isinstance(actual_err.cause, ValueError)

    output = "".join(traceback.format_exception(actual_err))
    assert "ValueError: bad delay" in output
    assert "callguard.exceptions.InvalidArgumentError: Minimum delay invalid" in output

    # This shows how it might look for those with debugging on
    logging.getLogger(__name__).debug(
        "Showing chained exception", exc_info=actual_err
    )


def test_timeout_error():
    err = TimeoutError("No call within 1.5s", timeout=timedelta(seconds=1.5))
    assert str(err) == "No call within 1.5s"
    assert err.message == "No call within 1.5s"
    assert err.timeout == timedelta(seconds=1.5)
    assert err.name is None
    assert err.cause is None
    assert isinstance(err, CallGuardError)


def test_already_fired_error():
    err = AlreadyFiredError(GuardPhase.TIMED_OUT)
    assert err.phase == GuardPhase.TIMED_OUT
    assert "TIMED_OUT" in str(err)
