import os
from typing import Iterator

import pytest

import callguard.guard
from callguard.testing import ManualScheduler
from tests.helpers import Recorder


@pytest.fixture
def scheduler() -> ManualScheduler:
    return ManualScheduler()


@pytest.fixture
def recorder() -> Recorder:
    return Recorder()


@pytest.fixture(autouse=True)
def clean_callguard_env(monkeypatch: pytest.MonkeyPatch) -> None:
    # Config tests must not see the developer's environment
    for key in list(os.environ):
        if key.startswith("CALLGUARD_"):
            monkeypatch.delenv(key)


@pytest.fixture(autouse=True)
def reset_guard_logger() -> Iterator[None]:
    adapter = callguard.guard.logger
    saved = (
        adapter.guard_info_on_message,
        adapter.guard_info_on_extra,
        adapter.guard_extra_mode,
    )
    yield
    (
        adapter.guard_info_on_message,
        adapter.guard_info_on_extra,
        adapter.guard_extra_mode,
    ) = saved
