import asyncio
import time
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Tuple, TypeVar

T = TypeVar("T")


class Recorder:
    """Callable that records every call made to it."""

    def __init__(self) -> None:
        self.calls: List[Tuple[Tuple[Any, ...], Dict[str, Any]]] = []

    def __call__(self, *args: Any, **kwargs: Any) -> None:
        self.calls.append((args, kwargs))

    @property
    def args(self) -> List[Tuple[Any, ...]]:
        return [args for args, _ in self.calls]


async def assert_eventually(
    fn: Callable[[], Awaitable[T]],
    *,
    timeout: timedelta = timedelta(seconds=10),
    interval: timedelta = timedelta(milliseconds=10),
) -> T:
    start_sec = time.monotonic()
    while True:
        try:
            res = await fn()
            return res
        except AssertionError:
            if timedelta(seconds=time.monotonic() - start_sec) >= timeout:
                raise
        await asyncio.sleep(interval.total_seconds())
