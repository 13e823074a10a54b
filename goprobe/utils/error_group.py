import asyncio
from typing import Any, Awaitable, Optional


class ErrorGroup:
    """
    Runs awaitables concurrently and waits for all of them, like Go's errgroup.Group.

    A failure does not cancel the siblings. `wait` returns the first error
    in the order the tasks failed, or None.
    """

    def __init__(self) -> None:
        self._tasks: list[asyncio.Future] = []
        self._first_error: Optional[Exception] = None

    async def _run(self, awaitable: Awaitable[Any]) -> None:
        try:
            await awaitable
        except Exception as e:
            if self._first_error is None:
                self._first_error = e

    def go(self, awaitable: Awaitable[Any]) -> None:
        self._tasks.append(asyncio.ensure_future(self._run(awaitable)))

    async def wait(self) -> Optional[Exception]:
        await asyncio.gather(*self._tasks)
        return self._first_error
