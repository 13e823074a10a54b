import asyncio

import pytest

from goprobe.utils.error_group import ErrorGroup


@pytest.mark.asyncio
async def test_all_succeed():
    finished = []

    async def work(i: int) -> None:
        await asyncio.sleep(0)
        finished.append(i)

    group = ErrorGroup()
    for i in range(4):
        group.go(work(i))

    assert await group.wait() is None
    assert sorted(finished) == [0, 1, 2, 3]


@pytest.mark.asyncio
async def test_failure_does_not_cancel_siblings():
    finished = []

    async def fail() -> None:
        raise RuntimeError("boom")

    async def slow() -> None:
        await asyncio.sleep(0.01)
        finished.append("slow")

    group = ErrorGroup()
    group.go(fail())
    group.go(slow())

    error = await group.wait()

    assert isinstance(error, RuntimeError)
    assert finished == ["slow"]


@pytest.mark.asyncio
async def test_first_error_by_completion_order():
    async def fail_late() -> None:
        await asyncio.sleep(0.02)
        raise ValueError("late")

    async def fail_early() -> None:
        await asyncio.sleep(0)
        raise KeyError("early")

    group = ErrorGroup()
    group.go(fail_late())
    group.go(fail_early())

    error = await group.wait()

    assert isinstance(error, KeyError)
