"""Tests for map_bounded."""

import asyncio

import pytest

from scripts.airtable_export.concurrency import map_bounded


@pytest.mark.asyncio
async def test_preserves_input_order():
    async def slow_double(n):
        await asyncio.sleep(0.001 * (5 - n))
        return n * 2

    assert await map_bounded([1, 2, 3, 4], slow_double, 2) == [2, 4, 6, 8]


@pytest.mark.asyncio
async def test_never_exceeds_limit():
    in_flight = 0
    peak = 0

    async def work(_):
        nonlocal in_flight, peak
        in_flight += 1
        peak = max(peak, in_flight)
        await asyncio.sleep(0.001)
        in_flight -= 1

    await map_bounded(range(20), work, 3)

    assert peak == 3


@pytest.mark.asyncio
async def test_empty_input():
    async def work(_):
        raise AssertionError("not called")

    assert await map_bounded([], work, 5) == []


@pytest.mark.asyncio
async def test_first_failure_cancels_the_rest():
    finished = []

    async def work(n):
        if n == 0:
            raise RuntimeError("boom")
        await asyncio.sleep(0.05)
        finished.append(n)

    with pytest.raises(RuntimeError, match="boom"):
        await map_bounded([0, 1, 2, 3], work, 4)

    assert finished == []


@pytest.mark.asyncio
async def test_rejects_non_positive_limit():
    async def work(n):
        return n

    with pytest.raises(ValueError):
        await map_bounded([1], work, 0)
