"""
SQL Cache — Expired Items Sweeper Tests
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from sqlcache.sweeper import ExpiredItemsSweeper


@pytest.fixture
def operations() -> MagicMock:
    ops = MagicMock()
    ops.delete_expired = AsyncMock(return_value=3)
    return ops


class TestExpiredItemsSweeper:
    async def test_run_once_returns_deleted_count(self, operations: MagicMock) -> None:
        sweeper = ExpiredItemsSweeper(operations, interval=timedelta(seconds=1))

        assert await sweeper.run_once() == 3
        operations.delete_expired.assert_awaited_once()

    async def test_loop_sweeps_until_stopped(self, operations: MagicMock) -> None:
        sweeper = ExpiredItemsSweeper(operations, interval=timedelta(milliseconds=10))

        await sweeper.start()
        assert sweeper.running is True
        await asyncio.sleep(0.05)
        await sweeper.stop()

        assert sweeper.running is False
        calls = operations.delete_expired.await_count
        assert calls >= 2

        await asyncio.sleep(0.03)
        assert operations.delete_expired.await_count == calls

    async def test_start_is_idempotent(self, operations: MagicMock) -> None:
        sweeper = ExpiredItemsSweeper(operations, interval=timedelta(seconds=10))

        await sweeper.start()
        first_task = sweeper._task
        await sweeper.start()

        assert sweeper._task is first_task
        await sweeper.stop()

    def test_interval_must_be_positive(self, operations: MagicMock) -> None:
        with pytest.raises(ValueError):
            ExpiredItemsSweeper(operations, interval=timedelta(0))
