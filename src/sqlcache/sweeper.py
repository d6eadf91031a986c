"""Periodic reclamation of expired cache items.

Long-running services can run an ExpiredItemsSweeper next to the cache
instead of relying on the opportunistic sweeps triggered by cache traffic.
"""

import asyncio
import logging
from datetime import timedelta

from .operations import SqlOperations


class ExpiredItemsSweeper:
    """Background task calling delete_expired() at a fixed interval.

    delete_expired() already swallows and logs storage failures, so the loop
    keeps running through outages of the backing store.
    """

    def __init__(
        self,
        operations: SqlOperations,
        interval: timedelta,
        logger: logging.Logger | None = None,
    ):
        if interval <= timedelta(0):
            raise ValueError("interval must be positive")
        self.operations = operations
        self.interval = interval
        self.logger = logger if logger is not None else logging.getLogger(__name__)
        self._running = False
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._running

    async def start(self) -> None:
        """Start the sweeper background task."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._sweep_loop())
        self.logger.info(
            "Expired items sweeper started",
            extra={"interval_seconds": self.interval.total_seconds()},
        )

    async def stop(self) -> None:
        """Stop the sweeper gracefully."""
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        self.logger.info("Expired items sweeper stopped")

    async def _sweep_loop(self) -> None:
        while self._running:
            await self.run_once()
            await asyncio.sleep(self.interval.total_seconds())

    async def run_once(self) -> int:
        """Run one sweep and return the number of items removed."""
        return await self.operations.delete_expired()
