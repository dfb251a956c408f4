"""Periodic cleanup of abandoned PKCE transactions."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class TransactionSweeper:
    """Run ``sweep`` every ``interval_seconds`` on the event loop.

    The task is cancelled on ``stop`` so it never holds up shutdown.
    """

    def __init__(
        self, sweep: Callable[[], Awaitable[int]], *, interval_seconds: float = 60.0
    ) -> None:
        self._sweep = sweep
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="transaction-sweeper")

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                await self._sweep()
            except Exception:  # noqa: BLE001 - keep sweeping after a failed pass
                logger.exception("Transaction sweep failed")


__all__ = ["TransactionSweeper"]
