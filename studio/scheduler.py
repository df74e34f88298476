"""
In-process recurring tasks.

Used when the arq worker is not deployed: the API process runs the waitlist
and reminder sweeps itself. Each task owns one asyncio loop that can be
started and stopped; a failing tick is logged and the loop carries on.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class RecurringTask:
    def __init__(
        self,
        name: str,
        interval_seconds: float,
        func: Callable[[], Awaitable],
        sleep: Callable[[float], Awaitable] = asyncio.sleep,
    ):
        self.name = name
        self.interval_seconds = interval_seconds
        self.func = func
        self._sleep = sleep
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.failures = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def run_once(self) -> None:
        """One tick; errors are logged, never raised"""
        self.runs += 1
        try:
            await self.func()
        except Exception as e:
            self.failures += 1
            logger.error(f"❌ Error in {self.name} tick: {e}")

    async def _loop(self) -> None:
        logger.info(f"🚀 Starting {self.name} (every {self.interval_seconds}s)")
        while True:
            await self.run_once()
            await self._sleep(self.interval_seconds)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._loop(), name=self.name)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info(f"🛑 Stopped {self.name}")
