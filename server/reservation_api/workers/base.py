"""Base worker class for periodic background tasks."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Optional

logger = logging.getLogger(__name__)


class BaseWorker(ABC):
    """
    Runs ``process`` every ``interval_seconds`` until stopped.

    A failing iteration is logged and the loop carries on after the normal
    interval; cancellation ends the loop.
    """

    def __init__(self, name: str, interval_seconds: float = 60):
        self.name = name
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @abstractmethod
    async def process(self) -> int:
        """Run one iteration and return the number of items handled."""

    async def start(self) -> None:
        if self.running:
            logger.warning("Worker already running", extra={"worker": self.name})
            return

        self._task = asyncio.create_task(self._run(), name=f"worker:{self.name}")
        logger.info("Worker started", extra={"worker": self.name, "interval_seconds": self.interval_seconds})

    async def stop(self) -> None:
        if not self.running:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("Worker stopped", extra={"worker": self.name})

    async def _run(self) -> None:
        while True:
            started = time.monotonic()
            try:
                handled = await self.process()
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Worker iteration failed", extra={"worker": self.name})
            else:
                if handled:
                    logger.info(
                        "Worker iteration completed",
                        extra={
                            "worker": self.name,
                            "handled": handled,
                            "duration_seconds": round(time.monotonic() - started, 3),
                        }
                    )

            await asyncio.sleep(max(0.0, self.interval_seconds - (time.monotonic() - started)))
