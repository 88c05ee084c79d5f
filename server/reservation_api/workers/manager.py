"""Worker manager for coordinating background tasks."""

import asyncio
import logging
from typing import Dict, Iterable

from .base import BaseWorker

logger = logging.getLogger(__name__)


class WorkerManager:
    """Starts, stops and reports on the application's background workers."""

    def __init__(self, workers: Iterable[BaseWorker] = ()):
        self.workers: Dict[str, BaseWorker] = {worker.name: worker for worker in workers}

    def add(self, worker: BaseWorker) -> None:
        self.workers[worker.name] = worker

    async def start_all(self) -> None:
        for worker in self.workers.values():
            await worker.start()
        logger.info("Workers started", extra={"workers": sorted(self.workers)})

    async def stop_all(self) -> None:
        """Stop all workers, logging rather than raising individual failures."""
        results = await asyncio.gather(
            *(worker.stop() for worker in self.workers.values()),
            return_exceptions=True
        )
        for name, result in zip(self.workers, results):
            if isinstance(result, Exception):
                logger.error("Error stopping worker", extra={"worker": name, "error": str(result)})
        logger.info("Workers stopped")

    def get_worker(self, name: str) -> BaseWorker:
        return self.workers[name]

    def get_worker_status(self) -> Dict[str, bool]:
        return {name: worker.running for name, worker in self.workers.items()}
