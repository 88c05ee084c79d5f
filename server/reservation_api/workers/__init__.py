"""Background workers for the reservation service."""

from .base import BaseWorker
from .manager import WorkerManager
from .rental_start_worker import RentalStartWorker

__all__ = ["BaseWorker", "RentalStartWorker", "WorkerManager"]
