"""Background worker that starts rentals whose first day has arrived."""

import logging

from ..core.observability import metrics_collector
from ..services.reservation_service import ReservationService
from .base import BaseWorker

logger = logging.getLogger(__name__)


class RentalStartWorker(BaseWorker):
    """Moves confirmed bookings to ``ongoing`` once their start day is reached."""

    def __init__(self, reservation_service: ReservationService, interval_seconds: float = 300):
        super().__init__(name="RentalStart", interval_seconds=interval_seconds)
        self.reservation_service = reservation_service

    async def process(self) -> int:
        started = await self.reservation_service.start_due_rentals()
        metrics_collector.set_rentals_started(started)
        return started
