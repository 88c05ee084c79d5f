#!/usr/bin/env python3
"""Setup script for the vehicle reservation API: migrate, then seed sample vehicles."""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

# Add the server directory to the Python path
server_dir = Path(__file__).parent.parent / "server"
sys.path.insert(0, str(server_dir))

from alembic import command  # noqa: E402
from alembic.config import Config  # noqa: E402

from reservation_api.core.config import settings  # noqa: E402
from reservation_api.core.database import async_session_factory, engine  # noqa: E402
from reservation_api.core.storage import Storage  # noqa: E402
from reservation_api.services.vehicle_service import VehicleService  # noqa: E402

logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

# (make, model, plate, daily rate, driver surcharge), amounts in centavos
SAMPLE_VEHICLES = [
    ("Toyota", "Vios", "NCR-1001", 250000, 150000),
    ("Toyota", "Innova", "NCR-1002", 350000, 150000),
    ("Mitsubishi", "Montero Sport", "NCR-1003", 450000, 180000),
    ("Honda", "City", "NCR-1004", 260000, 150000),
    ("Nissan", "Urvan", "NCR-1005", 500000, 200000),
]


def run_migrations() -> None:
    """Apply Alembic migrations up to head."""
    alembic_cfg = Config(str(server_dir / "db" / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(server_dir / "db" / "alembic"))

    logger.info("Running database migrations against %s", settings.database_url.split("@")[-1])
    command.upgrade(alembic_cfg, "head")
    logger.info("Database migrations completed")


async def create_sample_data() -> None:
    """Register the sample fleet, skipping plates that already exist."""
    service = VehicleService(Storage(async_session_factory))

    created = 0
    for make, model, plate, daily_rate, driver_rate in SAMPLE_VEHICLES:
        if await service.get_by_plate(plate) is not None:
            continue
        vehicle = await service.create_vehicle(
            make=make,
            model=model,
            license_plate=plate,
            daily_rate=daily_rate,
            with_driver_rate=driver_rate,
        )
        logger.info("Created vehicle %s %s (%s) id=%s", make, model, plate, vehicle.id)
        created += 1

    logger.info("Sample data ready: %d vehicle(s) created", created)
    await engine.dispose()


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--skip-migrations", action="store_true", help="Only seed sample data")
    parser.add_argument("--skip-sample-data", action="store_true", help="Only run migrations")
    args = parser.parse_args()

    if not args.skip_migrations:
        run_migrations()
    if not args.skip_sample_data:
        asyncio.run(create_sample_data())


if __name__ == "__main__":
    main()
