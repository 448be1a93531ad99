import os
import sys
import asyncio
from datetime import timedelta

# Needed to import core and models when run as a script
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.db import AsyncSessionLocal
from models import User, Vehicle, VehicleStatus
from models.user import UserRole
from services.block_scheduler import BlockScheduler
from services.data_access import QueryStrategy
from services.validators import utc_now


async def seed():
    async with AsyncSessionLocal() as db:
        admin = User(name="Fleet Admin", email="admin@fleet.example", role=UserRole.ADMIN)
        drivers = [
            User(name="Ana Souza", email="ana@fleet.example", phone="+55 11 90000-0001", role=UserRole.DRIVER),
            User(name="Bruno Lima", email="bruno@fleet.example", phone="+55 11 90000-0002", role=UserRole.DRIVER),
        ]
        db.add(admin)
        db.add_all(drivers)

        vehicles = [
            Vehicle(plate_number="ABC1D23", model="Fiat Strada", year=2022, status=VehicleStatus.AVAILABLE),
            Vehicle(plate_number="XYZ9K87", model="VW Saveiro", year=2021, status=VehicleStatus.AVAILABLE),
            Vehicle(plate_number="QWE4R56", model="Renault Kangoo", year=2020, status=VehicleStatus.AVAILABLE),
        ]
        db.add_all(vehicles)
        await db.commit()

        # Go through the services so status and blocks stay consistent
        scheduler = BlockScheduler(QueryStrategy(db))
        await scheduler.synchronizer.set_assigned(vehicles[0].id, drivers[0].id, admin.id)
        now = utc_now()
        await scheduler.create(
            vehicles[2].id,
            now,
            now + timedelta(days=3),
            "Scheduled brake maintenance",
            actor_id=admin.id,
        )
        print("Seed data inserted")

if __name__ == "__main__":
    asyncio.run(seed())
