from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from core.db import get_db
from services.block_scheduler import BlockScheduler
from services.calendar_projection import CalendarProjection
from services.data_access import QueryStrategy, build_strategy
from services.status_sync import VehicleStatusSynchronizer
from services.vehicle_directory import VehicleDirectory


def get_strategy(request: Request, db: AsyncSession = Depends(get_db)) -> QueryStrategy:
    """Request-scoped data access path; the choice was made once at startup."""
    use_procedures = getattr(request.app.state, "use_procedures", False)
    return build_strategy(db, use_procedures)


def get_actor_id(x_actor_id: Optional[int] = Header(default=None)) -> Optional[int]:
    """Opaque identity of the acting user, supplied by the authentication layer in front of us."""
    return x_actor_id


def get_synchronizer(strategy: QueryStrategy = Depends(get_strategy)) -> VehicleStatusSynchronizer:
    return VehicleStatusSynchronizer(strategy)


def get_vehicle_directory(
    strategy: QueryStrategy = Depends(get_strategy),
    synchronizer: VehicleStatusSynchronizer = Depends(get_synchronizer),
) -> VehicleDirectory:
    return VehicleDirectory(strategy, synchronizer)


def get_block_scheduler(
    strategy: QueryStrategy = Depends(get_strategy),
    synchronizer: VehicleStatusSynchronizer = Depends(get_synchronizer),
) -> BlockScheduler:
    return BlockScheduler(strategy, synchronizer)


def get_calendar(strategy: QueryStrategy = Depends(get_strategy)) -> CalendarProjection:
    return CalendarProjection(strategy)
