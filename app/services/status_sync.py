import logging
from typing import Dict, List, Optional, Tuple

from core.metrics import track_performance
from core.prometheus_metrics import prometheus_collector
from core.retry import async_retry
from models.user import UserRole
from models.vehicle import VehicleStatus
from services.data_access import QueryStrategy
from services.exceptions import NotFoundError, ValidationError, VehicleInUseError

logger = logging.getLogger(__name__)


class VehicleStatusSynchronizer:
    """
    Single writer of `Vehicle.status` and `Vehicle.assigned_to`.

    Status and block records live in different tables and the store offers no
    transaction spanning both, so every write here is a best-effort step.
    `reconcile` recomputes the status implied by the authoritative records
    (active blocks, assignment) and repairs any drift; it is idempotent and
    safe to call at any time, including after an abandoned operation.
    """

    MAX_RECONCILE_PASSES = 3

    def __init__(self, strategy: QueryStrategy):
        self.strategy = strategy

    @staticmethod
    def desired_state(assigned_to: Optional[int], active_blocks: int) -> Tuple[str, Optional[int]]:
        """Blocked wins over assigned; assigned requires a driver; anything else is available."""
        if active_blocks > 0:
            return VehicleStatus.BLOCKED, None
        if assigned_to is not None:
            return VehicleStatus.ASSIGNED, assigned_to
        return VehicleStatus.AVAILABLE, None

    @async_retry(max_attempts=2, base_delay=0.1)
    async def _write_status(
        self,
        vehicle_id: int,
        status: str,
        assigned_to: Optional[int] = None,
        expected_status: Optional[str] = None,
    ) -> bool:
        return await self.strategy.write_vehicle_status(
            vehicle_id, status, assigned_to=assigned_to, expected_status=expected_status
        )

    @async_retry(max_attempts=2, base_delay=0.1)
    async def _assign(self, vehicle_id: int, driver_id: int, actor_id: Optional[int]) -> bool:
        return await self.strategy.assign_vehicle(vehicle_id, driver_id, actor_id)

    @track_performance(service_name="VehicleStatusSynchronizer")
    async def set_blocked(self, vehicle_id: int) -> bool:
        """Marks the vehicle blocked; a blocked vehicle keeps no driver."""
        changed = await self._write_status(vehicle_id, VehicleStatus.BLOCKED, None)
        logger.info(f"Vehicle {vehicle_id} set to blocked", extra={"vehicle_id": vehicle_id, "applied": changed})
        return changed

    @track_performance(service_name="VehicleStatusSynchronizer")
    async def set_available(self, vehicle_id: int, expected_prior_status: Optional[str] = None) -> bool:
        """
        Marks the vehicle available and clears its driver.

        With `expected_prior_status` the write only applies while the vehicle
        still holds that status, so a concurrent reassignment is not clobbered.
        Returns whether a row changed.
        """
        changed = await self._write_status(
            vehicle_id, VehicleStatus.AVAILABLE, None, expected_status=expected_prior_status
        )
        if not changed and expected_prior_status is not None:
            logger.info(
                f"Vehicle {vehicle_id} no longer {expected_prior_status}, left untouched",
                extra={"vehicle_id": vehicle_id},
            )
        return changed

    async def require_driver(self, driver_id: int) -> Dict:
        """The user behind driver_id, who must exist and hold the driver role."""
        driver = await self.strategy.get_user(driver_id)
        if driver is None:
            raise NotFoundError("Driver not found.", "assigned_to")
        if driver["role"] != UserRole.DRIVER:
            raise ValidationError("Only users with the driver role can be assigned a vehicle.", "assigned_to")
        return driver

    @track_performance(service_name="VehicleStatusSynchronizer")
    async def set_assigned(self, vehicle_id: int, driver_id: int, actor_id: Optional[int] = None) -> Dict:
        """Assigns a driver-role user to a vehicle that has no active block."""
        await self.require_driver(driver_id)

        vehicle = await self.strategy.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle not found.")
        if await self.strategy.count_active_blocks(vehicle_id) > 0:
            raise VehicleInUseError(
                "This vehicle has an active block; complete it before assigning a driver.", "status"
            )

        if not await self._assign(vehicle_id, driver_id, actor_id):
            raise NotFoundError("Vehicle not found.")
        logger.info(
            f"Vehicle {vehicle_id} assigned to driver {driver_id}",
            extra={"vehicle_id": vehicle_id, "driver_id": driver_id, "actor_id": actor_id},
        )
        return await self.reconcile(vehicle_id)

    @track_performance(service_name="VehicleStatusSynchronizer")
    async def reconcile(self, vehicle_id: int) -> Dict:
        """
        Recomputes and repairs the status of one vehicle.

        Args:
            vehicle_id (int): Vehicle to check

        Returns:
            dict: The vehicle after any correction, with driver fields

        Raises:
            NotFoundError: The vehicle does not exist
        """
        for _ in range(self.MAX_RECONCILE_PASSES):
            vehicle = await self.strategy.get_vehicle(vehicle_id)
            if vehicle is None:
                raise NotFoundError("Vehicle not found.")

            active_blocks = await self.strategy.count_active_blocks(vehicle_id)
            status, assigned_to = self.desired_state(vehicle["assigned_to"], active_blocks)
            if (status, assigned_to) == (vehicle["status"], vehicle["assigned_to"]):
                return vehicle

            # Conditional on the status we read, a concurrent writer wins and we look again
            if await self._write_status(vehicle_id, status, assigned_to, expected_status=vehicle["status"]):
                logger.warning(
                    f"Vehicle {vehicle_id} status drift corrected: {vehicle['status']} -> {status}",
                    extra={
                        "vehicle_id": vehicle_id,
                        "from_status": vehicle["status"],
                        "to_status": status,
                        "active_blocks": active_blocks,
                    },
                )
                prometheus_collector.record_status_correction(vehicle["status"], status)

        vehicle = await self.strategy.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle not found.")
        return vehicle

    @track_performance(service_name="VehicleStatusSynchronizer")
    async def reconcile_all(self) -> List[int]:
        """Reconciles every vehicle; returns the ids whose status was corrected."""
        corrected = []
        for vehicle_id in await self.strategy.list_vehicle_ids():
            before = await self.strategy.get_vehicle(vehicle_id)
            if before is None:
                continue
            try:
                after = await self.reconcile(vehicle_id)
            except NotFoundError:
                continue
            if (after["status"], after["assigned_to"]) != (before["status"], before["assigned_to"]):
                corrected.append(vehicle_id)
        if corrected:
            logger.warning(f"Reconciliation corrected {len(corrected)} vehicle(s)", extra={"vehicle_ids": corrected})
        return corrected
