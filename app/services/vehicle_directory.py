import logging
from typing import Any, Dict, List, Optional

from core.metrics import track_performance
from models.vehicle import VehicleStatus
from services.data_access import QueryStrategy
from services.exceptions import (
    ConflictError,
    DuplicatePlateError,
    NotFoundError,
    ValidationError,
    VehicleInUseError,
)
from services.status_sync import VehicleStatusSynchronizer
from services.validators import FleetRules

logger = logging.getLogger(__name__)


class VehicleDirectory:
    """
    Read and search operations over vehicles, plus their registration lifecycle.

    Vehicles come back with `driver_name`, `driver_email` and `driver_phone`
    taken from the assigned driver. Status never changes here directly:
    status changes are handed to the VehicleStatusSynchronizer.
    """

    def __init__(self, strategy: QueryStrategy, synchronizer: Optional[VehicleStatusSynchronizer] = None):
        self.strategy = strategy
        self.synchronizer = synchronizer or VehicleStatusSynchronizer(strategy)

    @track_performance(service_name="VehicleDirectory")
    async def list(self) -> List[Dict]:
        """All vehicles ordered by plate number."""
        return await self.strategy.list_vehicles()

    @track_performance(service_name="VehicleDirectory")
    async def get(self, vehicle_id: int) -> Dict:
        vehicle = await self.strategy.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle not found.")
        return vehicle

    @track_performance(service_name="VehicleDirectory")
    async def search(self, search_text: Optional[str]) -> List[Dict]:
        """Case-insensitive substring search on plate number or model; blank text lists everything."""
        if not search_text or not search_text.strip():
            return await self.strategy.list_vehicles()
        return await self.strategy.search_vehicles(search_text)

    @track_performance(service_name="VehicleDirectory")
    async def list_drivers(self) -> List[Dict]:
        """Users eligible to be assigned a vehicle."""
        return await self.strategy.list_drivers()

    @track_performance(service_name="VehicleDirectory")
    async def create(self, data: Dict[str, Any], actor_id: Optional[int] = None) -> Dict:
        """
        Registers a vehicle as available.

        Args:
            data (dict): plate_number, model, year; optionally status="assigned"
                         with assigned_to to hand the new vehicle to a driver
            actor_id (int, optional): User registering the vehicle

        Returns:
            dict: The new vehicle with driver fields

        Raises:
            ValidationError: A field breaks its rule, status is not creatable,
                             or assigned_to is not a driver
            NotFoundError: assigned_to names no user
            DuplicatePlateError: The plate number is already registered
        """
        plate = FleetRules.normalize_plate(data.get("plate_number"))
        model = FleetRules.normalize_model(data.get("model"))
        year = FleetRules.validate_year(data.get("year"))

        status = data.get("status") or VehicleStatus.AVAILABLE
        driver_id = data.get("assigned_to")
        if status == VehicleStatus.BLOCKED or status not in VehicleStatus.ALL:
            raise ValidationError("New vehicles start available or assigned.", "status")
        if status == VehicleStatus.ASSIGNED:
            if driver_id is None:
                raise ValidationError("A driver is required when the status is assigned.", "assigned_to")
            await self.synchronizer.require_driver(driver_id)

        await self._ensure_plate_free(plate)
        try:
            vehicle = await self.strategy.insert_vehicle(plate, model, year, actor_id)
        except ConflictError as e:
            raise DuplicatePlateError(f"A vehicle with plate {plate} already exists.", "plate_number") from e

        if status == VehicleStatus.ASSIGNED:
            vehicle = await self.synchronizer.set_assigned(vehicle["id"], driver_id, actor_id)
        return vehicle

    @track_performance(service_name="VehicleDirectory")
    async def update(self, vehicle_id: int, data: Dict[str, Any], actor_id: Optional[int] = None) -> Dict:
        """
        Updates plate, model and year; delegates status changes to the synchronizer.

        Setting status "blocked" is refused: a vehicle is blocked by scheduling
        a block. Setting "available" is refused while an active block exists.
        """
        vehicle = await self.strategy.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle not found.")

        fields = {}
        if "plate_number" in data:
            plate = FleetRules.normalize_plate(data["plate_number"])
            if plate != vehicle["plate_number"]:
                await self._ensure_plate_free(plate, vehicle_id)
                fields["plate_number"] = plate
        if "model" in data:
            fields["model"] = FleetRules.normalize_model(data["model"])
        if "year" in data:
            fields["year"] = FleetRules.validate_year(data["year"])

        new_status = data.get("status")
        driver_id = data.get("assigned_to")
        if new_status is not None and new_status not in VehicleStatus.ALL:
            raise ValidationError(f"Status must be one of {', '.join(VehicleStatus.ALL)}.", "status")

        if new_status == VehicleStatus.BLOCKED:
            if vehicle["status"] != VehicleStatus.BLOCKED:
                raise ValidationError("Vehicles are blocked by scheduling a block, not by editing the status.", "status")
        elif new_status == VehicleStatus.ASSIGNED:
            driver_id = driver_id if driver_id is not None else vehicle["assigned_to"]
            if driver_id is None:
                raise ValidationError("A driver is required when the status is assigned.", "assigned_to")
            if vehicle["status"] != VehicleStatus.ASSIGNED or driver_id != vehicle["assigned_to"]:
                await self.synchronizer.set_assigned(vehicle_id, driver_id, actor_id)
        elif new_status == VehicleStatus.AVAILABLE:
            if vehicle["status"] != VehicleStatus.AVAILABLE:
                if await self.strategy.count_active_blocks(vehicle_id) > 0:
                    raise VehicleInUseError(
                        "This vehicle has an active block; complete it to make the vehicle available.", "status"
                    )
                await self.synchronizer.set_available(vehicle_id)
        elif (
            driver_id is not None
            and vehicle["status"] == VehicleStatus.ASSIGNED
            and driver_id != vehicle["assigned_to"]
        ):
            await self.synchronizer.set_assigned(vehicle_id, driver_id, actor_id)

        if fields:
            try:
                await self.strategy.update_vehicle_fields(vehicle_id, fields)
            except ConflictError as e:
                raise DuplicatePlateError(
                    f"A vehicle with plate {fields.get('plate_number')} already exists.", "plate_number"
                ) from e
            logger.info(
                f"Vehicle {vehicle_id} updated",
                extra={"vehicle_id": vehicle_id, "fields": sorted(fields), "actor_id": actor_id},
            )

        return await self.synchronizer.reconcile(vehicle_id)

    @track_performance(service_name="VehicleDirectory")
    async def delete(self, vehicle_id: int, actor_id: Optional[int] = None) -> None:
        """Removes an available vehicle without active blocks."""
        vehicle = await self.strategy.get_vehicle(vehicle_id)
        if vehicle is None:
            raise NotFoundError("Vehicle not found.")
        if vehicle["status"] != VehicleStatus.AVAILABLE:
            raise VehicleInUseError(
                f"This vehicle is currently {vehicle['status']}; only available vehicles can be deleted."
            )
        if await self.strategy.count_active_blocks(vehicle_id) > 0:
            raise VehicleInUseError("This vehicle has an active block and cannot be deleted.")

        if not await self.strategy.delete_vehicle(vehicle_id):
            raise NotFoundError("Vehicle not found.")
        logger.info(
            f"Vehicle {vehicle['plate_number']} deleted",
            extra={"vehicle_id": vehicle_id, "actor_id": actor_id},
        )

    async def _ensure_plate_free(self, plate: str, vehicle_id: Optional[int] = None):
        existing = await self.strategy.find_vehicle_id_by_plate(plate)
        if existing is not None and existing != vehicle_id:
            raise DuplicatePlateError(f"A vehicle with plate {plate} already exists.", "plate_number")
