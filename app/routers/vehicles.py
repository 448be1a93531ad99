from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Response

from routers.deps import get_actor_id, get_synchronizer, get_vehicle_directory
from schemas.vehicle import DriverOut, VehicleCreate, VehicleOut, VehicleUpdate
from services.status_sync import VehicleStatusSynchronizer
from services.vehicle_directory import VehicleDirectory


router = APIRouter(prefix="/vehicles", tags=["vehicles"])

@router.get("", response_model=List[VehicleOut])
async def list_vehicles(
    q: Optional[str] = Query(default=None, description="Plate or model substring"),
    directory: VehicleDirectory = Depends(get_vehicle_directory),
):
    if q is None:
        return await directory.list()
    return await directory.search(q)

@router.get("/drivers", response_model=List[DriverOut])
async def list_drivers(directory: VehicleDirectory = Depends(get_vehicle_directory)):
    return await directory.list_drivers()

@router.post("/reconcile", response_model=List[int])
async def reconcile_all(synchronizer: VehicleStatusSynchronizer = Depends(get_synchronizer)):
    """Repairs status drift on every vehicle; returns the corrected ids."""
    return await synchronizer.reconcile_all()

@router.get("/{vehicle_id}", response_model=VehicleOut)
async def get_vehicle(vehicle_id: int, directory: VehicleDirectory = Depends(get_vehicle_directory)):
    return await directory.get(vehicle_id)

@router.post("", response_model=VehicleOut, status_code=201)
async def create_vehicle(
    payload: VehicleCreate,
    directory: VehicleDirectory = Depends(get_vehicle_directory),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return await directory.create(payload.model_dump(exclude_unset=True), actor_id=actor_id)

@router.patch("/{vehicle_id}", response_model=VehicleOut)
async def update_vehicle(
    vehicle_id: int,
    payload: VehicleUpdate,
    directory: VehicleDirectory = Depends(get_vehicle_directory),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return await directory.update(vehicle_id, payload.model_dump(exclude_unset=True), actor_id=actor_id)

@router.delete("/{vehicle_id}", status_code=204)
async def delete_vehicle(
    vehicle_id: int,
    directory: VehicleDirectory = Depends(get_vehicle_directory),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    await directory.delete(vehicle_id, actor_id=actor_id)
    return Response(status_code=204)

@router.post("/{vehicle_id}/reconcile", response_model=VehicleOut)
async def reconcile_vehicle(
    vehicle_id: int,
    synchronizer: VehicleStatusSynchronizer = Depends(get_synchronizer),
):
    return await synchronizer.reconcile(vehicle_id)
