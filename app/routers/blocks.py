from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query

from routers.deps import get_actor_id, get_block_scheduler
from schemas.block import BlockCreate, BlockOut, BlockOverlap, BlockResult, BlockUpdate, ElapsedBlocksResult
from services.block_scheduler import BlockScheduler


router = APIRouter(prefix="/blocks", tags=["blocks"])

@router.get("", response_model=List[BlockOut])
async def list_blocks(
    vehicle_id: Optional[int] = Query(default=None),
    scheduler: BlockScheduler = Depends(get_block_scheduler),
):
    if vehicle_id is None:
        return await scheduler.list_all()
    return await scheduler.list_for_vehicle(vehicle_id)

@router.get("/overlaps", response_model=List[BlockOverlap])
async def list_overlaps(scheduler: BlockScheduler = Depends(get_block_scheduler)):
    return await scheduler.detect_overlaps()

@router.post("/complete-elapsed", response_model=ElapsedBlocksResult)
async def complete_elapsed(
    now: Optional[datetime] = Query(default=None),
    scheduler: BlockScheduler = Depends(get_block_scheduler),
):
    return await scheduler.complete_elapsed(now)

@router.get("/{block_id}", response_model=BlockOut)
async def get_block(block_id: int, scheduler: BlockScheduler = Depends(get_block_scheduler)):
    return await scheduler.get(block_id)

@router.post("", response_model=BlockResult, status_code=201)
async def create_block(
    payload: BlockCreate,
    scheduler: BlockScheduler = Depends(get_block_scheduler),
    actor_id: Optional[int] = Depends(get_actor_id),
):
    return await scheduler.create(
        payload.vehicle_id,
        payload.start_date,
        payload.end_date,
        payload.reason,
        actor_id=actor_id,
    )

@router.put("/{block_id}", response_model=BlockResult)
async def update_block(
    block_id: int,
    payload: BlockUpdate,
    scheduler: BlockScheduler = Depends(get_block_scheduler),
):
    return await scheduler.update(block_id, payload.start_date, payload.end_date, payload.reason)

@router.post("/{block_id}/complete", response_model=BlockResult)
async def complete_block(block_id: int, scheduler: BlockScheduler = Depends(get_block_scheduler)):
    return await scheduler.complete(block_id)
