from pydantic import BaseModel, Field
from datetime import datetime
from typing import List, Optional, Tuple


class BlockCreate(BaseModel):
    vehicle_id: int
    start_date: datetime = Field(..., description="Block start")
    end_date: datetime = Field(..., description="Block end, after start_date")
    reason: str


class BlockUpdate(BaseModel):
    start_date: datetime
    end_date: datetime
    reason: str


class BlockOut(BaseModel):
    id: int
    vehicle_id: int
    start_date: datetime
    end_date: datetime
    reason: str
    status: str
    blocked_by: Optional[int] = None
    vehicle_plate: Optional[str] = None
    vehicle_model: Optional[str] = None
    blocked_by_name: Optional[str] = None
    created_at: Optional[datetime] = None


class BlockResult(BlockOut):
    warnings: List[str] = []


class ElapsedBlocksResult(BaseModel):
    completed: List[BlockOut]
    warnings: List[str] = []


class BlockOverlap(BaseModel):
    vehicle_id: int
    vehicle_plate: Optional[str] = None
    block_ids: List[int]
    overlap: Tuple[datetime, datetime, datetime, datetime]


class CalendarEvent(BaseModel):
    id: int
    title: str
    start: datetime
    end: datetime
    vehicleId: int
    vehiclePlate: Optional[str] = None
    reason: str
    createdBy: Optional[str] = None
    type: str = "block"
