from datetime import datetime
from typing import List

from fastapi import APIRouter, Depends, Query

from routers.deps import get_calendar
from schemas.block import CalendarEvent
from services.calendar_projection import CalendarProjection


router = APIRouter(prefix="/calendar", tags=["calendar"])

@router.get("/blocks", response_model=List[CalendarEvent])
async def calendar_blocks(
    start: datetime = Query(...),
    end: datetime = Query(...),
    calendar: CalendarProjection = Depends(get_calendar),
):
    return await calendar.blocks_between(start, end)
