from datetime import datetime
from typing import Dict, List

from core.metrics import track_performance
from services.data_access import QueryStrategy
from services.exceptions import ValidationError
from services.validators import utc_naive


class CalendarProjection:
    """Read-only projection of active blocks onto a date range for scheduling displays."""

    def __init__(self, strategy: QueryStrategy):
        self.strategy = strategy

    @track_performance(service_name="CalendarProjection")
    async def blocks_between(self, start_date: datetime, end_date: datetime) -> List[Dict]:
        """Active blocks intersecting the closed range [start_date, end_date], as calendar events."""
        if start_date is None or end_date is None:
            raise ValidationError("Start and end dates are required.", "start")
        start, end = utc_naive(start_date, "start"), utc_naive(end_date, "end")
        if end < start:
            raise ValidationError("The end of the range must not be before its start.", "end")

        rows = await self.strategy.calendar_blocks(start, end)
        return [
            dict(
                id=row["id"],
                title=f"Blocked: {row['vehicle_plate']}",
                start=row["start_time"],
                end=row["end_time"],
                vehicleId=row["vehicle_id"],
                vehiclePlate=row["vehicle_plate"],
                reason=row["reason"],
                createdBy=row["created_by"],
                type="block",
            )
            for row in rows
        ]
