from datetime import datetime, timezone
from typing import Optional

from services.exceptions import ValidationError


def utc_naive(value: datetime, field: str = "start_date") -> datetime:
    """Timestamps are kept as naive UTC; aware values are converted first."""
    if not isinstance(value, datetime):
        raise ValidationError("Dates must be datetimes.", field)
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value

def utc_now() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class FleetRules:
    PLATE_MIN_LENGTH = 2
    PLATE_MAX_LENGTH = 20
    MODEL_MIN_LENGTH = 2
    MODEL_MAX_LENGTH = 100
    MIN_YEAR = 1900
    REASON_MIN_LENGTH = 10

    @staticmethod
    def normalize_plate(plate_number: Optional[str]) -> str:
        plate = (plate_number or "").strip().upper()
        if not plate:
            raise ValidationError("Plate number is required.", "plate_number")
        if not FleetRules.PLATE_MIN_LENGTH <= len(plate) <= FleetRules.PLATE_MAX_LENGTH:
            raise ValidationError(
                f"Plate number must be between {FleetRules.PLATE_MIN_LENGTH} and "
                f"{FleetRules.PLATE_MAX_LENGTH} characters.",
                "plate_number",
            )
        return plate

    @staticmethod
    def normalize_model(model: Optional[str]) -> str:
        value = (model or "").strip()
        if not value:
            raise ValidationError("Model is required.", "model")
        if not FleetRules.MODEL_MIN_LENGTH <= len(value) <= FleetRules.MODEL_MAX_LENGTH:
            raise ValidationError(
                f"Model must be between {FleetRules.MODEL_MIN_LENGTH} and "
                f"{FleetRules.MODEL_MAX_LENGTH} characters.",
                "model",
            )
        return value

    @staticmethod
    def validate_year(year, today: Optional[datetime] = None) -> int:
        try:
            value = int(year)
        except (TypeError, ValueError):
            raise ValidationError("Year must be a whole number.", "year")
        max_year = (today or utc_now()).year + 1
        if not FleetRules.MIN_YEAR <= value <= max_year:
            raise ValidationError(f"Year must be between {FleetRules.MIN_YEAR} and {max_year}.", "year")
        return value

    @staticmethod
    def validate_block_period(start_date: datetime, end_date: datetime):
        if start_date is None or end_date is None:
            raise ValidationError("Start and end dates are required.", "start_date")
        start, end = utc_naive(start_date, "start_date"), utc_naive(end_date, "end_date")
        if end <= start:
            raise ValidationError("End date must be after start date.", "end_date")
        return start, end

    @staticmethod
    def normalize_reason(reason: Optional[str]) -> str:
        value = (reason or "").strip()
        if len(value) < FleetRules.REASON_MIN_LENGTH:
            raise ValidationError(
                f"Reason must be at least {FleetRules.REASON_MIN_LENGTH} characters.",
                "reason",
            )
        return value
