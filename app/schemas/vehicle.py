from pydantic import BaseModel, Field
from datetime import datetime
from typing import Optional, Literal


class VehicleCreate(BaseModel):
    plate_number: str = Field(..., description="Plate number, stored uppercased")
    model: str
    year: int
    status: Optional[Literal["available", "assigned"]] = None
    assigned_to: Optional[int] = None


class VehicleUpdate(BaseModel):
    plate_number: Optional[str] = None
    model: Optional[str] = None
    year: Optional[int] = None
    status: Optional[Literal["available", "assigned", "blocked"]] = None
    assigned_to: Optional[int] = None


class VehicleOut(BaseModel):
    id: int
    plate_number: str
    model: str
    year: int
    status: str
    assigned_to: Optional[int] = None
    driver_name: Optional[str] = None
    driver_email: Optional[str] = None
    driver_phone: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class DriverOut(BaseModel):
    id: int
    name: str
    email: str
    phone: Optional[str] = None
    role: str
