"""
Pydantic schemas for trip ledger writes and reads.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class TripCreate(BaseModel):
    vehicle_id: str
    driver_id: str
    start_time: datetime
    end_time: datetime
    start_odometer: int = Field(..., ge=0)
    end_odometer: int = Field(..., ge=0)
    income_amount: float = 0
    fuel_quantity_l: float = 0
    fuel_cost: float = 0
    road_expense: float = 0
    remarks: Optional[str] = None

    model_config = ConfigDict(extra="forbid")


class TripUpdate(BaseModel):
    # vehicle_id is accepted so a reassignment attempt reaches the binding check
    vehicle_id: Optional[str] = None
    driver_id: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    start_odometer: Optional[int] = Field(None, ge=0)
    end_odometer: Optional[int] = Field(None, ge=0)
    income_amount: Optional[float] = None
    fuel_quantity_l: Optional[float] = None
    fuel_cost: Optional[float] = None
    road_expense: Optional[float] = None
    remarks: Optional[str] = None

    model_config = ConfigDict(extra="forbid")

    @model_validator(mode="after")
    def _not_empty(self) -> "TripUpdate":
        if not self.model_fields_set:
            raise ValueError("Patch must contain at least one field")
        return self


class TripImport(BaseModel):
    trips: list[TripCreate] = Field(..., min_length=1)


class TripOut(BaseModel):
    id: str
    organization_id: str
    vehicle_id: str
    driver_id: str
    serial_number: str
    start_time: datetime
    end_time: datetime
    start_odometer: int
    end_odometer: int
    distance_km: int
    income_amount: float
    fuel_quantity_l: float
    fuel_cost: float
    road_expense: float
    remarks: Optional[str] = None
    status: str
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class ValidationWarningOut(BaseModel):
    code: str
    message: str
    context: dict[str, Any] = Field(default_factory=dict)


class TripWriteOut(BaseModel):
    trip: TripOut
    gap_class: Optional[str] = None
    gap_km: Optional[int] = None
    warnings: list[ValidationWarningOut] = Field(default_factory=list)


class TripDeleteAck(BaseModel):
    id: str
    serial_number: str
    status: str
    deleted_at: Optional[datetime] = None


class TripAuditOut(BaseModel):
    id: str
    trip_id: str
    serial_number: Optional[str] = None
    action: str
    severity: str
    actor: Optional[str] = None
    details: dict
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)
