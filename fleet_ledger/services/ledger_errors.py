"""
Error taxonomy for the trip ledger write path and the KPI rollup engine.

Hard errors abort the write transaction and are rendered to callers as
blocking explanations: which invariant was violated, the structured context
(serials, vehicle/driver ids, the conflicting or prior trip) and what the
caller can do about it.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional


def _jsonable(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    return value


class LedgerError(Exception):
    """Base class for write-path rejections."""

    code = "ledger_error"
    invariant: Optional[str] = None
    status_code = 400
    default_remediation: Optional[str] = None

    def __init__(
        self,
        message: str,
        *,
        context: Optional[dict] = None,
        remediation: Optional[str] = None,
        invariant: Optional[str] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.context = _jsonable(context or {})
        self.remediation = remediation or self.default_remediation
        if invariant:
            self.invariant = invariant

    def to_detail(self) -> dict:
        return {
            "error": self.code,
            "invariant": self.invariant,
            "message": self.message,
            "remediation": self.remediation,
            "context": self.context,
        }


class IntegrityViolation(LedgerError):
    code = "integrity_violation"
    invariant = "odometer_continuity"
    status_code = 422
    default_remediation = (
        "Correct the odometer readings so they continue from the neighbouring trip's reading, "
        "or fix the neighbouring trip first."
    )


class InvalidRange(IntegrityViolation):
    code = "invalid_range"
    invariant = "valid_range"
    default_remediation = "End odometer must exceed start odometer and end time must be after start time."


class ImmutableFieldViolation(LedgerError):
    code = "immutable_field_violation"
    invariant = "vehicle_immutability"
    status_code = 409
    default_remediation = "Delete and recreate the trip with the correct vehicle."


class SchedulingConflict(LedgerError):
    code = "scheduling_conflict"
    invariant = "no_overlap"
    status_code = 409
    default_remediation = "Adjust the trip window or assign a vehicle/driver that is free in that window."


class SerialCollision(LedgerError):
    code = "serial_collision"
    invariant = "unique_serial"
    status_code = 409
    default_remediation = "Another trip took this serial number at the same moment. Retry the request."


class TripNotFound(LedgerError):
    code = "trip_not_found"
    status_code = 404


class UnknownReference(LedgerError):
    code = "unknown_reference"
    invariant = "tenant_registry"
    status_code = 422
    default_remediation = "Use a vehicle and driver registered to this organization."


class BulkImportDisabled(LedgerError):
    code = "bulk_import_disabled"
    status_code = 403
    default_remediation = "Enable ENABLE_BULK_IMPORT for a controlled migration window."


class TransientFailure(Exception):
    """Raised inside the rollup engine when a tenant pass exceeds its budget."""

    def __init__(self, organization_id: str, message: str) -> None:
        super().__init__(message)
        self.organization_id = organization_id


@dataclass
class ValidationWarning:
    """Non-fatal finding returned alongside a successful write."""

    code: str
    message: str
    context: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        return {"code": self.code, "message": self.message, "context": _jsonable(self.context)}
