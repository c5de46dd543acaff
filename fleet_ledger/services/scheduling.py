"""
Vehicle and driver double-booking detection.

Two windows conflict when the candidate starts before the existing trip's
slack-adjusted end and ends after its slack-adjusted start. The comparison is
strict: an overlap exactly equal to the slack is accepted.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Optional

from .ledger_errors import SchedulingConflict
from .trip_store import ensure_utc, find_window_candidates
from .write_context import TripCandidate, ValidationContext, ValidationOutcome, touches


SCHEDULING_FIELDS = ("vehicle_id", "driver_id", "start_time", "end_time")


def windows_conflict(
    cand_start: datetime,
    cand_end: datetime,
    other_start: datetime,
    other_end: datetime,
    slack: timedelta,
) -> bool:
    cand_start, cand_end = ensure_utc(cand_start), ensure_utc(cand_end)
    other_start, other_end = ensure_utc(other_start), ensure_utc(other_end)
    return cand_start < other_end - slack and cand_end > other_start + slack


def _find_conflict(new: TripCandidate, ctx: ValidationContext, resource: str) -> None:
    column = f"{resource}_id"
    value = getattr(new, column)
    slack = ctx.policy.overlap_slack
    rows = find_window_candidates(
        ctx.db,
        new.organization_id,
        column=column,
        value=value,
        start_time=new.start_time,
        end_time=new.end_time,
        exclude_id=new.id,
    )
    for other in rows:
        if not windows_conflict(new.start_time, new.end_time, other.start_time, other.end_time, slack):
            continue
        other_start = ensure_utc(other.start_time)
        other_end = ensure_utc(other.end_time)
        label = "Vehicle" if resource == "vehicle" else "Driver"
        raise SchedulingConflict(
            f"{label} conflict: {label} {value} is already on trip {other.serial_number} "
            f"from {other_start.isoformat()} to {other_end.isoformat()}",
            context={
                "resource": resource,
                "serial_number": new.serial_number,
                "vehicle_id": new.vehicle_id,
                "driver_id": new.driver_id,
                "start_time": new.start_time,
                "end_time": new.end_time,
                "slack_minutes": int(slack.total_seconds() // 60),
                "conflicting_trip": {
                    "id": other.id,
                    "serial_number": other.serial_number,
                    "vehicle_id": other.vehicle_id,
                    "driver_id": other.driver_id,
                    "start_time": other_start,
                    "end_time": other_end,
                },
            },
        )


def detect_scheduling_conflicts(
    old: Optional[TripCandidate],
    new: TripCandidate,
    ctx: ValidationContext,
) -> Optional[ValidationOutcome]:
    if not touches(old, new, SCHEDULING_FIELDS):
        return None
    ctx.require_driver(new.driver_id)
    if ctx.skip_scheduling:
        return None
    _find_conflict(new, ctx, "vehicle")
    _find_conflict(new, ctx, "driver")
    return None
