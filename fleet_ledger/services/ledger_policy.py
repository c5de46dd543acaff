"""
Per-tenant resolution of write-path tuning.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Optional
from zoneinfo import ZoneInfo

from ..core.config import settings
from ..models.organization import Organization


@dataclass(frozen=True)
class LedgerPolicy:
    overlap_slack: timedelta
    gap_warning_km: int
    timezone: str

    @property
    def tz(self) -> ZoneInfo:
        try:
            return ZoneInfo(self.timezone)
        except Exception:
            return ZoneInfo("UTC")


def resolve_ledger_policy(org: Optional[Organization]) -> LedgerPolicy:
    slack_min = settings.trip_overlap_slack_minutes
    warning_km = settings.odometer_gap_warning_km
    tz = settings.default_timezone
    if org is not None:
        if org.overlap_slack_minutes is not None and org.overlap_slack_minutes >= 0:
            slack_min = int(org.overlap_slack_minutes)
        if org.is_large_fleet:
            warning_km = settings.odometer_gap_large_fleet_km
        if org.odometer_gap_warning_km is not None and org.odometer_gap_warning_km > 0:
            warning_km = int(org.odometer_gap_warning_km)
        if org.timezone:
            tz = org.timezone
    return LedgerPolicy(
        overlap_slack=timedelta(minutes=slack_min),
        gap_warning_km=warning_km,
        timezone=tz,
    )
