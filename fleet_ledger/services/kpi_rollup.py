"""
KPI rollup engine.

Each tenant is processed in its own session and transaction: window totals
are aggregated from the tenant's Active trips, every card in the catalog is
upserted into the KPI cache, and one events-feed record summarises the
cards that changed. A tenant pass that runs past its time budget is rolled
back and retried on the next tick; other tenants are unaffected.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from datetime import date, datetime, time as dtime, timedelta, timezone
from typing import Callable, Iterable, Optional
from zoneinfo import ZoneInfo

from psycopg2.errors import QueryCanceled
from sqlalchemy import case, distinct, func, text
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.db import SessionLocal, is_postgres
from ..core.errors import exception_summary, log_exception
from ..models.driver import Driver
from ..models.organization import Organization
from ..models.trip import Trip, TripStatus
from ..models.vehicle import Vehicle
from .kpi_cache import INSERTED, UNCHANGED, UPDATED, MetricSnapshot, append_event, upsert_metric
from .ledger_errors import TransientFailure, UnknownReference
from .ledger_policy import resolve_ledger_policy


logger = logging.getLogger("kpi_rollup")

DROP_WARNING_PCT = -20.0


# ---------------------------------------------------------------------------
# Arithmetic helpers
# ---------------------------------------------------------------------------

def percent_change(current: float, prior: float) -> float:
    """Change against the prior period, 0 when either period has nothing to compare."""
    if prior is None or prior <= 0 or not current:
        return 0.0
    return round((current - prior) / prior * 100.0, 1)


def is_drop(card: MetricSnapshot) -> bool:
    """A compared card that fell past the warning threshold or collapsed to zero."""
    prior = card.payload.get("prior")
    if not prior or prior <= 0:
        return False
    if not card.payload.get("current"):
        return True
    return card.payload.get("percent_change", 0.0) <= DROP_WARNING_PCT


def trend_of(change: float) -> str:
    if change > 0:
        return "up"
    if change < 0:
        return "down"
    return "neutral"


def format_change(change: float) -> str:
    return f"{'+' if change > 0 else ''}{change:.1f}%"


def _safe_div(num: float, den: float) -> float:
    if not den:
        return 0.0
    return num / den


def _km(value: float) -> str:
    return f"{int(round(value)):,} km"


def _rupees(value: float) -> str:
    amount = int(round(value))
    sign = "-" if amount < 0 else ""
    return f"{sign}₹{abs(amount):,}"


# ---------------------------------------------------------------------------
# Budget and reporting
# ---------------------------------------------------------------------------

@dataclass
class TenantBudget:
    """Cooperative deadline checked between window scans."""

    organization_id: str
    seconds: float
    clock: Callable[[], float] = time.monotonic
    started: float = field(init=False)

    def __post_init__(self) -> None:
        self.started = self.clock()

    def elapsed(self) -> float:
        return self.clock() - self.started

    def check(self, stage: str) -> None:
        if self.elapsed() > self.seconds:
            raise TransientFailure(
                self.organization_id,
                f"KPI rollup for {self.organization_id} exceeded {self.seconds}s budget at {stage}",
            )


@dataclass
class TenantOutcome:
    organization_id: str
    status: str
    cards_written: int = 0
    cards_unchanged: int = 0
    events_appended: int = 0
    elapsed_sec: float = 0.0
    error: Optional[str] = None


@dataclass
class RollupReport:
    started_at: datetime
    finished_at: Optional[datetime] = None
    tenants: list[TenantOutcome] = field(default_factory=list)

    @property
    def ok_count(self) -> int:
        return sum(1 for t in self.tenants if t.status == "ok")

    @property
    def retry_ids(self) -> list[str]:
        return [t.organization_id for t in self.tenants if t.status != "ok"]

    def outcome_for(self, organization_id: str) -> Optional[TenantOutcome]:
        for outcome in self.tenants:
            if outcome.organization_id == organization_id:
                return outcome
        return None

    def to_dict(self) -> dict:
        return {
            "started_at": self.started_at.isoformat(),
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
            "tenants": [t.__dict__ for t in self.tenants],
        }


# ---------------------------------------------------------------------------
# Windows
# ---------------------------------------------------------------------------

def _local_midnight(day: date, tz: ZoneInfo) -> datetime:
    return datetime.combine(day, dtime(0, 0, 0), tzinfo=tz)


def _month_start(day: date) -> date:
    return day.replace(day=1)


def _add_months(day: date, months: int) -> date:
    month_index = day.month - 1 + months
    return date(day.year + month_index // 12, month_index % 12 + 1, 1)


def _days_in_month(day: date) -> int:
    return (_add_months(day, 1) - _month_start(day)).days


def build_windows(now: datetime, tz: ZoneInfo, first_n_days: int) -> dict[str, tuple[datetime, datetime]]:
    """Half-open [start, end) windows in UTC for the tenant's local calendar."""
    today = now.astimezone(tz).date()
    week_start = today - timedelta(days=today.weekday())
    month_start = _month_start(today)
    last_month_start = _add_months(month_start, -1)
    next_month_start = _add_months(month_start, 1)
    n_this = min(first_n_days, _days_in_month(month_start))
    n_last = min(first_n_days, _days_in_month(last_month_start))

    days = {
        "today": (today, today + timedelta(days=1)),
        "yesterday": (today - timedelta(days=1), today),
        "this_week": (week_start, week_start + timedelta(days=7)),
        "last_week": (week_start - timedelta(days=7), week_start),
        "this_month": (month_start, next_month_start),
        "last_month": (last_month_start, month_start),
        "first_n_this": (month_start, month_start + timedelta(days=n_this)),
        "first_n_last": (last_month_start, last_month_start + timedelta(days=n_last)),
    }
    return {
        name: (
            _local_midnight(start, tz).astimezone(timezone.utc),
            _local_midnight(end, tz).astimezone(timezone.utc),
        )
        for name, (start, end) in days.items()
    }


@dataclass
class WindowTotals:
    trips: int = 0
    distance: float = 0.0
    income: float = 0.0
    fuel_cost: float = 0.0
    road_expense: float = 0.0
    fuel_litres: float = 0.0
    fuelled_distance: float = 0.0
    vehicles: int = 0
    drivers: int = 0

    @property
    def expenses(self) -> float:
        return self.fuel_cost + self.road_expense

    @property
    def profit(self) -> float:
        return self.income - self.expenses

    @property
    def mileage(self) -> float:
        if self.fuel_litres <= 0:
            return 0.0
        return round(self.fuelled_distance / self.fuel_litres, 2)


def aggregate_window(db: Session, organization_id: str, start: datetime, end: datetime) -> WindowTotals:
    distance = Trip.end_odometer - Trip.start_odometer
    row = (
        db.query(
            func.count(Trip.id),
            func.coalesce(func.sum(distance), 0),
            func.coalesce(func.sum(Trip.income_amount), 0),
            func.coalesce(func.sum(Trip.fuel_cost), 0),
            func.coalesce(func.sum(Trip.road_expense), 0),
            func.coalesce(func.sum(Trip.fuel_quantity_l), 0),
            func.coalesce(func.sum(case((Trip.fuel_quantity_l > 0, distance), else_=0)), 0),
            func.count(distinct(Trip.vehicle_id)),
            func.count(distinct(Trip.driver_id)),
        )
        .filter(
            Trip.organization_id == organization_id,
            Trip.status == TripStatus.ACTIVE.value,
            Trip.start_time >= start,
            Trip.start_time < end,
        )
        .one()
    )
    return WindowTotals(
        trips=int(row[0] or 0),
        distance=float(row[1] or 0),
        income=float(row[2] or 0),
        fuel_cost=float(row[3] or 0),
        road_expense=float(row[4] or 0),
        fuel_litres=float(row[5] or 0),
        fuelled_distance=float(row[6] or 0),
        vehicles=int(row[7] or 0),
        drivers=int(row[8] or 0),
    )


# ---------------------------------------------------------------------------
# Catalog
# ---------------------------------------------------------------------------

def _compared(
    key: str,
    title: str,
    theme: str,
    *,
    current: float,
    prior: float,
    human: str,
    unit: str,
    period: str,
    prior_label: str,
) -> MetricSnapshot:
    change = percent_change(current, prior)
    return MetricSnapshot(
        kpi_key=key,
        title=title,
        value_human=human,
        value_raw=float(current),
        theme=theme,
        payload={
            "type": "kpi",
            "value": current,
            "unit": unit,
            "current": current,
            "prior": prior,
            "percent_change": change,
            "trend": trend_of(change),
            "change": format_change(change),
            "period": period,
            "comparison": {prior_label: prior},
        },
    )


def _single(
    key: str,
    title: str,
    theme: str,
    *,
    value: float,
    human: str,
    unit: str,
    period: str,
    extra: Optional[dict] = None,
) -> MetricSnapshot:
    payload = {
        "type": "kpi",
        "value": value,
        "unit": unit,
        "current": value,
        "prior": None,
        "percent_change": 0.0,
        "trend": "neutral",
        "period": period,
    }
    if extra:
        payload.update(extra)
    return MetricSnapshot(kpi_key=key, title=title, value_human=human, value_raw=float(value), theme=theme, payload=payload)


def _round_money(value: float) -> int:
    return int(round(value))


def build_catalog(
    totals: dict[str, WindowTotals],
    *,
    registry_vehicles: int,
    registry_drivers: int,
    first_n_days: int,
) -> list[MetricSnapshot]:
    today, yesterday = totals["today"], totals["yesterday"]
    week, last_week = totals["this_week"], totals["last_week"]
    month, last_month = totals["this_month"], totals["last_month"]
    first_this, first_last = totals["first_n_this"], totals["first_n_last"]
    n = first_n_days

    cards = [
        _compared("daily.distance.today", "Today's Distance", "distance",
                  current=int(today.distance), prior=int(yesterday.distance), human=_km(today.distance),
                  unit="km", period="Today vs Yesterday", prior_label="yesterday"),
        _compared("daily.trips.today", "Today's Trips", "trips",
                  current=today.trips, prior=yesterday.trips, human=f"{today.trips} trips",
                  unit="trips", period="Today vs Yesterday", prior_label="yesterday"),
        _compared("daily.profit.today", "Today's P&L", "pnl",
                  current=_round_money(today.profit), prior=_round_money(yesterday.profit),
                  human=_rupees(today.profit), unit="₹", period="Today vs Yesterday", prior_label="yesterday"),
        _single("daily.active_vehicles", "Active Vehicles", "vehicles",
                value=today.vehicles, human=f"{today.vehicles} / {registry_vehicles}", unit="vehicles",
                period="Today", extra={"total": registry_vehicles}),

        _compared("weekly.distance", "This Week's Distance", "distance",
                  current=int(week.distance), prior=int(last_week.distance), human=_km(week.distance),
                  unit="km", period="This Week vs Last Week", prior_label="last_week"),
        _compared("weekly.trips", "This Week's Trips", "trips",
                  current=week.trips, prior=last_week.trips, human=f"{week.trips} trips",
                  unit="trips", period="This Week vs Last Week", prior_label="last_week"),
        _compared("weekly.profit", "This Week's P&L", "pnl",
                  current=_round_money(week.profit), prior=_round_money(last_week.profit),
                  human=_rupees(week.profit), unit="₹", period="This Week vs Last Week", prior_label="last_week"),
        _compared("weekly.mileage", "Weekly Mileage", "fuel",
                  current=week.mileage, prior=last_week.mileage, human=f"{week.mileage:.2f} km/L",
                  unit="km/L", period="This Week vs Last Week", prior_label="last_week"),

        _compared("monthly.distance", "This Month's Distance", "distance",
                  current=int(month.distance), prior=int(last_month.distance), human=_km(month.distance),
                  unit="km", period="This Month vs Last Month", prior_label="last_month"),
        _compared("monthly.trips", "This Month's Trips", "trips",
                  current=month.trips, prior=last_month.trips, human=f"{month.trips} trips",
                  unit="trips", period="This Month vs Last Month", prior_label="last_month"),
        _compared("monthly.profit", "This Month's P&L", "pnl",
                  current=_round_money(month.profit), prior=_round_money(last_month.profit),
                  human=_rupees(month.profit), unit="₹", period="This Month vs Last Month", prior_label="last_month"),
        _compared("monthly.mileage", "Monthly Mileage", "fuel",
                  current=month.mileage, prior=last_month.mileage, human=f"{month.mileage:.2f} km/L",
                  unit="km/L", period="This Month vs Last Month", prior_label="last_month"),
        _single("monthly.revenue", "Monthly Revenue", "revenue",
                value=_round_money(month.income), human=_rupees(month.income), unit="₹", period="This Month"),
        _single("monthly.expenses", "Monthly Expenses", "expenses",
                value=_round_money(month.expenses), human=_rupees(month.expenses), unit="₹", period="This Month",
                extra={"fuel_cost": _round_money(month.fuel_cost), "road_expense": _round_money(month.road_expense)}),

        _compared(f"comparison.first{n}days.distance", f"First {n} Days Distance", "distance",
                  current=int(first_this.distance), prior=int(first_last.distance), human=_km(first_this.distance),
                  unit="km", period=f"First {n} Days vs Last Month", prior_label="last_month"),
        _compared(f"comparison.first{n}days.trips", f"First {n} Days Trips", "trips",
                  current=first_this.trips, prior=first_last.trips, human=f"{first_this.trips} trips",
                  unit="trips", period=f"First {n} Days vs Last Month", prior_label="last_month"),
        _compared(f"comparison.first{n}days.profit", f"First {n} Days P&L", "pnl",
                  current=_round_money(first_this.profit), prior=_round_money(first_last.profit),
                  human=_rupees(first_this.profit), unit="₹", period=f"First {n} Days vs Last Month",
                  prior_label="last_month"),
    ]

    fleet_util = round(_safe_div(month.vehicles, registry_vehicles) * 100.0, 1)
    driver_util = round(_safe_div(month.drivers, registry_drivers) * 100.0, 1)
    cost_per_km = round(_safe_div(month.expenses, month.distance), 2)
    margin = round(_safe_div(month.profit, month.income) * 100.0, 1)
    cards.extend([
        _single("fleet.utilization", "Fleet Utilization", "utilization",
                value=fleet_util, human=f"{fleet_util:.1f}%", unit="%", period="This Month",
                extra={"active": month.vehicles, "total": registry_vehicles}),
        _single("fleet.driver_utilization", "Driver Utilization", "utilization",
                value=driver_util, human=f"{driver_util:.1f}%", unit="%", period="This Month",
                extra={"active": month.drivers, "total": registry_drivers}),
        _single("monthly.cost_per_km", "Cost per km", "expenses",
                value=cost_per_km, human=f"₹{cost_per_km:.2f}/km", unit="₹/km", period="This Month"),
        _single("monthly.profit_margin", "Profit Margin", "pnl",
                value=margin, human=f"{margin:.1f}%", unit="%", period="This Month"),
    ])
    return cards


# ---------------------------------------------------------------------------
# Tenant pass
# ---------------------------------------------------------------------------

def _begin_snapshot(db: Session, budget_sec: float) -> None:
    if not is_postgres(db):
        return
    db.connection(execution_options={"isolation_level": "REPEATABLE READ"})
    db.execute(text(f"SET LOCAL statement_timeout = {int(budget_sec * 1000)}"))


def rollup_tenant(
    db: Session,
    organization_id: str,
    *,
    now: datetime,
    budget: TenantBudget,
    first_n_days: int,
) -> TenantOutcome:
    """Compute and cache every card for one tenant. Caller owns the transaction."""
    org = db.get(Organization, organization_id)
    if org is None:
        raise UnknownReference(
            f"Organization {organization_id} does not exist",
            context={"organization_id": organization_id},
        )
    policy = resolve_ledger_policy(org)
    windows = build_windows(now, policy.tz, first_n_days)

    totals: dict[str, WindowTotals] = {}
    for name, (start, end) in windows.items():
        budget.check(f"window:{name}")
        totals[name] = aggregate_window(db, organization_id, start, end)

    budget.check("registry")
    registry_vehicles = (
        db.query(func.count(Vehicle.id))
        .filter(Vehicle.organization_id == organization_id, Vehicle.status == "ACTIVE")
        .scalar()
        or 0
    )
    registry_drivers = (
        db.query(func.count(Driver.id))
        .filter(Driver.organization_id == organization_id, Driver.status == "ACTIVE")
        .scalar()
        or 0
    )

    cards = build_catalog(
        totals,
        registry_vehicles=int(registry_vehicles),
        registry_drivers=int(registry_drivers),
        first_n_days=first_n_days,
    )
    outcome = TenantOutcome(organization_id=organization_id, status="ok")
    changed: list[MetricSnapshot] = []
    for card in cards:
        budget.check(f"upsert:{card.kpi_key}")
        status = upsert_metric(db, organization_id, card, computed_at=now)
        if status == UNCHANGED:
            outcome.cards_unchanged += 1
        elif status in (INSERTED, UPDATED):
            outcome.cards_written += 1
            changed.append(card)

    if changed:
        drops = [c.kpi_key for c in changed if is_drop(c)]
        append_event(
            db,
            organization_id,
            kind="kpi_rollup",
            title=f"{len(changed)} KPI cards refreshed",
            description=", ".join(f"{c.title}: {c.value_human}" for c in changed[:6]),
            priority="warn" if drops else "info",
            entity={
                "changed": [
                    {
                        "kpi_key": c.kpi_key,
                        "value_human": c.value_human,
                        "percent_change": c.payload.get("percent_change"),
                    }
                    for c in changed
                ],
                "drops": drops,
            },
            event_time=now,
        )
        outcome.events_appended = 1
    return outcome


def _statement_timed_out(exc: OperationalError) -> bool:
    return isinstance(exc.orig, QueryCanceled)


def _deferred(failure: TransientFailure) -> TenantOutcome:
    logger.warning("KPI rollup deferred org=%s: %s", failure.organization_id, failure)
    return TenantOutcome(organization_id=failure.organization_id, status="timed_out", error=str(failure))


def _failed(organization_id: str, exc: Exception) -> TenantOutcome:
    log_exception(logger, "KPI rollup failed", extra={"org": organization_id}, exc=exc)
    return TenantOutcome(organization_id=organization_id, status="failed", error=exception_summary(exc))


def _tenant_ids(session_factory, organization_ids: Optional[Iterable[str]]) -> list[str]:
    if organization_ids is not None:
        return [str(o) for o in organization_ids]
    with session_factory() as db:
        rows = (
            db.query(Organization.id)
            .filter(Organization.is_active.is_(True))
            .order_by(Organization.id.asc())
            .all()
        )
    return [r[0] for r in rows]


def run_kpi_rollup(
    session_factory=None,
    *,
    now: Optional[datetime] = None,
    organization_ids: Optional[Iterable[str]] = None,
    budget_sec: Optional[float] = None,
    first_n_days: Optional[int] = None,
    clock: Callable[[], float] = time.monotonic,
) -> RollupReport:
    """Run one rollup pass over every tenant (or the given ones)."""
    session_factory = session_factory or SessionLocal
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    budget_sec = budget_sec if budget_sec is not None else settings.kpi_rollup_tenant_budget_sec
    first_n_days = max(1, first_n_days or settings.kpi_first_n_days)

    report = RollupReport(started_at=datetime.now(timezone.utc))
    for organization_id in _tenant_ids(session_factory, organization_ids):
        budget = TenantBudget(organization_id=organization_id, seconds=budget_sec, clock=clock)
        db = session_factory()
        try:
            _begin_snapshot(db, budget_sec)
            outcome = rollup_tenant(db, organization_id, now=now, budget=budget, first_n_days=first_n_days)
            db.commit()
        except TransientFailure as exc:
            db.rollback()
            outcome = _deferred(exc)
        except OperationalError as exc:
            db.rollback()
            if _statement_timed_out(exc):
                outcome = _deferred(
                    TransientFailure(
                        organization_id,
                        f"KPI rollup for {organization_id} exceeded {budget_sec}s budget: statement cancelled",
                    )
                )
            else:
                outcome = _failed(organization_id, exc)
        except Exception as exc:
            db.rollback()
            outcome = _failed(organization_id, exc)
        finally:
            db.close()
        outcome.elapsed_sec = round(budget.elapsed(), 3)
        report.tenants.append(outcome)
    report.finished_at = datetime.now(timezone.utc)
    logger.info(
        "KPI rollup finished tenants=%s ok=%s retry=%s",
        len(report.tenants),
        report.ok_count,
        report.retry_ids,
    )
    return report
