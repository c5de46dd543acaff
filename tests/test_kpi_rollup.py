import datetime
import sqlite3
from zoneinfo import ZoneInfo

from psycopg2.errors import QueryCanceled
from sqlalchemy.exc import OperationalError

from fleet_ledger.models.events_feed import EventsFeed
from fleet_ledger.models.kpi_card import KpiCard
from fleet_ledger.services import kpi_rollup
from fleet_ledger.services.kpi_cache import list_events
from fleet_ledger.services.kpi_rollup import build_windows, percent_change, run_kpi_rollup, trend_of
from fleet_ledger.services.trip_ledger import create_trip, update_trip


UTC = datetime.timezone.utc
NOW = datetime.datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


class FakeClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _trip(db, fleet, day, start_km, end_km, *, month=3, **money):
    data = {
        "vehicle_id": fleet.v1,
        "driver_id": fleet.d1,
        "start_time": datetime.datetime(2026, month, day, 6, tzinfo=UTC),
        "end_time": datetime.datetime(2026, month, day, 10, tzinfo=UTC),
        "start_odometer": start_km,
        "end_odometer": end_km,
    }
    data.update(money)
    return create_trip(db, fleet.org_id, data).trip


def _cards(db, organization_id):
    db.expire_all()
    rows = db.query(KpiCard).filter(KpiCard.organization_id == organization_id).all()
    return {row.kpi_key: row for row in rows}


def _row_state(row):
    return (
        row.id,
        row.title,
        row.value_human,
        row.value_raw,
        row.payload,
        row.theme,
        row.computed_at,
        row.updated_at,
    )


def test_percent_change_never_divides_by_zero():
    assert percent_change(150, 100) == 50.0
    assert percent_change(100, 0) == 0.0
    assert percent_change(0, 0) == 0.0
    assert percent_change(0, 100) == 0.0
    assert percent_change(5, None) == 0.0
    assert percent_change(-50, 100) == -150.0
    assert trend_of(12.5) == "up"
    assert trend_of(-0.1) == "down"
    assert trend_of(0.0) == "neutral"


def test_windows_follow_local_calendar():
    windows = build_windows(NOW, ZoneInfo("UTC"), 10)

    assert windows["today"] == (NOW.replace(hour=0), NOW.replace(day=16, hour=0))
    assert windows["this_week"][0] == datetime.datetime(2026, 3, 9, tzinfo=UTC)
    assert windows["last_week"] == (
        datetime.datetime(2026, 3, 2, tzinfo=UTC),
        datetime.datetime(2026, 3, 9, tzinfo=UTC),
    )
    assert windows["last_month"] == (
        datetime.datetime(2026, 2, 1, tzinfo=UTC),
        datetime.datetime(2026, 3, 1, tzinfo=UTC),
    )
    assert windows["first_n_this"][1] == datetime.datetime(2026, 3, 11, tzinfo=UTC)

    kolkata = build_windows(NOW, ZoneInfo("Asia/Kolkata"), 10)
    assert kolkata["today"][0] == datetime.datetime(2026, 3, 14, 18, 30, tzinfo=UTC)


def test_first_n_days_is_capped_by_short_month():
    windows = build_windows(NOW, ZoneInfo("UTC"), 30)
    assert windows["first_n_last"][1] == datetime.datetime(2026, 3, 1, tzinfo=UTC)


def test_empty_current_month_reports_zero_change(db, session_factory, fleet):
    _trip(db, fleet, 2, 100, 200, month=2, income_amount=1000)

    report = run_kpi_rollup(session_factory, now=NOW, organization_ids=[fleet.org_id])

    assert report.retry_ids == []
    card = _cards(db, fleet.org_id)["monthly.distance"]
    assert card.value_raw == 0.0
    assert card.payload["prior"] == 100
    assert card.payload["percent_change"] == 0.0
    assert card.payload["trend"] == "neutral"


def test_metric_collapsing_to_zero_is_flagged_as_drop(db, session_factory, fleet):
    _trip(db, fleet, 2, 100, 200, month=2, income_amount=1000)

    run_kpi_rollup(session_factory, now=NOW, organization_ids=[fleet.org_id])

    rows, total = list_events(db, fleet.org_id, kind="kpi_rollup")
    assert total == 1
    assert rows[0].priority == "warn"
    assert "monthly.distance" in rows[0].entity_json["drops"]
    assert "monthly.trips" in rows[0].entity_json["drops"]


def test_monthly_catalog_values(db, session_factory, fleet):
    _trip(db, fleet, 2, 100, 200, month=2, income_amount=1000, fuel_cost=200, road_expense=100, fuel_quantity_l=10)
    _trip(db, fleet, 2, 200, 350, income_amount=2000, fuel_cost=300, fuel_quantity_l=15)

    report = run_kpi_rollup(session_factory, now=NOW, organization_ids=[fleet.org_id])
    outcome = report.outcome_for(fleet.org_id)
    assert outcome.status == "ok"
    assert outcome.cards_written == 21
    assert outcome.events_appended == 1

    cards = _cards(db, fleet.org_id)
    distance = cards["monthly.distance"]
    assert distance.value_human == "150 km"
    assert distance.payload["percent_change"] == 50.0
    assert distance.payload["trend"] == "up"
    assert distance.payload["change"] == "+50.0%"
    assert cards["monthly.profit"].value_raw == 1700.0
    assert cards["monthly.profit"].payload["percent_change"] == 142.9
    assert cards["monthly.mileage"].payload["current"] == 10.0
    assert cards["comparison.first10days.distance"].payload["percent_change"] == 50.0
    assert cards["fleet.utilization"].value_raw == 33.3
    assert cards["fleet.driver_utilization"].value_raw == 50.0
    assert cards["monthly.cost_per_km"].value_raw == 2.0
    assert cards["monthly.profit_margin"].value_raw == 85.0


def test_rerun_without_changes_is_idempotent(db, session_factory, fleet):
    _trip(db, fleet, 2, 100, 200, month=2)
    _trip(db, fleet, 12, 200, 260)

    run_kpi_rollup(session_factory, now=NOW, organization_ids=[fleet.org_id])
    before = {key: _row_state(row) for key, row in _cards(db, fleet.org_id).items()}

    report = run_kpi_rollup(session_factory, now=NOW + datetime.timedelta(minutes=15), organization_ids=[fleet.org_id])
    after = {key: _row_state(row) for key, row in _cards(db, fleet.org_id).items()}

    outcome = report.outcome_for(fleet.org_id)
    assert outcome.cards_written == 0
    assert outcome.cards_unchanged == len(before)
    assert outcome.events_appended == 0
    assert after == before
    assert db.query(EventsFeed).count() == 1


def test_new_trip_refreshes_cards_and_appends_event(db, session_factory, fleet):
    trip = _trip(db, fleet, 2, 100, 200, month=2)
    run_kpi_rollup(session_factory, now=NOW, organization_ids=[fleet.org_id])

    _trip(db, fleet, 3, 200, 240)
    update_trip(db, fleet.org_id, trip.id, {"remarks": "audited"})
    report = run_kpi_rollup(session_factory, now=NOW, organization_ids=[fleet.org_id])

    assert report.outcome_for(fleet.org_id).cards_written > 0
    rows, total = list_events(db, fleet.org_id, kind="kpi_rollup")
    assert total == 2
    # 40 km this month against 100 km last month.
    assert rows[0].priority == "warn"
    assert "monthly.distance" in rows[0].entity_json["drops"]


def test_slow_tenant_is_rolled_back_without_blocking_others(db, session_factory, fleet, make_fleet, monkeypatch):
    slow = make_fleet(name="Slow Co")
    _trip(db, fleet, 2, 100, 200)
    _trip(db, slow, 2, 100, 200)

    clock = FakeClock()
    real_aggregate = kpi_rollup.aggregate_window

    def stalling_aggregate(db, organization_id, start, end):
        if organization_id == slow.org_id:
            clock.now += 60.0
        return real_aggregate(db, organization_id, start, end)

    monkeypatch.setattr(kpi_rollup, "aggregate_window", stalling_aggregate)

    report = run_kpi_rollup(
        session_factory,
        now=NOW,
        organization_ids=[slow.org_id, fleet.org_id],
        budget_sec=30.0,
        clock=clock,
    )

    assert report.outcome_for(slow.org_id).status == "timed_out"
    assert report.outcome_for(fleet.org_id).status == "ok"
    assert report.retry_ids == [slow.org_id]
    assert _cards(db, slow.org_id) == {}
    assert len(_cards(db, fleet.org_id)) == 21


def test_unknown_tenant_fails_in_isolation(db, session_factory, fleet):
    report = run_kpi_rollup(session_factory, now=NOW, organization_ids=["missing-org", fleet.org_id])

    missing = report.outcome_for("missing-org")
    assert missing.status == "failed"
    assert missing.error.startswith("UnknownReference")
    assert report.outcome_for(fleet.org_id).status == "ok"
    assert _cards(db, "missing-org") == {}


def test_cancelled_statement_is_deferred_like_a_budget_overrun(db, session_factory, fleet, make_fleet, monkeypatch):
    slow = make_fleet(name="Cancelled Co")
    broken = make_fleet(name="Broken Co")
    real_aggregate = kpi_rollup.aggregate_window

    def aggregate(db, organization_id, start, end):
        if organization_id == slow.org_id:
            raise OperationalError("SELECT trips", {}, QueryCanceled("canceling statement due to statement timeout"))
        if organization_id == broken.org_id:
            raise OperationalError("SELECT trips", {}, sqlite3.OperationalError("disk I/O error"))
        return real_aggregate(db, organization_id, start, end)

    monkeypatch.setattr(kpi_rollup, "aggregate_window", aggregate)

    report = run_kpi_rollup(
        session_factory,
        now=NOW,
        organization_ids=[slow.org_id, broken.org_id, fleet.org_id],
        budget_sec=30.0,
    )

    deferred = report.outcome_for(slow.org_id)
    assert deferred.status == "timed_out"
    assert "statement cancelled" in deferred.error
    assert report.outcome_for(broken.org_id).status == "failed"
    assert report.outcome_for(fleet.org_id).status == "ok"
    assert report.retry_ids == [slow.org_id, broken.org_id]
    assert _cards(db, slow.org_id) == {}
