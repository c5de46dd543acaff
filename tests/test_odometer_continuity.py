import datetime

import pytest

from fleet_ledger.models.trip_audit import TripAuditLog
from fleet_ledger.services.ledger_errors import IntegrityViolation, InvalidRange
from fleet_ledger.services.odometer import classify_gap
from fleet_ledger.services.trip_ledger import create_trip, delete_trip, update_trip
from fleet_ledger.services.trip_store import get_trip


UTC = datetime.timezone.utc


def _at(day: int, hour: int = 8) -> datetime.datetime:
    return datetime.datetime(2026, 1, day, hour, 0, tzinfo=UTC)


def _data(vehicle_id, driver_id, day, start_km, end_km, hours=2):
    return {
        "vehicle_id": vehicle_id,
        "driver_id": driver_id,
        "start_time": _at(day),
        "end_time": _at(day, 8 + hours),
        "start_odometer": start_km,
        "end_odometer": end_km,
    }


def test_sequential_trips_have_perfect_continuity(db, fleet):
    first = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 1, 100, 200), actor="ops")
    second = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 2, 200, 300), actor="ops")

    assert first.gap_class == "first_trip"
    assert first.gap_km is None
    assert second.gap_class == "perfect_continuity"
    assert second.gap_km == 0
    assert second.warnings == []


def test_backward_odometer_is_rejected_with_prior_trip_context(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 1, 100, 200))
    prior = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 2, 200, 300)).trip

    with pytest.raises(IntegrityViolation) as exc_info:
        create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 3, 150, 250))

    err = exc_info.value
    assert err.invariant == "odometer_continuity"
    assert prior.serial_number in err.message
    assert "300" in err.message
    assert _at(2, 10).isoformat() in err.message
    assert err.context["gap_km"] == -150
    assert err.context["prior_trip"]["serial_number"] == prior.serial_number


def test_rejected_insert_leaves_no_trace(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 1, 100, 200))
    with pytest.raises(IntegrityViolation):
        create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 2, 150, 180))

    from fleet_ledger.models.trip import Trip

    assert db.query(Trip).count() == 1
    assert db.query(TripAuditLog).filter(TripAuditLog.action == "created").count() == 1


def test_large_gap_is_accepted_with_warning_and_audit(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 1, 100, 200))
    result = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 2, 260, 300), actor="ops")

    assert result.gap_class == "large_gap"
    assert result.gap_km == 60
    assert len(result.warnings) == 1
    warning = result.warnings[0]
    assert warning.code == "odometer_gap"
    assert warning.context["gap_km"] == 60
    assert warning.context["serial_number"] == result.trip.serial_number

    audit = (
        db.query(TripAuditLog)
        .filter(TripAuditLog.trip_id == result.trip.id, TripAuditLog.action == "validation_warning")
        .all()
    )
    assert len(audit) == 1
    assert audit[0].severity == "warning"
    assert audit[0].details["context"]["gap_km"] == 60


def test_gap_within_threshold_is_silent(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 1, 100, 200))
    result = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 2, 250, 300))

    assert result.gap_class == "acceptable_gap"
    assert result.warnings == []


def test_large_fleet_uses_higher_ceiling(db, make_fleet):
    fleet = make_fleet(name="Long Haul", is_large_fleet=True)
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 1, 100, 200))
    result = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 2, 1200, 1500))

    assert result.gap_class == "acceptable_gap"
    assert result.warnings == []


def test_invalid_range_rejected(db, fleet):
    with pytest.raises(InvalidRange):
        create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 1, 200, 200))

    bad_times = _data(fleet.v1, fleet.d1, 1, 100, 200)
    bad_times["end_time"] = bad_times["start_time"]
    with pytest.raises(InvalidRange):
        create_trip(db, fleet.org_id, bad_times)


def test_backdated_insert_cannot_break_later_trip(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 1, 100, 200))
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 5, 300, 400))

    with pytest.raises(IntegrityViolation) as exc_info:
        create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 3, 250, 350))
    assert "next_trip" in exc_info.value.context

    fitted = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 3, 200, 300))
    assert fitted.gap_class == "perfect_continuity"


def test_soft_deleted_trip_is_ignored_by_continuity(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 1, 100, 200))
    second = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 2, 200, 300)).trip
    delete_trip(db, fleet.org_id, second.id, actor="ops")

    result = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 3, 210, 260))
    assert result.gap_class == "acceptable_gap"
    assert result.gap_km == 10


def test_update_that_moves_odometer_backward_is_rejected(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 1, 100, 200))
    second = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, 2, 200, 300)).trip

    with pytest.raises(IntegrityViolation):
        update_trip(db, fleet.org_id, second.id, {"start_odometer": 150, "remarks": "fix"})

    reloaded = get_trip(db, fleet.org_id, second.id)
    assert reloaded.start_odometer == 200
    assert reloaded.remarks is None


def test_classify_gap_boundaries():
    assert classify_gap(None, 50) == "first_trip"
    assert classify_gap(0, 50) == "perfect_continuity"
    assert classify_gap(50, 50) == "acceptable_gap"
    assert classify_gap(51, 50) == "large_gap"
