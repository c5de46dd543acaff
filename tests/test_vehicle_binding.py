import datetime

import pytest

from fleet_ledger.models.trip_audit import TripAuditLog
from fleet_ledger.services.ledger_errors import ImmutableFieldViolation
from fleet_ledger.services.trip_ledger import create_trip, update_trip
from fleet_ledger.services.trip_store import get_trip


UTC = datetime.timezone.utc


def _create(db, fleet, **overrides):
    data = {
        "vehicle_id": fleet.v1,
        "driver_id": fleet.d1,
        "start_time": datetime.datetime(2026, 1, 1, 8, tzinfo=UTC),
        "end_time": datetime.datetime(2026, 1, 1, 12, tzinfo=UTC),
        "start_odometer": 100,
        "end_odometer": 200,
    }
    data.update(overrides)
    return create_trip(db, fleet.org_id, data, actor="ops").trip


def test_vehicle_reassignment_rejected_and_nothing_applied(db, fleet):
    trip = _create(db, fleet)
    serial = trip.serial_number

    with pytest.raises(ImmutableFieldViolation) as exc_info:
        update_trip(db, fleet.org_id, trip.id, {"vehicle_id": fleet.v2, "end_odometer": 250, "remarks": "moved"})

    err = exc_info.value
    assert err.status_code == 409
    assert err.invariant == "vehicle_immutability"
    assert err.context["serial_number"] == serial
    assert err.context["vehicle_fingerprint"] == "1234"
    assert err.context["attempted_vehicle_fingerprint"] == "5678"
    assert "delete and recreate" in err.remediation.lower()

    reloaded = get_trip(db, fleet.org_id, trip.id)
    assert reloaded.vehicle_id == fleet.v1
    assert reloaded.end_odometer == 200
    assert reloaded.remarks is None
    assert db.query(TripAuditLog).filter(TripAuditLog.action == "updated").count() == 0


def test_same_vehicle_in_patch_is_a_noop(db, fleet):
    trip = _create(db, fleet)
    result = update_trip(db, fleet.org_id, trip.id, {"vehicle_id": fleet.v1, "remarks": "checked"})

    assert result.trip.vehicle_id == fleet.v1
    assert result.trip.remarks == "checked"


def test_unknown_target_vehicle_still_reports_binding(db, fleet):
    trip = _create(db, fleet)
    with pytest.raises(ImmutableFieldViolation) as exc_info:
        update_trip(db, fleet.org_id, trip.id, {"vehicle_id": "no-such-vehicle"})
    assert exc_info.value.context["attempted_vehicle_fingerprint"] == "unknown"


def test_other_fields_remain_editable(db, fleet):
    trip = _create(db, fleet)
    result = update_trip(
        db,
        fleet.org_id,
        trip.id,
        {"driver_id": fleet.d2, "end_odometer": 240, "income_amount": 5000, "remarks": "late unload"},
        actor="ops",
    )

    assert result.trip.driver_id == fleet.d2
    assert result.trip.end_odometer == 240
    assert float(result.trip.income_amount) == 5000.0
    assert result.trip.serial_number == trip.serial_number

    audit = db.query(TripAuditLog).filter(TripAuditLog.action == "updated").one()
    assert set(audit.details["changes"]) == {"driver_id", "end_odometer", "income_amount", "remarks"}
    assert audit.details["before"]["end_odometer"] == 200


def test_protected_fields_cannot_be_patched(db, fleet):
    trip = _create(db, fleet)
    with pytest.raises(ImmutableFieldViolation) as exc_info:
        update_trip(db, fleet.org_id, trip.id, {"serial_number": "T26-0000-0001"})
    assert exc_info.value.invariant == "immutable_fields"
    assert get_trip(db, fleet.org_id, trip.id).serial_number == trip.serial_number
