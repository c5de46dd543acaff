import datetime
import threading

import pytest
from sqlalchemy.exc import OperationalError

from fleet_ledger.models.trip import Trip, TripStatus
from fleet_ledger.services.ledger_errors import SchedulingConflict
from fleet_ledger.services.scheduling import windows_conflict
from fleet_ledger.services.trip_ledger import create_trip, delete_trip, update_trip


UTC = datetime.timezone.utc
SLACK = datetime.timedelta(hours=1)


def _t(hour: int, minute: int = 0, day: int = 1) -> datetime.datetime:
    return datetime.datetime(2026, 1, day, hour, minute, tzinfo=UTC)


def _data(vehicle_id, driver_id, start, end, start_km=100, end_km=200):
    return {
        "vehicle_id": vehicle_id,
        "driver_id": driver_id,
        "start_time": start,
        "end_time": end,
        "start_odometer": start_km,
        "end_odometer": end_km,
    }


def test_overlap_equal_to_slack_is_accepted_beyond_slack_rejected(db, fleet):
    trip4 = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, _t(10), _t(14))).trip
    create_trip(db, fleet.org_id, _data(fleet.v2, fleet.d1, _t(13), _t(15)))

    with pytest.raises(SchedulingConflict) as exc_info:
        create_trip(db, fleet.org_id, _data(fleet.v3, fleet.d1, _t(12, 30), _t(15)))

    err = exc_info.value
    assert err.status_code == 409
    assert err.context["resource"] == "driver"
    assert err.context["conflicting_trip"]["serial_number"] == trip4.serial_number
    assert err.message.startswith("Driver conflict")


def test_vehicle_double_booking_rejected(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, _t(8), _t(12), 100, 200))
    with pytest.raises(SchedulingConflict) as exc_info:
        create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d2, _t(9), _t(16), 200, 300))
    assert exc_info.value.context["resource"] == "vehicle"


def test_overlap_within_full_slack_is_accepted_for_short_trips(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, _t(10), _t(11)))
    result = create_trip(db, fleet.org_id, _data(fleet.v2, fleet.d1, _t(10), _t(12)))
    assert result.trip.driver_id == fleet.d1

    assert not windows_conflict(_t(10), _t(12), _t(10), _t(11), SLACK)
    assert not windows_conflict(_t(8), _t(9), _t(8), _t(9), SLACK)
    assert windows_conflict(_t(8), _t(9), _t(8), _t(9), datetime.timedelta(minutes=29))


def test_back_to_back_trips_do_not_conflict(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, _t(8), _t(12), 100, 200))
    result = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, _t(12), _t(16), 200, 300))
    assert result.trip.serial_number


def test_soft_deleted_trip_does_not_block(db, fleet):
    first = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, _t(8), _t(12))).trip
    delete_trip(db, fleet.org_id, first.id)
    result = create_trip(db, fleet.org_id, _data(fleet.v2, fleet.d1, _t(9), _t(11)))
    assert result.trip.driver_id == fleet.d1


def test_update_into_conflict_rejected(db, fleet):
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, _t(8), _t(12)))
    other = create_trip(db, fleet.org_id, _data(fleet.v2, fleet.d2, _t(9), _t(11))).trip

    with pytest.raises(SchedulingConflict):
        update_trip(db, fleet.org_id, other.id, {"driver_id": fleet.d1})


def test_update_of_own_window_does_not_conflict_with_itself(db, fleet):
    trip = create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, _t(8), _t(12))).trip
    result = update_trip(db, fleet.org_id, trip.id, {"end_time": _t(13)})
    assert result.trip.id == trip.id


def test_tenant_slack_override(db, make_fleet):
    fleet = make_fleet(name="Tight", overlap_slack_minutes=0)
    create_trip(db, fleet.org_id, _data(fleet.v1, fleet.d1, _t(10), _t(14)))
    with pytest.raises(SchedulingConflict):
        create_trip(db, fleet.org_id, _data(fleet.v2, fleet.d1, _t(13, 59), _t(15)))


def test_windows_conflict_strict_boundary():
    assert not windows_conflict(_t(13), _t(15), _t(10), _t(14), SLACK)
    assert windows_conflict(_t(12, 59), _t(15), _t(10), _t(14), SLACK)
    assert not windows_conflict(_t(8), _t(11), _t(10), _t(14), SLACK)
    assert windows_conflict(_t(8), _t(11, 1), _t(10), _t(14), SLACK)


def test_concurrent_writers_for_one_driver_cannot_both_pass(db, session_factory, fleet):
    barrier = threading.Barrier(2)
    outcomes = {}

    def _write(name, vehicle_id):
        session = session_factory()
        try:
            barrier.wait()
            result = create_trip(session, fleet.org_id, _data(vehicle_id, fleet.d1, _t(9), _t(13)))
            outcomes[name] = result.trip.serial_number
        except Exception as exc:
            outcomes[name] = exc
        finally:
            session.close()

    threads = [
        threading.Thread(target=_write, args=("a", fleet.v1)),
        threading.Thread(target=_write, args=("b", fleet.v2)),
    ]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=30)

    written = [v for v in outcomes.values() if isinstance(v, str)]
    rejected = [v for v in outcomes.values() if isinstance(v, Exception)]
    assert len(written) == 1, outcomes
    assert len(rejected) == 1, outcomes
    assert isinstance(rejected[0], (SchedulingConflict, OperationalError))

    db.expire_all()
    active = (
        db.query(Trip)
        .filter(Trip.driver_id == fleet.d1, Trip.status == TripStatus.ACTIVE.value)
        .count()
    )
    assert active == 1
