import os
import tempfile
from pathlib import Path
from types import SimpleNamespace

# Isolated lightweight DB and no background ticker for every test module.
DB_PATH = Path(tempfile.gettempdir()) / "fleet_ledger_test_api.db"
if DB_PATH.exists():
    DB_PATH.unlink()

os.environ.setdefault("DATABASE_URL", f"sqlite+pysqlite:///{DB_PATH}")
os.environ.setdefault("AUTO_CREATE_DB", "true")
os.environ.setdefault("AUTO_RUN_MIGRATIONS", "false")
os.environ.setdefault("ENABLE_KPI_ROLLUP", "false")
os.environ.setdefault("ENABLE_BULK_IMPORT", "false")
os.environ.setdefault("FLEET_AUTH_DISABLED", "false")
os.environ.setdefault("FLEET_JWT_SECRET", "test-jwt-secret-strong-value-123456")

import pytest

from fleet_ledger.core.db import build_engine, make_session_factory
from fleet_ledger.models import Base
from fleet_ledger.models.driver import Driver
from fleet_ledger.models.organization import Organization
from fleet_ledger.models.vehicle import Vehicle


def _session_factory(url: str):
    engine = build_engine(url)
    Base.metadata.create_all(engine)
    return make_session_factory(engine)


@pytest.fixture
def session_factory(tmp_path):
    return _session_factory(f"sqlite+pysqlite:///{tmp_path / 'ledger.db'}")


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


def seed_fleet(db, *, name="Acme Logistics", timezone="UTC", **org_fields) -> SimpleNamespace:
    org = Organization(name=name, timezone=timezone, **org_fields)
    db.add(org)
    db.flush()
    vehicles = [
        Vehicle(organization_id=org.id, registration_number=reg)
        for reg in ("MH12AB1234", "MH12CD5678", "KA01EF0042")
    ]
    drivers = [Driver(organization_id=org.id, name=n) for n in ("Ravi", "Suresh")]
    db.add_all(vehicles + drivers)
    db.commit()
    return SimpleNamespace(
        org=org,
        org_id=org.id,
        v1=vehicles[0].id,
        v2=vehicles[1].id,
        v3=vehicles[2].id,
        d1=drivers[0].id,
        d2=drivers[1].id,
    )


@pytest.fixture
def fleet(db):
    return seed_fleet(db)


@pytest.fixture
def make_fleet(db):
    def _make(**kwargs):
        return seed_fleet(db, **kwargs)

    return _make
