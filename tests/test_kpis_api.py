import uuid

from fastapi.testclient import TestClient

from fleet_ledger.core.db import SessionLocal
from fleet_ledger.core.security import create_access_token
from fleet_ledger.main import create_app
from fleet_ledger.services.kpi_cache import append_event

from conftest import seed_fleet


def _client() -> TestClient:
    app = create_app()
    return TestClient(app)


def _seed():
    with SessionLocal() as db:
        return seed_fleet(db, name=f"KPI Fleet {uuid.uuid4().hex[:8]}")


def _headers(fleet, role: str = "ORG_ADMIN") -> dict:
    token = create_access_token(sub="viewer", role=role, user_id="u-viewer", organization_ids=[fleet.org_id])
    return {"Authorization": f"Bearer {token}"}


def test_refresh_requires_platform_admin_and_fills_cache() -> None:
    with _client() as client:
        fleet = _seed()
        base = f"/api/v1/organizations/{fleet.org_id}"

        resp = client.get(f"{base}/kpis", headers=_headers(fleet))
        assert resp.status_code == 200
        assert resp.json() == []

        assert client.post(f"{base}/kpis/refresh", headers=_headers(fleet)).status_code == 403

        resp = client.post(f"{base}/kpis/refresh", headers=_headers(fleet, role="PLATFORM_ADMIN"))
        assert resp.status_code == 200, resp.text
        assert resp.json()["status"] == "ok"
        assert resp.json()["cards_written"] == 21

        resp = client.get(f"{base}/kpis", headers=_headers(fleet))
        cards = resp.json()
        assert len(cards) == 21
        assert all(card["payload"]["percent_change"] == 0.0 for card in cards)

        resp = client.get(f"{base}/kpis", params={"theme": "utilization"}, headers=_headers(fleet))
        assert {c["kpi_key"] for c in resp.json()} == {"fleet.utilization", "fleet.driver_utilization"}

        resp = client.get(f"{base}/events-feed", params={"kind": "kpi_rollup"}, headers=_headers(fleet))
        assert resp.status_code == 200, resp.text
        assert resp.json()["total"] == 1


def test_events_feed_page_size_capped(monkeypatch) -> None:
    monkeypatch.setenv("FLEET_MAX_PAGE_SIZE", "2")
    with _client() as client:
        fleet = _seed()
        with SessionLocal() as db:
            for i in range(5):
                append_event(db, fleet.org_id, kind="note", title=f"note {i}")
            db.commit()

        resp = client.get(
            f"/api/v1/organizations/{fleet.org_id}/events-feed",
            params={"page_size": 50},
            headers=_headers(fleet),
        )
        assert resp.status_code == 200, resp.text
        assert len(resp.json()["items"]) == 2
        assert resp.headers.get("X-Page-Size") == "2"
        assert resp.headers.get("X-Total-Count") == "5"
        assert resp.headers.get("X-Total-Pages") == "3"


def test_events_feed_rejects_bad_paging() -> None:
    with _client() as client:
        fleet = _seed()
        url = f"/api/v1/organizations/{fleet.org_id}/events-feed"
        assert client.get(url, params={"page": 0}, headers=_headers(fleet)).status_code == 422
        assert client.get(url, params={"page_size": 0}, headers=_headers(fleet)).status_code == 422
