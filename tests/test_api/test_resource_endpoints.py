"""
HTTP tests for the scoped resources.

Invisible records answer 404; visible records the principal may not change
answer 403 with a generic body.
"""
from __future__ import annotations

from sqlalchemy import select

from crewscope.client.propagator import ChangePropagator
from crewscope.models.operations import ActivityRecord, CrewMember, Holiday, Task, TimeEntry
from crewscope.models.tenancy import SiteAssignment


def _auth(user_id: int) -> dict[str, str]:
    return {"Authorization": f"Bearer {user_id}"}


def test_site_list_is_scoped(client, seeded_ids):
    resp = client.get("/sites", headers=_auth(seeded_ids["user_mona"]))
    assert [s["name"] for s in resp.json()] == ["Harbor Tower"]


def test_foreign_site_is_404(client, seeded_ids):
    assert client.get(f"/sites/{seeded_ids['site_riverside']}", headers=_auth(seeded_ids["user_mona"])).status_code == 404
    assert client.get(f"/sites/{seeded_ids['site_hilltop']}", headers=_auth(seeded_ids["user_alice"])).status_code == 404


def test_site_creation_is_admin_only(client, seeded_ids):
    payload = {"name": "Annex", "address": "9 Side Street"}
    denied = client.post("/sites", json=payload, headers=_auth(seeded_ids["user_mona"]))
    assert denied.status_code == 403
    assert denied.json() == {"detail": "Forbidden"}

    created = client.post("/sites", json=payload, headers=_auth(seeded_ids["user_alice"]))
    assert created.status_code == 201
    assert created.json()["organization_id"] == seeded_ids["org_northwind"]
    assert created.json()["status"] == "active"


def test_site_update_is_admin_only(client, seeded_ids):
    url = f"/sites/{seeded_ids['site_harbor']}"
    assert client.patch(url, json={"status": "on_hold"}, headers=_auth(seeded_ids["user_mona"])).status_code == 403

    resp = client.patch(url, json={"status": "on_hold"}, headers=_auth(seeded_ids["user_alice"]))
    assert resp.status_code == 200
    assert resp.json()["status"] == "on_hold"


def test_system_site_cannot_be_deleted(client, seeded_ids):
    url = f"/sites/{seeded_ids['site_unassigned_northwind']}"
    assert client.delete(url, headers=_auth(seeded_ids["user_alice"])).status_code == 409


def test_deleting_a_site_parks_its_crew(client, session_factory, seeded_ids):
    resp = client.delete(f"/sites/{seeded_ids['site_riverside']}", headers=_auth(seeded_ids["user_alice"]))
    assert resp.status_code == 204

    with session_factory() as db:
        fred_crew = db.get(CrewMember, seeded_ids["crew_fred"])
        assert fred_crew.site_id == seeded_ids["site_unassigned_northwind"]
        for model in (CrewMember, Task, TimeEntry, ActivityRecord, Holiday, SiteAssignment):
            left = db.scalars(select(model).where(model.site_id == seeded_ids["site_riverside"])).all()
            assert left == [], model.__name__

    sites = client.get("/me/sites", headers=_auth(seeded_ids["user_fred"])).json()
    assert sites == []

    tasks = client.get("/tasks", headers=_auth(seeded_ids["user_alice"])).json()
    facade = next(task for task in tasks if task["title"] == "Brick east facade")
    assert facade["site_id"] == seeded_ids["site_unassigned_northwind"]


def test_tasks_are_created_at_accessible_sites_only(client, seeded_ids):
    fred = _auth(seeded_ids["user_fred"])
    denied = client.post("/tasks", json={"site_id": seeded_ids["site_harbor"], "title": "Sneaky"}, headers=fred)
    assert denied.status_code == 403

    created = client.post("/tasks", json={"site_id": seeded_ids["site_riverside"], "title": "Scaffold"}, headers=fred)
    assert created.status_code == 201
    body = created.json()
    assert body["organization_id"] == seeded_ids["org_northwind"]
    assert body["created_by"] == seeded_ids["user_fred"]


def test_task_status_change_requires_manager_and_is_recorded(client, session_factory, seeded_ids):
    tasks = client.get("/tasks", params={"site_id": seeded_ids["site_harbor"]}, headers=_auth(seeded_ids["user_mona"]))
    task_id = tasks.json()[0]["id"]

    denied = client.patch(f"/tasks/{task_id}", json={"status": "done"}, headers=_auth(seeded_ids["user_carl"]))
    assert denied.status_code == 403

    ok = client.patch(f"/tasks/{task_id}", json={"status": "in_progress"}, headers=_auth(seeded_ids["user_mona"]))
    assert ok.status_code == 200
    assert ok.json()["status"] == "in_progress"

    with session_factory() as db:
        record = db.scalars(select(ActivityRecord).where(ActivityRecord.task_id == task_id)).one()
        assert record.action == "task_status_changed"
        assert record.actor_id == seeded_ids["user_mona"]


def test_invisible_task_is_404(client, seeded_ids):
    summit_tasks = client.get("/tasks", headers=_auth(seeded_ids["user_sam"])).json()
    task_id = summit_tasks[0]["id"]
    assert client.get(f"/tasks/{task_id}", headers=_auth(seeded_ids["user_alice"])).status_code == 404


def test_assignment_create_then_update(client, seeded_ids):
    mona = _auth(seeded_ids["user_mona"])
    payload = {"user_id": seeded_ids["user_fred"], "site_id": seeded_ids["site_harbor"], "role": "field_worker"}

    first = client.post("/site-assignments", json=payload, headers=mona)
    assert first.status_code == 201

    second = client.post("/site-assignments", json={**payload, "role": "crew_lead"}, headers=mona)
    assert second.status_code == 200
    assert second.json()["id"] == first.json()["id"]
    assert second.json()["role"] == "crew_lead"

    listed = client.get(f"/sites/{seeded_ids['site_harbor']}/assignments", headers=mona).json()
    assert seeded_ids["user_fred"] in {a["user_id"] for a in listed}


def test_worker_cannot_assign(client, seeded_ids):
    payload = {"user_id": seeded_ids["user_fred"], "site_id": seeded_ids["site_riverside"], "role": "site_manager"}
    resp = client.post("/site-assignments", json=payload, headers=_auth(seeded_ids["user_fred"]))
    assert resp.status_code == 403


def test_end_assignment(client, seeded_ids):
    mona = _auth(seeded_ids["user_mona"])
    rows = client.get(f"/sites/{seeded_ids['site_harbor']}/assignments", headers=mona).json()
    carl_row = next(a for a in rows if a["user_id"] == seeded_ids["user_carl"])

    resp = client.post(f"/site-assignments/{carl_row['id']}/end", headers=mona)
    assert resp.status_code == 200
    assert resp.json()["is_active"] is False
    assert client.get("/me/sites", headers=_auth(seeded_ids["user_carl"])).json() == []


def test_assignment_change_is_published(app_factory, seeded_ids):
    from fastapi.testclient import TestClient

    propagator = ChangePropagator()
    received: list[int] = []
    propagator.subscribe(seeded_ids["org_northwind"], received.append)

    with TestClient(app_factory(change_propagator=propagator)) as test_client:
        payload = {"user_id": seeded_ids["user_fred"], "site_id": seeded_ids["site_harbor"], "role": "field_worker"}
        resp = test_client.post("/site-assignments", json=payload, headers=_auth(seeded_ids["user_alice"]))
        assert resp.status_code == 201

    assert received == [seeded_ids["org_northwind"]]


def test_crew_move_is_admin_only_by_decorator(client, seeded_ids):
    url = f"/crew/{seeded_ids['crew_hank']}/move"
    payload = {"to_site_id": seeded_ids["site_riverside"]}

    assert client.post(url, json=payload, headers=_auth(seeded_ids["user_mona"])).status_code == 403

    resp = client.post(url, json=payload, headers=_auth(seeded_ids["user_alice"]))
    assert resp.status_code == 200
    assert resp.json()["site_id"] == seeded_ids["site_riverside"]


def test_crew_list_filters_by_site(client, seeded_ids):
    resp = client.get("/crew", headers=_auth(seeded_ids["user_mona"]))
    assert {c["name"] for c in resp.json()} == {"Carl Crewlead", "Hank Hammer"}

    resp = client.get("/crew", params={"site_id": seeded_ids["site_riverside"]}, headers=_auth(seeded_ids["user_mona"]))
    assert resp.json() == []


def test_crew_lead_logs_time(client, seeded_ids):
    payload = {
        "site_id": seeded_ids["site_harbor"],
        "crew_member_id": seeded_ids["crew_hank"],
        "work_date": "2026-03-02",
        "hours": "6.5",
    }
    resp = client.post("/time-entries", json=payload, headers=_auth(seeded_ids["user_carl"]))
    assert resp.status_code == 201
    assert resp.json()["organization_id"] == seeded_ids["org_northwind"]


def test_time_entry_for_invisible_crew_member_is_404(client, seeded_ids):
    payload = {
        "site_id": seeded_ids["site_harbor"],
        "crew_member_id": seeded_ids["crew_sue"],
        "work_date": "2026-03-02",
        "hours": "4",
    }
    assert client.post("/time-entries", json=payload, headers=_auth(seeded_ids["user_carl"])).status_code == 404


def test_holidays(client, seeded_ids):
    fred = client.get("/holidays", headers=_auth(seeded_ids["user_fred"])).json()
    assert [h["name"] for h in fred] == ["New Year"]

    payload = {"name": "Company picnic", "observed_on": "2026-07-10"}
    assert client.post("/holidays", json=payload, headers=_auth(seeded_ids["user_mona"])).status_code == 403
    assert client.post("/holidays", json=payload, headers=_auth(seeded_ids["user_alice"])).status_code == 201
