"""
Tests: HTTP surface (identity headers, error mapping, cron auth).

Service behaviour is covered by the service-level tests; these only check
that requests reach the services and that failures come back as
``{error, code, details}`` with the right status.
"""

import pytest


CRON_AUTH = {"Authorization": "Bearer test-cron-secret"}
SIGNATURE = "data:image/png;base64,c2lnbmF0dXJl"


def _headers(user_id, role):
    return {"X-User-Id": str(user_id), "X-User-Role": role}


@pytest.fixture()
def contractor(site):
    return _headers(site.contractor_user_id, "CONTRACTOR")


@pytest.fixture()
def owner(site):
    return _headers(site.client_user_id, "CLIENT")


def _create(client, site, headers, **overrides):
    payload = {
        "title": "Annual servicing",
        "start_date": "2025-01-01",
        "end_date": "2025-12-31",
        "templates": [
            {"description": "Extinguisher check", "price": 100},
            {"description": "Alarm test", "price": 200},
        ],
    }
    payload.update(overrides)
    return client.post(f"/api/v1/branches/{site.branch_id}/projects", json=payload, headers=headers)


# ── Health & identity ────────────────────────────────────────────────────────


def test_health(client):
    res = client.get("/api/v1/health")
    assert res.status_code == 200
    assert res.get_json()["status"] == "ok"


def test_missing_identity_is_401(client, site):
    res = _create(client, site, {})
    assert res.status_code == 401
    assert res.get_json()["code"] == "ERR_UNAUTHORIZED"


def test_unknown_role_is_401(client, site):
    res = _create(client, site, _headers(site.client_user_id, "JANITOR"))
    assert res.status_code == 401


def test_wrong_role_is_403(client, site, owner):
    res = _create(client, site, owner)
    assert res.status_code == 403
    assert res.get_json()["code"] == "ERR_FORBIDDEN"


# ── Projects ─────────────────────────────────────────────────────────────────


def test_create_then_approve(client, site, contractor, owner):
    res = _create(client, site, contractor)
    assert res.status_code == 201
    body = res.get_json()
    assert body["status"] == "PENDING"
    assert body["total_value"] == 300.0
    assert body["checklists"][0]["item_count"] == 2

    res = client.post(f"/api/v1/projects/{body['id']}/approve", headers=owner)
    assert res.status_code == 200
    approved = res.get_json()
    assert approved["project"]["status"] == "ACTIVE"
    assert approved["contract_id"] is not None
    assert approved["invoice_id"] is not None

    res = client.get(f"/api/v1/projects/{body['id']}/work-orders?stage=SCHEDULED", headers=owner)
    assert res.get_json()["total"] == 2


def test_double_approve_is_409(client, site, contractor, owner):
    project_id = _create(client, site, contractor).get_json()["id"]
    client.post(f"/api/v1/projects/{project_id}/approve", headers=owner)

    res = client.post(f"/api/v1/projects/{project_id}/approve", headers=owner)

    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_CONFLICT_STATE"
    assert body["details"]["current_status"] == "ACTIVE"


def test_missing_project_is_404(client, contractor):
    res = client.get("/api/v1/projects/4242", headers=contractor)
    assert res.status_code == 404
    assert res.get_json()["code"] == "ERR_NOT_FOUND"


def test_missing_title_is_400(client, site, contractor):
    res = _create(client, site, contractor, title="  ")
    assert res.status_code == 400
    assert res.get_json()["code"] == "ERR_VALIDATION_REQUIRED"


def test_inverted_window_is_422(client, site, contractor):
    res = _create(client, site, contractor, start_date="2025-06-01", end_date="2025-01-01")
    assert res.status_code == 422
    assert res.get_json()["code"] == "ERR_VALIDATION_CONSTRAINT"


# ── Work orders & contracts ──────────────────────────────────────────────────


def test_transition_and_end_sign_incomplete(client, site, contractor, owner):
    project_id = _create(client, site, contractor).get_json()["id"]
    approved = client.post(f"/api/v1/projects/{project_id}/approve", headers=owner).get_json()
    items = client.get(f"/api/v1/projects/{project_id}/work-orders", headers=owner).get_json()["items"]
    first, second = items[0]["id"], items[1]["id"]

    res = client.post(f"/api/v1/work-orders/{first}/transition",
                      json={"stage": "COMPLETED"}, headers=contractor)
    assert res.status_code == 200
    assert res.get_json()["stage"] == "COMPLETED"

    res = client.post(f"/api/v1/contracts/{approved['contract_id']}/end-sign",
                      json={"signature_url": SIGNATURE}, headers=owner)
    assert res.status_code == 409
    body = res.get_json()
    assert body["code"] == "ERR_WORK_INCOMPLETE"
    assert body["details"]["work_order_ids"] == [second]


def test_transition_requires_stage(client, site, contractor, owner):
    project_id = _create(client, site, contractor).get_json()["id"]
    client.post(f"/api/v1/projects/{project_id}/approve", headers=owner)
    wo_id = client.get(f"/api/v1/projects/{project_id}/work-orders",
                       headers=owner).get_json()["items"][0]["id"]

    res = client.post(f"/api/v1/work-orders/{wo_id}/transition", json={}, headers=contractor)

    assert res.status_code == 400


def test_payment_batch_must_be_a_list(client, site, owner):
    res = client.post(f"/api/v1/branches/{site.branch_id}/payments/submit",
                      json={"work_order_ids": 7, "proof": {"url": "x", "type": "link"}},
                      headers=owner)
    assert res.status_code == 400


# ── Notifications ────────────────────────────────────────────────────────────


def test_notification_inbox(client, site, contractor, owner):
    project_id = _create(client, site, contractor).get_json()["id"]
    client.post(f"/api/v1/projects/{project_id}/approve", headers=owner)

    res = client.get("/api/v1/notifications", headers=contractor)
    body = res.get_json()
    assert res.status_code == 200
    assert body["total"] == 1
    assert body["unread_count"] == 1
    notification_id = body["items"][0]["id"]

    # Other users cannot see or touch it
    res = client.patch(f"/api/v1/notifications/{notification_id}/read", headers=owner)
    assert res.status_code == 404

    res = client.patch(f"/api/v1/notifications/{notification_id}/read", headers=contractor)
    assert res.status_code == 200
    assert res.get_json()["is_read"] is True

    res = client.get("/api/v1/notifications/unread-count", headers=contractor)
    assert res.get_json()["unread_count"] == 0


# ── Cron & jobs ──────────────────────────────────────────────────────────────


def test_cron_requires_secret(client):
    assert client.post("/api/v1/cron/reconcile").status_code == 401
    res = client.post("/api/v1/cron/reconcile", headers={"Authorization": "Bearer wrong"})
    assert res.status_code == 401


def test_cron_runs_every_job(client, site):
    res = client.post("/api/v1/cron/reconcile", headers=CRON_AUTH)

    assert res.status_code == 200
    body = res.get_json()
    assert body["failed"] == []
    names = {job["job_name"] for job in body["jobs"]}
    assert names == {"work_order_reconciler", "contract_expiry_reminders"}


def test_job_toggle_and_trigger(client):
    res = client.patch("/api/v1/jobs/work_order_reconciler/toggle",
                       json={"enabled": False}, headers=CRON_AUTH)
    assert res.status_code == 200
    assert res.get_json()["is_enabled"] is False

    res = client.post("/api/v1/jobs/work_order_reconciler/trigger", headers=CRON_AUTH)
    assert res.get_json()["status"] == "skipped"

    res = client.post("/api/v1/jobs/nope/trigger", headers=CRON_AUTH)
    assert res.status_code == 404
