"""Operator API: X-Admin-Secret gate, order review, cancellation, audit and ledger views."""
from fastapi.testclient import TestClient

from app.core.config import settings


def _order(client, headers, template_id):
    return client.post("/orders", json={"items": [{"template_id": template_id}]}, headers=headers).json()["id"]


def test_admin_requires_secret(client: TestClient):
    assert client.get("/admin/orders").status_code == 403
    assert client.get("/admin/orders", headers={"X-Admin-Secret": "wrong"}).status_code == 403


def test_admin_not_configured(client: TestClient, monkeypatch):
    monkeypatch.setattr(settings, "admin_secret", "")
    r = client.get("/admin/orders", headers={"X-Admin-Secret": "anything"})
    assert r.status_code == 503


def test_admin_lists_all_users_orders(client: TestClient, admin_headers, auth_headers, other_headers, make_template):
    t = make_template()
    _order(client, auth_headers, t.id)
    cancelled = _order(client, other_headers, t.id)
    client.post(f"/orders/{cancelled}/cancel", headers=other_headers)

    r = client.get("/admin/orders", headers=admin_headers)
    assert r.status_code == 200
    assert r.json()["meta"]["total"] == 2

    r = client.get("/admin/orders", params={"status": "cancelled"}, headers=admin_headers)
    data = r.json()["data"]
    assert [o["id"] for o in data] == [cancelled]
    assert data[0]["payment_details"]["cancelled_by"] == "user"

    r = client.get("/admin/orders", params={"user_id": "user-1"}, headers=admin_headers)
    assert r.json()["meta"]["total"] == 1


def test_admin_rejects_unknown_status_filter(client: TestClient, admin_headers):
    r = client.get("/admin/orders", params={"status": "refunded"}, headers=admin_headers)
    assert r.status_code == 422


def test_admin_order_detail_shows_payment_details(client: TestClient, admin_headers, auth_headers, make_template, post_webhook, stripe_event):
    order_id = _order(client, auth_headers, make_template().id)
    post_webhook(stripe_event("payment_intent.succeeded", order_id, intent_id="pi_admin", event_id="evt_admin"))

    r = client.get(f"/admin/orders/{order_id}", headers=admin_headers)
    assert r.status_code == 200
    j = r.json()
    assert j["status"] == "paid"
    assert j["payment_details"]["payment_intent_id"] == "pi_admin"
    assert j["payment_details"]["event_id"] == "evt_admin"
    # Buyer view never carries gateway details
    assert "payment_details" not in client.get(f"/orders/{order_id}", headers=auth_headers).json()


def test_admin_cancel(client: TestClient, admin_headers, auth_headers, make_template):
    order_id = _order(client, auth_headers, make_template().id)
    r = client.post(f"/admin/orders/{order_id}/cancel", json={"reason": "Fraud check"}, headers=admin_headers)
    assert r.status_code == 200
    j = r.json()
    assert j["status"] == "cancelled"
    assert j["payment_details"]["cancelled_by"] == "operator"
    assert j["payment_details"]["cancel_reason"] == "Fraud check"

    assert client.post(f"/admin/orders/{order_id}/cancel", headers=admin_headers).status_code == 409
    assert client.post("/admin/orders/missing/cancel", headers=admin_headers).status_code == 404


def test_admin_conflict_review(client: TestClient, admin_headers, auth_headers, make_template, post_webhook, stripe_event):
    order_id = _order(client, auth_headers, make_template().id)
    client.post(f"/orders/{order_id}/cancel", headers=auth_headers)
    post_webhook(stripe_event("payment_intent.succeeded", order_id, event_id="evt_conflict"))

    logs = client.get("/admin/logs", params={"event": "payment_conflict"}, headers=admin_headers).json()
    assert len(logs) == 1
    assert logs[0]["order_id"] == order_id

    events = client.get("/admin/payment-events", params={"outcome": "conflict"}, headers=admin_headers).json()
    assert [e["event_id"] for e in events] == ["evt_conflict"]

    stats = client.get("/admin/stats", headers=admin_headers).json()
    assert stats["orders"]["cancelled"] == 1
    assert stats["payment_conflicts"] == 1


def test_admin_stats_paid_total(client: TestClient, admin_headers, auth_headers, make_template, post_webhook, stripe_event):
    a = _order(client, auth_headers, make_template(price="150.00").id)
    b = _order(client, auth_headers, make_template(price="25.50").id)
    _order(client, auth_headers, make_template(price="99.00").id)
    post_webhook(stripe_event("payment_intent.succeeded", a, intent_id="pi_a"))
    post_webhook(stripe_event("payment_intent.succeeded", b, intent_id="pi_b"))

    stats = client.get("/admin/stats", headers=admin_headers).json()
    assert stats["orders"] == {"pending": 1, "paid": 2, "failed": 0, "cancelled": 0}
    assert stats["paid_total"] == "175.50"
