# test_api_flow_e2e.py
import pytest

from tableside.config import settings


def jprint(step, r):
    """Helper to print response and assert on failure."""
    assert 200 <= r.status_code < 300, f"{step} -> {r.status_code}: {r.text}"
    return r.json() if r.headers.get("content-type", "").startswith("application/json") else r.text


def test_dine_in_flow(client, auth_headers, menu, recorder):
    # ===== 1. Seat the guests =====
    r = client.post(f"/dining/tables/{menu.t1}/session", headers=auth_headers, json={"guest_count": 3})
    seated = jprint("POST /dining/tables/{id}/session", r)
    assert seated["table"]["status"] == "occupied"

    r = client.post("/orders/", headers=auth_headers, json={"outlet_id": menu.outlet_id, "table_id": menu.t1})
    order = jprint("POST /orders/", r)
    order_id = order["id"]
    assert order["session_id"] == seated["session"]["id"]

    # ===== 2. Items and tickets =====
    r = client.post(f"/orders/{order_id}/items", headers=auth_headers, json={"items": [
        {"item_id": menu.thali},
        {"item_id": menu.soda, "quantity": 2, "special_instructions": "no ice"},
    ]})
    added = jprint("POST /orders/{id}/items", r)
    soda_item = next(i for i in added["items"] if i["item_name"] == "Lime Soda")
    assert soda_item["line_total"] == 180.0

    r = client.post(f"/kot/orders/{order_id}/send", headers=auth_headers)
    sent = jprint("POST /kot/orders/{id}/send", r)
    tickets = {t["station"]: t for t in sent["tickets"]}
    assert set(tickets) == {"kitchen", "bar"}
    assert tickets["bar"]["kot_no"].startswith("BOT")
    assert tickets["bar"]["items"][0]["special_instructions"] == "no ice"
    assert len(recorder.prints("kot")) == 2

    r = client.get("/kot/tickets", headers=auth_headers,
                   params={"outlet_id": menu.outlet_id, "station": "bar", "active_only": True})
    assert [t["id"] for t in jprint("GET /kot/tickets", r)] == [tickets["bar"]["id"]]

    # ===== 3. Kitchen works the ticket =====
    kid = tickets["kitchen"]["id"]
    for step in ("accept", "preparing", "ready"):
        jprint(f"POST /kot/tickets/{{id}}/{step}", client.post(f"/kot/tickets/{kid}/{step}", headers=auth_headers))
    r = client.post(f"/kot/tickets/{kid}/served", headers=auth_headers)
    assert jprint("POST /kot/tickets/{id}/served", r)["ticket"]["status"] == "served"

    # the soda goes out one item at a time
    bar_item = tickets["bar"]["items"][0]["id"]
    r = client.post(f"/kot/items/{bar_item}/ready", headers=auth_headers)
    assert jprint("POST /kot/items/{id}/ready", r)["ticket"]["status"] == "ready"
    assert recorder.events("item:ready")[0].payload["table"] == "T1"

    # ===== 4. Bill =====
    r = client.post(f"/billing/orders/{order_id}/bill", headers=auth_headers, json={
        "discount": {"discount_type": "flat", "value": 180, "reason": "soda on the house"},
    })
    billed = jprint("POST /billing/orders/{id}/bill", r)
    inv = billed["invoice"]
    assert inv["subtotal"] == 1180.0 and inv["discount_amount"] == 180.0
    assert inv["tax_breakdown"]["CGST@2.50"]["tax_amount"] == 25.0
    assert inv["grand_total"] == 1150.0
    assert billed["order"]["status"] == "billed"
    assert recorder.prints("bill")[0].payload["invoice_no"] == inv["invoice_no"]

    r = client.get(f"/dining/tables/{menu.t1}", headers=auth_headers)
    assert jprint("GET /dining/tables/{id}", r)["status"] == "billing"

    # ===== 5. Pay =====
    r = client.post(f"/payments/orders/{order_id}", headers=auth_headers, json={
        "invoice_id": inv["id"], "mode": "upi", "amount": 150, "upi_id": "guest@upi"})
    part = jprint("POST /payments/orders/{id} (upi)", r)
    assert part["payment_status"] == "partial" and part["due_amount"] == 1000.0

    r = client.post(f"/payments/orders/{order_id}/split", headers=auth_headers, json={
        "invoice_id": inv["id"],
        "splits": [{"mode": "cash", "amount": 500}, {"mode": "card", "amount": 500, "card_last_four": "4242"}],
    })
    done = jprint("POST /payments/orders/{id}/split", r)
    assert done["payment_status"] == "completed"
    assert done["order"]["status"] == "paid" and done["due_amount"] == 0.0
    assert len(done["payment"]["splits"]) == 2

    # ===== 6. Everything is closed out =====
    r = client.get(f"/orders/{order_id}", headers=auth_headers)
    full = jprint("GET /orders/{id}", r)
    assert {i["status"] for i in full["items"]} == {"served"}
    assert {t["status"] for t in full["tickets"]} == {"served"}
    assert full["session"]["closed_at"] is not None
    assert [p["mode"] for p in full["payments"]] == ["upi", "split"]

    r = client.get(f"/dining/tables/{menu.t1}", headers=auth_headers)
    table = jprint("GET /dining/tables/{id}", r)
    assert table["status"] == "available" and table["session"] is None
    assert recorder.events("table:updated")[-1].payload["status"] == "available"
    assert recorder.events("order:paid")


def test_cancel_order_over_http(client, auth_headers, menu, recorder):
    jprint("seat", client.post(f"/dining/tables/{menu.t2}/session", headers=auth_headers, json={}))
    order = jprint("order", client.post("/orders/", headers=auth_headers,
                                        json={"outlet_id": menu.outlet_id, "table_id": menu.t2}))
    jprint("items", client.post(f"/orders/{order['id']}/items", headers=auth_headers, json={"items": [
        {"item_id": menu.thali}, {"item_id": menu.naan}, {"item_id": menu.soda}]}))
    jprint("send", client.post(f"/kot/orders/{order['id']}/send", headers=auth_headers))
    recorder.clear()

    r = client.post(f"/orders/{order['id']}/cancel", headers=auth_headers, json={"reason": "guest left"})
    assert jprint("POST /orders/{id}/cancel", r)["status"] == "cancelled"
    assert len(recorder.events("kot:cancelled")) == 3
    assert len(recorder.prints("cancel_slip")) == 3
    assert recorder.events("table:updated")[-1].payload["status"] == "available"


def test_conflicts_use_error_envelope(client, auth_headers, menu):
    jprint("seat", client.post(f"/dining/tables/{menu.t1}/session", headers=auth_headers, json={"guest_count": 2}))
    r = client.post(f"/dining/tables/{menu.t1}/session", headers=auth_headers, json={"guest_count": 2})
    assert r.status_code == 409
    body = r.json()
    assert body["kind"] == "conflict"
    assert body["message"] == "table already has an open session"
    assert body["detail"]["status"] == "occupied"

    order = jprint("order", client.post("/orders/", headers=auth_headers,
                                        json={"outlet_id": menu.outlet_id, "table_id": menu.t1}))
    r = client.post(f"/orders/{order['id']}/items", headers=auth_headers,
                    json={"items": [{"item_id": menu.soup}]})
    assert r.status_code == 422 and r.json()["kind"] == "validation"

    r = client.post(f"/kot/orders/{order['id']}/send", headers=auth_headers)
    assert r.status_code == 422 and r.json()["message"] == "no pending items to send"

    r = client.get("/orders/nope", headers=auth_headers)
    assert r.status_code == 404 and r.json()["kind"] == "not_found"


def test_requires_bearer_token(client, menu):
    r = client.get("/orders/")
    assert r.status_code == 401
    r = client.get("/orders/", headers={"Authorization": "Bearer not-a-token"})
    assert r.status_code == 401


def test_request_id_echoed(client):
    r = client.get("/healthz", headers={"X-Request-ID": "abc-123"})
    assert jprint("GET /healthz", r) == {"ok": True}
    assert r.headers["X-Request-ID"] == "abc-123"


def test_dev_bootstrap(client, monkeypatch):
    boot = jprint("POST /admin/dev-bootstrap", client.post("/admin/dev-bootstrap"))
    headers = {"Authorization": f"Bearer {boot['access_token']}"}
    r = client.get("/dining/tables", headers=headers, params={"outlet_id": boot["outlet_id"]})
    assert [t["code"] for t in jprint("GET /dining/tables", r)] == [f"T{n}" for n in range(1, 7)]

    # idempotent
    again = jprint("POST /admin/dev-bootstrap", client.post("/admin/dev-bootstrap"))
    assert again["outlet_id"] == boot["outlet_id"]

    monkeypatch.setattr(settings, "APP_ENV", "prod")
    assert client.post("/admin/dev-bootstrap").status_code == 403


@pytest.mark.parametrize("payload", [
    {"invoice_id": "x", "mode": "split", "amount": 10},
    {"invoice_id": "x", "mode": "cash"},
])
def test_payment_payload_validation(client, auth_headers, menu, payload):
    r = client.post("/payments/orders/whatever", headers=auth_headers, json=payload)
    assert r.status_code == 422


def test_transfer_over_http(client, auth_headers, menu, recorder):
    jprint("seat", client.post(f"/dining/tables/{menu.t1}/session", headers=auth_headers, json={"guest_count": 2}))
    order = jprint("order", client.post("/orders/", headers=auth_headers,
                                        json={"outlet_id": menu.outlet_id, "table_id": menu.t1}))
    recorder.clear()

    r = client.post(f"/dining/orders/{order['id']}/transfer", headers=auth_headers, json={"to_table_id": menu.t3})
    moved = jprint("POST /dining/orders/{id}/transfer", r)
    assert moved["order"]["table_id"] == menu.t3
    assert (moved["from_table"]["status"], moved["to_table"]["status"]) == ("available", "occupied")
    assert [e.payload["table_id"] for e in recorder.events("table:updated")] == [menu.t1, menu.t3]

    r = client.post(f"/dining/orders/{order['id']}/transfer", headers=auth_headers, json={})
    assert r.status_code == 422
