"""HTTP surface: status codes, error envelopes and the X-Actor requirement."""


def _create(client, headers, product_id, qty, **extra):
    body = {"items": [{"product_id": product_id, "quantity": qty}], **extra}
    resp = client.post("/api/orders/", json=body, headers=headers)
    assert resp.status_code == 201, resp.get_json()
    return resp.get_json()["order"]


def test_mutations_require_actor(client, db_session):
    resp = client.post("/api/orders/", json={})
    assert resp.status_code == 401

    resp = client.post("/api/orders/", json={}, headers={"X-Actor": "   "})
    assert resp.status_code == 401


def test_create_and_read_order(client, db_session, make_product, headers):
    p = make_product("P", on_hand=10, price_cents=250)

    order = _create(client, headers, p.id, 4, customer_ref="ACME")
    assert order["status"] == "QUOTE_OPEN"
    assert order["total_cents"] == 1000
    assert order["items"][0]["sku"] == "P"
    assert "reserve" in order["allowed_actions"]

    resp = client.get(f"/api/orders/{order['id']}")
    assert resp.status_code == 200
    assert resp.get_json()["order"]["order_number"] == order["order_number"]

    resp = client.get("/api/orders/?status=QUOTE_OPEN")
    assert [o["id"] for o in resp.get_json()["orders"]] == [order["id"]]


def test_unknown_order_is_404(client, db_session):
    resp = client.get("/api/orders/424242")
    assert resp.status_code == 404
    assert resp.get_json()["code"] == "ORDER_NOT_FOUND"


def test_bad_payload_is_400(client, db_session, make_product, headers):
    p = make_product("P", on_hand=10)
    resp = client.post(
        "/api/orders/", json={"items": [{"product_id": p.id, "quantity": "1e3"}]}, headers=headers
    )
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"


def test_reserve_shortage_is_409_with_items(client, db_session, make_product, headers):
    p = make_product("P", on_hand=10)
    a = _create(client, headers, p.id, 6)
    b = _create(client, headers, p.id, 5)

    assert client.post(f"/api/orders/{a['id']}/reserve", headers=headers).status_code == 200
    resp = client.post(f"/api/orders/{b['id']}/reserve", headers=headers)

    assert resp.status_code == 409
    body = resp.get_json()
    assert body["code"] == "INSUFFICIENT_STOCK"
    assert body["details"]["items"][0]["shortfall"] == 1

    stock = client.get(f"/api/products/{p.id}/stock").get_json()["stock"]
    assert (stock["on_hand"], stock["reserved"], stock["available"]) == (10, 6, 4)


def test_lifecycle_over_http(client, db_session, make_product, headers):
    p = make_product("P", on_hand=10)
    order = _create(client, headers, p.id, 3)
    oid = order["id"]

    for action, status in [
        ("send", "QUOTE_SENT"),
        ("reserve", "ORDER_GENERATED"),
        ("invoice", "INVOICED"),
        ("uninvoice", "ORDER_GENERATED"),
        ("unreserve", "QUOTE_SENT"),
        ("cancel", "CANCELLED"),
    ]:
        resp = client.post(f"/api/orders/{oid}/{action}", headers=headers)
        assert resp.status_code == 200, (action, resp.get_json())
        assert resp.get_json()["order"]["status"] == status

    resp = client.post(f"/api/orders/{oid}/reserve", headers=headers)
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "INVALID_TRANSITION"

    trail = client.get(f"/api/orders/{oid}/transitions").get_json()["transitions"]
    assert [t["action"] for t in trail] == [
        "create", "send_quote", "reserve", "invoice", "uninvoice", "unreserve", "cancel",
    ]
    assert all(t["actor"] == headers["X-Actor"] for t in trail)


def test_patch_status(client, db_session, make_product, headers):
    p = make_product("P", on_hand=10)
    order = _create(client, headers, p.id, 2)

    resp = client.patch(f"/api/orders/{order['id']}", json={"status": "ORDER_GENERATED"}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json()["order"]["status"] == "ORDER_GENERATED"

    resp = client.patch(f"/api/orders/{order['id']}", json={}, headers=headers)
    assert resp.status_code == 400


def test_items_edit_blocked_after_invoice(client, db_session, make_product, headers):
    p = make_product("P", on_hand=10)
    order = _create(client, headers, p.id, 2)
    client.post(f"/api/orders/{order['id']}/reserve", headers=headers)
    client.post(f"/api/orders/{order['id']}/invoice", headers=headers)

    resp = client.put(
        f"/api/orders/{order['id']}/items",
        json={"items": [{"product_id": p.id, "quantity": 1}]},
        headers=headers,
    )
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "ORDER_NOT_EDITABLE"


def test_receivables_over_http(client, db_session, make_product, term_payment, cash_payment, headers):
    p = make_product("P", on_hand=10, price_cents=10000)
    order = _create(client, headers, p.id, 3, payment_type_id=cash_payment.id, payment_notes="30 60 90")
    oid = order["id"]
    client.post(f"/api/orders/{oid}/reserve", headers=headers)

    resp = client.post(f"/api/orders/{oid}/post-accounts", headers=headers)
    assert resp.status_code == 422
    assert resp.get_json()["code"] == "INVALID_PAYMENT_TYPE"

    resp = client.put(
        f"/api/orders/{oid}/payment",
        json={"payment_type_id": term_payment.id, "payment_notes": "30 60 90"},
        headers=headers,
    )
    assert resp.status_code == 200

    resp = client.post(f"/api/orders/{oid}/post-accounts", headers=headers)
    assert resp.status_code == 201
    installments = resp.get_json()["installments"]
    assert [i["amount_cents"] for i in installments] == [10000, 10000, 10000]

    resp = client.post(
        f"/api/receivables/installments/{installments[0]['id']}/payments",
        json={"amount_cents": 10000},
        headers=headers,
    )
    assert resp.status_code == 201
    assert resp.get_json()["installment"]["status"] == "PAID"
    assert resp.get_json()["receivable"]["status"] == "PARTIAL"

    resp = client.post(f"/api/orders/{oid}/reverse-accounts", headers=headers)
    assert resp.status_code == 409
    assert resp.get_json()["code"] == "PARTIALLY_SETTLED"

    listing = client.get(f"/api/orders/{oid}/installments").get_json()
    assert listing["receivable"]["status"] == "PARTIAL"
    assert len(listing["installments"]) == 3


def test_bulk_cancel(client, db_session, make_product, headers):
    p = make_product("P", on_hand=10)
    a = _create(client, headers, p.id, 1)
    b = _create(client, headers, p.id, 1)
    client.post(f"/api/orders/{b['id']}/reserve", headers=headers)
    client.post(f"/api/orders/{b['id']}/invoice", headers=headers)

    resp = client.post("/api/orders/bulk-cancel", json={"ids": [a["id"], b["id"]]}, headers=headers)

    assert resp.status_code == 200
    body = resp.get_json()
    assert body["processed"] == [a["id"]]
    assert body["ignored"][0]["id"] == b["id"]

    assert client.post("/api/orders/bulk-cancel", json={"ids": []}, headers=headers).status_code == 400


def test_delete_quote_over_http(client, db_session, make_product, headers):
    p = make_product("P", on_hand=10)
    order = _create(client, headers, p.id, 1)

    assert client.delete(f"/api/orders/{order['id']}", headers=headers).status_code == 200
    assert client.get(f"/api/orders/{order['id']}").status_code == 404


def test_stock_adjust_and_movements(client, db_session, make_product, headers):
    p = make_product("P", on_hand=5)

    resp = client.post(f"/api/products/{p.id}/adjust", json={"delta": 7, "note": "count"}, headers=headers)
    assert resp.status_code == 201
    assert resp.get_json()["stock"]["on_hand"] == 12

    resp = client.post(f"/api/products/{p.id}/adjust", json={"delta": -20}, headers=headers)
    assert resp.status_code == 400

    movements = client.get(f"/api/products/{p.id}/movements").get_json()["movements"]
    assert [(m["movement_type"], m["quantity"]) for m in movements] == [("ADJUST", 7)]


def test_refresh_overdue_endpoint(client, db_session, headers):
    resp = client.post("/api/receivables/refresh-overdue", json={"as_of": "2030-01-01"}, headers=headers)
    assert resp.status_code == 200
    assert resp.get_json() == {"updated": 0}

    resp = client.post("/api/receivables/refresh-overdue", json={"as_of": "not-a-date"}, headers=headers)
    assert resp.status_code == 400


def test_health(client, db_session, make_product):
    make_product("P", on_hand=1)
    resp = client.get("/api/health")
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["status"] == "healthy"
    assert body["checks"]["database"]["details"]["products"] == 1


def test_refresh_overdue_rejects_non_string_date(client, db_session, headers):
    resp = client.post("/api/receivables/refresh-overdue", json={"as_of": 20260101}, headers=headers)
    assert resp.status_code == 400


def test_items_edit_on_invoiced_order_is_not_editable_whatever_the_payload(client, db_session, make_product, headers):
    p = make_product("P", on_hand=10)
    order = _create(client, headers, p.id, 2)
    client.post(f"/api/orders/{order['id']}/reserve", headers=headers)
    client.post(f"/api/orders/{order['id']}/invoice", headers=headers)

    for body in ({}, {"items": []}):
        resp = client.put(f"/api/orders/{order['id']}/items", json=body, headers=headers)
        assert resp.status_code == 409, body
        assert resp.get_json()["code"] == "ORDER_NOT_EDITABLE"

    quote = _create(client, headers, p.id, 1)
    resp = client.put(f"/api/orders/{quote['id']}/items", json={}, headers=headers)
    assert resp.status_code == 400
    assert resp.get_json()["code"] == "VALIDATION_ERROR"


def test_payment_reversal_over_http(client, db_session, make_product, term_payment, headers):
    p = make_product("P", on_hand=10, price_cents=1000)
    order = _create(client, headers, p.id, 1, payment_type_id=term_payment.id, payment_notes="30 60")
    oid = order["id"]
    client.post(f"/api/orders/{oid}/reserve", headers=headers)
    installments = client.post(f"/api/orders/{oid}/post-accounts", headers=headers).get_json()["installments"]

    resp = client.post(
        f"/api/receivables/installments/{installments[0]['id']}/payments",
        json={"amount_cents": 1},
        headers=headers,
    )
    payment_id = resp.get_json()["payment"]["id"]

    resp = client.post(f"/api/receivables/payments/{payment_id}/reverse", headers=headers)
    assert resp.status_code == 200
    body = resp.get_json()
    assert body["payment"]["net_cents"] == 0
    assert body["installment"]["status"] == "OPEN"

    listing = client.get(f"/api/receivables/installments/{installments[0]['id']}/payments").get_json()
    assert [pm["reversed_cents"] for pm in listing["payments"]] == [1]

    assert client.post(f"/api/orders/{oid}/reverse-accounts", headers=headers).status_code == 200
    resp = client.post(f"/api/orders/{oid}/cancel", headers=headers)
    assert resp.status_code == 200
    stock = client.get(f"/api/products/{p.id}/stock").get_json()["stock"]
    assert (stock["on_hand"], stock["reserved"]) == (10, 0)

    resp = client.post(f"/api/receivables/payments/{payment_id}/reverse", headers=headers)
    assert resp.status_code == 409
