"""
API route tests.

Every error response has the shape {"error", "code", "details"} with the
status codes documented on each route.
"""

from conftest import auth_headers


def _sale_payload(product, quantity=1, unit_price_cents=1000, **extra):
    payload = {"items": [{"product_id": product.id, "quantity": quantity, "unit_price_cents": unit_price_cents}]}
    payload.update(extra)
    return payload


def _assert_error(resp, status, code):
    assert resp.status_code == status
    body = resp.get_json()
    assert body["code"] == code
    assert isinstance(body["error"], str)
    assert isinstance(body["details"], dict)
    return body


class TestAuth:
    def test_missing_token(self, client, db_session):
        _assert_error(client.get("/api/register/current"), 401, "unauthorized")

    def test_unknown_token(self, client, db_session):
        _assert_error(client.get("/api/register/current", headers=auth_headers("nope")), 401, "unauthorized")

    def test_deactivated_user(self, client, make_user):
        user = make_user(is_active=False)
        _assert_error(client.get("/api/register/current", headers=auth_headers(user.api_token)), 401, "unauthorized")

    def test_admin_only_routes(self, client, cashier_headers):
        _assert_error(client.get("/api/register/history", headers=cashier_headers), 403, "forbidden")
        _assert_error(client.post("/api/register/1/force-close", headers=cashier_headers), 403, "forbidden")


class TestSalesRoutes:
    def test_totals_preview(self, client, make_product, configure, cashier_headers):
        configure(tax_enabled="true", tax_rate="14")
        product = make_product()

        resp = client.post("/api/sales/totals", json=_sale_payload(product, 1, 100000, discount=10000), headers=cashier_headers)

        assert resp.status_code == 200
        totals = resp.get_json()["totals"]
        assert totals["tax_cents"] == 12600
        assert totals["total_cents"] == 102600
        assert product.stock == 10

    def test_create_and_fetch_sale(self, client, make_product, cashier, cashier_headers):
        product = make_product(stock=5)

        resp = client.post("/api/sales", json=_sale_payload(product, 2, 750), headers=cashier_headers)

        assert resp.status_code == 201
        sale = resp.get_json()["sale"]
        assert sale["total_cents"] == 1500
        assert sale["cashier_id"] == cashier.id
        assert [i["quantity"] for i in sale["items"]] == [2]

        fetched = client.get(f"/api/sales/{sale['id']}", headers=cashier_headers)
        assert fetched.status_code == 200
        assert fetched.get_json()["sale"]["id"] == sale["id"]

    def test_insufficient_stock_is_conflict(self, client, make_product, cashier_headers):
        product = make_product(stock=1)

        resp = client.post("/api/sales", json=_sale_payload(product, 2), headers=cashier_headers)

        body = _assert_error(resp, 409, "insufficient_stock")
        assert body["details"]["product_id"] == product.id

    def test_invalid_payload(self, client, cashier_headers):
        _assert_error(client.post("/api/sales", json={"items": []}, headers=cashier_headers), 400, "validation_error")
        _assert_error(client.post("/api/sales", data="not json", headers=cashier_headers), 400, "validation_error")

    def test_float_quantity_rejected(self, client, make_product, cashier_headers):
        product = make_product()
        payload = {"items": [{"product_id": product.id, "quantity": 1.5, "unit_price_cents": 100}]}
        _assert_error(client.post("/api/sales", json=payload, headers=cashier_headers), 400, "validation_error")

    def test_unknown_sale(self, client, cashier_headers):
        _assert_error(client.get("/api/sales/999999", headers=cashier_headers), 404, "sale_not_found")


class TestRefundRoutes:
    def _sale(self, client, product, headers):
        return client.post("/api/sales", json=_sale_payload(product, 2, 1000), headers=headers).get_json()["sale"]

    def test_refund_flow(self, client, make_product, cashier_headers):
        product = make_product()
        sale = self._sale(client, product, cashier_headers)
        payload = {"items": [{"product_id": product.id, "quantity": 1, "unit_price_cents": 1000}], "reason": "Defective"}

        resp = client.post(f"/api/sales/{sale['id']}/refunds", json=payload, headers=cashier_headers)

        assert resp.status_code == 201
        body = resp.get_json()
        assert body["refund_status"] == "partial"
        assert body["refund"]["items"] == payload["items"]

    def test_refund_errors(self, client, make_product, cashier_headers):
        product = make_product()
        other = make_product()
        sale = self._sale(client, product, cashier_headers)
        url = f"/api/sales/{sale['id']}/refunds"

        def post(url, product_id, quantity, unit_price_cents):
            return client.post(url, json={
                "items": [{"product_id": product_id, "quantity": quantity, "unit_price_cents": unit_price_cents}],
                "reason": "Customer Return",
            }, headers=cashier_headers)

        _assert_error(post("/api/sales/999999/refunds", product.id, 1, 100), 404, "sale_not_found")
        _assert_error(post(url, other.id, 1, 100), 422, "line_mismatch")
        _assert_error(post(url, product.id, 2, 5000), 409, "refund_exceeds_total")

        assert post(url, product.id, 2, 1000).status_code == 201
        _assert_error(post(url, product.id, 1, 1000), 409, "already_refunded")

    def test_restock_must_be_boolean(self, client, make_product, cashier_headers):
        product = make_product()
        sale = self._sale(client, product, cashier_headers)
        payload = {
            "items": [{"product_id": product.id, "quantity": 1, "unit_price_cents": 1000}],
            "reason": "Other",
            "restock": "yes",
        }
        _assert_error(client.post(f"/api/sales/{sale['id']}/refunds", json=payload, headers=cashier_headers), 400, "validation_error")


class TestCouponRoutes:
    def test_validate(self, client, make_coupon, cashier_headers):
        make_coupon(code="SAVE5", value=500, min_purchase_cents=2000)

        ok = client.post("/api/coupons/validate", json={"code": "save5", "subtotal_cents": 3000}, headers=cashier_headers)
        assert ok.status_code == 200
        assert ok.get_json()["coupon"]["discount_cents"] == 500

        low = client.post("/api/coupons/validate", json={"code": "SAVE5", "subtotal_cents": 1000}, headers=cashier_headers)
        assert _assert_error(low, 400, "coupon_invalid")["details"]["reason"] == "below_minimum"

        missing = client.post("/api/coupons/validate", json={"code": "NOPE", "subtotal_cents": 1000}, headers=cashier_headers)
        assert _assert_error(missing, 404, "coupon_invalid")["details"]["reason"] == "not_found"

    def test_code_required(self, client, cashier_headers):
        _assert_error(client.post("/api/coupons/validate", json={"subtotal_cents": 100}, headers=cashier_headers), 400, "validation_error")


class TestRegisterRoutes:
    def test_session_lifecycle(self, client, make_product, cashier_headers):
        assert client.get("/api/register/current", headers=cashier_headers).get_json() == {"session": None}

        opened = client.post("/api/register/open", json={"opening_float_cents": 20000}, headers=cashier_headers)
        assert opened.status_code == 201
        session_id = opened.get_json()["session"]["id"]

        _assert_error(client.post("/api/register/open", json={}, headers=cashier_headers), 409, "already_open")

        product = make_product()
        client.post("/api/sales", json=_sale_payload(product, 1, 15000), headers=cashier_headers)

        moved = client.post("/api/register/movement", json={"type": "cash_out", "amount_cents": 5000}, headers=cashier_headers)
        assert moved.status_code == 201

        current = client.get("/api/register/current", headers=cashier_headers).get_json()["session"]
        assert current["expected_cash_cents"] == 30000

        _assert_error(client.post("/api/register/close", json={}, headers=cashier_headers), 400, "validation_error")

        closed = client.post("/api/register/close", json={"counted_cash_cents": 29500}, headers=cashier_headers)
        assert closed.status_code == 200
        assert closed.get_json()["session"]["variance_cents"] == -500

        report = client.get(f"/api/register/{session_id}/report", headers=cashier_headers).get_json()
        assert report["report_type"] == "Z"

        _assert_error(client.post("/api/register/close", json={"counted_cash_cents": 1}, headers=cashier_headers), 409, "no_open_session")

    def test_invalid_movement(self, client, cashier_headers):
        client.post("/api/register/open", json={"opening_float_cents": 0}, headers=cashier_headers)
        resp = client.post("/api/register/movement", json={"type": "sale", "amount_cents": 5}, headers=cashier_headers)
        _assert_error(resp, 400, "validation_error")

    def test_report_of_other_cashier_forbidden(self, client, make_user, cashier_headers, admin_headers):
        other = make_user()
        other_headers = auth_headers(other.api_token)
        session_id = client.post("/api/register/open", json={}, headers=other_headers).get_json()["session"]["id"]

        _assert_error(client.get(f"/api/register/{session_id}/report", headers=cashier_headers), 403, "forbidden")
        assert client.get(f"/api/register/{session_id}/report", headers=admin_headers).status_code == 200
        _assert_error(client.get("/api/register/999999/report", headers=admin_headers), 404, "session_not_found")

    def test_force_close_and_history(self, client, cashier_headers, admin_headers):
        session_id = client.post("/api/register/open", json={"opening_float_cents": 100}, headers=cashier_headers).get_json()["session"]["id"]

        resp = client.post(f"/api/register/{session_id}/force-close", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.get_json()["session"]["status"] == "closed"

        _assert_error(client.post(f"/api/register/{session_id}/force-close", headers=admin_headers), 404, "session_not_found")

        history = client.get("/api/register/history?status=closed&sort=id&order=asc", headers=admin_headers)
        assert history.status_code == 200
        assert [s["id"] for s in history.get_json()["items"]] == [session_id]

        _assert_error(client.get("/api/register/history?sort=password", headers=admin_headers), 400, "validation_error")
        _assert_error(client.get("/api/register/history?from=yesterday", headers=admin_headers), 400, "validation_error")


class TestHealth:
    def test_health(self, client, db_session):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        body = resp.get_json()
        assert body["status"] == "healthy"
        assert body["checks"]["database"]["details"]["sales"] == 0


class TestCors:
    def test_headers_only_for_configured_origins(self, client, db_session):
        allowed = client.get("/api/health", headers={"Origin": "http://localhost:5173"})
        assert allowed.headers["Access-Control-Allow-Origin"] == "http://localhost:5173"

        other = client.get("/api/health", headers={"Origin": "http://evil.example"})
        assert "Access-Control-Allow-Origin" not in other.headers
