"""
HTTP layer tests.

Verifies:
- Unauthenticated requests return 401
- Role enforcement (cashier cannot cancel sales or edit the catalog)
- Error kinds map to the documented status codes and error codes
"""

import copy

import pytest

from conftest import auth_headers, get_auth_token


# =============================================================================
# UNAUTHENTICATED ACCESS: 401
# =============================================================================


class TestUnauthenticatedAccess:

    @pytest.mark.parametrize(
        "method,path",
        [
            ("GET", "/api/sales"),
            ("POST", "/api/sales"),
            ("GET", "/api/sales/1"),
            ("PUT", "/api/sales/1"),
            ("POST", "/api/sales/1/cancel"),
            ("GET", "/api/products"),
            ("POST", "/api/products"),
            ("PUT", "/api/products/1/pricing"),
            ("GET", "/api/products/profit-analysis"),
            ("GET", "/api/products/low-stock"),
            ("GET", "/api/inventory/products/1/movements"),
            ("POST", "/api/inventory/products/1/adjust"),
            ("GET", "/api/auth/me"),
        ],
    )
    def test_requires_auth(self, client, db_session, method, path):
        resp = getattr(client, method.lower())(path)
        assert resp.status_code == 401, f"{method} {path} returned {resp.status_code}"

    def test_bad_token(self, client, db_session):
        resp = client.get("/api/products", headers=auth_headers("not-a-token"))
        assert resp.status_code == 401


class TestAuth:

    def test_login_and_me(self, client, cashier_user):
        token = get_auth_token(client, "cashier")
        assert token

        resp = client.get("/api/auth/me", headers=auth_headers(token))
        assert resp.status_code == 200
        assert resp.json["user"]["role"] == "cashier"

    def test_login_bad_password(self, client, cashier_user):
        resp = client.post("/api/auth/login", json={"username": "cashier", "password": "wrong-pass1"})
        assert resp.status_code == 401

    def test_login_missing_fields(self, client, db_session):
        resp = client.post("/api/auth/login", json={"username": "cashier"})
        assert resp.status_code == 400

    def test_logout_revokes_token(self, client, cashier_user):
        token = get_auth_token(client, "cashier")
        assert client.post("/api/auth/logout", headers=auth_headers(token)).status_code == 200
        assert client.get("/api/auth/me", headers=auth_headers(token)).status_code == 401


# =============================================================================
# ROLE ENFORCEMENT: 403
# =============================================================================


class TestRoles:

    def test_cashier_cannot_cancel(self, client, cashier_headers, make_product):
        pid = make_product(stock=5)
        sale = client.post("/api/sales", json={
            "items": [{"product_id": pid, "quantity": 1}],
            "payment_method": "cash",
        }, headers=cashier_headers).json["sale"]

        resp = client.post(
            f"/api/sales/{sale['id']}/cancel",
            json={"reason": "Changed mind"},
            headers=cashier_headers,
        )
        assert resp.status_code == 403

    @pytest.mark.parametrize(
        "method,path,body",
        [
            ("POST", "/api/products", {"name": "X", "cost_price_cents": 100}),
            ("PUT", "/api/products/1/pricing", {"profit_margin": 40}),
            ("POST", "/api/products/1/manual-price", {"price_cents": 100}),
            ("POST", "/api/products/1/calculated-price", {}),
            ("POST", "/api/products/bulk-update-margins", {"new_margin": 40}),
            ("POST", "/api/inventory/products/1/adjust", {"new_stock": 1, "reason": "Count"}),
        ],
    )
    def test_cashier_cannot_edit_catalog(self, client, cashier_headers, method, path, body):
        resp = getattr(client, method.lower())(path, json=body, headers=cashier_headers)
        assert resp.status_code == 403

    def test_cashier_can_read(self, client, cashier_headers, make_product):
        make_product()
        assert client.get("/api/products", headers=cashier_headers).status_code == 200
        assert client.get("/api/products/profit-analysis", headers=cashier_headers).status_code == 200


# =============================================================================
# SALES API
# =============================================================================


class TestSalesApi:

    def test_create_get_cancel(self, client, cashier_headers, manager_headers, make_product):
        pid = make_product(stock=7)

        resp = client.post("/api/sales", json={
            "items": [{"product_id": pid, "quantity": 3}],
            "payment_method": "card",
        }, headers=cashier_headers)
        assert resp.status_code == 201
        sale = resp.json["sale"]
        assert sale["total_amount_cents"] == 30000

        resp = client.get(f"/api/sales/{sale['id']}", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["sale"]["items"][0]["quantity"] == 3

        resp = client.post(
            f"/api/sales/{sale['id']}/cancel",
            json={"reason": "Customer returned"},
            headers=manager_headers,
        )
        assert resp.status_code == 200
        assert resp.json["sale"]["status"] == "cancelled"

        resp = client.post(
            f"/api/sales/{sale['id']}/cancel",
            json={"reason": "Customer returned"},
            headers=manager_headers,
        )
        assert resp.status_code == 400
        assert resp.json["code"] == "ALREADY_CANCELLED"

        product = client.get(f"/api/products/{pid}", headers=cashier_headers).json
        assert product["stock"] == 7

    @pytest.mark.parametrize(
        "body,status,code",
        [
            ({"items": [], "payment_method": "cash"}, 400, "EMPTY_ORDER"),
            ({"items": [{"product_id": "__PID__", "quantity": 0}], "payment_method": "cash"}, 400, "INVALID_QUANTITY"),
            ({"items": [{"product_id": "__PID__", "quantity": 50}], "payment_method": "cash"}, 400, "INSUFFICIENT_STOCK"),
            ({"items": [{"product_id": 99999, "quantity": 1}], "payment_method": "cash"}, 404, "PRODUCT_NOT_FOUND"),
            ({"items": [{"product_id": "__PID__", "quantity": 1}], "payment_method": "cash", "customer_id": 99999}, 404, "CUSTOMER_NOT_FOUND"),
            ({"items": [{"product_id": "__PID__", "quantity": 1}], "payment_method": "cash", "discount_amount_cents": 999999}, 400, "INVALID_AMOUNT"),
            ({"items": [{"product_id": "__PID__", "quantity": 1}], "payment_method": "iou"}, 400, "VALIDATION_ERROR"),
            ({"items": [{"product_id": "__PID__", "quantity": 1}], "payment_method": "cash", "customer_id": True}, 400, "VALIDATION_ERROR"),
            ({"items": [{"product_id": "__PID__", "quantity": 1}], "payment_method": "cash", "customer_id": [1]}, 400, "VALIDATION_ERROR"),
        ],
    )
    def test_create_errors(self, client, cashier_headers, make_product, body, status, code):
        pid = make_product(stock=5)
        body = copy.deepcopy(body)
        for item in body["items"]:
            if item["product_id"] == "__PID__":
                item["product_id"] = pid

        resp = client.post("/api/sales", json=body, headers=cashier_headers)
        assert resp.status_code == status
        assert resp.json["code"] == code
        assert "error" in resp.json

        product = client.get(f"/api/products/{pid}", headers=cashier_headers).json
        assert product["stock"] == 5

    def test_get_unknown_sale(self, client, cashier_headers):
        resp = client.get("/api/sales/99999", headers=cashier_headers)
        assert resp.status_code == 404
        assert resp.json["code"] == "SALE_NOT_FOUND"

    def test_cancel_unknown_sale(self, client, manager_headers):
        resp = client.post("/api/sales/99999/cancel", json={"reason": "Not there"}, headers=manager_headers)
        assert resp.status_code == 404

    def test_cancel_reason_too_short(self, client, cashier_headers, manager_headers, make_product):
        pid = make_product(stock=5)
        sale = client.post("/api/sales", json={
            "items": [{"product_id": pid, "quantity": 1}],
            "payment_method": "cash",
        }, headers=cashier_headers).json["sale"]

        resp = client.post(f"/api/sales/{sale['id']}/cancel", json={"reason": "no"}, headers=manager_headers)
        assert resp.status_code == 400

    @pytest.mark.parametrize("reason", [12345, ["Damaged", "box"]])
    def test_cancel_reason_not_text(self, client, cashier_headers, manager_headers, make_product, reason):
        pid = make_product(stock=5)
        sale = client.post("/api/sales", json={
            "items": [{"product_id": pid, "quantity": 1}],
            "payment_method": "cash",
        }, headers=cashier_headers).json["sale"]

        resp = client.post(f"/api/sales/{sale['id']}/cancel", json={"reason": reason}, headers=manager_headers)
        assert resp.status_code == 400
        assert resp.json["code"] == "VALIDATION_ERROR"

        resp = client.get(f"/api/sales/{sale['id']}", headers=cashier_headers)
        assert resp.json["sale"]["status"] == "completed"

    def test_update_sale(self, client, cashier_headers, make_product):
        pid = make_product(stock=5)
        sale = client.post("/api/sales", json={
            "items": [{"product_id": pid, "quantity": 1}],
            "payment_method": "cash",
        }, headers=cashier_headers).json["sale"]

        resp = client.put(f"/api/sales/{sale['id']}", json={"notes": "Deliver Friday"}, headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["sale"]["notes"] == "Deliver Friday"

        resp = client.put(f"/api/sales/{sale['id']}", json={"status": "cancelled"}, headers=cashier_headers)
        assert resp.status_code == 400

        resp = client.put("/api/sales/99999", json={"notes": "x"}, headers=cashier_headers)
        assert resp.status_code == 404

    def test_list_sales(self, client, cashier_headers, make_product):
        pid = make_product(stock=5)
        for _ in range(2):
            client.post("/api/sales", json={
                "items": [{"product_id": pid, "quantity": 1}],
                "payment_method": "cash",
            }, headers=cashier_headers)

        resp = client.get("/api/sales?page=1&per_page=1", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["pagination"]["total"] == 2

        resp = client.get("/api/sales?start=not-a-date", headers=cashier_headers)
        assert resp.status_code == 400


# =============================================================================
# PRODUCTS AND INVENTORY API
# =============================================================================


class TestProductsApi:

    def test_create_and_update(self, client, manager_headers):
        resp = client.post("/api/products", json={
            "name": "Oat milk",
            "barcode": "4000000000001",
            "cost_price_cents": 7000,
            "profit_margin": "30",
            "stock": 4,
        }, headers=manager_headers)
        assert resp.status_code == 201
        product = resp.json
        assert product["sale_price_cents"] == 10000

        resp = client.post("/api/products", json={
            "name": "Duplicate", "barcode": "4000000000001", "cost_price_cents": 1,
        }, headers=manager_headers)
        assert resp.status_code == 409

        resp = client.put(f"/api/products/{product['id']}", json={"stock": 99}, headers=manager_headers)
        assert resp.status_code == 400

        resp = client.put(f"/api/products/{product['id']}", json={
            "cost_price_cents": 8400, "change_reason": "New supplier",
        }, headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["calculated_sale_price_cents"] == 12000

        resp = client.get(f"/api/products/{product['id']}/cost-history", headers=manager_headers)
        assert resp.json["count"] == 1
        assert resp.json["items"][0]["change_reason"] == "New supplier"

    def test_create_rejects_unknown_field(self, client, manager_headers):
        resp = client.post("/api/products", json={
            "name": "X", "cost_price_cents": 1, "calculated_sale_price_cents": 5,
        }, headers=manager_headers)
        assert resp.status_code == 400

    def test_pricing_endpoints(self, client, manager_headers, make_product):
        pid = make_product()

        resp = client.put(f"/api/products/{pid}/pricing", json={"profit_margin": 100}, headers=manager_headers)
        assert resp.status_code == 400
        assert resp.json["code"] == "INVALID_MARGIN"

        resp = client.put("/api/products/99999/pricing", json={"profit_margin": 10}, headers=manager_headers)
        assert resp.status_code == 404

        resp = client.post(f"/api/products/{pid}/manual-price", json={"price_cents": -1}, headers=manager_headers)
        assert resp.status_code == 400
        assert resp.json["code"] == "INVALID_PRICE"

        resp = client.post(f"/api/products/{pid}/manual-price", json={"price_cents": 11111}, headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["price_source"] == "manual"

        resp = client.post(f"/api/products/{pid}/calculated-price", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["sale_price_cents"] == 10000

        resp = client.post("/api/products/bulk-update-margins", json={"new_margin": 50}, headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["updated_count"] == 1

    def test_pricing_change_reason_validated(self, client, manager_headers, make_product):
        pid = make_product()

        resp = client.put(f"/api/products/{pid}/pricing", json={
            "cost_price_cents": 8400, "change_reason": 12345,
        }, headers=manager_headers)
        assert resp.status_code == 400

        resp = client.put(f"/api/products/{pid}/pricing", json={
            "cost_price_cents": 8400, "change_reason": "x" * 256,
        }, headers=manager_headers)
        assert resp.status_code == 400

        resp = client.get(f"/api/products/{pid}/cost-history", headers=manager_headers)
        assert resp.json["count"] == 0

    def test_margin_rounding_to_100_rejected(self, client, manager_headers, make_product):
        pid = make_product()
        resp = client.put(f"/api/products/{pid}/pricing", json={"profit_margin": 99.999}, headers=manager_headers)
        assert resp.status_code == 400
        assert resp.json["code"] == "INVALID_MARGIN"

    def test_low_stock(self, client, cashier_headers, make_product):
        low = make_product(stock=2, min_stock=5)
        make_product(stock=10, min_stock=5)

        resp = client.get("/api/products/low-stock", headers=cashier_headers)
        assert resp.status_code == 200
        assert resp.json["count"] == 1
        assert resp.json["items"][0]["id"] == low

    def test_inventory_endpoints(self, client, manager_headers, make_product):
        pid = make_product(stock=10)

        resp = client.post(
            f"/api/inventory/products/{pid}/adjust",
            json={"new_stock": 6, "reason": "Cycle count"},
            headers=manager_headers,
        )
        assert resp.status_code == 201
        assert resp.json["movement"]["quantity"] == 4

        resp = client.get(f"/api/inventory/products/{pid}/movements?limit=1", headers=manager_headers)
        assert resp.status_code == 200
        assert resp.json["count"] == 1
        assert resp.json["items"][0]["movement_type"] == "adjustment"

        resp = client.get(f"/api/inventory/products/{pid}/summary", headers=manager_headers)
        assert resp.json["net_adjustment"] == -4

        resp = client.get("/api/inventory/products/99999/summary", headers=manager_headers)
        assert resp.status_code == 404

        resp = client.post(
            f"/api/inventory/products/{pid}/adjust",
            json={"reason": "Cycle count"},
            headers=manager_headers,
        )
        assert resp.status_code == 400


class TestSystem:

    def test_health(self, client, db_session):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json["status"] == "healthy"

    def test_cors_header_for_allowed_origin(self, client, db_session):
        resp = client.get("/health", headers={"Origin": "http://localhost:5173"})
        assert resp.headers.get("Access-Control-Allow-Origin") == "http://localhost:5173"
