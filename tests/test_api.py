"""HTTP surface: auth, envelopes, order/item/payment/production/accounting routes."""

from decimal import Decimal

import pytest

from conftest import order_input


def create(client, headers, **overrides):
    resp = client.post("/orders", json=order_input(**overrides), headers=headers)
    assert resp.status_code == 201, resp.text
    return resp.json()["order"]


class TestAuth:
    def test_health_is_public(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        body = resp.json()
        assert body["database"]["status"] == "healthy"
        assert body["stream_clients"] == 0

    def test_missing_token(self, client):
        resp = client.get("/orders")
        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Unauthorized"}

    def test_wrong_token(self, client):
        resp = client.get("/orders", headers={"Authorization": "Bearer nope"})
        assert resp.status_code == 401

    def test_cook_cannot_reach_accounting(self, client, cook_headers):
        resp = client.get("/transactions", headers=cook_headers)
        assert resp.status_code == 403
        assert resp.json()["success"] is False

    def test_cook_can_work_production(self, client, cook_headers):
        resp = client.get("/production/items", headers=cook_headers)
        assert resp.status_code == 200
        assert resp.json() == {"success": True, "items": [], "count": 0}

    @pytest.mark.parametrize("headers", [{}, {"Authorization": "Bearer nope"}, {"Authorization": "Basic abc"}])
    def test_stream_requires_token(self, client, headers):
        resp = client.get("/production/stream", headers=headers)

        assert resp.status_code == 401
        assert resp.json() == {"success": False, "error": "Unauthorized"}
        assert client.app.state.hub.client_count == 0


class TestOrders:
    def test_create_allocates_month_scoped_numbers(self, client, cook_headers):
        first = create(client, cook_headers)
        second = create(client, cook_headers, delivery_date="2026-01-03")
        other_month = create(client, cook_headers, delivery_date="2026-02-14")

        assert first["order_number"] == "28-01-01"
        assert second["order_number"] == "03-01-02"
        assert other_month["order_number"] == "14-02-01"

    def test_create_computes_subtotals_and_total(self, client, cook_headers):
        order = create(client, cook_headers)

        assert [Decimal(i["subtotal"]) for i in order["items"]] == [Decimal("50"), Decimal("12.5")]
        assert Decimal(order["total_amount"]) == Decimal("62.50")
        assert order["currency"] == "CHF"
        assert all(i["production_status"] == "new" for i in order["items"])

    def test_missing_channel_contact_is_rejected(self, client, cook_headers):
        resp = client.post(
            "/orders",
            json=order_input(channel="instagram", customer_ig_handle=None),
            headers=cook_headers,
        )
        assert resp.status_code == 400
        body = resp.json()
        assert body["success"] is False
        assert body["error"] == "Invalid request"

    def test_delivery_requires_address(self, client, cook_headers):
        resp = client.post("/orders", json=order_input(delivery_type="delivery"), headers=cook_headers)
        assert resp.status_code == 400

        address = {"street": "Bahnhofstrasse 1", "city": "Zürich", "postal_code": "8001"}
        order = create(client, cook_headers, delivery_type="delivery", delivery_address=address)
        assert order["delivery_address"]["city"] == "Zürich"

    def test_bad_date_format(self, client, cook_headers):
        resp = client.post("/orders", json=order_input(delivery_date="28.01.2026"), headers=cook_headers)
        assert resp.status_code == 400

    def test_empty_items_rejected(self, client, cook_headers):
        resp = client.post("/orders", json=order_input(order_items=[]), headers=cook_headers)
        assert resp.status_code == 400

    def test_get_and_list(self, client, cook_headers):
        order = create(client, cook_headers)

        got = client.get(f"/orders/{order['id']}", headers=cook_headers).json()["order"]
        listing = client.get("/orders", params={"delivery_date": "2026-01-28"}, headers=cook_headers).json()

        assert got["order_number"] == order["order_number"]
        assert listing["count"] == 1

    def test_unknown_order(self, client, cook_headers):
        resp = client.get("/orders/999", headers=cook_headers)
        assert resp.status_code == 404
        assert resp.json()["error"] == "Order not found"

    def test_date_change_within_month_keeps_counter(self, client, cook_headers, owner_headers):
        create(client, cook_headers)
        order = create(client, cook_headers, delivery_date="2026-01-10")

        resp = client.patch(f"/orders/{order['id']}", json={"delivery_date": "2026-01-20"}, headers=owner_headers)

        updated = resp.json()["order"]
        assert updated["order_number"] == "20-01-02"
        assert all(i["order_number"] == "20-01-02" for i in updated["items"])
        assert all(i["delivery_date"] == "2026-01-20" for i in updated["items"])

    def test_date_change_to_other_month_gets_new_counter(self, client, cook_headers, owner_headers):
        create(client, cook_headers, delivery_date="2026-02-01")
        order = create(client, cook_headers)

        resp = client.patch(f"/orders/{order['id']}", json={"delivery_date": "2026-02-05"}, headers=owner_headers)

        assert resp.json()["order"]["order_number"] == "05-02-02"

    def test_cook_cannot_edit_or_delete_orders(self, client, cook_headers):
        order = create(client, cook_headers)

        assert client.patch(f"/orders/{order['id']}", json={}, headers=cook_headers).status_code == 403
        assert client.delete(f"/orders/{order['id']}", headers=cook_headers).status_code == 403

    def test_delete_order(self, client, cook_headers, owner_headers):
        order = create(client, cook_headers, paid=True, payment_method="card")

        resp = client.delete(f"/orders/{order['id']}", headers=owner_headers)

        assert resp.json()["order_deleted"] is True
        assert client.get(f"/orders/{order['id']}", headers=owner_headers).status_code == 404
        txs = client.get("/transactions", headers=owner_headers).json()["transactions"]
        assert txs == []


class TestPayment:
    def test_mark_paid_twice_yields_one_transaction(self, client, cook_headers, owner_headers):
        order = create(client, cook_headers)

        first = client.post(f"/orders/{order['id']}/mark-paid", json={"payment_method": "twint"}, headers=cook_headers)
        second = client.post(f"/orders/{order['id']}/mark-paid", headers=cook_headers)

        assert first.json()["order"]["paid"] is True
        assert first.json()["order"]["payment_method"] == "twint"
        assert second.status_code == 200
        assert second.json()["message"] == "Order already marked as paid"
        txs = client.get("/transactions", params={"type": "revenue"}, headers=owner_headers).json()["transactions"]
        assert len(txs) == 1
        assert txs[0]["source_type"] == "order"
        assert txs[0]["source_id"] == order["id"]
        assert Decimal(txs[0]["amount"]) == Decimal("62.50")

    def test_mark_unpaid_removes_transaction(self, client, cook_headers, owner_headers):
        order = create(client, cook_headers, paid=True)

        resp = client.post(f"/orders/{order['id']}/mark-unpaid", headers=cook_headers)

        assert resp.json()["order"]["paid"] is False
        assert client.get("/transactions", headers=owner_headers).json()["transactions"] == []


class TestItems:
    def test_add_update_delete_keep_total_in_sync(self, client, cook_headers):
        order = create(client, cook_headers)

        added = client.post(
            f"/orders/{order['id']}/items",
            json={"product_name": "Brioche", "quantity": "4", "unit_price": "3.50"},
            headers=cook_headers,
        )
        assert added.status_code == 201
        assert Decimal(added.json()["order"]["total_amount"]) == Decimal("76.50")

        item_id = added.json()["item"]["id"]
        updated = client.patch(
            f"/orders/items/{item_id}",
            json={"quantity": "2", "unit_price": "3.50", "staff_notes": "extra glaze"},
            headers=cook_headers,
        )
        assert Decimal(updated.json()["order"]["total_amount"]) == Decimal("69.50")
        assert updated.json()["item"]["staff_notes"] == "extra glaze"

        deleted = client.delete(f"/orders/items/{item_id}", headers=cook_headers)
        assert Decimal(deleted.json()["order"]["total_amount"]) == Decimal("62.50")

    def test_deleting_last_item_removes_order(self, client, cook_headers):
        order = create(client, cook_headers)
        ids = [i["id"] for i in order["items"]]

        client.delete(f"/orders/items/{ids[0]}", headers=cook_headers)
        resp = client.delete(f"/orders/items/{ids[1]}", headers=cook_headers)

        assert resp.json()["order_deleted"] is True
        assert client.get(f"/orders/{order['id']}", headers=cook_headers).status_code == 404

    def test_invalid_quantity(self, client, cook_headers):
        order = create(client, cook_headers)
        resp = client.post(
            f"/orders/{order['id']}/items",
            json={"product_name": "Brioche", "quantity": "0", "unit_price": "3.50"},
            headers=cook_headers,
        )
        assert resp.status_code == 400


class TestProductionRoutes:
    def test_status_update(self, client, cook_headers):
        order = create(client, cook_headers)
        item_id = order["items"][0]["id"]

        resp = client.patch("/production/status", json={"item_id": item_id, "status": "prepared"}, headers=cook_headers)

        assert resp.status_code == 200
        item = resp.json()["item"]
        assert item["production_status"] == "prepared"
        assert item["started_at"] is not None
        assert resp.json()["warnings"] == []

    def test_unknown_status(self, client, cook_headers):
        order = create(client, cook_headers)
        resp = client.patch(
            "/production/status",
            json={"item_id": order["items"][0]["id"], "status": "frosted"},
            headers=cook_headers,
        )
        assert resp.status_code == 400
        assert "allowed" in resp.json()["details"]

    def test_unknown_item(self, client, cook_headers):
        resp = client.patch("/production/status", json={"item_id": 777, "status": "baked"}, headers=cook_headers)
        assert resp.status_code == 404

    def test_notes_update(self, client, cook_headers):
        order = create(client, cook_headers)
        item_id = order["items"][1]["id"]

        resp = client.patch(
            f"/production/items/{item_id}/notes",
            json={"writing_on_cake": "Happy birthday Lea"},
            headers=cook_headers,
        )

        assert resp.json()["item"]["writing_on_cake"] == "Happy birthday Lea"

    def test_notes_update_requires_a_field(self, client, cook_headers):
        order = create(client, cook_headers)
        resp = client.patch(f"/production/items/{order['items'][0]['id']}/notes", json={}, headers=cook_headers)
        assert resp.status_code == 400


class TestAccountingRoutes:
    def test_expense_lifecycle(self, client, owner_headers):
        resp = client.post(
            "/expenses",
            json={"date": "2026-01-12", "category": "supplies", "amount": "45.90", "description": "Cake boxes"},
            headers=owner_headers,
        )
        assert resp.status_code == 201
        expense = resp.json()["expense"]
        assert expense["type"] == "expense"
        assert expense["date"] == "2026-01-12"
        assert expense["expense_category"] == "supplies"

        listed = client.get("/expenses", headers=owner_headers).json()
        assert listed["count"] == 1

        put = client.put(
            f"/expenses/{expense['id']}",
            json={"date": "2026-01-12", "category": "supplies", "amount": "49.90", "description": "Cake boxes"},
            headers=owner_headers,
        )
        assert Decimal(put.json()["expense"]["amount"]) == Decimal("49.90")

        assert client.delete(f"/expenses/{expense['id']}", headers=owner_headers).status_code == 200
        assert client.get("/expenses", headers=owner_headers).json()["count"] == 0

    @pytest.mark.parametrize(
        "body",
        [
            {"date": "2026-01-12", "category": "travel", "amount": "10", "description": "Train"},
            {"date": "2026-01-12", "category": "rent", "amount": "0", "description": "Rent"},
            {"date": "2026/01/12", "category": "rent", "amount": "10", "description": "Rent"},
        ],
    )
    def test_invalid_expense(self, client, owner_headers, body):
        resp = client.post("/expenses", json=body, headers=owner_headers)
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_manual_revenue_and_summary(self, client, owner_headers):
        client.post(
            "/transactions/manual-revenue",
            json={"date": "2026-01-31", "amount": "1200", "description": "Café wholesale January"},
            headers=owner_headers,
        )
        client.post(
            "/expenses",
            json={"date": "2026-01-15", "category": "ingredients", "amount": "300", "description": "Flour"},
            headers=owner_headers,
        )

        resp = client.get(
            "/accounting/summary", params={"start": "2026-01-01", "end": "2026-01-31"}, headers=owner_headers
        )

        summary = resp.json()["summary"]
        assert Decimal(summary["total_revenue"]) == Decimal("1200")
        assert Decimal(summary["total_expenses"]) == Decimal("300")
        assert Decimal(summary["profit_loss"]) == Decimal("900")
        assert Decimal(summary["profit_margin"]) == Decimal("75")
        assert summary["expenses_by_category"] == {"ingredients": "300.00"}
        assert summary["monthly_trends"][0]["month"] == "2026-01"


class TestClientRoutes:
    def test_search_get_and_delete_guard(self, client, cook_headers, owner_headers):
        order = create(client, cook_headers)

        found = client.get("/clients/search", params={"q": "müll"}, headers=cook_headers).json()["clients"]
        assert [c["id"] for c in found] == [order["client_id"]]
        assert found[0]["preferred_contact"] == "phone"

        detail = client.get(f"/clients/{order['client_id']}", headers=owner_headers).json()
        assert detail["client"]["total_orders"] == 1
        assert len(detail["orders"]) == 1

        resp = client.delete(f"/clients/{order['client_id']}", headers=owner_headers)
        assert resp.status_code == 409

    def test_short_query_returns_recent(self, client, cook_headers):
        create(client, cook_headers)
        found = client.get("/clients/search", params={"q": "a"}, headers=cook_headers).json()["clients"]
        assert len(found) == 1
