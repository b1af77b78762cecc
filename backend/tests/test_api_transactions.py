"""
Transaction API tests.

Covers the request/response contract of /api/transactions: payload shapes,
status codes for each error kind, and the db error log on storage failures.
"""

import pytest

from erp.extensions import db
from erp.models import Transaction, UserActivity
from erp.services import inventory_service, transaction_service

from conftest import grant, set_stock


def _payload(partner, item, quantity=2, **header):
    transaction = {"type": "sale", "partner_id": partner.id, "date": "2024-03-15"}
    transaction.update(header)
    return {
        "transaction": transaction,
        "items": [{"item_id": item.id, "quantity": quantity, "unit_price": 1000}],
    }


@pytest.fixture
def stocked(item_a):
    set_stock(item_a, 10)
    return item_a


class TestCreate:

    def test_create_sale(self, client, admin_headers, customer, stocked):
        resp = client.post("/api/transactions", json=_payload(customer, stocked, 3), headers=admin_headers)

        assert resp.status_code == 201
        body = resp.json
        assert body["code"] == "S-000001"
        assert body["total_amount"] == 3000
        assert body["date"] == "2024-03-15"
        assert [line["quantity"] for line in body["items"]] == [3]
        assert inventory_service.get_quantity(stocked.id) == 7

    def test_create_records_activity(self, client, admin_user, admin_headers, customer, stocked):
        client.post("/api/transactions", json=_payload(customer, stocked), headers=admin_headers)

        activity = db.session.query(UserActivity).filter_by(user_id=admin_user.id, action="create").one()
        assert activity.target == "transaction S-000001"

    def test_missing_header(self, client, admin_headers, db_session):
        resp = client.post("/api/transactions", json={"items": []}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == "transaction"

    def test_insufficient_stock_400(self, client, admin_headers, customer, stocked):
        resp = client.post("/api/transactions", json=_payload(customer, stocked, 11), headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json["details"] == {
            "item_id": stocked.id,
            "current_quantity": 10,
            "requested_quantity": 11,
        }
        assert inventory_service.get_quantity(stocked.id) == 10

    def test_invalid_partner_400(self, client, admin_headers, customer, stocked):
        payload = _payload(customer, stocked)
        payload["transaction"]["partner_id"] = 999999
        resp = client.post("/api/transactions", json=payload, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json["details"] == {"partner_id": 999999}

    def test_validation_error_names_field(self, client, admin_headers, customer, stocked):
        payload = _payload(customer, stocked)
        payload["items"][0]["quantity"] = 1.5
        resp = client.post("/api/transactions", json=payload, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json["field"] == "items[0].quantity"

    def test_unknown_field_rejected(self, client, admin_headers, customer, stocked):
        payload = _payload(customer, stocked)
        payload["transaction"]["created_by"] = 1
        resp = client.post("/api/transactions", json=payload, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json["field"] == "created_by"

    def test_duplicate_code_409(self, client, admin_headers, customer, stocked):
        client.post("/api/transactions", json=_payload(customer, stocked, 1, code="INV-1"), headers=admin_headers)
        resp = client.post("/api/transactions", json=_payload(customer, stocked, 1, code="INV-1"), headers=admin_headers)
        assert resp.status_code == 409

    def test_storage_failure_logged(self, app, client, admin_headers, customer, stocked, monkeypatch):
        def broken_adjust(*args, **kwargs):
            raise RuntimeError("simulated storage failure")

        monkeypatch.setattr(inventory_service, "adjust", broken_adjust)
        resp = client.post("/api/transactions", json=_payload(customer, stocked), headers=admin_headers)

        assert resp.status_code == 500
        assert resp.json == {"error": "Internal server error"}
        assert db.session.query(Transaction).count() == 0

        with open(app.config["ERROR_LOG_PATH"], encoding="utf-8") as fh:
            log = fh.read()
        assert "[POST /api/transactions] DB ERROR:" in log
        assert "simulated storage failure" in log


class TestReadUpdateDelete:

    @pytest.fixture
    def posted(self, client, admin_headers, customer, stocked):
        resp = client.post("/api/transactions", json=_payload(customer, stocked, 4), headers=admin_headers)
        assert resp.status_code == 201
        return resp.json

    def test_list_with_filters(self, client, admin_headers, posted):
        resp = client.get("/api/transactions?type=sale", headers=admin_headers)
        assert resp.status_code == 200
        assert [t["code"] for t in resp.json] == [posted["code"]]
        assert resp.json[0]["partner_name"] == "Acme Retail"

        assert client.get("/api/transactions?type=purchase", headers=admin_headers).json == []

    def test_list_rejects_bad_filter(self, client, admin_headers, db_session):
        resp = client.get("/api/transactions?status=lost", headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == "status"

    def test_get_detail(self, client, admin_headers, posted):
        resp = client.get(f"/api/transactions/{posted['id']}", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["partner_name"] == "Acme Retail"
        assert len(resp.json["items"]) == 1

    def test_get_missing_404(self, client, admin_headers, db_session):
        assert client.get("/api/transactions/999999", headers=admin_headers).status_code == 404
        assert client.get("/api/transactions/999999/items", headers=admin_headers).status_code == 404

    def test_get_items(self, client, admin_headers, posted):
        resp = client.get(f"/api/transactions/{posted['id']}/items", headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json[0]["amount"] == 4000

    @pytest.mark.parametrize("suffix, route", [
        ("", "GET /api/transactions/:id"),
        ("/items", "GET /api/transactions/:id/items"),
    ])
    def test_read_storage_failure_logged(self, app, client, admin_headers, posted, monkeypatch, suffix, route):
        def broken_get(*args, **kwargs):
            raise RuntimeError("simulated read failure")

        monkeypatch.setattr(transaction_service, "get_transaction", broken_get)
        resp = client.get(f"/api/transactions/{posted['id']}{suffix}", headers=admin_headers)

        assert resp.status_code == 500
        assert resp.json == {"error": "Internal server error"}
        with open(app.config["ERROR_LOG_PATH"], encoding="utf-8") as fh:
            log = fh.read()
        assert f"[{route}] DB ERROR:" in log

    def test_update_flat_body(self, client, admin_headers, posted, stocked):
        resp = client.put(
            f"/api/transactions/{posted['id']}",
            json={"notes": "revised", "items": [{"item_id": stocked.id, "quantity": 6, "unit_price": 1000}]},
            headers=admin_headers,
        )

        assert resp.status_code == 200
        assert resp.json["notes"] == "revised"
        assert resp.json["total_amount"] == 6000
        assert inventory_service.get_quantity(stocked.id) == 4

    def test_update_wrapped_body(self, client, admin_headers, posted, stocked):
        resp = client.put(
            f"/api/transactions/{posted['id']}",
            json={
                "transaction": {"status": "completed"},
                "items": [{"item_id": stocked.id, "quantity": 4, "unit_price": 1000}],
            },
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json["status"] == "completed"

    def test_update_requires_items(self, client, admin_headers, posted):
        resp = client.put(f"/api/transactions/{posted['id']}", json={"notes": "x"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == "items"

    def test_update_missing_404(self, client, admin_headers, stocked):
        resp = client.put(
            "/api/transactions/999999",
            json={"items": [{"item_id": stocked.id, "quantity": 1, "unit_price": 1000}]},
            headers=admin_headers,
        )
        assert resp.status_code == 404

    def test_delete(self, client, admin_headers, posted, stocked):
        resp = client.delete(f"/api/transactions/{posted['id']}", headers=admin_headers)

        assert resp.status_code == 204
        assert inventory_service.get_quantity(stocked.id) == 10
        assert client.delete(f"/api/transactions/{posted['id']}", headers=admin_headers).status_code == 404

    def test_staff_with_grant(self, client, staff_user, staff_headers, customer, stocked):
        grant(staff_user, "transactions", "read", "write")

        resp = client.post("/api/transactions", json=_payload(customer, stocked), headers=staff_headers)
        assert resp.status_code == 201
        assert resp.json["created_by"] == staff_user.id
