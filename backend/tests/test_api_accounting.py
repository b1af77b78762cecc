"""
Accounting API tests: vouchers, chart of accounts, payments and tax invoices.
"""

import pytest

from erp.extensions import db
from erp.models import Payment, TaxInvoice, UserActivity, Voucher
from erp.services import transaction_service, voucher_service

from conftest import grant, set_stock


def _voucher_payload(accounts, amount=1000, **header):
    voucher = {"date": "2024-03-15", "type": "income", "amount": amount}
    voucher.update(header)
    return {
        "voucher": voucher,
        "items": [
            {"account_id": accounts["101"].id, "amount": amount},
            {"account_id": accounts["401"].id, "amount": -amount},
        ],
    }


# =============================================================================
# VOUCHERS
# =============================================================================


class TestVoucherRoutes:

    def test_create(self, client, admin_headers, accounts):
        resp = client.post("/api/accounting/vouchers", json=_voucher_payload(accounts), headers=admin_headers)

        assert resp.status_code == 201
        assert resp.json["code"] == "VI240315-001"
        assert resp.json["status"] == "draft"
        assert {i["account_name"] for i in resp.json["items"]} == {"Cash", "Sales"}

    def test_unbalanced_400(self, client, admin_headers, accounts):
        payload = _voucher_payload(accounts)
        payload["items"][1]["amount"] = -900
        resp = client.post("/api/accounting/vouchers", json=payload, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json["details"] == {"debit_total": 1000, "credit_total": 900}
        assert db.session.query(Voucher).count() == 0

    def test_missing_header(self, client, admin_headers, accounts):
        resp = client.post("/api/accounting/vouchers", json={"items": []}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == "voucher"

    def test_list_and_detail(self, client, admin_headers, accounts, customer):
        created = client.post(
            "/api/accounting/vouchers",
            json=_voucher_payload(accounts, partner_id=customer.id),
            headers=admin_headers,
        ).json

        listed = client.get("/api/accounting/vouchers?type=income", headers=admin_headers).json
        assert [v["id"] for v in listed] == [created["id"]]
        assert listed[0]["partner_name"] == "Acme Retail"

        detail = client.get(f"/api/accounting/vouchers/{created['id']}", headers=admin_headers).json
        assert detail["partner"]["id"] == customer.id

    def test_list_bad_filter(self, client, admin_headers, db_session):
        resp = client.get("/api/accounting/vouchers?type=gift", headers=admin_headers)
        assert resp.status_code == 400

    def test_update(self, client, admin_headers, accounts):
        created = client.post("/api/accounting/vouchers", json=_voucher_payload(accounts), headers=admin_headers).json

        resp = client.put(
            f"/api/accounting/vouchers/{created['id']}",
            json={"description": "Counter sale"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json["description"] == "Counter sale"
        assert len(resp.json["items"]) == 2

    def test_status_transitions(self, client, admin_headers, accounts):
        created = client.post("/api/accounting/vouchers", json=_voucher_payload(accounts), headers=admin_headers).json
        url = f"/api/accounting/vouchers/{created['id']}/status"

        resp = client.put(url, json={"status": "approved"}, headers=admin_headers)
        assert resp.status_code == 200
        assert resp.json["status"] == "confirmed"

        resp = client.put(url, json={"status": "draft"}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["details"]["current_status"] == "confirmed"

        assert client.put(url, json={"status": "canceled"}, headers=admin_headers).status_code == 200
        assert client.put(url, json={"status": "confirmed"}, headers=admin_headers).status_code == 400

    def test_status_missing_voucher(self, client, admin_headers, db_session):
        resp = client.put("/api/accounting/vouchers/999999/status", json={"status": "confirmed"}, headers=admin_headers)
        assert resp.status_code == 404

    def test_delete(self, client, admin_headers, accounts):
        created = client.post("/api/accounting/vouchers", json=_voucher_payload(accounts), headers=admin_headers).json

        assert client.delete(f"/api/accounting/vouchers/{created['id']}", headers=admin_headers).status_code == 204
        assert client.delete(f"/api/accounting/vouchers/{created['id']}", headers=admin_headers).status_code == 404


# =============================================================================
# ACCOUNTS
# =============================================================================


class TestAccountRoutes:

    def test_list_ordered_by_code(self, client, admin_headers, accounts):
        codes = [a["code"] for a in client.get("/api/accounting/accounts", headers=admin_headers).json]
        assert codes == sorted(codes)
        assert "101" in codes

    def test_create_duplicate_409(self, client, admin_headers, accounts):
        resp = client.post(
            "/api/accounting/accounts",
            json={"code": "101", "name": "Petty cash", "type": "asset"},
            headers=admin_headers,
        )
        assert resp.status_code == 409

    def test_create_bad_type(self, client, admin_headers, db_session):
        resp = client.post(
            "/api/accounting/accounts",
            json={"code": "900", "name": "Misc", "type": "other"},
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json["field"] == "type"

    def test_update_and_delete_unused(self, client, admin_headers, db_session):
        created = client.post(
            "/api/accounting/accounts",
            json={"code": "900", "name": "Misc", "type": "expense"},
            headers=admin_headers,
        ).json

        resp = client.put(f"/api/accounting/accounts/{created['id']}", json={"name": "Sundry"}, headers=admin_headers)
        assert resp.json["name"] == "Sundry"

        assert client.delete(f"/api/accounting/accounts/{created['id']}", headers=admin_headers).status_code == 204
        assert client.get(f"/api/accounting/accounts/{created['id']}", headers=admin_headers).status_code == 404

    def test_delete_in_use_409(self, client, admin_headers, accounts):
        client.post("/api/accounting/vouchers", json=_voucher_payload(accounts), headers=admin_headers)

        resp = client.delete(f"/api/accounting/accounts/{accounts['101'].id}", headers=admin_headers)
        assert resp.status_code == 409


# =============================================================================
# PAYMENTS
# =============================================================================


class TestPaymentRoutes:

    @pytest.fixture
    def sale(self, customer, item_a):
        set_stock(item_a, 10)
        return transaction_service.create_transaction(
            {"type": "sale", "partner_id": customer.id, "date": "2024-03-15"},
            [{"item_id": item_a.id, "quantity": 2, "unit_price": 1000}],
        )

    def _payload(self, partner, **extra):
        payload = {"partner_id": partner.id, "date": "2024-03-20", "amount": 2000, "method": "bank", "status": "completed"}
        payload.update(extra)
        return payload

    def test_create_linked_to_sale(self, client, admin_headers, customer, sale):
        resp = client.post(
            "/api/accounting/payments",
            json=self._payload(customer, transaction_id=sale.id),
            headers=admin_headers,
        )

        assert resp.status_code == 201
        assert resp.json["code"] == "PM-000001"
        assert resp.json["partner_name"] == "Acme Retail"

        listed = client.get(f"/api/accounting/payments?partner_id={customer.id}", headers=admin_headers).json
        assert listed[0]["transaction_code"] == "S-000001"

    def test_other_partners_transaction_rejected(self, client, admin_headers, supplier, sale):
        resp = client.post(
            "/api/accounting/payments",
            json=self._payload(supplier, transaction_id=sale.id),
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert db.session.query(Payment).count() == 0

    def test_voucher_without_partner_matches(self, client, admin_headers, customer, accounts):
        voucher = voucher_service.create_voucher(
            {"date": "2024-03-20", "type": "income", "amount": 2000},
            [
                {"account_id": accounts["102"].id, "amount": 2000},
                {"account_id": accounts["108"].id, "amount": -2000},
            ],
        )

        resp = client.post(
            "/api/accounting/payments",
            json=self._payload(customer, voucher_id=voucher.id),
            headers=admin_headers,
        )
        assert resp.status_code == 201
        assert resp.json["voucher_id"] == voucher.id

    @pytest.mark.parametrize(
        "extra,field",
        [
            ({"amount": 0}, "amount"),
            ({"method": "barter"}, "method"),
            ({"status": "maybe"}, "status"),
        ],
    )
    def test_validation(self, client, admin_headers, customer, extra, field):
        resp = client.post("/api/accounting/payments", json=self._payload(customer, **extra), headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == field

    def test_status_and_delete(self, client, admin_headers, customer):
        created = client.post(
            "/api/accounting/payments",
            json=self._payload(customer, status="planned"),
            headers=admin_headers,
        ).json

        resp = client.put(
            f"/api/accounting/payments/{created['id']}/status",
            json={"status": "completed"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json["status"] == "completed"

        assert client.delete(f"/api/accounting/payments/{created['id']}", headers=admin_headers).status_code == 204
        assert client.get(f"/api/accounting/payments/{created['id']}", headers=admin_headers).status_code == 404

    def test_update(self, client, admin_headers, customer, sale):
        created = client.post(
            "/api/accounting/payments",
            json=self._payload(customer, transaction_id=sale.id, status="planned"),
            headers=admin_headers,
        ).json

        resp = client.put(
            f"/api/accounting/payments/{created['id']}",
            json={"amount": 1500, "method": "cash", "description": "partial"},
            headers=admin_headers,
        )

        assert resp.status_code == 200
        assert (resp.json["amount"], resp.json["method"], resp.json["description"]) == (1500, "cash", "partial")
        assert resp.json["code"] == created["code"]
        assert resp.json["transaction_id"] == sale.id

    def test_update_partner_must_fit_linked_sale(self, client, admin_headers, customer, supplier, sale):
        created = client.post(
            "/api/accounting/payments",
            json=self._payload(customer, transaction_id=sale.id),
            headers=admin_headers,
        ).json

        resp = client.put(
            f"/api/accounting/payments/{created['id']}",
            json={"partner_id": supplier.id},
            headers=admin_headers,
        )

        assert resp.status_code == 400
        db.session.expire_all()
        assert db.session.get(Payment, created["id"]).partner_id == customer.id

    def test_update_missing_404(self, client, admin_headers, db_session):
        resp = client.put("/api/accounting/payments/999999", json={"amount": 10}, headers=admin_headers)
        assert resp.status_code == 404

    def test_update_validation(self, client, admin_headers, customer):
        created = client.post("/api/accounting/payments", json=self._payload(customer), headers=admin_headers).json
        resp = client.put(f"/api/accounting/payments/{created['id']}", json={"amount": -5}, headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == "amount"


# =============================================================================
# TAX INVOICES
# =============================================================================


class TestTaxInvoiceRoutes:

    @pytest.fixture
    def sale(self, customer, item_a):
        set_stock(item_a, 10)
        return transaction_service.create_transaction(
            {"type": "sale", "partner_id": customer.id, "date": "2024-03-15"},
            [{"item_id": item_a.id, "quantity": 2, "unit_price": 1000}],
        )

    def _payload(self, partner, **extra):
        payload = {
            "partner_id": partner.id,
            "date": "2024-03-15",
            "type": "issue",
            "net_amount": 2000,
            "tax_amount": 200,
        }
        payload.update(extra)
        return payload

    def test_create_linked_to_sale(self, client, admin_user, admin_headers, customer, sale):
        resp = client.post(
            "/api/accounting/tax-invoices",
            json=self._payload(customer, transaction_id=sale.id),
            headers=admin_headers,
        )

        assert resp.status_code == 201
        body = resp.json
        assert body["code"] == "TI240315-001"
        assert body["total_amount"] == 2200
        assert body["status"] == "issued"
        assert body["partner_name"] == "Acme Retail"
        assert body["created_by"] == admin_user.id

        activity = db.session.query(UserActivity).filter_by(action="create").one()
        assert activity.target == "tax invoice TI240315-001"

    def test_codes_per_type_and_day(self, client, admin_headers, customer, supplier):
        codes = [
            client.post("/api/accounting/tax-invoices", json=self._payload(customer), headers=admin_headers).json["code"],
            client.post("/api/accounting/tax-invoices", json=self._payload(customer), headers=admin_headers).json["code"],
            client.post(
                "/api/accounting/tax-invoices",
                json=self._payload(supplier, type="receive"),
                headers=admin_headers,
            ).json["code"],
        ]
        assert codes == ["TI240315-001", "TI240315-002", "TR240315-001"]

    def test_code_continues_after_delete(self, client, admin_headers, customer):
        first = client.post("/api/accounting/tax-invoices", json=self._payload(customer), headers=admin_headers).json
        second = client.post("/api/accounting/tax-invoices", json=self._payload(customer), headers=admin_headers).json
        client.delete(f"/api/accounting/tax-invoices/{first['id']}", headers=admin_headers)

        third = client.post("/api/accounting/tax-invoices", json=self._payload(customer), headers=admin_headers).json
        assert (second["code"], third["code"]) == ("TI240315-002", "TI240315-003")

    def test_unknown_partner_400(self, client, admin_headers, customer):
        payload = self._payload(customer)
        payload["partner_id"] = 999999
        resp = client.post("/api/accounting/tax-invoices", json=payload, headers=admin_headers)

        assert resp.status_code == 400
        assert resp.json["details"] == {"partner_id": 999999}

    def test_transaction_of_other_partner_rejected(self, client, admin_headers, supplier, sale):
        resp = client.post(
            "/api/accounting/tax-invoices",
            json=self._payload(supplier, transaction_id=sale.id),
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert db.session.query(TaxInvoice).count() == 0

    def test_type_must_follow_transaction(self, client, admin_headers, customer, sale):
        resp = client.post(
            "/api/accounting/tax-invoices",
            json=self._payload(customer, transaction_id=sale.id, type="receive"),
            headers=admin_headers,
        )
        assert resp.status_code == 400
        assert resp.json["details"] == {"transaction_type": "sale", "invoice_type": "receive"}

    def test_unknown_transaction_rejected(self, client, admin_headers, customer):
        resp = client.post(
            "/api/accounting/tax-invoices",
            json=self._payload(customer, transaction_id=999999),
            headers=admin_headers,
        )
        assert resp.status_code == 400

    @pytest.mark.parametrize(
        "extra,field",
        [
            ({"type": "refund"}, "type"),
            ({"status": "void"}, "status"),
            ({"net_amount": -1}, "net_amount"),
            ({"total_amount": 9999}, "total_amount"),
        ],
    )
    def test_validation(self, client, admin_headers, customer, extra, field):
        resp = client.post("/api/accounting/tax-invoices", json=self._payload(customer, **extra), headers=admin_headers)
        assert resp.status_code == 400
        assert resp.json["field"] == field

    def test_list_and_detail(self, client, admin_headers, customer, supplier, sale):
        linked = client.post(
            "/api/accounting/tax-invoices",
            json=self._payload(customer, transaction_id=sale.id),
            headers=admin_headers,
        ).json
        client.post("/api/accounting/tax-invoices", json=self._payload(supplier, type="receive"), headers=admin_headers)

        listed = client.get("/api/accounting/tax-invoices?type=issue", headers=admin_headers).json
        assert [(i["code"], i["transaction_code"]) for i in listed] == [("TI240315-001", "S-000001")]
        assert client.get("/api/accounting/tax-invoices?type=other", headers=admin_headers).status_code == 400

        detail = client.get(f"/api/accounting/tax-invoices/{linked['id']}", headers=admin_headers).json
        assert detail["partner"]["name"] == "Acme Retail"
        assert detail["transaction"]["code"] == "S-000001"
        assert [(i["item_code"], i["quantity"]) for i in detail["items"]] == [("ITEM-001", 2)]

    def test_status_and_delete(self, client, admin_headers, customer):
        created = client.post("/api/accounting/tax-invoices", json=self._payload(customer), headers=admin_headers).json

        resp = client.patch(
            f"/api/accounting/tax-invoices/{created['id']}/status",
            json={"status": "canceled"},
            headers=admin_headers,
        )
        assert resp.status_code == 200
        assert resp.json["status"] == "canceled"

        resp = client.patch(
            f"/api/accounting/tax-invoices/{created['id']}/status",
            json={"status": "lost"},
            headers=admin_headers,
        )
        assert resp.status_code == 400

        assert client.delete(f"/api/accounting/tax-invoices/{created['id']}", headers=admin_headers).status_code == 204
        assert client.get(f"/api/accounting/tax-invoices/{created['id']}", headers=admin_headers).status_code == 404
        assert client.delete(f"/api/accounting/tax-invoices/{created['id']}", headers=admin_headers).status_code == 404

    def test_staff_needs_grant(self, client, staff_user, staff_headers, customer):
        assert client.get("/api/accounting/tax-invoices", headers=staff_headers).status_code == 403

        grant(staff_user, "tax_invoices", "read")
        assert client.get("/api/accounting/tax-invoices", headers=staff_headers).status_code == 200
        resp = client.post("/api/accounting/tax-invoices", json=self._payload(customer), headers=staff_headers)
        assert resp.status_code == 403
