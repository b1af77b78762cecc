"""
Atomic scope, document sequence and concurrent posting tests.
"""

import threading

import pytest
from sqlalchemy.exc import OperationalError

from erp import create_app
from erp.extensions import db
from erp.models import DocumentSequence, Item, Partner, TaxInvoice, Transaction
from erp.services import document_service, inventory_service, transaction_service
from erp.services.concurrency import run_atomic, run_with_retry
from erp.services.errors import InsufficientStockError


class TestRunAtomic:

    def test_commits_on_success(self, db_session):
        def _op():
            db.session.add(Partner(name="Committed", type="customer"))
            return "ok"

        assert run_atomic(_op) == "ok"
        db.session.rollback()
        assert db.session.query(Partner).filter_by(name="Committed").count() == 1

    def test_rolls_back_on_error(self, db_session):
        def _op():
            db.session.add(Partner(name="Doomed", type="customer"))
            db.session.flush()
            raise ValueError("business rule")

        with pytest.raises(ValueError):
            run_atomic(_op)
        assert db.session.query(Partner).filter_by(name="Doomed").count() == 0

    def test_sequence_rolls_back_with_document(self, db_session):
        def _op():
            document_service.next_document_number(document_type="TEST", prefix="T")
            raise ValueError("abort")

        with pytest.raises(ValueError):
            run_atomic(_op)
        assert run_atomic(lambda: document_service.next_document_number(document_type="TEST", prefix="T")) == "T-000001"


class TestRetry:

    def test_retries_operational_errors(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            if len(calls) < 3:
                raise OperationalError("UPDATE inventory", {}, Exception("database is locked"))
            return "done"

        assert run_with_retry(_op, attempts=3, backoff_base=0) == "done"
        assert len(calls) == 3

    def test_gives_up_after_attempts(self, db_session):
        def _op():
            raise OperationalError("UPDATE inventory", {}, Exception("database is locked"))

        with pytest.raises(OperationalError):
            run_with_retry(_op, attempts=2, backoff_base=0)

    def test_business_errors_not_retried(self, db_session):
        calls = []

        def _op():
            calls.append(1)
            raise ValueError("no")

        with pytest.raises(ValueError):
            run_with_retry(_op, attempts=3, backoff_base=0)
        assert len(calls) == 1


class TestDocumentNumbers:

    def test_numbers_increment(self, db_session):
        first = run_atomic(lambda: document_service.next_document_number(document_type="PAYMENT", prefix="PM"))
        second = run_atomic(lambda: document_service.next_document_number(document_type="PAYMENT", prefix="PM"))

        assert (first, second) == ("PM-000001", "PM-000002")
        row = db.session.query(DocumentSequence).filter_by(document_type="PAYMENT").one()
        assert row.next_number == 3

    def test_transaction_code_prefixes(self, db_session):
        assert run_atomic(lambda: document_service.next_transaction_code("sale")) == "S-000001"
        assert run_atomic(lambda: document_service.next_transaction_code("purchase")) == "P-000001"

    def test_unknown_voucher_type(self, db_session):
        from datetime import date

        with pytest.raises(document_service.DocumentSequenceError):
            document_service.next_voucher_code("gift", date(2024, 3, 15))

    def test_tax_invoice_codes_per_type_and_day(self, db_session):
        from datetime import date

        partner = Partner(name="Acme Retail", type="customer")
        db.session.add(partner)
        db.session.commit()
        db.session.add(TaxInvoice(
            code="TI240315-004", partner_id=partner.id, date=date(2024, 3, 15), type="issue",
            net_amount=1000, tax_amount=100, total_amount=1100,
        ))
        db.session.commit()

        assert document_service.next_tax_invoice_code("issue", date(2024, 3, 15)) == "TI240315-005"
        assert document_service.next_tax_invoice_code("receive", date(2024, 3, 15)) == "TR240315-001"
        assert document_service.next_tax_invoice_code("issue", date(2024, 3, 16)) == "TI240316-001"
        with pytest.raises(document_service.DocumentSequenceError):
            document_service.next_tax_invoice_code("credit", date(2024, 3, 15))


class TestConcurrentSales:
    """Concurrent postings against a file-backed database, one session per thread."""

    @pytest.fixture
    def file_app(self, app, tmp_path):
        file_app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'ledger.sqlite3'}",
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'ERROR_LOG_PATH': app.config['ERROR_LOG_PATH'],
        })
        with file_app.app_context():
            db.create_all()
            yield file_app
            db.session.remove()
            db.engine.dispose()

    def test_oversell_blocked(self, file_app):
        partner = Partner(name="Acme Retail", type="customer")
        item = Item(code="ITEM-001", name="Widget", unit_price=1000)
        db.session.add_all([partner, item])
        db.session.commit()
        partner_id, item_id = partner.id, item.id
        inventory_service.set_counted_quantity(item_id, 10)

        barrier = threading.Barrier(4)
        outcomes = []
        lock = threading.Lock()

        def _sell():
            with file_app.app_context():
                barrier.wait()
                try:
                    transaction_service.create_transaction(
                        {"type": "sale", "partner_id": partner_id, "date": "2024-03-15"},
                        [{"item_id": item_id, "quantity": 6, "unit_price": 1000}],
                    )
                    result = "posted"
                except InsufficientStockError:
                    result = "rejected"
                except Exception as exc:
                    result = repr(exc)
                finally:
                    db.session.remove()
                with lock:
                    outcomes.append(result)

        threads = [threading.Thread(target=_sell) for _ in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=30)

        assert sorted(outcomes) == ["posted", "rejected", "rejected", "rejected"]

        db.session.expire_all()
        assert inventory_service.get_quantity(item_id) == 4
        history = inventory_service.get_history(item_id)
        sale_rows = [h for h in history if h.transaction_type == "sale"]
        assert len(sale_rows) == 1
        assert (sale_rows[0].quantity_before, sale_rows[0].quantity_after) == (10, 4)
        assert db.session.query(Transaction).count() == 1
