"""
Inventory ledger tests.

Verifies:
- An item that never moved reads as zero
- Manual counts write the difference as an 'adjustment' history entry
- On-hand quantity always equals the sum of history changes
- History is returned newest first
- Low-stock alerts and the overview flag items below their minimum
"""

import pytest

from erp.extensions import db
from erp.models import InventoryHistoryEntry
from erp.services import inventory_service
from erp.services.errors import NotFoundError

from conftest import set_stock


def _history_sum(item_id: int) -> int:
    return sum(h.change for h in inventory_service.get_history(item_id))


class TestOnHandQuantity:

    def test_absent_record_reads_zero(self, item_a):
        assert inventory_service.get_quantity(item_a.id) == 0
        assert inventory_service.get_history(item_a.id) == []

    def test_get_quantities_fills_missing_with_zero(self, item_a, item_b):
        set_stock(item_a, 7)
        assert inventory_service.get_quantities([item_a.id, item_b.id]) == {item_a.id: 7, item_b.id: 0}


class TestManualCount:

    def test_count_records_adjustment(self, item_a, admin_user):
        item, stock, entry = inventory_service.set_counted_quantity(
            item_a.id, 10, user_id=admin_user.id
        )

        assert item.id == item_a.id
        assert stock == 10
        assert entry.transaction_type == "adjustment"
        assert entry.quantity_before == 0
        assert entry.quantity_after == 10
        assert entry.change == 10
        assert entry.notes == "Manual stock adjustment"
        assert entry.created_by == admin_user.id
        assert inventory_service.get_quantity(item_a.id) == 10

    def test_count_down_records_negative_change(self, item_a):
        set_stock(item_a, 10)
        _, stock, entry = inventory_service.set_counted_quantity(item_a.id, 4, notes="Damaged in storage")

        assert stock == 4
        assert entry.change == -6
        assert entry.quantity_before == 10
        assert entry.quantity_after == 4
        assert entry.notes == "Damaged in storage"

    def test_count_matching_current_records_nothing(self, item_a):
        set_stock(item_a, 10)
        _, stock, entry = inventory_service.set_counted_quantity(item_a.id, 10)

        assert stock == 10
        assert entry is None
        assert len(inventory_service.get_history(item_a.id)) == 1

    def test_count_zero_on_fresh_item_creates_nothing(self, item_a):
        _, stock, entry = inventory_service.set_counted_quantity(item_a.id, 0)

        assert stock == 0
        assert entry is None
        assert db.session.query(InventoryHistoryEntry).count() == 0

    def test_count_unknown_item(self, db_session):
        with pytest.raises(NotFoundError):
            inventory_service.set_counted_quantity(999999, 5)


class TestLedgerInvariant:

    def test_quantity_equals_history_sum(self, item_a):
        for counted in (10, 3, 8, 8, 0, 12):
            set_stock(item_a, counted)
            assert inventory_service.get_quantity(item_a.id) == counted
            assert _history_sum(item_a.id) == counted

    def test_entries_chain_before_and_after(self, item_a):
        for counted in (5, 9, 2):
            set_stock(item_a, counted)

        history = list(reversed(inventory_service.get_history(item_a.id)))
        assert history[0].quantity_before == 0
        for previous, current in zip(history, history[1:]):
            assert current.quantity_before == previous.quantity_after
        for entry in history:
            assert entry.quantity_after == entry.quantity_before + entry.change

    def test_history_newest_first(self, item_a):
        for counted in (1, 2, 3):
            set_stock(item_a, counted)

        afters = [h.quantity_after for h in inventory_service.get_history(item_a.id)]
        assert afters == [3, 2, 1]

    def test_history_limit(self, item_a):
        for counted in (1, 2, 3):
            set_stock(item_a, counted)

        latest = inventory_service.get_history(item_a.id, limit=1)
        assert len(latest) == 1
        assert latest[0].quantity_after == 3

    def test_unknown_history_type_rejected(self, item_a):
        with pytest.raises(ValueError):
            inventory_service.adjust(item_a.id, 1, "gift")
        db.session.rollback()


class TestStockViews:

    def test_low_stock_alerts(self, item_a, item_b):
        set_stock(item_a, 3)

        alerts = inventory_service.get_low_stock_items()
        assert [a["item_code"] for a in alerts] == ["ITEM-001"]
        assert alerts[0]["quantity"] == 3
        assert alerts[0]["shortage"] == 2

    def test_item_at_minimum_is_not_low(self, item_a):
        set_stock(item_a, 5)
        assert inventory_service.get_low_stock_items() == []

    def test_overview_lists_every_item(self, item_a, item_b):
        set_stock(item_b, 4)

        overview = {row["item_code"]: row for row in inventory_service.get_inventory_overview()}
        assert overview["ITEM-001"]["quantity"] == 0
        assert overview["ITEM-001"]["is_low"] is True
        assert overview["ITEM-002"]["quantity"] == 4
        assert overview["ITEM-002"]["is_low"] is False

    def test_stock_detail(self, item_a):
        set_stock(item_a, 6)

        detail = inventory_service.get_stock_detail(item_a.id)
        assert detail["stock"] == 6
        assert detail["item"]["code"] == "ITEM-001"
        assert detail["last_updated"] is not None
        assert len(detail["history"]) == 1
