"""
Inventory ledger tests.

Verifies:
- Movement arithmetic is enforced per type
- History ordering and summaries
- Ledger replay reproduces current stock
- Adjustments write exactly one entry
"""

import pytest

from backoffice.extensions import db
from backoffice.models import InventoryMovement, Product
from backoffice.services import inventory_service
from backoffice.validation import (
    InternalError,
    InvalidQuantity,
    InvalidStockSnapshot,
    ProductNotFound,
    ValidationError,
)


class TestRecordMovement:

    def test_out_entry(self, make_product):
        pid = make_product()
        movement = inventory_service.record_movement(
            product_id=pid, movement_type="out", quantity=3, previous_stock=10, new_stock=7,
        )
        assert movement.id is not None
        assert movement.delta == -3

    @pytest.mark.parametrize("previous,new", [(5, 8), (8, 5)])
    def test_adjustment_in_either_direction(self, make_product, previous, new):
        pid = make_product()
        movement = inventory_service.record_movement(
            product_id=pid, movement_type="adjustment", quantity=3,
            previous_stock=previous, new_stock=new,
        )
        assert movement.delta == new - previous

    @pytest.mark.parametrize("movement_type,previous,new", [
        ("out", 10, 8),
        ("in", 10, 12),
        ("adjustment", 10, 11),
    ])
    def test_arithmetic_mismatch_rejected(self, make_product, movement_type, previous, new):
        pid = make_product()
        with pytest.raises(InvalidStockSnapshot):
            inventory_service.record_movement(
                product_id=pid, movement_type=movement_type, quantity=3,
                previous_stock=previous, new_stock=new,
            )

    def test_negative_snapshot_rejected(self, make_product):
        pid = make_product()
        with pytest.raises(InvalidStockSnapshot):
            inventory_service.record_movement(
                product_id=pid, movement_type="out", quantity=3, previous_stock=2, new_stock=-1,
            )

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, True])
    def test_quantity_must_be_positive_integer(self, make_product, quantity):
        pid = make_product()
        with pytest.raises(InvalidQuantity):
            inventory_service.record_movement(
                product_id=pid, movement_type="in", quantity=quantity, previous_stock=0, new_stock=1,
            )

    def test_unknown_type_rejected(self, make_product):
        pid = make_product()
        with pytest.raises(ValidationError):
            inventory_service.record_movement(
                product_id=pid, movement_type="transfer", quantity=1, previous_stock=1, new_stock=0,
            )


class TestHistoryAndSummary:

    def test_initial_stock_is_recorded(self, make_product):
        pid = make_product(stock=10)
        history = inventory_service.history_for_product(pid)
        assert len(history) == 1
        assert history[0].movement_type == "in"
        assert (history[0].previous_stock, history[0].new_stock) == (0, 10)
        assert history[0].reason == "Initial stock"

    def test_history_newest_first_and_limited(self, make_product):
        pid = make_product(stock=10)
        inventory_service.adjust_stock(product_id=pid, new_stock=8, reason="Count")
        inventory_service.adjust_stock(product_id=pid, new_stock=12, reason="Count")

        history = inventory_service.history_for_product(pid)
        assert [m.new_stock for m in history] == [12, 8, 10]

        assert len(inventory_service.history_for_product(pid, limit=1)) == 1

    def test_summary(self, make_product):
        pid = make_product(stock=10)
        inventory_service.adjust_stock(product_id=pid, new_stock=6, reason="Breakage")

        summary = inventory_service.stock_summary(pid)
        assert summary == {
            "product_id": pid,
            "total_in": 10,
            "total_out": 0,
            "net_adjustment": -4,
            "total_movements": 2,
        }

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFound):
            inventory_service.history_for_product(999)
        with pytest.raises(ProductNotFound):
            inventory_service.stock_summary(999)


class TestReplay:

    def test_replay_matches_stock(self, make_product):
        pid = make_product(stock=10)
        inventory_service.adjust_stock(product_id=pid, new_stock=4, reason="Count")
        inventory_service.adjust_stock(product_id=pid, new_stock=9, reason="Count")

        assert inventory_service.replay_stock(pid, initial_stock=0) == 9
        assert db.session.get(Product, pid).stock == 9

    def test_replay_without_entries_returns_stock(self, make_product):
        pid = make_product(stock=0)
        assert inventory_service.replay_stock(pid) == 0

    def test_replay_detects_gap(self, make_product):
        pid = make_product(stock=10)
        # Entry that does not continue from 10
        inventory_service.record_movement(
            product_id=pid, movement_type="in", quantity=5, previous_stock=20, new_stock=25,
        )
        db.session.commit()

        with pytest.raises(InternalError):
            inventory_service.replay_stock(pid)


class TestAdjustStock:

    def test_adjust_writes_one_entry(self, make_product, manager_user):
        pid = make_product(stock=10)
        movement = inventory_service.adjust_stock(
            product_id=pid, new_stock=7, reason="Damaged units", user_id=manager_user.id,
        )

        assert movement.movement_type == "adjustment"
        assert movement.quantity == 3
        assert (movement.previous_stock, movement.new_stock) == (10, 7)
        assert movement.user_id == manager_user.id
        assert db.session.get(Product, pid).stock == 7
        assert db.session.query(InventoryMovement).filter_by(product_id=pid).count() == 2

    def test_noop_rejected(self, make_product):
        pid = make_product(stock=10)
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product_id=pid, new_stock=10, reason="Count")
        assert db.session.query(InventoryMovement).filter_by(product_id=pid).count() == 1

    @pytest.mark.parametrize("new_stock", [-1, "5", 2.0])
    def test_invalid_target_rejected(self, make_product, new_stock):
        pid = make_product(stock=10)
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product_id=pid, new_stock=new_stock, reason="Count")

    def test_reason_required(self, make_product):
        pid = make_product(stock=10)
        with pytest.raises(ValidationError):
            inventory_service.adjust_stock(product_id=pid, new_stock=5, reason="  ")

    def test_unknown_product(self, db_session):
        with pytest.raises(ProductNotFound):
            inventory_service.adjust_stock(product_id=999, new_stock=5, reason="Count")
