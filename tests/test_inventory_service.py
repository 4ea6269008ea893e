"""
Tests for stock in, stock out and transfers against the ledger.
"""
import pytest
from sqlalchemy import text

from app.models.inventory import Inventory, InventoryTransaction
from app.models.stock_transfer import StockTransfer, StockTransferItem
from app.services import inventory_service
from app.services.exceptions import (
    InsufficientStockError,
    NotFoundError,
    PersistenceError,
    ValidationError,
)


def _inventory(db, product, store):
    return (
        db.query(Inventory)
        .filter(Inventory.product_id == product.id, Inventory.store_id == store.id)
        .first()
    )


def _transactions(db, **criteria):
    q = db.query(InventoryTransaction)
    for column, value in criteria.items():
        q = q.filter(getattr(InventoryTransaction, column) == value)
    return q.all()


class TestAddStock:
    """Stock in creates or grows the projection and writes one ledger row."""

    def test_first_stock_in_creates_inventory_row(self, db, seed):
        movement = inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 7, seed.user.id)

        assert movement.inventory.quantity == 7
        assert movement.transaction.type == "stock_in"
        assert movement.transaction.quantity == 7
        assert _inventory(db, seed.product, seed.main_store).quantity == 7
        assert len(_transactions(db, type="stock_in")) == 1

    def test_stock_in_accumulates(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 5, seed.user.id)
        movement = inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 3, seed.user.id)

        assert movement.inventory.quantity == 8
        rows = _transactions(db, product_id=seed.product.id, store_id=seed.main_store.id)
        assert len(rows) == 2
        assert sum(r.quantity for r in rows) == 8
        assert db.query(Inventory).count() == 1

    def test_records_supplier_cost_and_notes(self, db, seed):
        movement = inventory_service.add_stock(
            db, seed.product.id, seed.main_store.id, 12, seed.user.id,
            notes="Weekly delivery", supplier_id=seed.supplier.id, unit_cost=6.75,
        )
        tx = movement.transaction
        assert tx.supplier_id == seed.supplier.id
        assert tx.unit_cost == 6.75
        assert tx.notes == "Weekly delivery"
        assert tx.supplier_name == "Bean Bros"
        assert tx.user_name == "Casey Clerk"

    @pytest.mark.parametrize("quantity", [0, -3])
    def test_rejects_non_positive_quantity(self, db, seed, quantity):
        with pytest.raises(ValidationError):
            inventory_service.add_stock(db, seed.product.id, seed.main_store.id, quantity, seed.user.id)
        assert db.query(InventoryTransaction).count() == 0
        assert db.query(Inventory).count() == 0

    def test_failed_write_rolls_back_ledger_row(self, db, seed):
        # Unknown user violates the foreign key when the batch is flushed.
        with pytest.raises(PersistenceError):
            inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 4, "no-such-user")

        assert db.query(InventoryTransaction).count() == 0
        assert _inventory(db, seed.product, seed.main_store) is None

    def test_unexpected_error_rolls_back_and_propagates(self, db, seed, monkeypatch):
        def _boom(*args, **kwargs):
            raise RuntimeError("projection update blew up")

        monkeypatch.setattr(inventory_service, "_increment", _boom)
        with pytest.raises(RuntimeError, match="blew up"):
            inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 4, seed.user.id)

        assert not db.new
        assert db.query(InventoryTransaction).count() == 0
        assert _inventory(db, seed.product, seed.main_store) is None


class TestRemoveStock:
    """Stock out only succeeds when enough is on hand."""

    def test_removes_and_records_negative_delta(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 10, seed.user.id)
        movement = inventory_service.remove_stock(
            db, seed.product.id, seed.main_store.id, 4, seed.user.id, notes="Broken bag", reason="damage"
        )

        assert movement.inventory.quantity == 6
        assert movement.transaction.type == "stock_out"
        assert movement.transaction.quantity == -4
        assert movement.transaction.reason == "damage"

    def test_can_remove_down_to_zero(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 3, seed.user.id)
        movement = inventory_service.remove_stock(db, seed.product.id, seed.main_store.id, 3, seed.user.id)
        assert movement.inventory.quantity == 0
        assert _inventory(db, seed.product, seed.main_store) is not None

    def test_insufficient_stock_fails_closed(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 4, seed.user.id)

        with pytest.raises(InsufficientStockError) as exc_info:
            inventory_service.remove_stock(db, seed.product.id, seed.main_store.id, 10, seed.user.id)

        assert exc_info.value.available == 4
        assert exc_info.value.requested == 10
        assert _inventory(db, seed.product, seed.main_store).quantity == 4
        assert _transactions(db, type="stock_out") == []

    def test_missing_inventory_row_is_not_found(self, db, seed):
        with pytest.raises(NotFoundError):
            inventory_service.remove_stock(db, seed.product.id, seed.warehouse.id, 1, seed.user.id)
        assert db.query(InventoryTransaction).count() == 0

    def test_guarded_decrement_refuses_stale_quantity(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 10, seed.user.id)
        inventory = _inventory(db, seed.product, seed.main_store)
        assert inventory.quantity == 10

        # Another writer drains the row; this session still sees 10.
        db.execute(text("UPDATE inventory SET quantity = 2 WHERE id = :id"), {"id": inventory.id})

        with pytest.raises(InsufficientStockError):
            inventory_service.remove_stock(db, seed.product.id, seed.main_store.id, 8, seed.user.id)

        assert _transactions(db, type="stock_out") == []
        db.expire_all()
        assert _inventory(db, seed.product, seed.main_store).quantity >= 0


class TestTransferStock:
    """Transfers move quantity between stores and write a paired ledger entry."""

    def test_transfer_conserves_total(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 10, seed.user.id)
        inventory_service.add_stock(db, seed.product.id, seed.warehouse.id, 2, seed.user.id)

        transfer = inventory_service.transfer_stock(
            db, seed.product.id, seed.main_store.id, seed.warehouse.id, 6, seed.user.id, notes="Restock"
        )

        source = _inventory(db, seed.product, seed.main_store)
        destination = _inventory(db, seed.product, seed.warehouse)
        assert source.quantity == 4
        assert destination.quantity == 8
        assert source.quantity + destination.quantity == 12

        assert db.query(StockTransfer).count() == 1
        items = db.query(StockTransferItem).all()
        assert len(items) == 1
        assert items[0].transfer_id == transfer.id
        assert items[0].quantity == 6

        paired = _transactions(db, reference_id=transfer.id)
        assert len(paired) == 2
        by_type = {tx.type: tx for tx in paired}
        assert by_type["transfer_out"].store_id == seed.main_store.id
        assert by_type["transfer_out"].quantity == -6
        assert by_type["transfer_in"].store_id == seed.warehouse.id
        assert by_type["transfer_in"].quantity == 6

    def test_transfer_header_fields(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 5, seed.user.id)
        transfer = inventory_service.transfer_stock(
            db, seed.product.id, seed.main_store.id, seed.warehouse.id, 2, seed.user.id, notes="Rebalance"
        )

        assert transfer.status == "completed"
        assert transfer.company_id == seed.company.id
        assert transfer.user_id == seed.user.id
        assert transfer.notes == "Rebalance"

        notes = {tx.type: tx.notes for tx in _transactions(db, reference_id=transfer.id)}
        assert notes["transfer_out"] == "Transfer to Warehouse: Rebalance"
        assert notes["transfer_in"] == "Transfer from Downtown: Rebalance"

    def test_transfer_creates_destination_row(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 9, seed.user.id)
        assert _inventory(db, seed.product, seed.warehouse) is None

        inventory_service.transfer_stock(db, seed.product.id, seed.main_store.id, seed.warehouse.id, 9, seed.user.id)

        assert _inventory(db, seed.product, seed.warehouse).quantity == 9
        assert _inventory(db, seed.product, seed.main_store).quantity == 0

    def test_insufficient_source_writes_nothing(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 3, seed.user.id)

        with pytest.raises(InsufficientStockError):
            inventory_service.transfer_stock(
                db, seed.product.id, seed.main_store.id, seed.warehouse.id, 5, seed.user.id
            )

        assert db.query(StockTransfer).count() == 0
        assert db.query(StockTransferItem).count() == 0
        assert _inventory(db, seed.product, seed.warehouse) is None
        assert _inventory(db, seed.product, seed.main_store).quantity == 3

    def test_missing_source_is_not_found(self, db, seed):
        with pytest.raises(NotFoundError):
            inventory_service.transfer_stock(
                db, seed.product.id, seed.main_store.id, seed.warehouse.id, 1, seed.user.id
            )
        assert db.query(StockTransfer).count() == 0

    def test_same_store_is_rejected(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 3, seed.user.id)
        with pytest.raises(ValidationError):
            inventory_service.transfer_stock(
                db, seed.product.id, seed.main_store.id, seed.main_store.id, 1, seed.user.id
            )
        assert db.query(StockTransfer).count() == 0

    def test_non_positive_quantity_is_rejected(self, db, seed):
        with pytest.raises(ValidationError):
            inventory_service.transfer_stock(
                db, seed.product.id, seed.main_store.id, seed.warehouse.id, 0, seed.user.id
            )


class TestProjectionReads:
    """Store/product views, low stock and ledger reconciliation."""

    def test_store_and_product_inventory(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 4, seed.user.id)
        inventory_service.add_stock(db, seed.other_product.id, seed.main_store.id, 40, seed.user.id)
        inventory_service.add_stock(db, seed.product.id, seed.warehouse.id, 20, seed.user.id)

        store_rows = inventory_service.get_store_inventory(db, seed.main_store.id)
        assert {r.product_sku for r in store_rows} == {"ESP-001", "CUP-100"}

        product_rows = inventory_service.get_product_inventory(db, seed.product.id)
        assert {r.store_name: r.quantity for r in product_rows} == {"Downtown": 4, "Warehouse": 20}

    def test_low_stock_uses_default_and_row_threshold(self, db, seed):
        low = inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 4, seed.user.id).inventory
        plenty = inventory_service.add_stock(db, seed.other_product.id, seed.main_store.id, 40, seed.user.id).inventory
        assert [r.id for r in inventory_service.get_low_stock(db)] == [low.id]

        inventory_service.set_low_stock_threshold(db, plenty.id, 50)
        ids = {r.id for r in inventory_service.get_low_stock(db, store_id=seed.main_store.id)}
        assert ids == {low.id, plenty.id}

        assert inventory_service.get_low_stock(db, company_id=seed.other_company.id) == []

    def test_threshold_errors(self, db, seed):
        with pytest.raises(NotFoundError):
            inventory_service.set_low_stock_threshold(db, "missing", 3)
        with pytest.raises(ValidationError):
            inventory_service.set_low_stock_threshold(db, "missing", -1)

    def test_reconciliation_balances_after_mixed_operations(self, db, seed):
        inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 15, seed.user.id)
        inventory_service.remove_stock(db, seed.product.id, seed.main_store.id, 2, seed.user.id)
        inventory_service.transfer_stock(db, seed.product.id, seed.main_store.id, seed.warehouse.id, 5, seed.user.id)
        inventory_service.transfer_stock(db, seed.product.id, seed.warehouse.id, seed.main_store.id, 1, seed.user.id)

        for store in (seed.main_store, seed.warehouse):
            result = inventory_service.reconcile_inventory(db, seed.product.id, store.id)
            assert result["balanced"] is True
            assert result["difference"] == 0

        assert inventory_service.reconcile_inventory(db, seed.product.id, seed.main_store.id)["quantity"] == 9
        assert inventory_service.reconcile_inventory(db, seed.product.id, seed.warehouse.id)["quantity"] == 4

    def test_reconciliation_detects_drift(self, db, seed):
        inventory = inventory_service.add_stock(db, seed.product.id, seed.main_store.id, 5, seed.user.id).inventory
        db.execute(text("UPDATE inventory SET quantity = 7 WHERE id = :id"), {"id": inventory.id})
        db.commit()

        result = inventory_service.reconcile_inventory(db, seed.product.id, seed.main_store.id)
        assert result == {
            "product_id": seed.product.id,
            "store_id": seed.main_store.id,
            "quantity": 7,
            "ledger_total": 5,
            "difference": 2,
            "balanced": False,
        }

    def test_reconciliation_unknown_pair(self, db, seed):
        with pytest.raises(NotFoundError):
            inventory_service.reconcile_inventory(db, seed.product.id, seed.warehouse.id)
