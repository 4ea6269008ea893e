import logging
from contextlib import contextmanager
from dataclasses import dataclass

from sqlalchemy import func, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.config import settings
from app.models.inventory import Inventory, InventoryTransaction, TransactionType
from app.models.stock_transfer import TRANSFER_COMPLETED, StockTransfer, StockTransferItem
from app.models.store import Store
from app.services.exceptions import (
    InsufficientStockError,
    NotFoundError,
    PersistenceError,
    StockLedgerError,
    ValidationError,
)

logger = logging.getLogger(__name__)


@dataclass
class StockMovement:
    inventory: Inventory
    transaction: InventoryTransaction


@contextmanager
def _ledger_write(db: Session, action: str):
    """Run one ledger operation as a single all-or-nothing database transaction."""
    try:
        yield
        db.commit()
    except StockLedgerError:
        db.rollback()
        raise
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("%s failed, rolled back: %s", action, e)
        raise PersistenceError(f"{action} failed: {e}") from e
    except Exception:
        db.rollback()
        raise


def _require_positive(quantity) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(f"Quantity must be a positive integer, got {quantity!r}")


def _find_inventory(db: Session, product_id: str, store_id: str) -> Inventory | None:
    return (
        db.query(Inventory)
        .filter(Inventory.product_id == product_id, Inventory.store_id == store_id)
        .first()
    )


def _require_stock(inventory: Inventory | None, quantity: int, where: str) -> Inventory:
    if not inventory:
        raise NotFoundError(f"No inventory record for this product at {where}")
    if inventory.quantity < quantity:
        logger.warning(
            "Refused to remove %d of product %s at store %s: only %d on hand",
            quantity, inventory.product_id, inventory.store_id, inventory.quantity,
        )
        raise InsufficientStockError(
            f"Not enough stock available at {where}. Current: {inventory.quantity}, requested: {quantity}",
            available=inventory.quantity,
            requested=quantity,
        )
    return inventory


def _increment(db: Session, inventory: Inventory | None, product_id: str, store_id: str, quantity: int) -> Inventory:
    if inventory:
        db.execute(
            update(Inventory)
            .where(Inventory.id == inventory.id)
            .values(quantity=Inventory.quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        return inventory
    inventory = Inventory(product_id=product_id, store_id=store_id, quantity=quantity)
    db.add(inventory)
    return inventory


def _decrement(db: Session, inventory: Inventory, quantity: int) -> None:
    # Guarded in SQL so a concurrent stock-out cannot drive the row negative.
    result = db.execute(
        update(Inventory)
        .where(Inventory.id == inventory.id, Inventory.quantity >= quantity)
        .values(quantity=Inventory.quantity - quantity)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        logger.warning("Guarded decrement of %d refused for inventory %s", quantity, inventory.id)
        raise InsufficientStockError(
            f"Not enough stock available. Requested: {quantity}",
            requested=quantity,
        )


def add_stock(
    db: Session,
    product_id: str,
    store_id: str,
    quantity: int,
    user_id: str,
    notes: str = "",
    supplier_id: str | None = None,
    unit_cost: float | None = None,
) -> StockMovement:
    _require_positive(quantity)

    with _ledger_write(db, "Stock in"):
        inventory = _find_inventory(db, product_id, store_id)

        transaction = InventoryTransaction(
            product_id=product_id,
            store_id=store_id,
            user_id=user_id,
            quantity=quantity,
            type=TransactionType.STOCK_IN.value,
            notes=notes,
            supplier_id=supplier_id or None,
            unit_cost=unit_cost,
        )
        db.add(transaction)
        inventory = _increment(db, inventory, product_id, store_id, quantity)

    db.refresh(inventory)
    db.refresh(transaction)
    logger.info("Stock in: +%d of product %s at store %s (now %d)", quantity, product_id, store_id, inventory.quantity)
    return StockMovement(inventory=inventory, transaction=transaction)


def remove_stock(
    db: Session,
    product_id: str,
    store_id: str,
    quantity: int,
    user_id: str,
    notes: str = "",
    reason: str = "adjustment",
) -> StockMovement:
    _require_positive(quantity)

    with _ledger_write(db, "Stock out"):
        inventory = _require_stock(_find_inventory(db, product_id, store_id), quantity, "this store")

        transaction = InventoryTransaction(
            product_id=product_id,
            store_id=store_id,
            user_id=user_id,
            quantity=-quantity,
            type=TransactionType.STOCK_OUT.value,
            notes=notes,
            reason=reason,
        )
        db.add(transaction)
        _decrement(db, inventory, quantity)

    db.refresh(inventory)
    db.refresh(transaction)
    logger.info("Stock out: -%d of product %s at store %s (now %d)", quantity, product_id, store_id, inventory.quantity)
    return StockMovement(inventory=inventory, transaction=transaction)


def transfer_stock(
    db: Session,
    product_id: str,
    source_store_id: str,
    destination_store_id: str,
    quantity: int,
    user_id: str,
    notes: str = "",
) -> StockTransfer:
    _require_positive(quantity)
    if source_store_id == destination_store_id:
        raise ValidationError("Source and destination stores cannot be the same")

    with _ledger_write(db, "Stock transfer"):
        source = _require_stock(_find_inventory(db, product_id, source_store_id), quantity, "the source location")
        destination = _find_inventory(db, product_id, destination_store_id)

        source_store = db.get(Store, source_store_id)
        destination_store = db.get(Store, destination_store_id)
        source_label = source_store.name if source_store else source_store_id
        destination_label = destination_store.name if destination_store else destination_store_id

        transfer = StockTransfer(
            company_id=source_store.company_id if source_store else None,
            source_store_id=source_store_id,
            destination_store_id=destination_store_id,
            user_id=user_id,
            status=TRANSFER_COMPLETED,
            notes=notes,
        )
        db.add(transfer)
        db.flush()

        db.add(StockTransferItem(transfer_id=transfer.id, product_id=product_id, quantity=quantity))

        _decrement(db, source, quantity)
        _increment(db, destination, product_id, destination_store_id, quantity)

        db.add_all([
            InventoryTransaction(
                product_id=product_id,
                store_id=source_store_id,
                user_id=user_id,
                quantity=-quantity,
                type=TransactionType.TRANSFER_OUT.value,
                notes=f"Transfer to {destination_label}: {notes}",
                reference_id=transfer.id,
            ),
            InventoryTransaction(
                product_id=product_id,
                store_id=destination_store_id,
                user_id=user_id,
                quantity=quantity,
                type=TransactionType.TRANSFER_IN.value,
                notes=f"Transfer from {source_label}: {notes}",
                reference_id=transfer.id,
            ),
        ])

    db.refresh(transfer)
    logger.info(
        "Transfer %s: %d of product %s from store %s to store %s",
        transfer.id, quantity, product_id, source_store_id, destination_store_id,
    )
    return transfer


# --- Projection reads ---

def get_store_inventory(db: Session, store_id: str) -> list[Inventory]:
    return db.query(Inventory).filter(Inventory.store_id == store_id).all()


def get_product_inventory(db: Session, product_id: str) -> list[Inventory]:
    return db.query(Inventory).filter(Inventory.product_id == product_id).all()


def get_low_stock(db: Session, store_id: str | None = None, company_id: str | None = None) -> list[Inventory]:
    threshold = func.coalesce(Inventory.low_stock_threshold, settings.DEFAULT_LOW_STOCK_THRESHOLD)
    q = db.query(Inventory).filter(Inventory.quantity <= threshold)
    if store_id:
        q = q.filter(Inventory.store_id == store_id)
    if company_id:
        q = q.join(Store, Inventory.store_id == Store.id).filter(Store.company_id == company_id)
    return q.order_by(Inventory.quantity.asc()).all()


def set_low_stock_threshold(db: Session, inventory_id: str, threshold: int) -> Inventory:
    if threshold < 0:
        raise ValidationError("Low stock threshold cannot be negative")
    with _ledger_write(db, "Threshold update"):
        inventory = db.get(Inventory, inventory_id)
        if not inventory:
            raise NotFoundError("Inventory record not found")
        inventory.low_stock_threshold = threshold
    db.refresh(inventory)
    return inventory


def reconcile_inventory(db: Session, product_id: str, store_id: str) -> dict:
    """Compare the on-hand quantity against the sum of the ledger for one (product, store)."""
    inventory = _find_inventory(db, product_id, store_id)
    entries, ledger_total = (
        db.query(func.count(InventoryTransaction.id), func.coalesce(func.sum(InventoryTransaction.quantity), 0))
        .filter(InventoryTransaction.product_id == product_id, InventoryTransaction.store_id == store_id)
        .one()
    )
    if not inventory and entries == 0:
        raise NotFoundError("No inventory or ledger entries for this product at this store")

    quantity = inventory.quantity if inventory else 0
    difference = quantity - ledger_total
    if difference:
        logger.warning(
            "Inventory for product %s at store %s is %d but ledger sums to %d",
            product_id, store_id, quantity, ledger_total,
        )
    return {
        "product_id": product_id,
        "store_id": store_id,
        "quantity": quantity,
        "ledger_total": int(ledger_total),
        "difference": int(difference),
        "balanced": difference == 0,
    }
