"""Filtered, newest-first views over the inventory ledger and the transfer log."""

from dataclasses import dataclass

from sqlalchemy.orm import Session, joinedload

from app.models.inventory import InventoryTransaction
from app.models.stock_transfer import StockTransfer, StockTransferItem
from app.models.store import Store
from app.schemas.inventory import TransactionFilter, TransferFilter
from app.services.exceptions import NotFoundError


@dataclass
class TransferDetails:
    transfer: StockTransfer
    items: list[StockTransferItem]


def _transfer_query(db: Session):
    return db.query(StockTransfer).options(
        joinedload(StockTransfer.source_store),
        joinedload(StockTransfer.destination_store),
        joinedload(StockTransfer.user),
    )


def list_transactions(db: Session, filters: TransactionFilter | None = None) -> list[InventoryTransaction]:
    filters = filters or TransactionFilter()
    q = db.query(InventoryTransaction).options(
        joinedload(InventoryTransaction.product),
        joinedload(InventoryTransaction.store),
        joinedload(InventoryTransaction.user),
        joinedload(InventoryTransaction.supplier),
    )
    if filters.store_id:
        q = q.filter(InventoryTransaction.store_id == filters.store_id)
    if filters.product_id:
        q = q.filter(InventoryTransaction.product_id == filters.product_id)
    if filters.type:
        q = q.filter(InventoryTransaction.type == filters.type.value)
    if filters.company_id:
        q = q.join(Store, InventoryTransaction.store_id == Store.id).filter(Store.company_id == filters.company_id)
    if filters.start_date:
        q = q.filter(InventoryTransaction.transaction_date >= filters.start_date)
    if filters.end_date:
        q = q.filter(InventoryTransaction.transaction_date <= filters.end_date)
    return (
        q.order_by(InventoryTransaction.transaction_date.desc(), InventoryTransaction.id.desc())
        .offset(filters.skip)
        .limit(filters.limit)
        .all()
    )


def list_transfers(db: Session, filters: TransferFilter | None = None) -> list[StockTransfer]:
    filters = filters or TransferFilter()
    q = _transfer_query(db)
    if filters.source_store_id:
        q = q.filter(StockTransfer.source_store_id == filters.source_store_id)
    if filters.destination_store_id:
        q = q.filter(StockTransfer.destination_store_id == filters.destination_store_id)
    if filters.status:
        q = q.filter(StockTransfer.status == filters.status)
    if filters.company_id:
        q = q.filter(StockTransfer.company_id == filters.company_id)
    if filters.start_date:
        q = q.filter(StockTransfer.transfer_date >= filters.start_date)
    if filters.end_date:
        q = q.filter(StockTransfer.transfer_date <= filters.end_date)
    return (
        q.order_by(StockTransfer.transfer_date.desc(), StockTransfer.id.desc())
        .offset(filters.skip)
        .limit(filters.limit)
        .all()
    )


def get_transfer_details(db: Session, transfer_id: str) -> TransferDetails:
    transfer = _transfer_query(db).filter(StockTransfer.id == transfer_id).first()
    if not transfer:
        raise NotFoundError("Stock transfer not found")
    items = (
        db.query(StockTransferItem)
        .options(joinedload(StockTransferItem.product))
        .filter(StockTransferItem.transfer_id == transfer_id)
        .all()
    )
    return TransferDetails(transfer=transfer, items=items)
