import logging
from datetime import datetime

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.api.auth import get_current_user
from app.database import get_db
from app.models.inventory import Inventory, TransactionType
from app.models.product import Product
from app.models.store import Store
from app.models.user import User
from app.schemas.inventory import (
    InventoryOut,
    InventoryTransactionOut,
    ReconciliationOut,
    StockInRequest,
    StockMovementOut,
    StockOutRequest,
    StockTransferOut,
    ThresholdUpdate,
    TransactionFilter,
    TransferDetailsOut,
    TransferFilter,
    TransferRequest,
)
from app.services import auth_service, inventory_service, ledger_query_service
from app.services.exceptions import NotFoundError

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/inventory", tags=["Inventory"])


def _client_ip(request: Request) -> str:
    return request.client.host if request.client else ""


def _require_store(db: Session, user: User, store_id: str) -> None:
    """Stores of another company look the same as missing ones."""
    if not user.company_id:
        return
    store = db.get(Store, store_id)
    if not store or store.company_id != user.company_id:
        raise NotFoundError("Store not found")


def _require_product(db: Session, user: User, product_id: str) -> None:
    if not user.company_id:
        return
    product = db.get(Product, product_id)
    if not product or product.company_id != user.company_id:
        raise NotFoundError("Product not found")


def _require_inventory(db: Session, user: User, inventory_id: str) -> None:
    if not user.company_id:
        return
    inventory = db.get(Inventory, inventory_id)
    if not inventory or inventory.store.company_id != user.company_id:
        raise NotFoundError("Inventory record not found")


def _record_activity(db: Session, user: User, action: str, detail: str, request: Request) -> None:
    # Movements are committed by now; audit failures are logged, not raised.
    try:
        auth_service.log_activity(db, user.id, user.username, action, detail=detail, ip=_client_ip(request))
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Could not record %s activity for %s: %s", action, user.username, e)


@router.post("/stock-in", response_model=StockMovementOut, status_code=201)
def stock_in(
    data: StockInRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _require_product(db, user, data.product_id)
    _require_store(db, user, data.store_id)
    movement = inventory_service.add_stock(
        db,
        product_id=data.product_id,
        store_id=data.store_id,
        quantity=data.quantity,
        user_id=user.id,
        notes=data.notes,
        supplier_id=data.supplier_id,
        unit_cost=data.unit_cost,
    )
    _record_activity(db, user, "stock_in", f"+{data.quantity} product={data.product_id} store={data.store_id}", request)
    return StockMovementOut.model_validate(movement)


@router.post("/stock-out", response_model=StockMovementOut, status_code=201)
def stock_out(
    data: StockOutRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _require_product(db, user, data.product_id)
    _require_store(db, user, data.store_id)
    movement = inventory_service.remove_stock(
        db,
        product_id=data.product_id,
        store_id=data.store_id,
        quantity=data.quantity,
        user_id=user.id,
        notes=data.notes,
        reason=data.reason,
    )
    _record_activity(
        db, user, "stock_out",
        f"-{data.quantity} product={data.product_id} store={data.store_id} reason={data.reason}",
        request,
    )
    return StockMovementOut.model_validate(movement)


@router.post("/transfers", response_model=StockTransferOut, status_code=201)
def create_transfer(
    data: TransferRequest,
    request: Request,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _require_product(db, user, data.product_id)
    _require_store(db, user, data.source_store_id)
    _require_store(db, user, data.destination_store_id)
    transfer = inventory_service.transfer_stock(
        db,
        product_id=data.product_id,
        source_store_id=data.source_store_id,
        destination_store_id=data.destination_store_id,
        quantity=data.quantity,
        user_id=user.id,
        notes=data.notes,
    )
    _record_activity(
        db, user, "transfer",
        f"{data.quantity} product={data.product_id} {data.source_store_id} -> {data.destination_store_id}",
        request,
    )
    return transfer


@router.get("/transactions", response_model=list[InventoryTransactionOut])
def list_transactions(
    store_id: str | None = None,
    product_id: str | None = None,
    type: TransactionType | None = None,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    filters = TransactionFilter(
        store_id=store_id,
        product_id=product_id,
        type=type,
        company_id=user.company_id,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return ledger_query_service.list_transactions(db, filters)


@router.get("/transfers", response_model=list[StockTransferOut])
def list_transfers(
    source_store_id: str | None = None,
    destination_store_id: str | None = None,
    status: str | None = None,
    start_date: datetime | None = Query(None),
    end_date: datetime | None = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    filters = TransferFilter(
        source_store_id=source_store_id,
        destination_store_id=destination_store_id,
        status=status,
        company_id=user.company_id,
        start_date=start_date,
        end_date=end_date,
        skip=skip,
        limit=limit,
    )
    return ledger_query_service.list_transfers(db, filters)


@router.get("/transfers/{transfer_id}", response_model=TransferDetailsOut)
def get_transfer(transfer_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    details = ledger_query_service.get_transfer_details(db, transfer_id)
    if user.company_id and details.transfer.company_id != user.company_id:
        raise NotFoundError("Stock transfer not found")
    return TransferDetailsOut.model_validate(details)


@router.get("/stores/{store_id}", response_model=list[InventoryOut])
def store_inventory(store_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_store(db, user, store_id)
    return inventory_service.get_store_inventory(db, store_id)


@router.get("/products/{product_id}", response_model=list[InventoryOut])
def product_inventory(product_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    _require_product(db, user, product_id)
    return inventory_service.get_product_inventory(db, product_id)


@router.get("/low-stock", response_model=list[InventoryOut])
def low_stock(store_id: str | None = None, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return inventory_service.get_low_stock(db, store_id=store_id, company_id=user.company_id)


@router.patch("/{inventory_id}/threshold", response_model=InventoryOut)
def update_threshold(
    inventory_id: str,
    data: ThresholdUpdate,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _require_inventory(db, user, inventory_id)
    return inventory_service.set_low_stock_threshold(db, inventory_id, data.low_stock_threshold)


@router.get("/reconcile", response_model=ReconciliationOut)
def reconcile(
    product_id: str = Query(...),
    store_id: str = Query(...),
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    _require_product(db, user, product_id)
    _require_store(db, user, store_id)
    return inventory_service.reconcile_inventory(db, product_id, store_id)
