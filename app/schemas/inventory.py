from datetime import datetime, timezone

from pydantic import BaseModel, Field, field_validator, model_validator

from app.models.inventory import TransactionType


# --- Requests ---

class StockInRequest(BaseModel):
    product_id: str
    store_id: str
    quantity: int = Field(gt=0)
    notes: str = ""
    supplier_id: str | None = None
    unit_cost: float | None = Field(default=None, ge=0)


class StockOutRequest(BaseModel):
    product_id: str
    store_id: str
    quantity: int = Field(gt=0)
    notes: str = ""
    reason: str = "adjustment"


class TransferRequest(BaseModel):
    product_id: str
    source_store_id: str
    destination_store_id: str
    quantity: int = Field(gt=0)
    notes: str = ""

    @model_validator(mode="after")
    def check_stores_differ(self):
        if self.source_store_id == self.destination_store_id:
            raise ValueError("Source and destination stores cannot be the same")
        return self


class ThresholdUpdate(BaseModel):
    low_stock_threshold: int = Field(ge=0)


# --- Filters ---

def _as_naive_utc(value: datetime | None) -> datetime | None:
    """Ledger dates are stored as naive UTC; offset-bearing bounds are converted to match."""
    if value is not None and value.tzinfo is not None:
        return value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class TransactionFilter(BaseModel):
    store_id: str | None = None
    product_id: str | None = None
    type: TransactionType | None = None
    company_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=1, le=500)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value: datetime | None) -> datetime | None:
        return _as_naive_utc(value)


class TransferFilter(BaseModel):
    source_store_id: str | None = None
    destination_store_id: str | None = None
    status: str | None = None
    company_id: str | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    skip: int = Field(default=0, ge=0)
    limit: int = Field(default=100, ge=1, le=500)

    @field_validator("start_date", "end_date")
    @classmethod
    def normalize_dates(cls, value: datetime | None) -> datetime | None:
        return _as_naive_utc(value)


# --- Responses ---

class InventoryOut(BaseModel):
    id: str
    product_id: str
    store_id: str
    quantity: int
    low_stock_threshold: int | None = None
    product_name: str = ""
    product_sku: str = ""
    store_name: str = ""
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class InventoryTransactionOut(BaseModel):
    id: str
    product_id: str
    store_id: str
    user_id: str
    quantity: int
    type: str
    supplier_id: str | None = None
    unit_cost: float | None = None
    reason: str = ""
    notes: str = ""
    reference_id: str | None = None
    transaction_date: datetime
    product_name: str = ""
    product_sku: str = ""
    store_name: str = ""
    user_name: str = ""
    supplier_name: str = ""

    model_config = {"from_attributes": True}


class StockMovementOut(BaseModel):
    inventory: InventoryOut
    transaction: InventoryTransactionOut

    model_config = {"from_attributes": True}


class StockTransferItemOut(BaseModel):
    id: str
    transfer_id: str
    product_id: str
    quantity: int
    product_name: str = ""
    product_sku: str = ""

    model_config = {"from_attributes": True}


class StockTransferOut(BaseModel):
    id: str
    company_id: str | None = None
    source_store_id: str
    destination_store_id: str
    user_id: str
    status: str
    notes: str = ""
    transfer_date: datetime
    source_store_name: str = ""
    destination_store_name: str = ""
    user_name: str = ""

    model_config = {"from_attributes": True}


class TransferDetailsOut(BaseModel):
    transfer: StockTransferOut
    items: list[StockTransferItemOut]

    model_config = {"from_attributes": True}


class ReconciliationOut(BaseModel):
    product_id: str
    store_id: str
    quantity: int
    ledger_total: int
    difference: int
    balanced: bool
