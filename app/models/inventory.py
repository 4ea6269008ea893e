import uuid
from datetime import datetime, timezone
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.product import Product
from app.models.store import Store
from app.models.supplier import Supplier
from app.models.user import User


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TransactionType(str, PyEnum):
    STOCK_IN = "stock_in"
    STOCK_OUT = "stock_out"
    TRANSFER_IN = "transfer_in"
    TRANSFER_OUT = "transfer_out"


class Inventory(Base):
    """On-hand quantity per (product, store). Maintained alongside the ledger."""

    __tablename__ = "inventory"
    __table_args__ = (UniqueConstraint("product_id", "store_id", name="uq_inventory_product_store"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    store_id: Mapped[str] = mapped_column(String, ForeignKey("stores.id"), nullable=False, index=True)
    quantity: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    low_stock_threshold: Mapped[int | None] = mapped_column(Integer, nullable=True)  # None = settings default
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    product: Mapped[Product] = relationship("Product", lazy="joined")
    store: Mapped[Store] = relationship("Store", lazy="joined")

    @property
    def product_name(self) -> str:
        return self.product.name if self.product else ""

    @property
    def product_sku(self) -> str:
        return self.product.sku if self.product else ""

    @property
    def store_name(self) -> str:
        return self.store.name if self.store else ""


class InventoryTransaction(Base):
    """Append-only ledger entry. `quantity` is the signed delta."""

    __tablename__ = "inventory_transactions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False, index=True)
    store_id: Mapped[str] = mapped_column(String, ForeignKey("stores.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)  # positive=in, negative=out
    type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    supplier_id: Mapped[str | None] = mapped_column(String, ForeignKey("suppliers.id"), nullable=True)
    unit_cost: Mapped[float | None] = mapped_column(Float, nullable=True)
    reason: Mapped[str] = mapped_column(String, default="")  # adjustment, damage, loss, return, other
    notes: Mapped[str] = mapped_column(Text, default="")
    reference_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)  # stock_transfers.id
    transaction_date: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    product: Mapped[Product] = relationship("Product")
    store: Mapped[Store] = relationship("Store")
    user: Mapped[User] = relationship("User")
    supplier: Mapped[Supplier | None] = relationship("Supplier")

    @property
    def product_name(self) -> str:
        return self.product.name if self.product else ""

    @property
    def product_sku(self) -> str:
        return self.product.sku if self.product else ""

    @property
    def store_name(self) -> str:
        return self.store.name if self.store else ""

    @property
    def user_name(self) -> str:
        if not self.user:
            return ""
        return self.user.display_name or self.user.username

    @property
    def supplier_name(self) -> str:
        return self.supplier.name if self.supplier else ""
