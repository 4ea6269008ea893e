import uuid
from datetime import datetime, timezone

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base
from app.models.product import Product
from app.models.store import Store
from app.models.user import User

# Transfers are applied synchronously, so this is the only status ever written.
TRANSFER_COMPLETED = "completed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class StockTransfer(Base):
    __tablename__ = "stock_transfers"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    company_id: Mapped[str | None] = mapped_column(String, ForeignKey("companies.id"), nullable=True, index=True)
    source_store_id: Mapped[str] = mapped_column(String, ForeignKey("stores.id"), nullable=False, index=True)
    destination_store_id: Mapped[str] = mapped_column(String, ForeignKey("stores.id"), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String, ForeignKey("users.id"), nullable=False)
    status: Mapped[str] = mapped_column(String, default=TRANSFER_COMPLETED, index=True)
    notes: Mapped[str] = mapped_column(Text, default="")
    transfer_date: Mapped[datetime] = mapped_column(DateTime, default=_utcnow, index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    source_store: Mapped[Store] = relationship("Store", foreign_keys=[source_store_id])
    destination_store: Mapped[Store] = relationship("Store", foreign_keys=[destination_store_id])
    user: Mapped[User] = relationship("User")
    items: Mapped[list["StockTransferItem"]] = relationship(
        "StockTransferItem", back_populates="transfer", cascade="all, delete-orphan"
    )

    @property
    def source_store_name(self) -> str:
        return self.source_store.name if self.source_store else ""

    @property
    def destination_store_name(self) -> str:
        return self.destination_store.name if self.destination_store else ""

    @property
    def user_name(self) -> str:
        if not self.user:
            return ""
        return self.user.display_name or self.user.username


class StockTransferItem(Base):
    __tablename__ = "stock_transfer_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    transfer_id: Mapped[str] = mapped_column(String, ForeignKey("stock_transfers.id"), nullable=False, index=True)
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())

    transfer: Mapped["StockTransfer"] = relationship("StockTransfer", back_populates="items")
    product: Mapped[Product] = relationship("Product")

    @property
    def product_name(self) -> str:
        return self.product.name if self.product else ""

    @property
    def product_sku(self) -> str:
        return self.product.sku if self.product else ""
