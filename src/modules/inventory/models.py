"""Inventory models: stock counters and their movement history."""

from datetime import datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BigIntPK, TenantModel


class MovementType(StrEnum):
    """Stock movement type enumeration."""

    RECEIPT = "receipt"  # Incoming stock (procurement, returns)
    RESERVE = "reserve"  # Stock committed to an invoice item
    RELEASE = "release"  # Invoice item reduced/removed, stock returned
    ADJUSTMENT = "adjustment"  # Correction, write-off


class InventoryItem(TenantModel):
    """Stocked item (uniforms, books, ...).

    quantity_in_stock is the contended counter: it is only changed while the row
    is locked and never goes below zero.
    """

    __tablename__ = "inventory_items"

    sku: Mapped[str] = mapped_column(String(50), nullable=False)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    unit_price: Mapped[Decimal | None] = mapped_column(Numeric(15, 2), nullable=True)
    quantity_in_stock: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    movements: Mapped[list["StockMovement"]] = relationship(
        "StockMovement",
        back_populates="inventory_item",
        order_by="desc(StockMovement.id)",
    )

    __table_args__ = (
        UniqueConstraint("school_id", "sku", name="uq_inventory_items_school_sku"),
        CheckConstraint("quantity_in_stock >= 0", name="ck_inventory_items_stock_non_negative"),
    )


class StockMovement(Base):
    """History of all stock movements."""

    __tablename__ = "stock_movements"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    school_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    inventory_item_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("inventory_items.id"), nullable=False, index=True
    )
    movement_type: Mapped[str] = mapped_column(
        String(20), nullable=False, index=True
    )  # receipt, reserve, release, adjustment
    quantity: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # Positive for in, negative for out
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    reference_type: Mapped[str | None] = mapped_column(
        String(50), nullable=True
    )  # e.g., "invoice_item", "adjustment"
    reference_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    inventory_item: Mapped["InventoryItem"] = relationship(
        "InventoryItem", back_populates="movements"
    )
