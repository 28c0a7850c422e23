"""Invoice and InvoiceItem models."""

from datetime import date
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import TenantModel
from src.shared.utils.money import outstanding


class InvoiceStatus(StrEnum):
    """Invoice status enumeration."""

    DRAFT = "draft"
    SENT = "sent"
    PARTIALLY_PAID = "partially_paid"
    OVERDUE = "overdue"
    PAID = "paid"
    VOID = "void"
    CANCELLED = "cancelled"


# No item or payment mutation is allowed once an invoice reaches one of these
TERMINAL_STATUSES = frozenset(
    {InvoiceStatus.PAID, InvoiceStatus.VOID, InvoiceStatus.CANCELLED}
)

# Statuses that can still receive payments, in no particular order
OPEN_STATUSES = frozenset(
    {
        InvoiceStatus.DRAFT,
        InvoiceStatus.SENT,
        InvoiceStatus.PARTIALLY_PAID,
        InvoiceStatus.OVERDUE,
    }
)


class Invoice(TenantModel):
    """Invoice for a student."""

    __tablename__ = "invoices"

    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    # Relations
    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=InvoiceStatus.DRAFT.value, index=True
    )

    # Dates
    issue_date: Mapped[date] = mapped_column(Date, nullable=False)
    due_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    # Amounts (Decimal with 2 decimal places); both are derived, never set by callers
    total_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )  # sum of items
    paid_amount: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False, default=Decimal("0.00")
    )  # sum of payment allocations

    # Metadata
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    items: Mapped[list["InvoiceItem"]] = relationship(
        "InvoiceItem",
        back_populates="invoice",
        cascade="all, delete-orphan",
        order_by="InvoiceItem.id",
    )

    __table_args__ = (
        UniqueConstraint("school_id", "invoice_number", name="uq_invoices_school_number"),
        CheckConstraint("due_date >= issue_date", name="ck_invoices_due_after_issue"),
    )

    @property
    def is_locked(self) -> bool:
        """Check if invoice is frozen against item and payment changes."""
        return self.status in TERMINAL_STATUSES

    @property
    def balance_due(self) -> Decimal:
        return outstanding(self.total_amount, self.paid_amount)


class InvoiceItem(TenantModel):
    """Line item in an invoice."""

    __tablename__ = "invoice_items"

    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id", ondelete="CASCADE"), nullable=False, index=True
    )

    # Line details
    description: Mapped[str] = mapped_column(String(255), nullable=False)
    quantity: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    total_price: Mapped[Decimal] = mapped_column(
        Numeric(15, 2), nullable=False
    )  # quantity * unit_price

    # Origin of the line
    fee_structure_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("fee_structures.id", ondelete="SET NULL"), nullable=True, index=True
    )
    fee_component_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("fee_components.id", ondelete="SET NULL"), nullable=True, index=True
    )

    # Stock handed over with this line
    inventory_item_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("inventory_items.id"), nullable=True, index=True
    )

    # Relationships
    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="items")

    __table_args__ = (
        CheckConstraint("quantity >= 1", name="ck_invoice_items_quantity_positive"),
        CheckConstraint("unit_price >= 0", name="ck_invoice_items_unit_price_non_negative"),
    )


# Import at the end to avoid circular imports
from src.modules.students.models import Student  # noqa: E402
