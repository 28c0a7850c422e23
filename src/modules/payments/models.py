"""Payment and PaymentAllocation models."""

from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import Base, BigIntPK, TenantModel


class PaymentMethod(StrEnum):
    """Payment method options."""

    CASH = "cash"
    BANK_TRANSFER = "bank_transfer"
    MOBILE_MONEY = "mobile_money"
    CHEQUE = "cheque"
    CARD = "card"
    OTHER = "other"


class Payment(TenantModel):
    """
    Payment received from a student (or on their behalf).

    Payments are immutable once recorded. The money reaches invoices through
    PaymentAllocation rows; in direct mode invoice_id names the invoice paid.
    """

    __tablename__ = "payments"

    payment_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    invoice_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("invoices.id"), nullable=True, index=True
    )  # set in direct mode only

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    payment_method: Mapped[str] = mapped_column(String(20), nullable=False)
    payment_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)

    reference: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )  # mobile money transaction ID, bank reference, cheque number

    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    processed_by_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )

    # Relationships
    student: Mapped["Student"] = relationship("Student")
    allocations: Mapped[list["PaymentAllocation"]] = relationship(
        "PaymentAllocation",
        back_populates="payment",
        cascade="all, delete-orphan",
        order_by="PaymentAllocation.id",
    )

    __table_args__ = (
        UniqueConstraint("school_id", "payment_number", name="uq_payments_school_number"),
        CheckConstraint("amount > 0", name="ck_payments_amount_positive"),
    )


class PaymentAllocation(Base):
    """Portion of a payment applied to one invoice."""

    __tablename__ = "payment_allocations"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    payment_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("payments.id", ondelete="CASCADE"), nullable=False, index=True
    )
    invoice_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("invoices.id"), nullable=False, index=True
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    # Relationships
    payment: Mapped["Payment"] = relationship("Payment", back_populates="allocations")
    invoice: Mapped["Invoice"] = relationship("Invoice")

    __table_args__ = (
        CheckConstraint("amount > 0", name="ck_payment_allocations_amount_positive"),
    )


# Import for type hints
from src.modules.invoices.models import Invoice  # noqa: E402
from src.modules.students.models import Student  # noqa: E402
