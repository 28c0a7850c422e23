"""Expense model."""

from datetime import date
from decimal import Decimal

from sqlalchemy import BigInteger, CheckConstraint, Date, ForeignKey, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import TenantModel


class Expense(TenantModel):
    """Money spent by the school. Read by finance stats next to collections."""

    __tablename__ = "expenses"

    description: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    date_incurred: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    academic_year_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    category: Mapped[str | None] = mapped_column(String(100), nullable=True)
    reference: Mapped[str | None] = mapped_column(String(100), nullable=True)

    recorded_by_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )

    __table_args__ = (CheckConstraint("amount > 0", name="ck_expenses_amount_positive"),)
