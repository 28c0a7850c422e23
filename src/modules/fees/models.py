"""Fee structure, component and student assignment models."""

from decimal import Decimal
from enum import StrEnum

from sqlalchemy import (
    BigInteger,
    Boolean,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from src.core.database.base import TenantModel


class FeeFrequency(StrEnum):
    """How often a fee structure is billed."""

    ONE_TIME = "one_time"
    MONTHLY = "monthly"
    TERMLY = "termly"
    ANNUALLY = "annually"


class FeeStructure(TenantModel):
    """
    Named fee for an academic year, scoped to one class or one school level.

    Exactly one of class_id / school_level_id is set. When components exist their
    amounts add up to amount; this is checked when the structure is saved.
    """

    __tablename__ = "fee_structures"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    frequency: Mapped[str] = mapped_column(
        String(20), nullable=False, default=FeeFrequency.TERMLY.value
    )

    # Scope; ids point into the academic module
    academic_year_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    class_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    school_level_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_by_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=False
    )

    # Relationships
    components: Mapped[list["FeeComponent"]] = relationship(
        "FeeComponent",
        back_populates="fee_structure",
        cascade="all, delete-orphan",
        order_by="FeeComponent.order",
    )
    assignments: Mapped[list["StudentFeeAssignment"]] = relationship(
        "StudentFeeAssignment", back_populates="fee_structure"
    )

    @property
    def has_single_scope(self) -> bool:
        return (self.class_id is None) != (self.school_level_id is None)


class FeeComponent(TenantModel):
    """Line of a fee structure; optionally hands over a stocked item."""

    __tablename__ = "fee_components"

    fee_structure_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("fee_structures.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(15, 2), nullable=False)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    inventory_item_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("inventory_items.id"), nullable=True, index=True
    )

    # Relationships
    fee_structure: Mapped["FeeStructure"] = relationship(
        "FeeStructure", back_populates="components"
    )


class StudentFeeAssignment(TenantModel):
    """Student billed by a fee structure for an academic year."""

    __tablename__ = "student_fee_assignments"

    student_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("students.id"), nullable=False, index=True
    )
    fee_structure_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("fee_structures.id"), nullable=False, index=True
    )
    academic_year_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)

    # Placement at the time of assignment
    class_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    school_level_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    assigned_by_id: Mapped[int | None] = mapped_column(
        BigInteger, ForeignKey("users.id"), nullable=True
    )

    # Relationships
    fee_structure: Mapped["FeeStructure"] = relationship(
        "FeeStructure", back_populates="assignments"
    )
    student: Mapped["Student"] = relationship("Student")

    __table_args__ = (
        UniqueConstraint(
            "student_id",
            "fee_structure_id",
            "academic_year_id",
            name="uq_student_fee_assignment",
        ),
    )
