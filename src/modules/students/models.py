"""Student model.

Students are owned by the people/academics modules; the ledger only reads them
to scope invoices and fee assignments.
"""

from enum import StrEnum

from sqlalchemy import BigInteger, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import TenantModel


class StudentStatus(StrEnum):
    """Student status enumeration."""

    ACTIVE = "active"
    INACTIVE = "inactive"


class Student(TenantModel):
    """Student enrolled in a school."""

    __tablename__ = "students"

    student_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)

    # Current placement; ids point into the academic module
    class_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)
    school_level_id: Mapped[int | None] = mapped_column(BigInteger, nullable=True, index=True)

    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=StudentStatus.ACTIVE.value, index=True
    )

    __table_args__ = (
        UniqueConstraint("school_id", "student_number", name="uq_students_school_number"),
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"
