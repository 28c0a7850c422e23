from datetime import datetime
from enum import StrEnum

from sqlalchemy import Boolean, DateTime, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import TenantModel


class UserRole(StrEnum):
    """Staff roles allowed to touch the ledger."""

    SCHOOL_ADMIN = "SchoolAdmin"
    ACCOUNTANT = "Accountant"
    SECRETARY = "Secretary"


class User(TenantModel):
    """
    Staff member acting on the ledger (the "actor").

    Accounts are created and authenticated by the session layer; the ledger only
    needs the identity for processed_by/created_by columns and the school scope.
    """

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    full_name: Mapped[str] = mapped_column(String(200), nullable=False)
    role: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    last_seen_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def has_role(self, *roles: UserRole) -> bool:
        """Check if user has any of the specified roles."""
        return self.role in [r.value for r in roles]

    @property
    def is_school_admin(self) -> bool:
        return self.role == UserRole.SCHOOL_ADMIN.value
