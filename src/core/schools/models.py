"""School (tenant) model."""

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from src.core.database.base import BaseModel


class School(BaseModel):
    """A tenant. Every ledger row belongs to exactly one school."""

    __tablename__ = "schools"

    name: Mapped[str] = mapped_column(String(200), nullable=False)
    subdomain: Mapped[str] = mapped_column(String(100), nullable=False, unique=True, index=True)
    currency_code: Mapped[str] = mapped_column(String(3), nullable=False, default="KES")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
