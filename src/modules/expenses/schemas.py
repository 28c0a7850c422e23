"""Pydantic schemas for Expenses module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field

from src.shared.schemas.base import BaseSchema, PageParams


class ExpenseCreate(BaseSchema):
    """Schema for recording an expense."""

    description: str = Field(..., min_length=1)
    amount: Decimal = Field(gt=0, decimal_places=2)
    date_incurred: date | None = None  # defaults to today
    academic_year_id: int | None = None
    category: str | None = Field(None, max_length=100)
    reference: str | None = Field(None, max_length=100)


class ExpenseResponse(BaseSchema):
    id: int
    school_id: int
    description: str
    amount: Decimal
    date_incurred: date
    academic_year_id: int | None
    category: str | None
    reference: str | None
    recorded_by_id: int
    created_at: datetime


class ExpenseFilters(PageParams):
    """Filters for listing expenses."""

    academic_year_id: int | None = None
    category: str | None = None
    date_from: date | None = None
    date_to: date | None = None
