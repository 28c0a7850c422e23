"""Pydantic schemas for Payments module."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import Field

from src.shared.schemas.base import BaseSchema, PageParams
from src.modules.payments.models import PaymentMethod


# --- Payment Schemas ---


class PaymentCreate(BaseSchema):
    """
    Schema for recording a payment.

    Exactly one of invoice_id (direct mode) or student_id (spread over the
    student's open invoices, oldest due first) must be given.
    """

    invoice_id: int | None = None
    student_id: int | None = None
    amount: Decimal = Field(gt=0, decimal_places=2, description="Payment amount (must be positive)")
    payment_method: PaymentMethod
    payment_date: date | None = None  # defaults to today
    reference: str | None = Field(None, max_length=100)
    notes: str | None = None


class PaymentAllocationResponse(BaseSchema):
    """Schema for allocation response."""

    id: int
    payment_id: int
    invoice_id: int
    amount: Decimal
    created_at: datetime


class PaymentResponse(BaseSchema):
    """Schema for payment response."""

    id: int
    school_id: int
    payment_number: str
    student_id: int
    invoice_id: int | None
    amount: Decimal
    payment_method: str
    payment_date: date
    reference: str | None
    notes: str | None
    processed_by_id: int
    allocations: list[PaymentAllocationResponse] = []
    created_at: datetime


class PaymentFilters(PageParams):
    """Filters for listing payments."""

    student_id: int | None = None
    invoice_id: int | None = None
    payment_method: PaymentMethod | None = None
    date_from: date | None = None
    date_to: date | None = None
    limit: int = Field(50, ge=1, le=100)


# --- Allocation result ---


class AllocationDetail(BaseSchema):
    """How much of a payment went to one invoice, and where that left the invoice."""

    invoice_id: int
    invoice_number: str
    amount: Decimal
    paid_amount: Decimal
    balance_due: Decimal
    status: str


class RecordPaymentResult(BaseSchema):
    """Result of recording a payment."""

    payment_id: int
    payment_number: str
    allocations: int
    allocated_amount: Decimal
    unallocated_amount: Decimal
    allocation_details: list[AllocationDetail]
