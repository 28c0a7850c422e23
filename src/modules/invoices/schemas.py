"""Schemas for Invoices module."""

from datetime import date
from decimal import Decimal

from pydantic import BaseModel, Field

from src.modules.invoices.models import InvoiceStatus
from src.shared.schemas.base import PageParams


# --- Invoice Item Schemas ---


class InvoiceItemCreate(BaseModel):
    """Schema for creating an invoice item."""

    description: str = Field(..., min_length=1, max_length=255)
    quantity: int = Field(1, ge=1)
    unit_price: Decimal = Field(..., ge=0, decimal_places=2)
    fee_structure_id: int | None = None
    fee_component_id: int | None = None
    inventory_item_id: int | None = None


class InvoiceItemUpdate(BaseModel):
    """Patch for an invoice item.

    inventory_item_id=null unlinks the item from stock; leaving the field out keeps
    the current link.
    """

    description: str | None = Field(None, min_length=1, max_length=255)
    quantity: int | None = Field(None, ge=1)
    unit_price: Decimal | None = Field(None, ge=0, decimal_places=2)
    inventory_item_id: int | None = None


class InvoiceItemResponse(BaseModel):
    """Schema for invoice item response."""

    id: int
    invoice_id: int
    description: str
    quantity: int
    unit_price: float
    total_price: float
    fee_structure_id: int | None
    fee_component_id: int | None
    inventory_item_id: int | None

    model_config = {"from_attributes": True}


# --- Invoice Schemas ---


class InvoiceCreate(BaseModel):
    """Schema for creating an ad-hoc invoice."""

    student_id: int
    issue_date: date | None = None  # defaults to today
    due_date: date | None = None  # defaults to issue_date + default_invoice_due_days
    notes: str | None = None
    items: list[InvoiceItemCreate] = Field(default_factory=list)


class InvoiceResponse(BaseModel):
    """Schema for invoice response."""

    id: int
    school_id: int
    invoice_number: str
    student_id: int
    student_name: str | None = None
    student_number: str | None = None
    status: str
    issue_date: date
    due_date: date
    total_amount: float
    paid_amount: float
    balance_due: float
    notes: str | None
    created_by_id: int
    items: list[InvoiceItemResponse] = Field(default_factory=list)

    model_config = {"from_attributes": True}


class InvoiceSummary(BaseModel):
    """Brief invoice summary for lists."""

    id: int
    invoice_number: str
    student_id: int
    student_name: str | None = None
    status: str
    total_amount: float
    paid_amount: float
    balance_due: float
    issue_date: date
    due_date: date

    model_config = {"from_attributes": True}


# --- Invoice Generation ---


class GenerateInvoicesRequest(BaseModel):
    """Options for generating invoices from a fee structure."""

    academic_year_id: int
    student_ids: list[int] | None = None
    dry_run: bool = False
    overwrite_existing: bool = False
    include_inactive_assignments: bool = False
    limit: int | None = Field(None, ge=1)
    due_in_days: int | None = Field(None, ge=0)


class GenerationFailure(BaseModel):
    """Student whose invoice could not be generated."""

    student_id: int
    reason: str


class GenerateInvoicesResult(BaseModel):
    """Result of invoice generation."""

    dry_run: bool
    total_assignments: int
    created: int
    skipped: int
    failed: list[GenerationFailure] = []
    created_invoice_ids: list[int] = []
    total_amount: float


# --- Status ---


class RefreshStatusesResult(BaseModel):
    """Result of a status sweep."""

    updated: int



class InvoiceFilters(PageParams):
    """Filters for listing invoices."""

    student_id: int | None = None
    status: InvoiceStatus | None = None
    due_from: date | None = None
    due_to: date | None = None
    search: str | None = None
