"""Schemas for finance reports."""

from datetime import date
from decimal import Decimal

from src.shared.schemas.base import BaseSchema


class AgingBucket(BaseSchema):
    """Outstanding amount and invoice count in one days-past-due range."""

    key: str  # "0-30", "31-60", "61-90", "90+"
    amount: Decimal
    count: int


class AgingInvoiceRow(BaseSchema):
    """One invoice in the aging report details."""

    invoice_id: int
    invoice_number: str
    student_id: int
    student_name: str | None
    status: str
    due_date: date
    total_amount: Decimal
    paid_amount: Decimal
    outstanding: Decimal
    days_past_due: int
    bucket: str


class AgingReportResponse(BaseSchema):
    """Aging report response."""

    as_at_date: date
    total_outstanding: Decimal
    buckets: list[AgingBucket]
    invoices: list[AgingInvoiceRow] | None = None


class RecentInvoice(BaseSchema):
    id: int
    invoice_number: str
    student_id: int
    total_amount: Decimal
    paid_amount: Decimal
    status: str
    issue_date: date


class RecentExpense(BaseSchema):
    id: int
    description: str
    amount: Decimal
    date_incurred: date


class FinanceStatsResponse(BaseSchema):
    """Headline finance figures for a school."""

    total_billed: Decimal
    total_collected: Decimal
    payments_total: Decimal
    outstanding: Decimal
    expenses_total: Decimal
    net: Decimal  # payments_total - expenses_total
    invoice_count: int
    recent_invoices: list[RecentInvoice]
    recent_expenses: list[RecentExpense]
    aging: list[AgingBucket] | None = None
