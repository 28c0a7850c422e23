"""API endpoints for Invoices module."""

from datetime import date

from fastapi import APIRouter, Body, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import LedgerAdmin, LedgerWriter
from src.core.clock import get_today
from src.core.database.session import get_db
from src.modules.invoices.models import Invoice, InvoiceStatus
from src.modules.invoices.schemas import (
    InvoiceCreate,
    InvoiceFilters,
    InvoiceItemCreate,
    InvoiceItemResponse,
    InvoiceItemUpdate,
    InvoiceResponse,
    InvoiceSummary,
    RefreshStatusesResult,
)
from src.modules.invoices.service import InvoiceService
from src.modules.reports.schemas import AgingReportResponse
from src.modules.reports.service import ReportsService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/schools/{school_id}/finance/invoices", tags=["Invoices"])


def _invoice_to_response(invoice: Invoice) -> InvoiceResponse:
    return InvoiceResponse(
        id=invoice.id,
        school_id=invoice.school_id,
        invoice_number=invoice.invoice_number,
        student_id=invoice.student_id,
        student_name=invoice.student.full_name if invoice.student else None,
        student_number=invoice.student.student_number if invoice.student else None,
        status=invoice.status,
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
        total_amount=invoice.total_amount,
        paid_amount=invoice.paid_amount,
        balance_due=invoice.balance_due,
        notes=invoice.notes,
        created_by_id=invoice.created_by_id,
        items=[InvoiceItemResponse.model_validate(item) for item in invoice.items],
    )


def _invoice_to_summary(invoice: Invoice) -> InvoiceSummary:
    return InvoiceSummary(
        id=invoice.id,
        invoice_number=invoice.invoice_number,
        student_id=invoice.student_id,
        student_name=invoice.student.full_name if invoice.student else None,
        status=invoice.status,
        total_amount=invoice.total_amount,
        paid_amount=invoice.paid_amount,
        balance_due=invoice.balance_due,
        issue_date=invoice.issue_date,
        due_date=invoice.due_date,
    )


@router.post(
    "",
    response_model=ApiResponse[InvoiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_invoice(
    school_id: int,
    data: InvoiceCreate,
    current_user: LedgerWriter,
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """Create an ad-hoc invoice (draft)."""
    service = InvoiceService(db)
    invoice = await service.create_invoice(school_id, data, current_user.id, today)
    return ApiResponse(
        success=True,
        message="Invoice created successfully",
        data=_invoice_to_response(invoice),
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[InvoiceSummary]],
)
async def list_invoices(
    school_id: int,
    current_user: LedgerWriter,
    student_id: int | None = Query(None),
    status: InvoiceStatus | None = Query(None),
    due_from: date | None = Query(None),
    due_to: date | None = Query(None),
    search: str | None = Query(None, description="Invoice number or student name/number"),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """List invoices with optional filters."""
    filters = InvoiceFilters(
        student_id=student_id,
        status=status,
        due_from=due_from,
        due_to=due_to,
        search=search,
        page=page,
        limit=limit,
    )
    service = InvoiceService(db)
    invoices, total = await service.list_invoices(school_id, filters)
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[_invoice_to_summary(i) for i in invoices],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/aging",
    response_model=ApiResponse[AgingReportResponse],
)
async def get_aging_report(
    school_id: int,
    current_user: LedgerWriter,
    student_id: int | None = Query(None),
    class_id: int | None = Query(None),
    school_level_id: int | None = Query(None),
    as_of: date | None = Query(None, description="Report date (default: today)"),
    include_details: bool = Query(False),
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """Outstanding balances of open invoices by days past due (0-30, 31-60, 61-90, 90+)."""
    service = ReportsService(db)
    data = await service.aging_report(
        school_id,
        as_of or today,
        student_id=student_id,
        class_id=class_id,
        school_level_id=school_level_id,
        include_details=include_details,
    )
    return ApiResponse(success=True, data=AgingReportResponse(**data))


@router.post(
    "/refresh-statuses",
    response_model=ApiResponse[RefreshStatusesResult],
)
async def refresh_statuses(
    school_id: int,
    current_user: LedgerAdmin,
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """Recompute statuses of open invoices (flags overdue ones)."""
    service = InvoiceService(db)
    updated = await service.refresh_statuses(school_id, today)
    return ApiResponse(success=True, data=RefreshStatusesResult(updated=updated))


@router.get(
    "/{invoice_id}",
    response_model=ApiResponse[InvoiceResponse],
)
async def get_invoice(
    school_id: int,
    invoice_id: int,
    current_user: LedgerWriter,
    db: AsyncSession = Depends(get_db),
):
    """Get invoice with items."""
    service = InvoiceService(db)
    invoice = await service.get_invoice_by_id(school_id, invoice_id)
    return ApiResponse(success=True, data=_invoice_to_response(invoice))


# --- Items ---


@router.post(
    "/{invoice_id}/items",
    response_model=ApiResponse[InvoiceResponse],
    status_code=status.HTTP_201_CREATED,
)
async def add_invoice_item(
    school_id: int,
    invoice_id: int,
    data: InvoiceItemCreate,
    current_user: LedgerWriter,
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """Add an item to an open invoice."""
    service = InvoiceService(db)
    invoice = await service.add_item(school_id, invoice_id, data, current_user.id, today)
    return ApiResponse(
        success=True,
        message="Item added successfully",
        data=_invoice_to_response(invoice),
    )


@router.put(
    "/{invoice_id}/items/{item_id}",
    response_model=ApiResponse[InvoiceResponse],
)
async def update_invoice_item(
    school_id: int,
    invoice_id: int,
    item_id: int,
    data: InvoiceItemUpdate,
    current_user: LedgerWriter,
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """Update an invoice item; linked stock is adjusted to match."""
    service = InvoiceService(db)
    invoice = await service.update_item(
        school_id, invoice_id, item_id, data, current_user.id, today
    )
    return ApiResponse(
        success=True,
        message="Item updated successfully",
        data=_invoice_to_response(invoice),
    )


@router.delete(
    "/{invoice_id}/items/{item_id}",
    response_model=ApiResponse[InvoiceResponse],
)
async def delete_invoice_item(
    school_id: int,
    invoice_id: int,
    item_id: int,
    current_user: LedgerWriter,
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """Remove an item from an open invoice; linked stock is returned."""
    service = InvoiceService(db)
    invoice = await service.delete_item(school_id, invoice_id, item_id, current_user.id, today)
    return ApiResponse(
        success=True,
        message="Item removed successfully",
        data=_invoice_to_response(invoice),
    )


# --- Status actions ---


@router.post(
    "/{invoice_id}/issue",
    response_model=ApiResponse[InvoiceResponse],
)
async def issue_invoice(
    school_id: int,
    invoice_id: int,
    current_user: LedgerWriter,
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """Issue a draft invoice."""
    service = InvoiceService(db)
    invoice = await service.issue_invoice(school_id, invoice_id, current_user.id, today)
    return ApiResponse(
        success=True,
        message="Invoice issued successfully",
        data=_invoice_to_response(invoice),
    )


@router.post(
    "/{invoice_id}/cancel",
    response_model=ApiResponse[InvoiceResponse],
)
async def cancel_invoice(
    school_id: int,
    invoice_id: int,
    current_user: LedgerAdmin,
    db: AsyncSession = Depends(get_db),
):
    """Cancel an invoice without payments. Requires SchoolAdmin or Accountant role."""
    service = InvoiceService(db)
    invoice = await service.cancel_invoice(school_id, invoice_id, current_user.id)
    return ApiResponse(
        success=True,
        message="Invoice cancelled successfully",
        data=_invoice_to_response(invoice),
    )


@router.post(
    "/{invoice_id}/void",
    response_model=ApiResponse[InvoiceResponse],
)
async def void_invoice(
    school_id: int,
    invoice_id: int,
    current_user: LedgerAdmin,
    reason: str | None = Body(None, embed=True),
    db: AsyncSession = Depends(get_db),
):
    """Void an open invoice. Requires SchoolAdmin or Accountant role."""
    service = InvoiceService(db)
    invoice = await service.void_invoice(school_id, invoice_id, current_user.id, reason=reason)
    return ApiResponse(
        success=True,
        message="Invoice voided successfully",
        data=_invoice_to_response(invoice),
    )
