"""API endpoints for Payments module."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import LedgerWriter
from src.core.clock import get_today
from src.core.database.session import get_db
from src.modules.payments.models import PaymentMethod
from src.modules.payments.schemas import (
    PaymentCreate,
    PaymentFilters,
    PaymentResponse,
    RecordPaymentResult,
)
from src.modules.payments.service import PaymentService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/schools/{school_id}/finance/payments", tags=["Payments"])


# --- Payment Endpoints ---


@router.post(
    "",
    response_model=ApiResponse[RecordPaymentResult],
    status_code=status.HTTP_201_CREATED,
)
async def record_payment(
    school_id: int,
    data: PaymentCreate,
    current_user: LedgerWriter,
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """
    Record a payment.

    With invoice_id the amount goes to that invoice only; with student_id it is
    spread over the student's open invoices, earliest due date first. Any excess
    is returned as unallocated_amount.
    """
    service = PaymentService(db)
    result = await service.record_payment(school_id, data, current_user.id, today)
    return ApiResponse(
        success=True,
        message="Payment recorded successfully",
        data=result,
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[PaymentResponse]],
)
async def list_payments(
    school_id: int,
    current_user: LedgerWriter,
    student_id: int | None = Query(None),
    invoice_id: int | None = Query(None),
    payment_method: PaymentMethod | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=100),
    db: AsyncSession = Depends(get_db),
):
    """List payments with optional filters."""
    service = PaymentService(db)
    filters = PaymentFilters(
        student_id=student_id,
        invoice_id=invoice_id,
        payment_method=payment_method,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    payments, total = await service.list_payments(school_id, filters)
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[PaymentResponse.model_validate(p) for p in payments],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/{payment_id}",
    response_model=ApiResponse[PaymentResponse],
)
async def get_payment(
    school_id: int,
    payment_id: int,
    current_user: LedgerWriter,
    db: AsyncSession = Depends(get_db),
):
    """Get payment by ID."""
    service = PaymentService(db)
    payment = await service.get_payment_by_id(school_id, payment_id)
    return ApiResponse(success=True, data=PaymentResponse.model_validate(payment))
