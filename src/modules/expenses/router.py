"""API endpoints for Expenses module."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import LedgerWriter
from src.core.clock import get_today
from src.core.database.session import get_db
from src.modules.expenses.schemas import ExpenseCreate, ExpenseFilters, ExpenseResponse
from src.modules.expenses.service import ExpenseService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(prefix="/schools/{school_id}/finance/expenses", tags=["Expenses"])


@router.post(
    "",
    response_model=ApiResponse[ExpenseResponse],
    status_code=status.HTTP_201_CREATED,
)
async def record_expense(
    school_id: int,
    data: ExpenseCreate,
    current_user: LedgerWriter,
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """Record an expense. date_incurred defaults to today."""
    service = ExpenseService(db)
    expense = await service.record_expense(school_id, data, current_user.id, today)
    return ApiResponse(
        success=True,
        message="Expense recorded successfully",
        data=ExpenseResponse.model_validate(expense),
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[ExpenseResponse]],
)
async def list_expenses(
    school_id: int,
    current_user: LedgerWriter,
    academic_year_id: int | None = Query(None),
    category: str | None = Query(None),
    date_from: date | None = Query(None),
    date_to: date | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """List expenses, newest first."""
    service = ExpenseService(db)
    filters = ExpenseFilters(
        academic_year_id=academic_year_id,
        category=category,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )
    expenses, total = await service.list_expenses(school_id, filters)
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[ExpenseResponse.model_validate(e) for e in expenses],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/{expense_id}",
    response_model=ApiResponse[ExpenseResponse],
)
async def get_expense(
    school_id: int,
    expense_id: int,
    current_user: LedgerWriter,
    db: AsyncSession = Depends(get_db),
):
    service = ExpenseService(db)
    expense = await service.get_expense_by_id(school_id, expense_id)
    return ApiResponse(success=True, data=ExpenseResponse.model_validate(expense))
