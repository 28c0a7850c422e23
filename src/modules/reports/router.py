"""API for finance reports."""

from datetime import date

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import LedgerWriter
from src.core.clock import get_today
from src.core.database.session import get_db
from src.modules.reports.schemas import FinanceStatsResponse
from src.modules.reports.service import ReportsService
from src.shared.schemas.base import ApiResponse

router = APIRouter(prefix="/schools/{school_id}/finance", tags=["Reports"])


@router.get(
    "/stats",
    response_model=ApiResponse[FinanceStatsResponse],
)
async def get_finance_stats(
    school_id: int,
    current_user: LedgerWriter,
    include_aging: bool = Query(False, description="Add aging bucket totals"),
    academic_year_id: int | None = Query(None, description="Limit figures to one academic year"),
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """
    Headline figures: billed, collected, outstanding, expenses and net, plus the
    latest invoices and expenses.

    Void and cancelled invoices are excluded from billed and collected totals.
    """
    service = ReportsService(db)
    data = await service.finance_stats(
        school_id, today, include_aging=include_aging, academic_year_id=academic_year_id
    )
    return ApiResponse(success=True, data=FinanceStatsResponse(**data))
