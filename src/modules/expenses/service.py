"""Service for Expenses module."""

import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import AuditAction, AuditService
from src.core.exceptions import NotFoundError
from src.modules.expenses.models import Expense
from src.modules.expenses.schemas import ExpenseCreate, ExpenseFilters
from src.shared.utils.money import round_money

logger = logging.getLogger(__name__)


class ExpenseService:
    """Service for recording and listing school expenses."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def record_expense(
        self, school_id: int, data: ExpenseCreate, recorded_by_id: int, today: date
    ) -> Expense:
        expense = Expense(
            school_id=school_id,
            description=data.description,
            amount=round_money(data.amount),
            date_incurred=data.date_incurred or today,
            academic_year_id=data.academic_year_id,
            category=data.category,
            reference=data.reference,
            recorded_by_id=recorded_by_id,
        )
        self.db.add(expense)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.EXPENSE_RECORD,
            entity_type="Expense",
            entity_id=expense.id,
            school_id=school_id,
            user_id=recorded_by_id,
            new_values={
                "description": expense.description,
                "amount": str(expense.amount),
                "date_incurred": expense.date_incurred.isoformat(),
                "academic_year_id": expense.academic_year_id,
            },
        )

        await self.db.commit()
        logger.info("Recorded expense %s of %s (school %s)", expense.id, expense.amount, school_id)
        return await self.get_expense_by_id(school_id, expense.id)

    async def get_expense_by_id(self, school_id: int, expense_id: int) -> Expense:
        result = await self.db.execute(
            select(Expense)
            .where(Expense.id == expense_id, Expense.school_id == school_id)
            .execution_options(populate_existing=True)
        )
        expense = result.scalar_one_or_none()
        if not expense:
            raise NotFoundError("Expense", expense_id)
        return expense

    async def list_expenses(
        self, school_id: int, filters: ExpenseFilters
    ) -> tuple[list[Expense], int]:
        """List expenses, newest first."""
        query = select(Expense).where(Expense.school_id == school_id)

        if filters.academic_year_id:
            query = query.where(Expense.academic_year_id == filters.academic_year_id)
        if filters.category:
            query = query.where(Expense.category == filters.category)
        if filters.date_from:
            query = query.where(Expense.date_incurred >= filters.date_from)
        if filters.date_to:
            query = query.where(Expense.date_incurred <= filters.date_to)

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(Expense.date_incurred.desc(), Expense.id.desc())
        query = query.offset(filters.offset).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total
