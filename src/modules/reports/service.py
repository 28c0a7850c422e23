"""Service for finance reports."""

from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.modules.expenses.models import Expense
from src.modules.fees.models import FeeStructure
from src.modules.invoices.models import OPEN_STATUSES, Invoice, InvoiceItem, InvoiceStatus
from src.modules.payments.models import Payment, PaymentAllocation
from src.modules.students.models import Student
from src.shared.utils.money import ZERO, outstanding, round_money

from src.modules.reports.schemas import (
    AgingBucket,
    AgingInvoiceRow,
    RecentExpense,
    RecentInvoice,
)

# (key, lowest days past due, highest days past due); not-yet-due invoices fall in the first bucket
AGING_BUCKETS: list[tuple[str, int, int | None]] = [
    ("0-30", 0, 30),
    ("31-60", 31, 60),
    ("61-90", 61, 90),
    ("90+", 91, None),
]


def days_past_due(due_date: date, today: date) -> int:
    return max(0, (today - due_date).days)


def aging_bucket_key(days: int) -> str:
    for key, low, high in AGING_BUCKETS:
        if days >= low and (high is None or days <= high):
            return key
    return AGING_BUCKETS[-1][0]


def invoices_of_year(academic_year_id: int):
    """Ids of invoices billed from a fee structure of the given academic year."""
    return (
        select(InvoiceItem.invoice_id)
        .join(FeeStructure, FeeStructure.id == InvoiceItem.fee_structure_id)
        .where(FeeStructure.academic_year_id == academic_year_id)
    )


class ReportsService:
    """Build report data from live invoices and payments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def aging_report(
        self,
        school_id: int,
        today: date,
        student_id: int | None = None,
        class_id: int | None = None,
        school_level_id: int | None = None,
        include_details: bool = False,
        academic_year_id: int | None = None,
    ) -> dict:
        """
        Aging: outstanding balances by days past due.

        Covers open invoices (draft, sent, partially paid, overdue) with something
        left to pay. days_past_due = max(0, today - due_date). Class and level
        filters use the student's current placement.
        """
        query = (
            select(Invoice)
            .where(
                Invoice.school_id == school_id,
                Invoice.status.in_([s.value for s in OPEN_STATUSES]),
            )
            .options(selectinload(Invoice.student))
            .order_by(Invoice.due_date, Invoice.id)
        )
        if student_id is not None:
            query = query.where(Invoice.student_id == student_id)
        if academic_year_id is not None:
            query = query.where(Invoice.id.in_(invoices_of_year(academic_year_id)))
        if class_id is not None or school_level_id is not None:
            query = query.join(Student, Student.id == Invoice.student_id)
            if class_id is not None:
                query = query.where(Student.class_id == class_id)
            if school_level_id is not None:
                query = query.where(Student.school_level_id == school_level_id)

        result = await self.db.execute(query)
        invoices = list(result.scalars().all())

        totals: dict[str, Decimal] = {key: ZERO for key, _, _ in AGING_BUCKETS}
        counts: dict[str, int] = {key: 0 for key, _, _ in AGING_BUCKETS}
        total_outstanding = ZERO
        rows: list[AgingInvoiceRow] = []

        for inv in invoices:
            amount = outstanding(inv.total_amount, inv.paid_amount)
            if amount <= ZERO:
                continue
            days = days_past_due(inv.due_date, today)
            key = aging_bucket_key(days)

            totals[key] += amount
            counts[key] += 1
            total_outstanding += amount

            if include_details:
                rows.append(
                    AgingInvoiceRow(
                        invoice_id=inv.id,
                        invoice_number=inv.invoice_number,
                        student_id=inv.student_id,
                        student_name=inv.student.full_name if inv.student else None,
                        status=inv.status,
                        due_date=inv.due_date,
                        total_amount=round_money(inv.total_amount),
                        paid_amount=round_money(inv.paid_amount),
                        outstanding=amount,
                        days_past_due=days,
                        bucket=key,
                    )
                )

        return {
            "as_at_date": today,
            "total_outstanding": round_money(total_outstanding),
            "buckets": [
                AgingBucket(key=key, amount=round_money(totals[key]), count=counts[key])
                for key, _, _ in AGING_BUCKETS
            ],
            "invoices": rows if include_details else None,
        }

    async def finance_stats(
        self,
        school_id: int,
        today: date,
        include_aging: bool = False,
        academic_year_id: int | None = None,
    ) -> dict:
        """
        Headline figures, latest invoices and latest expenses.

        Void and cancelled invoices are not billed. With academic_year_id, invoices
        count when billed from a fee structure of that year, payments count by
        what they allocated to those invoices, and expenses by their own year.
        net = payments_total - expenses_total.
        """
        in_year = (
            (Invoice.id.in_(invoices_of_year(academic_year_id)),)
            if academic_year_id is not None
            else ()
        )
        live = (
            Invoice.school_id == school_id,
            Invoice.status.notin_([InvoiceStatus.VOID.value, InvoiceStatus.CANCELLED.value]),
            *in_year,
        )
        result = await self.db.execute(
            select(
                func.coalesce(func.sum(Invoice.total_amount), 0),
                func.coalesce(func.sum(Invoice.paid_amount), 0),
                func.count(Invoice.id),
            ).where(*live)
        )
        billed, collected, invoice_count = result.one()
        total_billed = round_money(billed or 0)
        total_collected = round_money(collected or 0)

        if academic_year_id is None:
            payments_query = select(func.coalesce(func.sum(Payment.amount), 0)).where(
                Payment.school_id == school_id
            )
        else:
            payments_query = (
                select(func.coalesce(func.sum(PaymentAllocation.amount), 0))
                .join(Payment, Payment.id == PaymentAllocation.payment_id)
                .where(
                    Payment.school_id == school_id,
                    PaymentAllocation.invoice_id.in_(invoices_of_year(academic_year_id)),
                )
            )
        payments_total = round_money((await self.db.execute(payments_query)).scalar() or 0)

        expense_filter = [Expense.school_id == school_id]
        if academic_year_id is not None:
            expense_filter.append(Expense.academic_year_id == academic_year_id)
        expenses = await self.db.execute(
            select(func.coalesce(func.sum(Expense.amount), 0)).where(*expense_filter)
        )
        expenses_total = round_money(expenses.scalar() or 0)

        recent = await self.db.execute(
            select(Invoice)
            .where(Invoice.school_id == school_id, *in_year)
            .order_by(Invoice.issue_date.desc(), Invoice.id.desc())
            .limit(5)
        )
        recent_invoices = [
            RecentInvoice(
                id=inv.id,
                invoice_number=inv.invoice_number,
                student_id=inv.student_id,
                total_amount=round_money(inv.total_amount),
                paid_amount=round_money(inv.paid_amount),
                status=inv.status,
                issue_date=inv.issue_date,
            )
            for inv in recent.scalars().all()
        ]

        latest_expenses = await self.db.execute(
            select(Expense)
            .where(*expense_filter)
            .order_by(Expense.date_incurred.desc(), Expense.id.desc())
            .limit(5)
        )
        recent_expenses = [
            RecentExpense(
                id=exp.id,
                description=exp.description,
                amount=round_money(exp.amount),
                date_incurred=exp.date_incurred,
            )
            for exp in latest_expenses.scalars().all()
        ]

        aging = None
        if include_aging:
            aging = (
                await self.aging_report(school_id, today, academic_year_id=academic_year_id)
            )["buckets"]

        return {
            "total_billed": total_billed,
            "total_collected": total_collected,
            "payments_total": payments_total,
            "outstanding": max(round_money(total_billed - total_collected), ZERO),
            "expenses_total": expenses_total,
            "net": round_money(payments_total - expenses_total),
            "invoice_count": invoice_count or 0,
            "recent_invoices": recent_invoices,
            "recent_expenses": recent_expenses,
            "aging": aging,
        }
