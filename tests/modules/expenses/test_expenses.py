"""Tests for Expenses module and the expense figures in finance stats."""

from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog
from src.core.exceptions import NotFoundError
from src.modules.expenses.schemas import ExpenseCreate, ExpenseFilters
from src.modules.expenses.service import ExpenseService
from src.modules.invoices.schemas import GenerateInvoicesRequest
from src.modules.invoices.service import InvoiceService
from src.modules.payments.models import PaymentMethod
from src.modules.payments.schemas import PaymentCreate
from src.modules.payments.service import PaymentService
from src.modules.reports.service import ReportsService


def _expense(description: str, amount: str, **kwargs) -> ExpenseCreate:
    return ExpenseCreate(description=description, amount=Decimal(amount), **kwargs)


class TestExpenseService:
    """Tests for recording and listing expenses."""

    async def test_record_expense(self, db_session: AsyncSession, school, admin_user, today):
        expense = await ExpenseService(db_session).record_expense(
            school.id, _expense("Chalk", "1200.00", category="Supplies"), admin_user.id, today
        )

        assert expense.id is not None
        assert expense.amount == Decimal("1200.00")
        assert expense.date_incurred == today
        assert expense.recorded_by_id == admin_user.id

        result = await db_session.execute(
            select(AuditLog).where(AuditLog.entity_type == "Expense")
        )
        audit = result.scalar_one()
        assert audit.action == "expense.record"
        assert audit.entity_id == expense.id

    def test_amount_must_be_positive(self):
        with pytest.raises(PydanticValidationError):
            ExpenseCreate(description="Refund", amount=Decimal("0"))

    async def test_list_newest_first_with_filters(
        self, db_session: AsyncSession, school, admin_user, today
    ):
        service = ExpenseService(db_session)
        await service.record_expense(
            school.id,
            _expense("Fuel", "300.00", date_incurred=today - timedelta(days=3), academic_year_id=2026),
            admin_user.id,
            today,
        )
        await service.record_expense(
            school.id, _expense("Repairs", "900.00", academic_year_id=2025), admin_user.id, today
        )

        expenses, total = await service.list_expenses(school.id, ExpenseFilters())
        assert total == 2
        assert [e.description for e in expenses] == ["Repairs", "Fuel"]

        expenses, total = await service.list_expenses(
            school.id, ExpenseFilters(academic_year_id=2026)
        )
        assert total == 1
        assert expenses[0].description == "Fuel"

    async def test_other_school_expense_is_not_found(
        self, db_session: AsyncSession, school, other_school, admin_user, today
    ):
        expense = await ExpenseService(db_session).record_expense(
            school.id, _expense("Chalk", "100.00"), admin_user.id, today
        )
        with pytest.raises(NotFoundError):
            await ExpenseService(db_session).get_expense_by_id(other_school.id, expense.id)


class TestExpenseStats:
    """Expense totals, net and recent expenses in finance stats."""

    async def test_expenses_and_net(
        self, db_session: AsyncSession, school, admin_user, make_student, make_invoice, today
    ):
        invoice = await make_invoice(await make_student(), [("Tuition", 1, "1000.00", None)])
        await PaymentService(db_session).record_payment(
            school.id,
            PaymentCreate(
                invoice_id=invoice.id, amount=Decimal("600.00"), payment_method=PaymentMethod.CASH
            ),
            admin_user.id,
            today,
        )
        service = ExpenseService(db_session)
        for day in range(6):
            await service.record_expense(
                school.id,
                _expense(f"Expense {day}", "100.00", date_incurred=today - timedelta(days=day)),
                admin_user.id,
                today,
            )

        stats = await ReportsService(db_session).finance_stats(school.id, today)

        assert stats["payments_total"] == Decimal("600.00")
        assert stats["expenses_total"] == Decimal("600.00")
        assert stats["net"] == Decimal("0.00")
        assert [e.description for e in stats["recent_expenses"]] == [
            "Expense 0",
            "Expense 1",
            "Expense 2",
            "Expense 3",
            "Expense 4",
        ]

    async def test_net_can_be_negative(self, db_session: AsyncSession, school, admin_user, today):
        await ExpenseService(db_session).record_expense(
            school.id, _expense("Roof", "5000.00"), admin_user.id, today
        )

        stats = await ReportsService(db_session).finance_stats(school.id, today)

        assert stats["payments_total"] == Decimal("0.00")
        assert stats["net"] == Decimal("-5000.00")

    async def test_academic_year_filter(
        self,
        db_session: AsyncSession,
        school,
        admin_user,
        make_student,
        make_fee_structure,
        assign,
        make_invoice,
        today,
    ):
        student = await make_student()
        structure = await make_fee_structure(amount=Decimal("1500.00"), academic_year_id=2026)
        await assign(structure, student)
        result = await InvoiceService(db_session).generate_invoices(
            school.id, structure.id, GenerateInvoicesRequest(academic_year_id=2026), admin_user.id, today
        )
        year_invoice_id = result.created_invoice_ids[0]
        adhoc = await make_invoice(student, [("Trip", 1, "400.00", None)])

        payments = PaymentService(db_session)
        await payments.record_payment(
            school.id,
            PaymentCreate(
                invoice_id=year_invoice_id, amount=Decimal("500.00"), payment_method=PaymentMethod.CASH
            ),
            admin_user.id,
            today,
        )
        await payments.record_payment(
            school.id,
            PaymentCreate(
                invoice_id=adhoc.id, amount=Decimal("400.00"), payment_method=PaymentMethod.CASH
            ),
            admin_user.id,
            today,
        )
        expenses = ExpenseService(db_session)
        await expenses.record_expense(
            school.id, _expense("Books", "200.00", academic_year_id=2026), admin_user.id, today
        )
        await expenses.record_expense(
            school.id, _expense("Old repairs", "700.00", academic_year_id=2025), admin_user.id, today
        )

        stats = await ReportsService(db_session).finance_stats(
            school.id, today, include_aging=True, academic_year_id=2026
        )

        assert stats["total_billed"] == Decimal("1500.00")
        assert stats["total_collected"] == Decimal("500.00")
        assert stats["payments_total"] == Decimal("500.00")
        assert stats["expenses_total"] == Decimal("200.00")
        assert stats["net"] == Decimal("300.00")
        assert stats["invoice_count"] == 1
        assert [i.id for i in stats["recent_invoices"]] == [year_invoice_id]
        assert [e.description for e in stats["recent_expenses"]] == ["Books"]
        assert sum(b.amount for b in stats["aging"]) == Decimal("1000.00")

        overall = await ReportsService(db_session).finance_stats(school.id, today)
        assert overall["total_billed"] == Decimal("1900.00")
        assert overall["payments_total"] == Decimal("900.00")
        assert overall["expenses_total"] == Decimal("900.00")


class TestExpensesAPI:
    """Tests for expense endpoints."""

    async def test_record_list_and_stats(
        self, client: AsyncClient, school, secretary_headers, admin_headers
    ):
        base = f"/api/v1/schools/{school.id}/finance"

        response = await client.post(
            f"{base}/expenses",
            json={"description": "Printer paper", "amount": "250.00", "academic_year_id": 2026},
            headers=secretary_headers,
        )
        assert response.status_code == 201
        expense = response.json()["data"]
        assert expense["date_incurred"] == "2026-03-02"
        assert Decimal(expense["amount"]) == Decimal("250.00")

        response = await client.get(f"{base}/expenses", headers=secretary_headers)
        assert response.status_code == 200
        assert response.json()["data"]["total"] == 1

        response = await client.get(f"{base}/expenses/{expense['id']}", headers=admin_headers)
        assert response.json()["data"]["description"] == "Printer paper"

        response = await client.get(
            f"{base}/stats", params={"academic_year_id": 2026}, headers=admin_headers
        )
        data = response.json()["data"]
        assert Decimal(data["expenses_total"]) == Decimal("250.00")
        assert Decimal(data["net"]) == Decimal("-250.00")
        assert data["recent_expenses"][0]["description"] == "Printer paper"

    async def test_invalid_amount(self, client: AsyncClient, school, admin_headers):
        response = await client.post(
            f"/api/v1/schools/{school.id}/finance/expenses",
            json={"description": "Nothing", "amount": "-5.00"},
            headers=admin_headers,
        )
        assert response.status_code == 422

    async def test_unknown_expense(self, client: AsyncClient, school, admin_headers):
        response = await client.get(
            f"/api/v1/schools/{school.id}/finance/expenses/999", headers=admin_headers
        )
        assert response.status_code == 404
