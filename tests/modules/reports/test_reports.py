"""Tests for finance reports (aging and headline stats)."""

from datetime import timedelta
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from src.modules.invoices.service import InvoiceService
from src.modules.payments.models import PaymentMethod
from src.modules.payments.schemas import PaymentCreate
from src.modules.payments.service import PaymentService
from src.modules.reports.service import ReportsService, aging_bucket_key, days_past_due


@pytest.mark.parametrize(
    "days,key",
    [(0, "0-30"), (30, "0-30"), (31, "31-60"), (60, "31-60"), (61, "61-90"), (90, "61-90"), (91, "90+")],
)
def test_aging_bucket_boundaries(days, key):
    assert aging_bucket_key(days) == key


def test_not_yet_due_counts_as_zero_days(today):
    assert days_past_due(today + timedelta(days=5), today) == 0
    assert days_past_due(today - timedelta(days=5), today) == 5


@pytest.fixture
async def ledger(db_session: AsyncSession, school, admin_user, make_student, make_invoice, today):
    """Four open invoices spread over the aging buckets plus one void invoice."""
    student = await make_student()

    current = await make_invoice(
        student, [("Term 2", 1, "100.00", None)], due_date=today + timedelta(days=5)
    )
    await make_invoice(
        student,
        [("Term 1", 1, "200.00", None)],
        issue_date=today - timedelta(days=60),
        due_date=today - timedelta(days=45),
    )
    await make_invoice(
        student,
        [("Term 3 (2025)", 1, "300.00", None)],
        issue_date=today - timedelta(days=100),
        due_date=today - timedelta(days=75),
    )
    await make_invoice(
        student,
        [("Term 2 (2025)", 1, "400.00", None)],
        issue_date=today - timedelta(days=150),
        due_date=today - timedelta(days=120),
    )
    voided = await make_invoice(
        student,
        [("Duplicate", 1, "250.00", None)],
        issue_date=today - timedelta(days=20),
        due_date=today - timedelta(days=10),
    )
    await InvoiceService(db_session).void_invoice(school.id, voided.id, admin_user.id)

    await PaymentService(db_session).record_payment(
        school.id,
        PaymentCreate(
            invoice_id=current.id, amount=Decimal("50.00"), payment_method=PaymentMethod.CASH
        ),
        admin_user.id,
        today,
    )
    return student


class TestAgingReport:
    """Tests for the aging report."""

    async def test_buckets(self, db_session: AsyncSession, school, ledger, today):
        report = await ReportsService(db_session).aging_report(school.id, today)

        assert report["as_at_date"] == today
        assert report["total_outstanding"] == Decimal("950.00")
        assert [(b.key, b.amount, b.count) for b in report["buckets"]] == [
            ("0-30", Decimal("50.00"), 1),
            ("31-60", Decimal("200.00"), 1),
            ("61-90", Decimal("300.00"), 1),
            ("90+", Decimal("400.00"), 1),
        ]
        assert report["invoices"] is None

    async def test_details_oldest_first(self, db_session: AsyncSession, school, ledger, today):
        report = await ReportsService(db_session).aging_report(
            school.id, today, include_details=True
        )

        rows = report["invoices"]
        assert [r.days_past_due for r in rows] == [120, 75, 45, 0]
        assert [r.bucket for r in rows] == ["90+", "61-90", "31-60", "0-30"]
        assert rows[-1].outstanding == Decimal("50.00")
        assert rows[0].student_name == "Amina Otieno"

    async def test_later_report_date_moves_buckets(
        self, db_session: AsyncSession, school, ledger, today
    ):
        report = await ReportsService(db_session).aging_report(
            school.id, today + timedelta(days=40)
        )

        amounts = {b.key: b.amount for b in report["buckets"]}
        assert amounts["0-30"] == Decimal("0.00")
        assert amounts["31-60"] == Decimal("50.00")
        assert amounts["61-90"] == Decimal("200.00")
        assert amounts["90+"] == Decimal("700.00")

    async def test_class_filter_uses_student_placement(
        self, db_session: AsyncSession, school, ledger, make_student, make_invoice, today
    ):
        moved = await make_student(first_name="Brian", class_id=2)
        await make_invoice(moved, [("Term 1", 1, "70.00", None)])

        report = await ReportsService(db_session).aging_report(school.id, today, class_id=2)
        assert report["total_outstanding"] == Decimal("70.00")

        report = await ReportsService(db_session).aging_report(
            school.id, today, student_id=ledger.id
        )
        assert report["total_outstanding"] == Decimal("950.00")


class TestFinanceStats:
    """Tests for headline finance figures."""

    async def test_void_invoices_are_not_billed(
        self, db_session: AsyncSession, school, ledger, today
    ):
        stats = await ReportsService(db_session).finance_stats(school.id, today, include_aging=True)

        assert stats["total_billed"] == Decimal("1000.00")
        assert stats["total_collected"] == Decimal("50.00")
        assert stats["payments_total"] == Decimal("50.00")
        assert stats["outstanding"] == Decimal("950.00")
        assert stats["invoice_count"] == 4
        assert len(stats["recent_invoices"]) == 5
        assert stats["recent_invoices"][0].total_amount == Decimal("100.00")
        assert [b.key for b in stats["aging"]] == ["0-30", "31-60", "61-90", "90+"]

    async def test_empty_school(self, db_session: AsyncSession, school, today):
        stats = await ReportsService(db_session).finance_stats(school.id, today)

        assert stats["total_billed"] == Decimal("0.00")
        assert stats["outstanding"] == Decimal("0.00")
        assert stats["recent_invoices"] == []
        assert stats["aging"] is None


class TestReportsAPI:
    """Tests for report endpoints."""

    async def test_aging_route(self, client: AsyncClient, school, secretary_headers, ledger):
        response = await client.get(
            f"/api/v1/schools/{school.id}/finance/invoices/aging",
            params={"include_details": "true"},
            headers=secretary_headers,
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert Decimal(data["total_outstanding"]) == Decimal("950.00")
        assert len(data["invoices"]) == 4

    async def test_stats_route(self, client: AsyncClient, school, admin_headers, ledger):
        response = await client.get(
            f"/api/v1/schools/{school.id}/finance/stats", headers=admin_headers
        )

        assert response.status_code == 200
        data = response.json()["data"]
        assert Decimal(data["total_billed"]) == Decimal("1000.00")
        assert data["invoice_count"] == 4
        assert data["aging"] is None

    async def test_other_school_is_forbidden(
        self, client: AsyncClient, other_school, admin_headers
    ):
        response = await client.get(
            f"/api/v1/schools/{other_school.id}/finance/stats", headers=admin_headers
        )
        assert response.status_code == 403
