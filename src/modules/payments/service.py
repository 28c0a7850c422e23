"""Service for Payments module."""

import logging
from datetime import date
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit.service import AuditAction, AuditService
from src.core.config import settings
from src.core.documents.number_generator import DocumentNumberGenerator
from src.core.exceptions import InvoiceLockedError, NotFoundError, ValidationError
from src.modules.invoices.models import OPEN_STATUSES, Invoice
from src.modules.invoices.status import compute_status
from src.modules.payments.models import Payment, PaymentAllocation
from src.modules.payments.schemas import (
    AllocationDetail,
    PaymentCreate,
    PaymentFilters,
    RecordPaymentResult,
)
from src.modules.students.models import Student
from src.shared.utils.money import ZERO, round_money

logger = logging.getLogger(__name__)


class PaymentService:
    """Service for recording payments and spreading them over invoices."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    async def record_payment(
        self, school_id: int, data: PaymentCreate, processed_by_id: int, today: date
    ) -> RecordPaymentResult:
        """
        Record a payment and allocate it.

        Direct mode (invoice_id): the amount goes to that invoice, capped at its
        outstanding balance.
        Student mode (student_id): the amount flows over the student's open
        invoices ordered by due date, then issue date, until it runs out.

        Whatever exceeds the outstanding balances is not stored as credit; it is
        reported back as unallocated_amount. The payment, its allocations and the
        invoice updates are committed together.
        """
        if (data.invoice_id is None) == (data.student_id is None):
            raise ValidationError(
                "Provide exactly one of invoice_id or student_id", field="invoice_id"
            )

        if data.invoice_id is not None:
            invoice = await self._get_invoice_for_update(school_id, data.invoice_id)
            if invoice.is_locked:
                raise InvoiceLockedError(invoice.id, invoice.status)
            if invoice.balance_due <= ZERO:
                raise ValidationError("Invoice has no outstanding balance", field="invoice_id")
            student_id = invoice.student_id
            invoices = [invoice]
        else:
            await self._get_student(school_id, data.student_id)
            student_id = data.student_id
            invoices = await self._get_open_invoices_for_update(school_id, student_id)
            if not invoices:
                raise ValidationError(
                    "Student has no outstanding invoices to allocate to", field="student_id"
                )

        amount = round_money(data.amount)
        payment_date = data.payment_date or today

        number_gen = DocumentNumberGenerator(self.db, school_id)
        payment_number = await number_gen.generate(
            settings.payment_number_prefix, payment_date.year
        )

        payment = Payment(
            school_id=school_id,
            payment_number=payment_number,
            student_id=student_id,
            invoice_id=data.invoice_id,
            amount=amount,
            payment_method=data.payment_method.value,
            payment_date=payment_date,
            reference=data.reference,
            notes=data.notes,
            processed_by_id=processed_by_id,
        )
        self.db.add(payment)
        await self.db.flush()

        remaining = amount
        details: list[AllocationDetail] = []
        for invoice in invoices:
            if remaining <= ZERO:
                break
            apply = min(invoice.balance_due, remaining)
            if apply <= ZERO:
                continue

            self.db.add(
                PaymentAllocation(payment_id=payment.id, invoice_id=invoice.id, amount=apply)
            )
            await self.db.flush()
            await self._update_invoice_paid_amount(invoice, today)
            remaining = round_money(remaining - apply)

            details.append(
                AllocationDetail(
                    invoice_id=invoice.id,
                    invoice_number=invoice.invoice_number,
                    amount=apply,
                    paid_amount=invoice.paid_amount,
                    balance_due=invoice.balance_due,
                    status=invoice.status,
                )
            )

        allocated = round_money(amount - remaining)

        await self.audit.log(
            action=AuditAction.PAYMENT_RECORD,
            entity_type="Payment",
            entity_id=payment.id,
            school_id=school_id,
            user_id=processed_by_id,
            entity_identifier=payment_number,
            new_values={
                "student_id": student_id,
                "invoice_id": data.invoice_id,
                "amount": str(amount),
                "payment_method": data.payment_method.value,
                "allocated": str(allocated),
                "unallocated": str(remaining),
                "allocations": [
                    {"invoice_id": d.invoice_id, "amount": str(d.amount)} for d in details
                ],
            },
        )

        await self.db.commit()

        if remaining > ZERO:
            logger.warning(
                "Payment %s left %s unallocated (student %s)", payment_number, remaining, student_id
            )
        logger.info(
            "Recorded payment %s of %s over %s invoice(s)", payment_number, amount, len(details)
        )

        return RecordPaymentResult(
            payment_id=payment.id,
            payment_number=payment_number,
            allocations=len(details),
            allocated_amount=allocated,
            unallocated_amount=remaining,
            allocation_details=details,
        )

    async def get_payment_by_id(self, school_id: int, payment_id: int) -> Payment:
        """Get payment by ID with allocations loaded."""
        result = await self.db.execute(
            select(Payment)
            .where(Payment.id == payment_id, Payment.school_id == school_id)
            .options(selectinload(Payment.allocations))
            .execution_options(populate_existing=True)
        )
        payment = result.scalar_one_or_none()
        if not payment:
            raise NotFoundError("Payment", payment_id)
        return payment

    async def list_payments(
        self, school_id: int, filters: PaymentFilters
    ) -> tuple[list[Payment], int]:
        """List payments with filters."""
        query = select(Payment).where(Payment.school_id == school_id)

        if filters.student_id:
            query = query.where(Payment.student_id == filters.student_id)
        if filters.invoice_id:
            query = query.where(
                Payment.id.in_(
                    select(PaymentAllocation.payment_id).where(
                        PaymentAllocation.invoice_id == filters.invoice_id
                    )
                )
            )
        if filters.payment_method:
            query = query.where(Payment.payment_method == filters.payment_method.value)
        if filters.date_from:
            query = query.where(Payment.payment_date >= filters.date_from)
        if filters.date_to:
            query = query.where(Payment.payment_date <= filters.date_to)

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        # Paginate
        query = query.options(selectinload(Payment.allocations)).execution_options(
            populate_existing=True
        )
        query = query.order_by(Payment.payment_date.desc(), Payment.id.desc())
        query = query.offset(filters.offset).limit(filters.limit)

        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def _get_student(self, school_id: int, student_id: int) -> Student:
        result = await self.db.execute(
            select(Student).where(Student.id == student_id, Student.school_id == school_id)
        )
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def _get_invoice_for_update(self, school_id: int, invoice_id: int) -> Invoice:
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id, Invoice.school_id == school_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def _get_open_invoices_for_update(self, school_id: int, student_id: int) -> list[Invoice]:
        """Open invoices of a student, oldest obligation first, locked for update."""
        result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.school_id == school_id,
                Invoice.student_id == student_id,
                Invoice.status.in_([s.value for s in OPEN_STATUSES]),
            )
            .order_by(Invoice.due_date.asc(), Invoice.issue_date.asc(), Invoice.id.asc())
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return [invoice for invoice in result.scalars().all() if invoice.balance_due > ZERO]

    async def _update_invoice_paid_amount(self, invoice: Invoice, today: date) -> None:
        """Set invoice paid_amount to the sum of its allocations and derive the status."""
        result = await self.db.execute(
            select(func.coalesce(func.sum(PaymentAllocation.amount), 0)).where(
                PaymentAllocation.invoice_id == invoice.id
            )
        )
        total_paid = Decimal(str(result.scalar() or 0))

        invoice.paid_amount = round_money(total_paid)
        invoice.status = compute_status(
            invoice.status,
            invoice.total_amount,
            invoice.paid_amount,
            invoice.due_date,
            today,
        ).value
