"""Service for Invoices module."""

import logging
from collections import defaultdict
from collections.abc import Iterable
from datetime import date, timedelta
from decimal import Decimal

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit.service import AuditAction, AuditService
from src.core.config import settings
from src.core.documents.number_generator import DocumentNumberGenerator
from src.core.exceptions import (
    InsufficientStockError,
    InvoiceLockedError,
    NotFoundError,
    ScopeMismatchError,
    ValidationError,
)
from src.modules.fees.models import FeeStructure
from src.modules.fees.resolver import ResolvedLine, resolve_fee_lines
from src.modules.fees.service import FeeStructureService
from src.modules.inventory.models import InventoryItem
from src.modules.inventory.service import InventoryService
from src.modules.invoices.models import (
    TERMINAL_STATUSES,
    Invoice,
    InvoiceItem,
    InvoiceStatus,
)
from src.modules.invoices.schemas import (
    GenerateInvoicesRequest,
    GenerateInvoicesResult,
    GenerationFailure,
    InvoiceCreate,
    InvoiceFilters,
    InvoiceItemCreate,
    InvoiceItemUpdate,
)
from src.modules.invoices.status import compute_status
from src.modules.payments.models import PaymentAllocation
from src.modules.students.models import Student
from src.shared.utils.money import ZERO, line_total, round_money, sum_money

logger = logging.getLogger(__name__)


def _stock_demands(lines: Iterable[ResolvedLine | InvoiceItemCreate | InvoiceItem]) -> dict[int, int]:
    """Quantity needed per inventory item across billing lines."""
    demands: dict[int, int] = defaultdict(int)
    for line in lines:
        if line.inventory_item_id is not None:
            demands[line.inventory_item_id] += line.quantity
    return dict(demands)


class InvoiceService:
    """Service for building invoices and keeping their totals and stock consistent."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)
        self.inventory = InventoryService(db)

    # --- Helpers ---

    def _recalculate_invoice(self, invoice: Invoice, today: date) -> None:
        """Recalculate invoice total from items and derive the status."""
        invoice.total_amount = sum_money(item.total_price for item in invoice.items)
        invoice.status = compute_status(
            invoice.status,
            invoice.total_amount,
            invoice.paid_amount,
            invoice.due_date,
            today,
        ).value

    def _ensure_editable(self, invoice: Invoice) -> None:
        if invoice.is_locked:
            raise InvoiceLockedError(invoice.id, invoice.status)

    def _ensure_covers_paid(self, invoice: Invoice, new_total: Decimal) -> None:
        if round_money(new_total) < round_money(invoice.paid_amount):
            raise ValidationError(
                f"Invoice total cannot drop below the amount already paid "
                f"({round_money(invoice.paid_amount)})",
                field="total_amount",
            )

    async def _get_student(self, school_id: int, student_id: int) -> Student:
        result = await self.db.execute(
            select(Student).where(Student.id == student_id, Student.school_id == school_id)
        )
        student = result.scalar_one_or_none()
        if not student:
            raise NotFoundError("Student", student_id)
        return student

    async def _check_fee_references(self, school_id: int, items: list[InvoiceItemCreate]) -> None:
        structure_ids = {i.fee_structure_id for i in items if i.fee_structure_id is not None}
        if not structure_ids:
            return
        result = await self.db.execute(
            select(FeeStructure.id).where(
                FeeStructure.id.in_(structure_ids),
                FeeStructure.school_id == school_id,
            )
        )
        missing = sorted(structure_ids - set(result.scalars().all()))
        if missing:
            raise NotFoundError("FeeStructure", missing[0])

    async def _create_invoice_record(
        self,
        school_id: int,
        student_id: int,
        lines: list[ResolvedLine] | list[InvoiceItemCreate],
        issue_date: date,
        due_date: date,
        created_by_id: int,
        today: date,
        locked_items: dict[int, InventoryItem],
        notes: str | None = None,
    ) -> Invoice:
        """Persist an invoice with its items and take stock for linked lines.

        Stock must already be locked and checked by the caller.
        """
        number_gen = DocumentNumberGenerator(self.db, school_id)
        invoice_number = await number_gen.generate(
            settings.invoice_number_prefix, issue_date.year
        )

        invoice = Invoice(
            school_id=school_id,
            invoice_number=invoice_number,
            student_id=student_id,
            status=InvoiceStatus.DRAFT.value,
            issue_date=issue_date,
            due_date=due_date,
            total_amount=ZERO,
            paid_amount=ZERO,
            notes=notes,
            created_by_id=created_by_id,
        )
        invoice.items = [
            InvoiceItem(
                school_id=school_id,
                description=line.description,
                quantity=line.quantity,
                unit_price=round_money(line.unit_price),
                total_price=line_total(line.quantity, line.unit_price),
                fee_structure_id=line.fee_structure_id,
                fee_component_id=line.fee_component_id,
                inventory_item_id=line.inventory_item_id,
            )
            for line in lines
        ]
        self._recalculate_invoice(invoice, today)
        self.db.add(invoice)
        await self.db.flush()

        await self.inventory.reconcile(
            school_id,
            _stock_demands(lines),
            actor_id=created_by_id,
            reference_type="invoice",
            reference_id=invoice.id,
            items=locked_items,
        )
        return invoice

    # --- Queries ---

    async def get_invoice_by_id(
        self, school_id: int, invoice_id: int, for_update: bool = False
    ) -> Invoice:
        """Get invoice by ID with items and student loaded."""
        query = (
            select(Invoice)
            .where(Invoice.id == invoice_id, Invoice.school_id == school_id)
            .options(selectinload(Invoice.items), selectinload(Invoice.student))
            .execution_options(populate_existing=True)
        )
        if for_update:
            query = query.with_for_update(of=Invoice)
        result = await self.db.execute(query)
        invoice = result.scalar_one_or_none()
        if not invoice:
            raise NotFoundError("Invoice", invoice_id)
        return invoice

    async def list_invoices(
        self, school_id: int, filters: InvoiceFilters
    ) -> tuple[list[Invoice], int]:
        """List invoices with filters."""
        query = (
            select(Invoice)
            .where(Invoice.school_id == school_id)
            .options(selectinload(Invoice.student))
            .order_by(Invoice.issue_date.desc(), Invoice.id.desc())
        )

        if filters.student_id is not None:
            query = query.where(Invoice.student_id == filters.student_id)
        if filters.status is not None:
            query = query.where(Invoice.status == filters.status.value)
        if filters.due_from is not None:
            query = query.where(Invoice.due_date >= filters.due_from)
        if filters.due_to is not None:
            query = query.where(Invoice.due_date <= filters.due_to)
        if filters.search:
            search_term = f"%{filters.search}%"
            query = query.join(Student, Student.id == Invoice.student_id).where(
                or_(
                    Invoice.invoice_number.ilike(search_term),
                    Student.first_name.ilike(search_term),
                    Student.last_name.ilike(search_term),
                    Student.student_number.ilike(search_term),
                )
            )

        # Count total
        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        # Apply pagination
        result = await self.db.execute(query.offset(filters.offset).limit(filters.limit))
        return list(result.scalars().all()), total

    # --- Creation ---

    async def create_invoice(
        self, school_id: int, data: InvoiceCreate, created_by_id: int, today: date
    ) -> Invoice:
        """Create an ad-hoc invoice (draft) with its items."""
        await self._get_student(school_id, data.student_id)

        issue_date = data.issue_date or today
        due_date = data.due_date or issue_date + timedelta(days=settings.default_invoice_due_days)
        if due_date < issue_date:
            raise ValidationError("Due date cannot be before issue date", field="due_date")

        await self._check_fee_references(school_id, data.items)

        demands = _stock_demands(data.items)
        locked = await self.inventory.lock_items(school_id, demands.keys())
        self.inventory.check_available(locked, demands)

        invoice = await self._create_invoice_record(
            school_id,
            data.student_id,
            data.items,
            issue_date=issue_date,
            due_date=due_date,
            created_by_id=created_by_id,
            today=today,
            locked_items=locked,
            notes=data.notes,
        )

        await self.audit.log(
            action=AuditAction.INVOICE_CREATE,
            entity_type="Invoice",
            entity_id=invoice.id,
            school_id=school_id,
            user_id=created_by_id,
            entity_identifier=invoice.invoice_number,
            new_values={
                "student_id": data.student_id,
                "total_amount": str(invoice.total_amount),
                "items": len(data.items),
            },
        )

        await self.db.commit()
        # Re-fetch with relationships loaded
        return await self.get_invoice_by_id(school_id, invoice.id)

    async def generate_invoices(
        self,
        school_id: int,
        fee_structure_id: int,
        data: GenerateInvoicesRequest,
        generated_by_id: int,
        today: date,
    ) -> GenerateInvoicesResult:
        """
        Generate draft invoices for the students assigned to a fee structure.

        Each student's invoice and its stock decrements are committed on their own;
        a scope mismatch or stock shortage for one student is reported in `failed`
        and the batch moves on. Students that already have an invoice line from this
        structure are skipped unless overwrite_existing is set, as are inactive
        assignments unless include_inactive_assignments is set.
        """
        result = await self.db.execute(
            select(FeeStructure)
            .where(
                FeeStructure.id == fee_structure_id,
                FeeStructure.school_id == school_id,
                FeeStructure.academic_year_id == data.academic_year_id,
            )
            .options(selectinload(FeeStructure.components))
        )
        structure = result.scalar_one_or_none()
        if not structure:
            raise NotFoundError("FeeStructure", fee_structure_id)

        assignments = await FeeStructureService(self.db).list_assignments(
            school_id,
            structure.id,
            data.academic_year_id,
            include_inactive=True,
            student_ids=data.student_ids,
        )
        if not assignments:
            raise ValidationError("No assignments found for invoice generation")

        skipped = 0
        eligible = []
        for assignment in assignments:
            if assignment.is_active or data.include_inactive_assignments:
                eligible.append(assignment)
            else:
                skipped += 1
        if data.limit is not None:
            eligible = eligible[: data.limit]

        already_invoiced = await self._students_with_structure_items(
            school_id, structure, [a.student_id for a in eligible]
        )

        # Lines are resolved up front so later rollbacks cannot expire anything we need
        failed: list[GenerationFailure] = []
        plans: list[tuple[int, list[ResolvedLine]]] = []
        for assignment in eligible:
            if assignment.student_id in already_invoiced and not data.overwrite_existing:
                skipped += 1
                continue
            try:
                plans.append((assignment.student_id, resolve_fee_lines(structure, assignment)))
            except ScopeMismatchError as exc:
                logger.warning(
                    "Invoice generation skipped student %s: %s", assignment.student_id, exc.message
                )
                failed.append(GenerationFailure(student_id=assignment.student_id, reason=exc.message))

        structure_id = structure.id
        structure_name = structure.name
        due_in_days = (
            data.due_in_days
            if data.due_in_days is not None
            else settings.default_invoice_due_days
        )
        due_date = today + timedelta(days=due_in_days)

        created_ids: list[int] = []
        created = 0
        total_amount = ZERO
        # Stock promised to earlier students of a dry run
        projected_use: dict[int, int] = defaultdict(int)

        for student_id, lines in plans:
            demands = _stock_demands(lines)
            try:
                locked = await self.inventory.lock_items(school_id, demands.keys())
                if data.dry_run:
                    self.inventory.check_available(
                        locked,
                        {item_id: qty + projected_use[item_id] for item_id, qty in demands.items()},
                    )
                else:
                    self.inventory.check_available(locked, demands)
            except (InsufficientStockError, NotFoundError) as exc:
                await self.db.rollback()
                logger.warning("Invoice generation failed for student %s: %s", student_id, exc.message)
                failed.append(GenerationFailure(student_id=student_id, reason=exc.message))
                continue

            invoice_total = sum_money(line.total_price for line in lines)

            if data.dry_run:
                for item_id, qty in demands.items():
                    projected_use[item_id] += qty
                created += 1
                total_amount += invoice_total
                continue

            invoice = await self._create_invoice_record(
                school_id,
                student_id,
                lines,
                issue_date=today,
                due_date=due_date,
                created_by_id=generated_by_id,
                today=today,
                locked_items=locked,
            )
            await self.audit.log(
                action=AuditAction.INVOICE_GENERATE,
                entity_type="Invoice",
                entity_id=invoice.id,
                school_id=school_id,
                user_id=generated_by_id,
                entity_identifier=invoice.invoice_number,
                new_values={
                    "student_id": student_id,
                    "fee_structure_id": structure_id,
                    "total_amount": str(invoice.total_amount),
                },
            )
            await self.db.commit()

            created_ids.append(invoice.id)
            created += 1
            total_amount += invoice_total

        if data.dry_run:
            # Release the row locks taken while checking stock
            await self.db.rollback()

        logger.info(
            "Invoice generation for fee structure %s (%s): created=%s skipped=%s failed=%s dry_run=%s",
            structure_id,
            structure_name,
            created,
            skipped,
            len(failed),
            data.dry_run,
        )

        return GenerateInvoicesResult(
            dry_run=data.dry_run,
            total_assignments=len(assignments),
            created=created,
            skipped=skipped,
            failed=failed,
            created_invoice_ids=created_ids,
            total_amount=float(round_money(total_amount)),
        )

    async def _students_with_structure_items(
        self, school_id: int, structure: FeeStructure, student_ids: list[int]
    ) -> set[int]:
        """Students that already have an invoice item from this structure or its components."""
        if not student_ids:
            return set()

        conditions = [InvoiceItem.fee_structure_id == structure.id]
        component_ids = [c.id for c in structure.components]
        if component_ids:
            conditions.append(InvoiceItem.fee_component_id.in_(component_ids))

        result = await self.db.execute(
            select(Invoice.student_id)
            .join(InvoiceItem, InvoiceItem.invoice_id == Invoice.id)
            .where(
                Invoice.school_id == school_id,
                Invoice.student_id.in_(student_ids),
                or_(*conditions),
            )
            .distinct()
        )
        return set(result.scalars().all())

    # --- Item mutation ---

    async def add_item(
        self,
        school_id: int,
        invoice_id: int,
        data: InvoiceItemCreate,
        added_by_id: int,
        today: date,
    ) -> Invoice:
        """Add an item to an open invoice, taking stock for linked items."""
        invoice = await self.get_invoice_by_id(school_id, invoice_id, for_update=True)
        self._ensure_editable(invoice)
        await self._check_fee_references(school_id, [data])

        if data.inventory_item_id is not None:
            await self.inventory.reconcile(
                school_id,
                {data.inventory_item_id: data.quantity},
                actor_id=added_by_id,
                reference_type="invoice",
                reference_id=invoice.id,
            )

        item = InvoiceItem(
            school_id=school_id,
            description=data.description,
            quantity=data.quantity,
            unit_price=round_money(data.unit_price),
            total_price=line_total(data.quantity, data.unit_price),
            fee_structure_id=data.fee_structure_id,
            fee_component_id=data.fee_component_id,
            inventory_item_id=data.inventory_item_id,
        )
        invoice.items.append(item)
        self._recalculate_invoice(invoice, today)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.INVOICE_ADD_ITEM,
            entity_type="Invoice",
            entity_id=invoice.id,
            school_id=school_id,
            user_id=added_by_id,
            entity_identifier=invoice.invoice_number,
            new_values={
                "item_id": item.id,
                "description": item.description,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
                "inventory_item_id": item.inventory_item_id,
                "total_amount": str(invoice.total_amount),
            },
        )

        await self.db.commit()
        return await self.get_invoice_by_id(school_id, invoice.id)

    def _find_item(self, invoice: Invoice, item_id: int) -> InvoiceItem:
        for item in invoice.items:
            if item.id == item_id:
                return item
        raise NotFoundError("InvoiceItem", item_id)

    async def update_item(
        self,
        school_id: int,
        invoice_id: int,
        item_id: int,
        data: InvoiceItemUpdate,
        updated_by_id: int,
        today: date,
    ) -> Invoice:
        """
        Patch an invoice item and reconcile stock.

        Moving the link from item A to item B returns the old quantity to A and
        takes the new quantity from B. Keeping the link takes or returns the
        quantity difference. Unlinking returns the stock; linking takes it. A
        shortage aborts the whole update with nothing changed.
        """
        invoice = await self.get_invoice_by_id(school_id, invoice_id, for_update=True)
        self._ensure_editable(invoice)
        item = self._find_item(invoice, item_id)

        patch = data.model_dump(exclude_unset=True)
        new_quantity = data.quantity if data.quantity is not None else item.quantity
        new_unit_price = (
            round_money(data.unit_price) if data.unit_price is not None else item.unit_price
        )
        new_link = patch["inventory_item_id"] if "inventory_item_id" in patch else item.inventory_item_id
        new_total_price = line_total(new_quantity, new_unit_price)

        self._ensure_covers_paid(
            invoice,
            sum_money(i.total_price for i in invoice.items if i.id != item.id) + new_total_price,
        )

        old_values = {
            "description": item.description,
            "quantity": item.quantity,
            "unit_price": str(item.unit_price),
            "inventory_item_id": item.inventory_item_id,
        }

        # Net stock taken per inventory item: new demand minus what the item held
        changes: dict[int, int] = defaultdict(int)
        if item.inventory_item_id is not None:
            changes[item.inventory_item_id] -= item.quantity
        if new_link is not None:
            changes[new_link] += new_quantity
        await self.inventory.reconcile(
            school_id,
            changes,
            actor_id=updated_by_id,
            reference_type="invoice",
            reference_id=invoice.id,
        )

        if data.description is not None:
            item.description = data.description
        item.quantity = new_quantity
        item.unit_price = new_unit_price
        item.total_price = new_total_price
        item.inventory_item_id = new_link
        self._recalculate_invoice(invoice, today)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.INVOICE_UPDATE_ITEM,
            entity_type="Invoice",
            entity_id=invoice.id,
            school_id=school_id,
            user_id=updated_by_id,
            entity_identifier=invoice.invoice_number,
            old_values={"item_id": item.id, **old_values},
            new_values={
                "item_id": item.id,
                "description": item.description,
                "quantity": item.quantity,
                "unit_price": str(item.unit_price),
                "inventory_item_id": item.inventory_item_id,
                "total_amount": str(invoice.total_amount),
            },
        )

        await self.db.commit()
        return await self.get_invoice_by_id(school_id, invoice.id)

    async def delete_item(
        self,
        school_id: int,
        invoice_id: int,
        item_id: int,
        deleted_by_id: int,
        today: date,
    ) -> Invoice:
        """Remove an item from an open invoice, returning its stock."""
        invoice = await self.get_invoice_by_id(school_id, invoice_id, for_update=True)
        self._ensure_editable(invoice)
        item = self._find_item(invoice, item_id)

        self._ensure_covers_paid(
            invoice, sum_money(i.total_price for i in invoice.items if i.id != item.id)
        )

        if item.inventory_item_id is not None:
            await self.inventory.reconcile(
                school_id,
                {item.inventory_item_id: -item.quantity},
                actor_id=deleted_by_id,
                reference_type="invoice",
                reference_id=invoice.id,
            )

        invoice.items.remove(item)
        await self.db.delete(item)
        self._recalculate_invoice(invoice, today)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.INVOICE_DELETE_ITEM,
            entity_type="Invoice",
            entity_id=invoice.id,
            school_id=school_id,
            user_id=deleted_by_id,
            entity_identifier=invoice.invoice_number,
            old_values={
                "item_id": item_id,
                "description": item.description,
                "quantity": item.quantity,
                "inventory_item_id": item.inventory_item_id,
            },
            new_values={"total_amount": str(invoice.total_amount)},
        )

        await self.db.commit()
        return await self.get_invoice_by_id(school_id, invoice.id)

    # --- Explicit status actions ---

    async def issue_invoice(
        self, school_id: int, invoice_id: int, issued_by_id: int, today: date
    ) -> Invoice:
        """Issue a draft invoice (DRAFT -> SENT)."""
        invoice = await self.get_invoice_by_id(school_id, invoice_id, for_update=True)

        if invoice.status != InvoiceStatus.DRAFT.value:
            raise ValidationError("Only draft invoices can be issued", field="status")
        if not invoice.items:
            raise ValidationError("Cannot issue an invoice with no items", field="items")

        invoice.status = InvoiceStatus.SENT.value
        self._recalculate_invoice(invoice, today)

        await self.audit.log(
            action=AuditAction.INVOICE_ISSUE,
            entity_type="Invoice",
            entity_id=invoice.id,
            school_id=school_id,
            user_id=issued_by_id,
            entity_identifier=invoice.invoice_number,
            old_values={"status": InvoiceStatus.DRAFT.value},
            new_values={"status": invoice.status},
        )

        await self.db.commit()
        return await self.get_invoice_by_id(school_id, invoice.id)

    async def cancel_invoice(
        self, school_id: int, invoice_id: int, cancelled_by_id: int
    ) -> Invoice:
        """Cancel an invoice (only if no payments received); linked stock is returned."""
        invoice = await self.get_invoice_by_id(school_id, invoice_id, for_update=True)
        self._ensure_editable(invoice)

        allocations = await self.db.execute(
            select(func.count(PaymentAllocation.id)).where(
                PaymentAllocation.invoice_id == invoice.id
            )
        )
        if invoice.paid_amount > ZERO or (allocations.scalar() or 0) > 0:
            raise ValidationError("Cannot cancel invoice with payments. Use void instead.")

        returned = {item_id: -qty for item_id, qty in _stock_demands(invoice.items).items()}
        await self.inventory.reconcile(
            school_id,
            returned,
            actor_id=cancelled_by_id,
            reference_type="invoice",
            reference_id=invoice.id,
        )

        old_status = invoice.status
        invoice.status = InvoiceStatus.CANCELLED.value

        await self.audit.log(
            action=AuditAction.INVOICE_CANCEL,
            entity_type="Invoice",
            entity_id=invoice.id,
            school_id=school_id,
            user_id=cancelled_by_id,
            entity_identifier=invoice.invoice_number,
            old_values={"status": old_status},
            new_values={"status": invoice.status, "stock_returned": returned},
        )

        await self.db.commit()
        return await self.get_invoice_by_id(school_id, invoice.id)

    async def void_invoice(
        self, school_id: int, invoice_id: int, voided_by_id: int, reason: str | None = None
    ) -> Invoice:
        """Void an open invoice. Payments and stock are left as they are."""
        invoice = await self.get_invoice_by_id(school_id, invoice_id, for_update=True)
        self._ensure_editable(invoice)

        old_status = invoice.status
        invoice.status = InvoiceStatus.VOID.value

        await self.audit.log(
            action=AuditAction.INVOICE_VOID,
            entity_type="Invoice",
            entity_id=invoice.id,
            school_id=school_id,
            user_id=voided_by_id,
            entity_identifier=invoice.invoice_number,
            old_values={"status": old_status},
            new_values={"status": invoice.status},
            comment=reason,
        )

        await self.db.commit()
        return await self.get_invoice_by_id(school_id, invoice.id)

    async def refresh_statuses(self, school_id: int, today: date) -> int:
        """Recompute the status of every open invoice of a school. Returns how many changed."""
        result = await self.db.execute(
            select(Invoice)
            .where(
                Invoice.school_id == school_id,
                Invoice.status.notin_([s.value for s in TERMINAL_STATUSES]),
            )
            .order_by(Invoice.id)
            .with_for_update()
        )
        changed = 0
        for invoice in result.scalars().all():
            status = compute_status(
                invoice.status,
                invoice.total_amount,
                invoice.paid_amount,
                invoice.due_date,
                today,
            ).value
            if status != invoice.status:
                invoice.status = status
                changed += 1

        await self.db.commit()
        if changed:
            logger.info("Refreshed %s invoice statuses for school %s", changed, school_id)
        return changed
