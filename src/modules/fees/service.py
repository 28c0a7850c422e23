"""Service for fee structures and student fee assignments."""

import logging
from decimal import Decimal

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from src.core.audit.service import AuditAction, AuditService
from src.core.exceptions import NotFoundError, ValidationError
from src.modules.fees.models import FeeComponent, FeeStructure, StudentFeeAssignment
from src.modules.fees.schemas import (
    AssignStudentsRequest,
    AssignStudentsResult,
    FeeComponentInput,
    FeeStructureCreate,
    FeeStructureUpdate,
)
from src.modules.inventory.models import InventoryItem
from src.modules.students.models import Student, StudentStatus
from src.shared.utils.money import round_money, sum_money

logger = logging.getLogger(__name__)


def _validate_scope(class_id: int | None, school_level_id: int | None) -> None:
    if (class_id is None) == (school_level_id is None):
        raise ValidationError(
            "Fee structure must be scoped to exactly one of class or school level",
            field="class_id",
        )


def _resolve_amount(
    amount: Decimal | None, components: list[FeeComponentInput]
) -> Decimal:
    """Structure amount after reconciling it with its components."""
    if components:
        components_total = sum_money(c.amount for c in components)
        if amount is None:
            return components_total
        if round_money(amount) != components_total:
            raise ValidationError(
                f"Amount mismatch: components add up to {components_total}, "
                f"structure amount is {round_money(amount)}",
                field="amount",
            )
        return round_money(amount)

    if amount is None:
        raise ValidationError("Amount is required when no components are given", field="amount")
    return round_money(amount)


class FeeStructureService:
    """Service for fee structure setup and student assignment."""

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # --- Fee Structures ---

    async def get_fee_structure(self, school_id: int, fee_structure_id: int) -> FeeStructure:
        """Get fee structure with components, scoped to a school."""
        result = await self.db.execute(
            select(FeeStructure)
            .where(
                FeeStructure.id == fee_structure_id,
                FeeStructure.school_id == school_id,
            )
            .options(selectinload(FeeStructure.components))
            .execution_options(populate_existing=True)
        )
        structure = result.scalar_one_or_none()
        if not structure:
            raise NotFoundError("FeeStructure", fee_structure_id)
        return structure

    async def list_fee_structures(
        self,
        school_id: int,
        academic_year_id: int | None = None,
        is_active: bool | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> tuple[list[FeeStructure], int]:
        """List fee structures with optional filters."""
        query = select(FeeStructure).where(FeeStructure.school_id == school_id)

        if academic_year_id is not None:
            query = query.where(FeeStructure.academic_year_id == academic_year_id)
        if is_active is not None:
            query = query.where(FeeStructure.is_active.is_(is_active))

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = (
            query.options(selectinload(FeeStructure.components))
            .order_by(FeeStructure.name, FeeStructure.id)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def create_fee_structure(
        self, school_id: int, data: FeeStructureCreate, created_by_id: int
    ) -> FeeStructure:
        """
        Create a fee structure with its components.

        The structure amount must equal the sum of its components; when the amount
        is omitted it is derived from them.
        """
        _validate_scope(data.class_id, data.school_level_id)
        amount = _resolve_amount(data.amount, data.components)
        await self._check_inventory_items(school_id, data.components)

        structure = FeeStructure(
            school_id=school_id,
            name=data.name,
            description=data.description,
            amount=amount,
            frequency=data.frequency.value,
            academic_year_id=data.academic_year_id,
            class_id=data.class_id,
            school_level_id=data.school_level_id,
            is_active=data.is_active,
            created_by_id=created_by_id,
        )
        structure.components = self._build_components(school_id, data.components)
        self.db.add(structure)
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.FEE_STRUCTURE_CREATE,
            entity_type="FeeStructure",
            entity_id=structure.id,
            school_id=school_id,
            user_id=created_by_id,
            entity_identifier=structure.name,
            new_values={
                "amount": str(structure.amount),
                "academic_year_id": structure.academic_year_id,
                "class_id": structure.class_id,
                "school_level_id": structure.school_level_id,
                "components": len(data.components),
            },
        )

        await self.db.commit()
        return await self.get_fee_structure(school_id, structure.id)

    async def update_fee_structure(
        self,
        school_id: int,
        fee_structure_id: int,
        data: FeeStructureUpdate,
        updated_by_id: int,
    ) -> FeeStructure:
        """Update a fee structure; given components replace the existing ones."""
        structure = await self.get_fee_structure(school_id, fee_structure_id)
        update_data = data.model_dump(exclude_unset=True)

        old_values = {
            "name": structure.name,
            "amount": str(structure.amount),
            "class_id": structure.class_id,
            "school_level_id": structure.school_level_id,
            "is_active": structure.is_active,
        }

        class_id = update_data.get("class_id", structure.class_id)
        school_level_id = update_data.get("school_level_id", structure.school_level_id)
        _validate_scope(class_id, school_level_id)

        if data.components is not None:
            components = data.components
        else:
            components = [
                FeeComponentInput(
                    name=c.name,
                    description=c.description,
                    amount=c.amount,
                    order=c.order,
                    inventory_item_id=c.inventory_item_id,
                )
                for c in structure.components
            ]
        amount = update_data.get("amount")
        if amount is None:
            # Keep the stored amount unless new components redefine it
            amount = None if data.components else structure.amount
        amount = _resolve_amount(amount, components)

        if data.components is not None:
            await self._check_inventory_items(school_id, data.components)
            structure.components = self._build_components(school_id, data.components)

        for field in ("name", "description", "is_active"):
            if field in update_data:
                setattr(structure, field, update_data[field])
        if data.frequency is not None:
            structure.frequency = data.frequency.value
        structure.class_id = class_id
        structure.school_level_id = school_level_id
        structure.amount = amount
        await self.db.flush()

        await self.audit.log(
            action=AuditAction.FEE_STRUCTURE_UPDATE,
            entity_type="FeeStructure",
            entity_id=structure.id,
            school_id=school_id,
            user_id=updated_by_id,
            entity_identifier=structure.name,
            old_values=old_values,
            new_values={
                "name": structure.name,
                "amount": str(structure.amount),
                "class_id": structure.class_id,
                "school_level_id": structure.school_level_id,
                "is_active": structure.is_active,
            },
        )

        await self.db.commit()
        return await self.get_fee_structure(school_id, structure.id)

    def _build_components(
        self, school_id: int, components: list[FeeComponentInput]
    ) -> list[FeeComponent]:
        return [
            FeeComponent(
                school_id=school_id,
                name=c.name,
                description=c.description,
                amount=round_money(c.amount),
                order=c.order if c.order is not None else index,
                inventory_item_id=c.inventory_item_id,
            )
            for index, c in enumerate(components)
        ]

    async def _check_inventory_items(
        self, school_id: int, components: list[FeeComponentInput]
    ) -> None:
        item_ids = {c.inventory_item_id for c in components if c.inventory_item_id is not None}
        if not item_ids:
            return
        result = await self.db.execute(
            select(InventoryItem.id).where(
                InventoryItem.id.in_(item_ids),
                InventoryItem.school_id == school_id,
            )
        )
        missing = sorted(item_ids - set(result.scalars().all()))
        if missing:
            raise NotFoundError("InventoryItem", missing[0])

    # --- Assignments ---

    async def assign_students(
        self,
        school_id: int,
        fee_structure_id: int,
        data: AssignStudentsRequest,
        assigned_by_id: int,
    ) -> AssignStudentsResult:
        """
        Assign students to a fee structure for its academic year.

        Students are targeted by explicit ids, or by their current class or school
        level. A class or level that contradicts the structure's scope is rejected.
        Active assignments are left alone; inactive ones are re-enabled only with
        reactivate_existing. Students keep their current class/level on the row.
        """
        structure = await self.get_fee_structure(school_id, fee_structure_id)
        students = await self._resolve_assignment_targets(school_id, structure, data)
        student_ids = list(students)

        result = await self.db.execute(
            select(StudentFeeAssignment).where(
                StudentFeeAssignment.school_id == school_id,
                StudentFeeAssignment.fee_structure_id == structure.id,
                StudentFeeAssignment.academic_year_id == structure.academic_year_id,
                StudentFeeAssignment.student_id.in_(student_ids),
            )
        )
        existing = {a.student_id: a for a in result.scalars().all()}

        created = skipped = reactivated = 0
        for student_id in student_ids:
            assignment = existing.get(student_id)
            if assignment is None:
                created += 1
                if not data.dry_run:
                    student = students[student_id]
                    self.db.add(
                        StudentFeeAssignment(
                            school_id=school_id,
                            student_id=student_id,
                            fee_structure_id=structure.id,
                            academic_year_id=structure.academic_year_id,
                            class_id=student.class_id,
                            school_level_id=student.school_level_id,
                            is_active=True,
                            assigned_by_id=assigned_by_id,
                        )
                    )
            elif not assignment.is_active and data.reactivate_existing:
                reactivated += 1
                if not data.dry_run:
                    assignment.is_active = True
            else:
                skipped += 1

        outcome = AssignStudentsResult(
            total_targeted=len(student_ids),
            created_count=created,
            skipped_existing=skipped,
            reactivated_count=reactivated,
            dry_run=data.dry_run,
        )

        if data.dry_run:
            return outcome

        await self.db.flush()
        await self.audit.log(
            action=AuditAction.FEE_ASSIGN,
            entity_type="FeeStructure",
            entity_id=structure.id,
            school_id=school_id,
            user_id=assigned_by_id,
            entity_identifier=structure.name,
            new_values=outcome.model_dump(),
        )
        await self.db.commit()
        return outcome

    async def _resolve_assignment_targets(
        self, school_id: int, structure: FeeStructure, data: AssignStudentsRequest
    ) -> dict[int, Student]:
        """Students targeted by an assignment request, keyed by id in target order."""
        if data.student_ids is not None:
            result = await self.db.execute(
                select(Student).where(
                    Student.school_id == school_id,
                    Student.id.in_(data.student_ids),
                )
            )
            found = {s.id: s for s in result.scalars().all()}
            missing = [sid for sid in data.student_ids if sid not in found]
            if missing:
                raise NotFoundError("Student", ", ".join(str(sid) for sid in missing))
            return {sid: found[sid] for sid in data.student_ids}

        if data.class_id is not None:
            if structure.class_id is not None and data.class_id != structure.class_id:
                raise ValidationError(
                    f"Class {data.class_id} does not match fee structure class {structure.class_id}",
                    field="class_id",
                )
            field, placement = "class_id", Student.class_id == data.class_id
        else:
            if (
                structure.school_level_id is not None
                and data.school_level_id != structure.school_level_id
            ):
                raise ValidationError(
                    f"School level {data.school_level_id} does not match fee structure "
                    f"school level {structure.school_level_id}",
                    field="school_level_id",
                )
            field, placement = "school_level_id", Student.school_level_id == data.school_level_id

        result = await self.db.execute(
            select(Student)
            .where(
                Student.school_id == school_id,
                Student.status == StudentStatus.ACTIVE.value,
                placement,
            )
            .order_by(Student.id)
        )
        students = {s.id: s for s in result.scalars().all()}
        if not students:
            raise ValidationError("No active students found for the given placement", field=field)
        return students

    async def revoke_assignments(
        self,
        school_id: int,
        fee_structure_id: int,
        student_ids: list[int],
        revoked_by_id: int,
    ) -> int:
        """Deactivate assignments of the given students. Returns the number revoked."""
        structure = await self.get_fee_structure(school_id, fee_structure_id)

        result = await self.db.execute(
            select(StudentFeeAssignment).where(
                StudentFeeAssignment.school_id == school_id,
                StudentFeeAssignment.fee_structure_id == structure.id,
                StudentFeeAssignment.student_id.in_(student_ids),
                StudentFeeAssignment.is_active.is_(True),
            )
        )
        assignments = list(result.scalars().all())
        for assignment in assignments:
            assignment.is_active = False

        if assignments:
            await self.db.flush()
            await self.audit.log(
                action=AuditAction.FEE_REVOKE,
                entity_type="FeeStructure",
                entity_id=structure.id,
                school_id=school_id,
                user_id=revoked_by_id,
                entity_identifier=structure.name,
                new_values={"student_ids": sorted(a.student_id for a in assignments)},
            )
        await self.db.commit()
        return len(assignments)

    async def list_assignments(
        self,
        school_id: int,
        fee_structure_id: int,
        academic_year_id: int,
        include_inactive: bool = False,
        student_ids: list[int] | None = None,
    ) -> list[StudentFeeAssignment]:
        """Assignments of a structure for a year, in creation order."""
        query = select(StudentFeeAssignment).where(
            StudentFeeAssignment.school_id == school_id,
            StudentFeeAssignment.fee_structure_id == fee_structure_id,
            StudentFeeAssignment.academic_year_id == academic_year_id,
        )
        if not include_inactive:
            query = query.where(StudentFeeAssignment.is_active.is_(True))
        if student_ids:
            query = query.where(StudentFeeAssignment.student_id.in_(student_ids))
        result = await self.db.execute(query.order_by(StudentFeeAssignment.id))
        return list(result.scalars().all())
