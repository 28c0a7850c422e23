"""Tests for fee structures, the fee resolver and student assignment."""

from decimal import Decimal

import pytest
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog
from src.core.exceptions import NotFoundError, ScopeMismatchError, ValidationError
from src.modules.fees.models import FeeComponent, FeeStructure, StudentFeeAssignment
from src.modules.fees.resolver import ResolvedLine, check_scope, resolve_fee_lines
from src.modules.fees.schemas import (
    AssignStudentsRequest,
    FeeComponentInput,
    FeeStructureCreate,
    FeeStructureUpdate,
)
from src.modules.fees.service import FeeStructureService
from src.modules.students.models import StudentStatus


def _structure(**overrides) -> FeeStructure:
    values = dict(
        id=1,
        school_id=1,
        name="Term 1 Fees",
        amount=Decimal("1500.00"),
        academic_year_id=2026,
        class_id=3,
        school_level_id=None,
    )
    values.update(overrides)
    return FeeStructure(**values)


def _assignment(**overrides) -> StudentFeeAssignment:
    values = dict(
        id=1,
        school_id=1,
        student_id=7,
        fee_structure_id=1,
        academic_year_id=2026,
        class_id=3,
        school_level_id=None,
    )
    values.update(overrides)
    return StudentFeeAssignment(**values)


class TestResolveFeeLines:
    """Tests for the fee resolver (no database)."""

    def test_single_line_without_components(self):
        lines = resolve_fee_lines(_structure(), _assignment())

        assert lines == [
            ResolvedLine(
                description="Term 1 Fees",
                unit_price=Decimal("1500.00"),
                fee_structure_id=1,
            )
        ]
        assert lines[0].quantity == 1
        assert lines[0].total_price == Decimal("1500.00")

    def test_one_line_per_component_in_order(self):
        structure = _structure(
            components=[
                FeeComponent(id=11, name="Tuition", amount=Decimal("1200.00"), order=1),
                FeeComponent(
                    id=10,
                    name="Sweater",
                    amount=Decimal("300.00"),
                    order=0,
                    inventory_item_id=5,
                ),
            ]
        )

        lines = resolve_fee_lines(structure, _assignment())

        assert [line.description for line in lines] == ["Sweater", "Tuition"]
        assert lines[0].fee_component_id == 10
        assert lines[0].inventory_item_id == 5
        assert lines[1].inventory_item_id is None
        assert all(line.fee_structure_id == 1 for line in lines)
        assert sum(line.total_price for line in lines) == Decimal("1500.00")

    def test_component_sum_is_not_checked_at_resolve_time(self):
        structure = _structure(
            components=[FeeComponent(id=10, name="Tuition", amount=Decimal("100.00"), order=0)]
        )
        lines = resolve_fee_lines(structure, _assignment())
        assert lines[0].unit_price == Decimal("100.00")

    def test_academic_year_mismatch(self):
        with pytest.raises(ScopeMismatchError):
            resolve_fee_lines(_structure(), _assignment(academic_year_id=2025))

    def test_class_mismatch(self):
        with pytest.raises(ScopeMismatchError) as exc_info:
            resolve_fee_lines(_structure(), _assignment(class_id=4))
        assert exc_info.value.details["student_id"] == 7

    def test_school_level_mismatch(self):
        structure = _structure(class_id=None, school_level_id=2)
        with pytest.raises(ScopeMismatchError):
            resolve_fee_lines(structure, _assignment(class_id=None, school_level_id=9))

    def test_assignment_without_placement_matches(self):
        check_scope(_structure(), _assignment(class_id=None))

    @pytest.mark.parametrize(
        "class_id,school_level_id", [(3, 2), (None, None)]
    )
    def test_structure_needs_exactly_one_scope(self, class_id, school_level_id):
        structure = _structure(class_id=class_id, school_level_id=school_level_id)
        with pytest.raises(ScopeMismatchError):
            resolve_fee_lines(structure, _assignment())

    def test_assignment_of_other_structure(self):
        with pytest.raises(ScopeMismatchError):
            resolve_fee_lines(_structure(), _assignment(fee_structure_id=99))


class TestFeeStructureService:
    """Tests for FeeStructureService."""

    async def test_create_derives_amount_from_components(
        self, db_session: AsyncSession, school, admin_user, make_inventory_item
    ):
        sweater = await make_inventory_item(quantity_in_stock=5)
        service = FeeStructureService(db_session)

        structure = await service.create_fee_structure(
            school.id,
            FeeStructureCreate(
                name="Term 1",
                academic_year_id=2026,
                class_id=1,
                components=[
                    FeeComponentInput(name="Tuition", amount=Decimal("1200.00")),
                    FeeComponentInput(
                        name="Sweater", amount=Decimal("300.00"), inventory_item_id=sweater.id
                    ),
                ],
            ),
            admin_user.id,
        )

        assert structure.amount == Decimal("1500.00")
        assert [c.name for c in structure.components] == ["Tuition", "Sweater"]
        assert [c.order for c in structure.components] == [0, 1]
        assert structure.components[1].inventory_item_id == sweater.id

        audit = await db_session.execute(
            select(AuditLog).where(AuditLog.entity_type == "FeeStructure")
        )
        assert audit.scalar_one().action == "fee_structure.create"

    async def test_create_rejects_amount_mismatch(
        self, db_session: AsyncSession, school, admin_user
    ):
        service = FeeStructureService(db_session)
        with pytest.raises(ValidationError, match="Amount mismatch"):
            await service.create_fee_structure(
                school.id,
                FeeStructureCreate(
                    name="Term 1",
                    amount=Decimal("1000.00"),
                    academic_year_id=2026,
                    class_id=1,
                    components=[FeeComponentInput(name="Tuition", amount=Decimal("1200.00"))],
                ),
                admin_user.id,
            )

    async def test_create_requires_amount_without_components(
        self, db_session: AsyncSession, school, admin_user
    ):
        service = FeeStructureService(db_session)
        with pytest.raises(ValidationError):
            await service.create_fee_structure(
                school.id,
                FeeStructureCreate(name="Term 1", academic_year_id=2026, class_id=1),
                admin_user.id,
            )

    @pytest.mark.parametrize("class_id,school_level_id", [(1, 2), (None, None)])
    async def test_create_requires_exactly_one_scope(
        self, db_session: AsyncSession, school, admin_user, class_id, school_level_id
    ):
        service = FeeStructureService(db_session)
        with pytest.raises(ValidationError) as exc_info:
            await service.create_fee_structure(
                school.id,
                FeeStructureCreate(
                    name="Term 1",
                    amount=Decimal("100.00"),
                    academic_year_id=2026,
                    class_id=class_id,
                    school_level_id=school_level_id,
                ),
                admin_user.id,
            )
        assert exc_info.value.details["field"] == "class_id"

    async def test_create_rejects_unknown_inventory_item(
        self, db_session: AsyncSession, school, admin_user
    ):
        service = FeeStructureService(db_session)
        with pytest.raises(NotFoundError):
            await service.create_fee_structure(
                school.id,
                FeeStructureCreate(
                    name="Term 1",
                    academic_year_id=2026,
                    class_id=1,
                    components=[
                        FeeComponentInput(
                            name="Sweater", amount=Decimal("300.00"), inventory_item_id=999
                        )
                    ],
                ),
                admin_user.id,
            )

    async def test_update_replaces_components(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure
    ):
        structure = await make_fee_structure(
            components=[("Tuition", "1200.00", None), ("Activity", "300.00", None)]
        )
        service = FeeStructureService(db_session)

        updated = await service.update_fee_structure(
            school.id,
            structure.id,
            FeeStructureUpdate(
                name="Term 1 (revised)",
                components=[FeeComponentInput(name="Tuition", amount=Decimal("1400.00"))],
            ),
            admin_user.id,
        )

        assert updated.name == "Term 1 (revised)"
        assert updated.amount == Decimal("1400.00")
        assert [c.name for c in updated.components] == ["Tuition"]

    async def test_update_amount_must_match_existing_components(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure
    ):
        structure = await make_fee_structure(components=[("Tuition", "1200.00", None)])
        service = FeeStructureService(db_session)

        with pytest.raises(ValidationError, match="Amount mismatch"):
            await service.update_fee_structure(
                school.id,
                structure.id,
                FeeStructureUpdate(amount=Decimal("999.00")),
                admin_user.id,
            )

    async def test_update_scope(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure
    ):
        structure = await make_fee_structure(amount=Decimal("500.00"))
        service = FeeStructureService(db_session)

        updated = await service.update_fee_structure(
            school.id,
            structure.id,
            FeeStructureUpdate(class_id=None, school_level_id=4),
            admin_user.id,
        )
        assert updated.class_id is None
        assert updated.school_level_id == 4

    async def test_get_other_school_is_not_found(
        self, db_session: AsyncSession, other_school, make_fee_structure
    ):
        structure = await make_fee_structure(amount=Decimal("500.00"))
        with pytest.raises(NotFoundError):
            await FeeStructureService(db_session).get_fee_structure(other_school.id, structure.id)

    async def test_list_filters_by_year(
        self, db_session: AsyncSession, school, make_fee_structure
    ):
        await make_fee_structure(name="A", amount=Decimal("100.00"), academic_year_id=2026)
        await make_fee_structure(name="B", amount=Decimal("100.00"), academic_year_id=2025)

        structures, total = await FeeStructureService(db_session).list_fee_structures(
            school.id, academic_year_id=2026
        )
        assert total == 1
        assert structures[0].name == "A"


class TestStudentAssignment:
    """Tests for assigning and revoking students."""

    async def test_assign_creates_and_skips_existing(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure, make_student
    ):
        structure = await make_fee_structure(amount=Decimal("500.00"))
        first = await make_student(class_id=1)
        second = await make_student(first_name="Brian", class_id=1)
        service = FeeStructureService(db_session)

        result = await service.assign_students(
            school.id, structure.id, AssignStudentsRequest(student_ids=[first.id]), admin_user.id
        )
        assert result.created_count == 1

        result = await service.assign_students(
            school.id,
            structure.id,
            AssignStudentsRequest(student_ids=[first.id, second.id, second.id]),
            admin_user.id,
        )
        assert result.total_targeted == 2
        assert result.created_count == 1
        assert result.skipped_existing == 1

        assignments = await service.list_assignments(school.id, structure.id, 2026)
        assert {a.student_id for a in assignments} == {first.id, second.id}
        assert all(a.class_id == 1 for a in assignments)

    async def test_assign_dry_run_writes_nothing(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure, make_student
    ):
        structure = await make_fee_structure(amount=Decimal("500.00"))
        student = await make_student()
        service = FeeStructureService(db_session)

        result = await service.assign_students(
            school.id,
            structure.id,
            AssignStudentsRequest(student_ids=[student.id], dry_run=True),
            admin_user.id,
        )

        assert result.dry_run is True
        assert result.created_count == 1
        assert await service.list_assignments(school.id, structure.id, 2026) == []

    async def test_assign_unknown_student(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure
    ):
        structure = await make_fee_structure(amount=Decimal("500.00"))
        with pytest.raises(NotFoundError):
            await FeeStructureService(db_session).assign_students(
                school.id, structure.id, AssignStudentsRequest(student_ids=[12345]), admin_user.id
            )

    async def test_revoke_and_reactivate(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure, make_student
    ):
        structure = await make_fee_structure(amount=Decimal("500.00"))
        student = await make_student()
        service = FeeStructureService(db_session)
        await service.assign_students(
            school.id, structure.id, AssignStudentsRequest(student_ids=[student.id]), admin_user.id
        )

        revoked = await service.revoke_assignments(
            school.id, structure.id, [student.id], admin_user.id
        )
        assert revoked == 1
        assert await service.list_assignments(school.id, structure.id, 2026) == []
        assert (
            await service.revoke_assignments(school.id, structure.id, [student.id], admin_user.id)
            == 0
        )

        result = await service.assign_students(
            school.id,
            structure.id,
            AssignStudentsRequest(student_ids=[student.id]),
            admin_user.id,
        )
        assert result.skipped_existing == 1

        result = await service.assign_students(
            school.id,
            structure.id,
            AssignStudentsRequest(student_ids=[student.id], reactivate_existing=True),
            admin_user.id,
        )
        assert result.reactivated_count == 1
        assignments = await service.list_assignments(school.id, structure.id, 2026)
        assert [a.student_id for a in assignments] == [student.id]

    async def test_assign_by_class(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure, make_student
    ):
        structure = await make_fee_structure(amount=Decimal("500.00"), class_id=4)
        first = await make_student(class_id=4)
        second = await make_student(first_name="Brian", class_id=4)
        await make_student(first_name="Chege", class_id=5)
        service = FeeStructureService(db_session)

        result = await service.assign_students(
            school.id, structure.id, AssignStudentsRequest(class_id=4), admin_user.id
        )

        assert result.total_targeted == 2
        assert result.created_count == 2
        assignments = await service.list_assignments(school.id, structure.id, 2026)
        assert [a.student_id for a in assignments] == [first.id, second.id]
        assert all(a.class_id == 4 for a in assignments)

    async def test_assign_by_school_level(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure, make_student
    ):
        structure = await make_fee_structure(
            amount=Decimal("500.00"), class_id=None, school_level_id=2
        )
        primary = await make_student(class_id=4, school_level_id=2)
        await make_student(first_name="Brian", class_id=9, school_level_id=3)
        service = FeeStructureService(db_session)

        result = await service.assign_students(
            school.id, structure.id, AssignStudentsRequest(school_level_id=2), admin_user.id
        )

        assert result.created_count == 1
        assignments = await service.list_assignments(school.id, structure.id, 2026)
        assert [a.student_id for a in assignments] == [primary.id]

    async def test_assign_by_class_skips_inactive_students(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure, make_student
    ):
        structure = await make_fee_structure(amount=Decimal("500.00"), class_id=4)
        active = await make_student(class_id=4)
        left = await make_student(first_name="Brian", class_id=4)
        left.status = StudentStatus.INACTIVE.value
        await db_session.commit()

        result = await FeeStructureService(db_session).assign_students(
            school.id, structure.id, AssignStudentsRequest(class_id=4), admin_user.id
        )

        assert result.total_targeted == 1
        assignments = await FeeStructureService(db_session).list_assignments(
            school.id, structure.id, 2026
        )
        assert [a.student_id for a in assignments] == [active.id]

    async def test_class_contradicting_scope_is_rejected(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure, make_student
    ):
        structure = await make_fee_structure(amount=Decimal("500.00"), class_id=4)
        await make_student(class_id=5)

        with pytest.raises(ValidationError, match="does not match") as exc_info:
            await FeeStructureService(db_session).assign_students(
                school.id, structure.id, AssignStudentsRequest(class_id=5), admin_user.id
            )
        assert exc_info.value.details == {"field": "class_id"}

    async def test_level_contradicting_scope_is_rejected(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure
    ):
        structure = await make_fee_structure(
            amount=Decimal("500.00"), class_id=None, school_level_id=2
        )

        with pytest.raises(ValidationError) as exc_info:
            await FeeStructureService(db_session).assign_students(
                school.id, structure.id, AssignStudentsRequest(school_level_id=3), admin_user.id
            )
        assert exc_info.value.details == {"field": "school_level_id"}

    async def test_empty_class_is_rejected(
        self, db_session: AsyncSession, school, admin_user, make_fee_structure
    ):
        structure = await make_fee_structure(amount=Decimal("500.00"), class_id=4)

        with pytest.raises(ValidationError, match="No active students"):
            await FeeStructureService(db_session).assign_students(
                school.id, structure.id, AssignStudentsRequest(class_id=4), admin_user.id
            )

    @pytest.mark.parametrize(
        "target",
        [{}, {"student_ids": [1], "class_id": 4}, {"class_id": 4, "school_level_id": 2}],
    )
    def test_exactly_one_target(self, target):
        with pytest.raises(PydanticValidationError):
            AssignStudentsRequest(**target)
