"""Turns a fee structure into billable invoice lines for one student."""

from dataclasses import dataclass
from decimal import Decimal

from src.core.exceptions import ScopeMismatchError
from src.modules.fees.models import FeeStructure, StudentFeeAssignment
from src.shared.utils.money import line_total, round_money


@dataclass(frozen=True)
class ResolvedLine:
    """Billable line produced from a fee structure."""

    description: str
    unit_price: Decimal
    fee_structure_id: int
    quantity: int = 1
    fee_component_id: int | None = None
    inventory_item_id: int | None = None

    @property
    def total_price(self) -> Decimal:
        return line_total(self.quantity, self.unit_price)


def check_scope(structure: FeeStructure, assignment: StudentFeeAssignment) -> None:
    """
    Raise ScopeMismatchError when an assignment contradicts its structure's scope.

    A structure is scoped to exactly one class or one school level. The placement
    recorded on the assignment, where present, must match that scope.
    """
    student_id = assignment.student_id

    if not structure.has_single_scope:
        raise ScopeMismatchError(
            f"Fee structure {structure.id} must be scoped to exactly one class or school level",
            student_id=student_id,
        )

    if assignment.fee_structure_id != structure.id:
        raise ScopeMismatchError(
            f"Assignment {assignment.id} belongs to fee structure {assignment.fee_structure_id}",
            student_id=student_id,
        )

    if assignment.academic_year_id != structure.academic_year_id:
        raise ScopeMismatchError(
            f"Assignment academic year {assignment.academic_year_id} does not match "
            f"fee structure academic year {structure.academic_year_id}",
            student_id=student_id,
        )

    if (
        structure.class_id is not None
        and assignment.class_id is not None
        and assignment.class_id != structure.class_id
    ):
        raise ScopeMismatchError(
            f"Student class {assignment.class_id} does not match fee structure class "
            f"{structure.class_id}",
            student_id=student_id,
        )

    if (
        structure.school_level_id is not None
        and assignment.school_level_id is not None
        and assignment.school_level_id != structure.school_level_id
    ):
        raise ScopeMismatchError(
            f"Student school level {assignment.school_level_id} does not match fee structure "
            f"school level {structure.school_level_id}",
            student_id=student_id,
        )


def resolve_fee_lines(
    structure: FeeStructure, assignment: StudentFeeAssignment
) -> list[ResolvedLine]:
    """
    Resolve the billable lines of a fee structure for an assigned student.

    One line per component in ascending order, or a single line named after the
    structure when it has no components. Component sums are not checked here;
    they are enforced when the structure is saved.
    """
    check_scope(structure, assignment)

    components = sorted(structure.components, key=lambda c: (c.order, c.id))
    if not components:
        return [
            ResolvedLine(
                description=structure.name,
                unit_price=round_money(structure.amount),
                fee_structure_id=structure.id,
            )
        ]

    return [
        ResolvedLine(
            description=component.name,
            unit_price=round_money(component.amount),
            fee_structure_id=structure.id,
            fee_component_id=component.id,
            inventory_item_id=component.inventory_item_id,
        )
        for component in components
    ]
