from datetime import datetime
from decimal import Decimal

from pydantic import Field, field_validator, model_validator

from src.modules.fees.models import FeeFrequency
from src.shared.schemas import BaseSchema


# --- Fee Structure Schemas ---


class FeeComponentInput(BaseSchema):
    """Component line of a fee structure."""

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    amount: Decimal = Field(..., gt=0, decimal_places=2)
    order: int | None = Field(None, ge=0)
    inventory_item_id: int | None = None


class FeeStructureCreate(BaseSchema):
    """Schema for creating a fee structure.

    amount may be omitted when components are given; it is then their sum.
    """

    name: str = Field(..., min_length=1, max_length=200)
    description: str | None = None
    amount: Decimal | None = Field(None, gt=0, decimal_places=2)
    frequency: FeeFrequency = FeeFrequency.TERMLY
    academic_year_id: int
    class_id: int | None = None
    school_level_id: int | None = None
    is_active: bool = True
    components: list[FeeComponentInput] = []


class FeeStructureUpdate(BaseSchema):
    """Schema for updating a fee structure. Components, when given, replace the list."""

    name: str | None = Field(None, min_length=1, max_length=200)
    description: str | None = None
    amount: Decimal | None = Field(None, gt=0, decimal_places=2)
    frequency: FeeFrequency | None = None
    class_id: int | None = None
    school_level_id: int | None = None
    is_active: bool | None = None
    components: list[FeeComponentInput] | None = None


class FeeComponentResponse(BaseSchema):
    """Schema for fee component response."""

    id: int
    name: str
    description: str | None
    amount: Decimal
    order: int
    inventory_item_id: int | None


class FeeStructureResponse(BaseSchema):
    """Schema for fee structure response."""

    id: int
    school_id: int
    name: str
    description: str | None
    amount: Decimal
    frequency: str
    academic_year_id: int
    class_id: int | None
    school_level_id: int | None
    is_active: bool
    components: list[FeeComponentResponse]
    created_at: datetime
    updated_at: datetime


# --- Assignment Schemas ---


class AssignStudentsRequest(BaseSchema):
    """
    Bulk assignment of students to a fee structure.

    Targets are given by exactly one of: an explicit list of student_ids, every
    student currently placed in class_id, or every student in school_level_id.
    """

    student_ids: list[int] | None = Field(None, min_length=1)
    class_id: int | None = None
    school_level_id: int | None = None
    reactivate_existing: bool = False
    dry_run: bool = False

    @field_validator("student_ids")
    @classmethod
    def dedupe_student_ids(cls, v: list[int] | None) -> list[int] | None:
        return list(dict.fromkeys(v)) if v is not None else None

    @model_validator(mode="after")
    def validate_target(self):
        given = [
            name
            for name in ("student_ids", "class_id", "school_level_id")
            if getattr(self, name) is not None
        ]
        if len(given) != 1:
            raise ValueError("Provide exactly one of student_ids, class_id or school_level_id")
        return self


class AssignStudentsResult(BaseSchema):
    """Outcome of a bulk assignment."""

    total_targeted: int
    created_count: int
    skipped_existing: int
    reactivated_count: int
    dry_run: bool


class RevokeAssignmentsRequest(BaseSchema):
    """Students whose assignment to a fee structure is revoked."""

    student_ids: list[int] = Field(..., min_length=1)


class RevokeAssignmentsResult(BaseSchema):
    revoked_count: int
