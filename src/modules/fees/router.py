"""API endpoints for fee structures, assignments and invoice generation."""

from datetime import date

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import LedgerAdmin, LedgerWriter
from src.core.clock import get_today
from src.core.database.session import get_db
from src.modules.fees.models import FeeStructure
from src.modules.fees.schemas import (
    AssignStudentsRequest,
    AssignStudentsResult,
    FeeComponentResponse,
    FeeStructureCreate,
    FeeStructureResponse,
    FeeStructureUpdate,
    RevokeAssignmentsRequest,
    RevokeAssignmentsResult,
)
from src.modules.fees.service import FeeStructureService
from src.modules.invoices.schemas import GenerateInvoicesRequest, GenerateInvoicesResult
from src.modules.invoices.service import InvoiceService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(
    prefix="/schools/{school_id}/finance/fee-structures",
    tags=["Fee Structures"],
)


def _structure_to_response(structure: FeeStructure) -> FeeStructureResponse:
    return FeeStructureResponse(
        id=structure.id,
        school_id=structure.school_id,
        name=structure.name,
        description=structure.description,
        amount=structure.amount,
        frequency=structure.frequency,
        academic_year_id=structure.academic_year_id,
        class_id=structure.class_id,
        school_level_id=structure.school_level_id,
        is_active=structure.is_active,
        components=[
            FeeComponentResponse.model_validate(c)
            for c in sorted(structure.components, key=lambda c: (c.order, c.id))
        ],
        created_at=structure.created_at,
        updated_at=structure.updated_at,
    )


@router.post(
    "",
    response_model=ApiResponse[FeeStructureResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_fee_structure(
    school_id: int,
    data: FeeStructureCreate,
    current_user: LedgerAdmin,
    db: AsyncSession = Depends(get_db),
):
    """Create a fee structure. Requires SchoolAdmin or Accountant role."""
    service = FeeStructureService(db)
    structure = await service.create_fee_structure(school_id, data, current_user.id)
    return ApiResponse(
        success=True,
        message="Fee structure created successfully",
        data=_structure_to_response(structure),
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[FeeStructureResponse]],
)
async def list_fee_structures(
    school_id: int,
    current_user: LedgerWriter,
    academic_year_id: int | None = Query(None),
    is_active: bool | None = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=200),
    db: AsyncSession = Depends(get_db),
):
    """List fee structures."""
    service = FeeStructureService(db)
    structures, total = await service.list_fee_structures(
        school_id,
        academic_year_id=academic_year_id,
        is_active=is_active,
        page=page,
        limit=limit,
    )
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[_structure_to_response(s) for s in structures],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/{fee_structure_id}",
    response_model=ApiResponse[FeeStructureResponse],
)
async def get_fee_structure(
    school_id: int,
    fee_structure_id: int,
    current_user: LedgerWriter,
    db: AsyncSession = Depends(get_db),
):
    """Get fee structure with its components."""
    service = FeeStructureService(db)
    structure = await service.get_fee_structure(school_id, fee_structure_id)
    return ApiResponse(success=True, data=_structure_to_response(structure))


@router.put(
    "/{fee_structure_id}",
    response_model=ApiResponse[FeeStructureResponse],
)
async def update_fee_structure(
    school_id: int,
    fee_structure_id: int,
    data: FeeStructureUpdate,
    current_user: LedgerAdmin,
    db: AsyncSession = Depends(get_db),
):
    """Update a fee structure. Requires SchoolAdmin or Accountant role."""
    service = FeeStructureService(db)
    structure = await service.update_fee_structure(
        school_id, fee_structure_id, data, current_user.id
    )
    return ApiResponse(
        success=True,
        message="Fee structure updated successfully",
        data=_structure_to_response(structure),
    )


@router.post(
    "/{fee_structure_id}/assign",
    response_model=ApiResponse[AssignStudentsResult],
)
async def assign_students(
    school_id: int,
    fee_structure_id: int,
    data: AssignStudentsRequest,
    current_user: LedgerAdmin,
    db: AsyncSession = Depends(get_db),
):
    """Assign students to a fee structure. Requires SchoolAdmin or Accountant role."""
    service = FeeStructureService(db)
    result = await service.assign_students(school_id, fee_structure_id, data, current_user.id)
    return ApiResponse(success=True, data=result)


@router.post(
    "/{fee_structure_id}/revoke",
    response_model=ApiResponse[RevokeAssignmentsResult],
)
async def revoke_assignments(
    school_id: int,
    fee_structure_id: int,
    data: RevokeAssignmentsRequest,
    current_user: LedgerAdmin,
    db: AsyncSession = Depends(get_db),
):
    """Revoke student assignments. Requires SchoolAdmin or Accountant role."""
    service = FeeStructureService(db)
    revoked = await service.revoke_assignments(
        school_id, fee_structure_id, data.student_ids, current_user.id
    )
    return ApiResponse(success=True, data=RevokeAssignmentsResult(revoked_count=revoked))


@router.post(
    "/{fee_structure_id}/generate-invoices",
    response_model=ApiResponse[GenerateInvoicesResult],
)
async def generate_invoices(
    school_id: int,
    fee_structure_id: int,
    data: GenerateInvoicesRequest,
    current_user: LedgerAdmin,
    today: date = Depends(get_today),
    db: AsyncSession = Depends(get_db),
):
    """
    Generate draft invoices for the students assigned to a fee structure.

    Failures for individual students are listed in `failed`; invoices created for
    the others stay. Requires SchoolAdmin or Accountant role.
    """
    service = InvoiceService(db)
    result = await service.generate_invoices(
        school_id, fee_structure_id, data, current_user.id, today
    )
    message = "Dry run completed" if result.dry_run else f"{result.created} invoice(s) generated"
    return ApiResponse(success=True, message=message, data=result)
