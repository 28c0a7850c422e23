"""API endpoints for Inventory module."""

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.auth.dependencies import LedgerAdmin, LedgerWriter
from src.core.database.session import get_db
from src.modules.inventory.schemas import (
    AdjustStockRequest,
    InventoryItemCreate,
    InventoryItemResponse,
    StockMovementResponse,
)
from src.modules.inventory.service import InventoryService
from src.shared.schemas.base import ApiResponse, PaginatedResponse

router = APIRouter(
    prefix="/schools/{school_id}/finance/inventory-items",
    tags=["Inventory"],
)


@router.post(
    "",
    response_model=ApiResponse[InventoryItemResponse],
    status_code=status.HTTP_201_CREATED,
)
async def create_inventory_item(
    school_id: int,
    data: InventoryItemCreate,
    current_user: LedgerAdmin,
    db: AsyncSession = Depends(get_db),
):
    """Create a stocked item. Requires SchoolAdmin or Accountant role."""
    service = InventoryService(db)
    item = await service.create_item(school_id, data, current_user.id)
    return ApiResponse(
        success=True,
        message="Inventory item created successfully",
        data=InventoryItemResponse.model_validate(item),
    )


@router.get(
    "",
    response_model=ApiResponse[PaginatedResponse[InventoryItemResponse]],
)
async def list_inventory_items(
    school_id: int,
    current_user: LedgerWriter,
    include_inactive: bool = Query(False),
    page: int = Query(1, ge=1),
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """List stocked items."""
    service = InventoryService(db)
    items, total = await service.list_items(
        school_id, include_inactive=include_inactive, page=page, limit=limit
    )
    return ApiResponse(
        success=True,
        data=PaginatedResponse.create(
            items=[InventoryItemResponse.model_validate(i) for i in items],
            total=total,
            page=page,
            limit=limit,
        ),
    )


@router.get(
    "/{item_id}",
    response_model=ApiResponse[InventoryItemResponse],
)
async def get_inventory_item(
    school_id: int,
    item_id: int,
    current_user: LedgerWriter,
    db: AsyncSession = Depends(get_db),
):
    """Get a stocked item with its current quantity."""
    service = InventoryService(db)
    item = await service.get_item(school_id, item_id)
    return ApiResponse(success=True, data=InventoryItemResponse.model_validate(item))


@router.get(
    "/{item_id}/movements",
    response_model=ApiResponse[list[StockMovementResponse]],
)
async def list_stock_movements(
    school_id: int,
    item_id: int,
    current_user: LedgerWriter,
    limit: int = Query(100, ge=1, le=500),
    db: AsyncSession = Depends(get_db),
):
    """Movement history of an item, newest first."""
    service = InventoryService(db)
    movements = await service.get_movements(school_id, item_id, limit=limit)
    return ApiResponse(
        success=True,
        data=[StockMovementResponse.model_validate(m) for m in movements],
    )


@router.post(
    "/{item_id}/adjust",
    response_model=ApiResponse[StockMovementResponse],
    status_code=status.HTTP_201_CREATED,
)
async def adjust_stock(
    school_id: int,
    item_id: int,
    data: AdjustStockRequest,
    current_user: LedgerAdmin,
    db: AsyncSession = Depends(get_db),
):
    """Adjust stock (receipt, correction, write-off). Requires SchoolAdmin or Accountant role."""
    service = InventoryService(db)
    movement = await service.adjust_stock(school_id, item_id, data, current_user.id)
    return ApiResponse(
        success=True,
        message="Stock adjusted successfully",
        data=StockMovementResponse.model_validate(movement),
    )
