"""Schemas for Inventory module."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, Field, field_validator


# --- Inventory Item Schemas ---


class InventoryItemCreate(BaseModel):
    """Schema for creating an inventory item."""

    sku: str = Field(..., min_length=1, max_length=50)
    name: str = Field(..., min_length=1, max_length=200)
    unit_price: Decimal | None = Field(None, ge=0, decimal_places=2)
    quantity_in_stock: int = Field(0, ge=0, description="Opening stock")


class InventoryItemResponse(BaseModel):
    """Schema for inventory item response."""

    id: int
    school_id: int
    sku: str
    name: str
    unit_price: Decimal | None
    quantity_in_stock: int
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


# --- Stock Movement Schemas ---


class AdjustStockRequest(BaseModel):
    """Schema for stock adjustment (receipt, correction, write-off)."""

    quantity: int = Field(..., description="Adjustment quantity (positive to add, negative to remove)")
    reason: str = Field(..., min_length=1, description="Reason for adjustment")

    @field_validator("quantity")
    @classmethod
    def quantity_not_zero(cls, v: int) -> int:
        if v == 0:
            raise ValueError("Adjustment quantity must not be zero")
        return v


class StockMovementResponse(BaseModel):
    """Schema for stock movement response."""

    id: int
    inventory_item_id: int
    movement_type: str
    quantity: int
    quantity_before: int
    quantity_after: int
    reference_type: str | None
    reference_id: int | None
    notes: str | None
    created_by_id: int
    created_at: datetime

    model_config = {"from_attributes": True}
