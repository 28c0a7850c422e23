"""Tests for Inventory module."""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.exceptions import (
    DuplicateError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from src.modules.inventory.models import MovementType, StockMovement
from src.modules.inventory.schemas import AdjustStockRequest, InventoryItemCreate
from src.modules.inventory.service import InventoryService


class TestInventoryService:
    """Tests for InventoryService."""

    async def test_create_item_records_opening_stock(
        self, db_session: AsyncSession, school, admin_user
    ):
        service = InventoryService(db_session)
        item = await service.create_item(
            school.id,
            InventoryItemCreate(sku="SWT-M", name="Sweater M", quantity_in_stock=12),
            admin_user.id,
        )

        assert item.quantity_in_stock == 12
        movements = await service.get_movements(school.id, item.id)
        assert len(movements) == 1
        assert movements[0].movement_type == MovementType.RECEIPT.value
        assert movements[0].quantity_after == 12

    async def test_create_duplicate_sku(self, db_session: AsyncSession, school, admin_user):
        service = InventoryService(db_session)
        await service.create_item(
            school.id, InventoryItemCreate(sku="SWT-M", name="Sweater M"), admin_user.id
        )
        with pytest.raises(DuplicateError):
            await service.create_item(
                school.id, InventoryItemCreate(sku="SWT-M", name="Other"), admin_user.id
            )

    async def test_adjust_stock(
        self, db_session: AsyncSession, school, admin_user, make_inventory_item
    ):
        item = await make_inventory_item(quantity_in_stock=5)
        service = InventoryService(db_session)

        movement = await service.adjust_stock(
            school.id, item.id, AdjustStockRequest(quantity=-2, reason="Damaged"), admin_user.id
        )

        assert movement.quantity_before == 5
        assert movement.quantity_after == 3
        assert (await service.get_item(school.id, item.id)).quantity_in_stock == 3

    async def test_adjust_below_zero_is_rejected(
        self, db_session: AsyncSession, school, admin_user, make_inventory_item
    ):
        item = await make_inventory_item(quantity_in_stock=1)
        with pytest.raises(ValidationError):
            await InventoryService(db_session).adjust_stock(
                school.id, item.id, AdjustStockRequest(quantity=-2, reason="Count"), admin_user.id
            )

    def test_zero_adjustment_is_invalid(self):
        with pytest.raises(ValueError):
            AdjustStockRequest(quantity=0, reason="Nothing")

    async def test_reconcile_takes_and_returns(
        self, db_session: AsyncSession, school, admin_user, make_inventory_item
    ):
        shirts = await make_inventory_item(quantity_in_stock=5, name="Shirt")
        ties = await make_inventory_item(quantity_in_stock=5, name="Tie")
        service = InventoryService(db_session)

        movements = await service.reconcile(
            school.id,
            {shirts.id: 2, ties.id: -1},
            actor_id=admin_user.id,
            reference_type="invoice",
            reference_id=1,
        )

        assert [m.movement_type for m in movements] == [
            MovementType.RESERVE.value,
            MovementType.RELEASE.value,
        ]
        assert shirts.quantity_in_stock == 3
        assert ties.quantity_in_stock == 6

    async def test_reconcile_shortage_changes_nothing(
        self, db_session: AsyncSession, school, admin_user, make_inventory_item
    ):
        shirts = await make_inventory_item(quantity_in_stock=5, name="Shirt")
        ties = await make_inventory_item(quantity_in_stock=1, name="Tie")
        service = InventoryService(db_session)

        with pytest.raises(InsufficientStockError) as exc_info:
            await service.reconcile(
                school.id, {shirts.id: 2, ties.id: 3}, actor_id=admin_user.id
            )

        assert exc_info.value.details == {"item_id": ties.id, "requested": 3, "available": 1}
        assert shirts.quantity_in_stock == 5
        assert ties.quantity_in_stock == 1
        result = await db_session.execute(select(StockMovement))
        assert result.scalars().all() == []

    async def test_lock_items_unknown_id(
        self, db_session: AsyncSession, school, make_inventory_item
    ):
        item = await make_inventory_item()
        with pytest.raises(NotFoundError):
            await InventoryService(db_session).lock_items(school.id, [item.id, 999])

    async def test_items_of_other_school_are_invisible(
        self, db_session: AsyncSession, other_school, make_inventory_item
    ):
        item = await make_inventory_item()
        with pytest.raises(NotFoundError):
            await InventoryService(db_session).get_item(other_school.id, item.id)


class TestInventoryAPI:
    """Tests for inventory endpoints."""

    async def test_create_list_adjust(self, client: AsyncClient, school, admin_headers):
        base = f"/api/v1/schools/{school.id}/finance/inventory-items"

        response = await client.post(
            base,
            json={"sku": "BK-01", "name": "Exercise Book", "unit_price": "50.00", "quantity_in_stock": 40},
            headers=admin_headers,
        )
        assert response.status_code == 201
        item = response.json()["data"]
        assert item["quantity_in_stock"] == 40

        response = await client.get(base, headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["data"]["total"] == 1

        response = await client.post(
            f"{base}/{item['id']}/adjust",
            json={"quantity": 10, "reason": "Delivery"},
            headers=admin_headers,
        )
        assert response.status_code == 201
        assert response.json()["data"]["quantity_after"] == 50

        response = await client.get(f"{base}/{item['id']}/movements", headers=admin_headers)
        assert [m["quantity"] for m in response.json()["data"]] == [10, 40]

    async def test_secretary_cannot_create(self, client: AsyncClient, school, secretary_headers):
        response = await client.post(
            f"/api/v1/schools/{school.id}/finance/inventory-items",
            json={"sku": "BK-01", "name": "Exercise Book"},
            headers=secretary_headers,
        )
        assert response.status_code == 403

    async def test_requires_token(self, client: AsyncClient, school):
        response = await client.get(f"/api/v1/schools/{school.id}/finance/inventory-items")
        assert response.status_code == 401
