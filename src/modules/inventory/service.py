"""Service for Inventory module."""

import logging
from collections.abc import Mapping

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.service import AuditAction, AuditService
from src.core.exceptions import DuplicateError, InsufficientStockError, NotFoundError, ValidationError
from src.modules.inventory.models import InventoryItem, MovementType, StockMovement
from src.modules.inventory.schemas import AdjustStockRequest, InventoryItemCreate

logger = logging.getLogger(__name__)


class InventoryService:
    """Service for managing inventory stock and movements.

    Stock reservations made on behalf of invoices never commit: the invoice
    operation that owns the transaction decides when to commit or roll back.
    """

    def __init__(self, db: AsyncSession):
        self.db = db
        self.audit = AuditService(db)

    # --- Items ---

    async def create_item(
        self, school_id: int, data: InventoryItemCreate, created_by_id: int
    ) -> InventoryItem:
        """Create a stocked item with optional opening stock."""
        existing = await self.db.execute(
            select(InventoryItem.id).where(
                InventoryItem.school_id == school_id,
                InventoryItem.sku == data.sku,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise DuplicateError("InventoryItem", "sku", data.sku)

        item = InventoryItem(
            school_id=school_id,
            sku=data.sku,
            name=data.name,
            unit_price=data.unit_price,
            quantity_in_stock=0,
            is_active=True,
        )
        self.db.add(item)
        await self.db.flush()

        if data.quantity_in_stock:
            await self._apply_adjustment(
                item,
                quantity_delta=data.quantity_in_stock,
                movement_type=MovementType.RECEIPT,
                reason="Opening stock",
                reference_type=None,
                reference_id=None,
                actor_id=created_by_id,
            )

        await self.db.commit()
        await self.db.refresh(item)
        return item

    async def get_item(self, school_id: int, item_id: int) -> InventoryItem:
        """Get inventory item by ID within a school."""
        result = await self.db.execute(
            select(InventoryItem)
            .where(
                InventoryItem.id == item_id,
                InventoryItem.school_id == school_id,
            )
            .execution_options(populate_existing=True)
        )
        item = result.scalar_one_or_none()
        if not item:
            raise NotFoundError("InventoryItem", item_id)
        return item

    async def list_items(
        self,
        school_id: int,
        include_inactive: bool = False,
        page: int = 1,
        limit: int = 100,
    ) -> tuple[list[InventoryItem], int]:
        """List inventory items of a school."""
        query = select(InventoryItem).where(InventoryItem.school_id == school_id)
        if not include_inactive:
            query = query.where(InventoryItem.is_active.is_(True))

        count_query = select(func.count()).select_from(query.subquery())
        total = (await self.db.execute(count_query)).scalar() or 0

        query = query.order_by(InventoryItem.name, InventoryItem.id)
        query = query.offset((page - 1) * limit).limit(limit)
        result = await self.db.execute(query)
        return list(result.scalars().all()), total

    async def get_movements(
        self, school_id: int, item_id: int, limit: int = 100
    ) -> list[StockMovement]:
        """Latest movements of an item, newest first."""
        await self.get_item(school_id, item_id)
        result = await self.db.execute(
            select(StockMovement)
            .where(
                StockMovement.school_id == school_id,
                StockMovement.inventory_item_id == item_id,
            )
            .order_by(StockMovement.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    # --- Manual adjustments ---

    async def adjust_stock(
        self,
        school_id: int,
        item_id: int,
        data: AdjustStockRequest,
        adjusted_by_id: int,
    ) -> StockMovement:
        """Adjust stock (receipt, correction, write-off).

        Can increase or decrease quantity; stock never goes below zero.
        """
        items = await self.lock_items(school_id, [item_id])
        item = items[item_id]

        movement = await self._apply_adjustment(
            item,
            quantity_delta=data.quantity,
            movement_type=MovementType.ADJUSTMENT,
            reason=data.reason,
            reference_type="adjustment",
            reference_id=None,
            actor_id=adjusted_by_id,
        )

        await self.audit.log(
            action=AuditAction.STOCK_ADJUST,
            entity_type="InventoryItem",
            entity_id=item.id,
            school_id=school_id,
            user_id=adjusted_by_id,
            entity_identifier=item.sku,
            old_values={"quantity_in_stock": movement.quantity_before},
            new_values={
                "quantity_in_stock": movement.quantity_after,
                "adjustment": data.quantity,
                "reason": data.reason,
            },
        )

        await self.db.commit()
        await self.db.refresh(movement)
        return movement

    # --- Reservations on behalf of invoices ---

    async def lock_items(self, school_id: int, item_ids) -> dict[int, InventoryItem]:
        """Lock inventory rows for update, in ascending id order.

        Every caller that touches more than one item goes through here so that
        concurrent reservations always acquire row locks in the same order.
        """
        ids = sorted(set(item_ids))
        if not ids:
            return {}

        result = await self.db.execute(
            select(InventoryItem)
            .where(
                InventoryItem.id.in_(ids),
                InventoryItem.school_id == school_id,
            )
            .order_by(InventoryItem.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        items = {item.id: item for item in result.scalars().all()}

        missing = [item_id for item_id in ids if item_id not in items]
        if missing:
            raise NotFoundError("InventoryItem", missing[0])
        return items

    @staticmethod
    def check_available(items: Mapping[int, InventoryItem], demands: Mapping[int, int]) -> None:
        """Raise InsufficientStockError for the first item that cannot cover its demand."""
        for item_id in sorted(demands):
            requested = demands[item_id]
            if requested <= 0:
                continue
            available = items[item_id].quantity_in_stock
            if requested > available:
                raise InsufficientStockError(item_id, requested, available)

    async def reconcile(
        self,
        school_id: int,
        changes: Mapping[int, int],
        actor_id: int,
        reference_type: str | None = None,
        reference_id: int | None = None,
        items: Mapping[int, InventoryItem] | None = None,
    ) -> list[StockMovement]:
        """
        Apply net stock changes for several items at once.

        Positive quantities are taken from stock, negative ones are returned.
        Every take is checked before any counter is touched, so a shortage on one
        item leaves all counters as they were.
        """
        changes = {
            item_id: qty for item_id, qty in changes.items() if item_id is not None and qty
        }
        if not changes:
            return []

        if items is None:
            items = await self.lock_items(school_id, changes.keys())
        self.check_available(items, changes)

        movements: list[StockMovement] = []
        for item_id in sorted(changes):
            quantity = changes[item_id]
            movement = await self._apply_adjustment(
                items[item_id],
                quantity_delta=-quantity,
                movement_type=MovementType.RESERVE if quantity > 0 else MovementType.RELEASE,
                reason=None,
                reference_type=reference_type,
                reference_id=reference_id,
                actor_id=actor_id,
            )
            movements.append(movement)
        return movements

    async def _apply_adjustment(
        self,
        item: InventoryItem,
        quantity_delta: int,
        movement_type: MovementType,
        reason: str | None,
        reference_type: str | None,
        reference_id: int | None,
        actor_id: int,
    ) -> StockMovement:
        quantity_before = item.quantity_in_stock
        new_quantity = quantity_before + quantity_delta

        if new_quantity < 0:
            if movement_type == MovementType.RESERVE:
                raise InsufficientStockError(item.id, -quantity_delta, quantity_before)
            raise ValidationError(
                f"Adjustment would result in negative stock ({new_quantity}). "
                f"Current quantity: {quantity_before}, adjustment: {quantity_delta}",
                field="quantity",
            )

        item.quantity_in_stock = new_quantity

        movement = StockMovement(
            school_id=item.school_id,
            inventory_item_id=item.id,
            movement_type=movement_type.value,
            quantity=quantity_delta,
            quantity_before=quantity_before,
            quantity_after=new_quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=reason,
            created_by_id=actor_id,
        )
        self.db.add(movement)
        await self.db.flush()

        logger.debug(
            "Stock %s for item %s: %s -> %s",
            movement_type.value,
            item.id,
            quantity_before,
            new_quantity,
        )
        return movement
