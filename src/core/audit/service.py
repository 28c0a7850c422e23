from enum import StrEnum
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from src.core.audit.models import AuditLog


class AuditAction(StrEnum):
    """Ledger audit actions."""

    FEE_STRUCTURE_CREATE = "fee_structure.create"
    FEE_STRUCTURE_UPDATE = "fee_structure.update"
    FEE_ASSIGN = "fee_structure.assign"
    FEE_REVOKE = "fee_structure.revoke"

    INVOICE_CREATE = "invoice.create"
    INVOICE_GENERATE = "invoice.generate"
    INVOICE_ADD_ITEM = "invoice.add_item"
    INVOICE_UPDATE_ITEM = "invoice.update_item"
    INVOICE_DELETE_ITEM = "invoice.delete_item"
    INVOICE_ISSUE = "invoice.issue"
    INVOICE_CANCEL = "invoice.cancel"
    INVOICE_VOID = "invoice.void"

    PAYMENT_RECORD = "payment.record"

    EXPENSE_RECORD = "expense.record"

    STOCK_ADJUST = "inventory.adjust"


class AuditService:
    """Service for creating audit logs."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def log(
        self,
        action: str | AuditAction,
        entity_type: str,
        entity_id: int,
        school_id: int | None = None,
        user_id: int | None = None,
        entity_identifier: str | None = None,
        old_values: dict[str, Any] | None = None,
        new_values: dict[str, Any] | None = None,
        comment: str | None = None,
    ) -> AuditLog:
        """Create an audit log entry in the current transaction."""
        audit_log = AuditLog(
            school_id=school_id,
            user_id=user_id,
            action=str(action),
            entity_type=entity_type,
            entity_id=entity_id,
            entity_identifier=entity_identifier,
            old_values=old_values,
            new_values=new_values,
            comment=comment,
        )

        self.db.add(audit_log)
        await self.db.flush()

        return audit_log
