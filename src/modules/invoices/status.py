"""Invoice status derivation.

Status follows from the invoice amounts and due date. Explicit actions (issue,
cancel, void) are the only other way to move an invoice between states.
"""

from datetime import date
from decimal import Decimal

from src.modules.invoices.models import TERMINAL_STATUSES, InvoiceStatus
from src.shared.utils.money import ZERO, is_settled, round_money


def is_overdue(due_date: date | None, today: date) -> bool:
    return due_date is not None and due_date < today


def compute_status(
    current: str,
    total: Decimal,
    paid: Decimal,
    due_date: date | None,
    today: date,
) -> InvoiceStatus:
    """
    Derive the status of an invoice.

    - PAID, VOID and CANCELLED are returned unchanged.
    - Paid in full (to the last currency unit) with a positive total: PAID.
    - Nothing paid: DRAFT/SENT are kept, other states fall back to SENT;
      past the due date the invoice is OVERDUE.
    - Partly paid: PARTIALLY_PAID, or OVERDUE past the due date.

    Calling it again with the same arguments gives the same result.
    """
    current = InvoiceStatus(current)
    if current in TERMINAL_STATUSES:
        return current

    total = round_money(total)
    paid = round_money(paid)

    if total > ZERO and is_settled(total, paid):
        return InvoiceStatus.PAID

    overdue = is_overdue(due_date, today)

    if paid <= ZERO:
        if overdue:
            return InvoiceStatus.OVERDUE
        if current in (InvoiceStatus.DRAFT, InvoiceStatus.SENT):
            return current
        return InvoiceStatus.SENT

    if overdue:
        return InvoiceStatus.OVERDUE
    return InvoiceStatus.PARTIALLY_PAID
