from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found (or not visible in the caller's school)."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id={identifier} not found"
        super().__init__(
            message=message,
            status_code=404,
            details={"resource": resource, "identifier": identifier},
        )


class ValidationError(AppException):
    """Validation error."""

    def __init__(self, message: str, field: str | None = None):
        details = {"field": field} if field else {}
        super().__init__(message=message, status_code=422, details=details)


class ScopeMismatchError(AppException):
    """Fee structure scope and student assignment disagree."""

    def __init__(self, message: str, student_id: int | None = None):
        super().__init__(
            message=message,
            status_code=422,
            details={"student_id": student_id} if student_id is not None else {},
        )


class InsufficientStockError(AppException):
    """Not enough stock for operation."""

    def __init__(self, item_id: int, requested: int, available: int):
        message = (
            f"Insufficient stock for inventory item {item_id}: "
            f"requested {requested}, available {available}"
        )
        super().__init__(
            message=message,
            status_code=409,
            details={"item_id": item_id, "requested": requested, "available": available},
        )


class InvoiceLockedError(AppException):
    """Mutation attempted on a PAID/VOID/CANCELLED invoice."""

    def __init__(self, invoice_id: int, status: str):
        super().__init__(
            message=f"Invoice {invoice_id} is {status} and cannot be modified",
            status_code=409,
            details={"invoice_id": invoice_id, "status": status},
        )


class AuthenticationError(AppException):
    """Authentication failed."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message=message, status_code=401)


class AuthorizationError(AppException):
    """Not authorized to perform action."""

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message=message, status_code=403)


class DuplicateError(AppException):
    """Duplicate resource."""

    def __init__(self, resource: str, field: str, value: Any):
        message = f"{resource} with {field}={value} already exists"
        super().__init__(message=message, status_code=409, details={"field": field, "value": value})
