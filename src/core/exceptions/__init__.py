from src.core.exceptions.base import (
    AppException,
    NotFoundError,
    ValidationError,
    ScopeMismatchError,
    InsufficientStockError,
    InvoiceLockedError,
    AuthenticationError,
    AuthorizationError,
    DuplicateError,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "ValidationError",
    "ScopeMismatchError",
    "InsufficientStockError",
    "InvoiceLockedError",
    "AuthenticationError",
    "AuthorizationError",
    "DuplicateError",
]
