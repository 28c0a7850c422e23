from typing import Any, Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field

T = TypeVar("T")


class BaseSchema(BaseModel):
    """Base Pydantic schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
    )


# --- Envelopes ---


class SuccessResponse(BaseSchema, Generic[T]):
    """Standard success response wrapper."""

    success: bool = True
    data: T
    message: str | None = None


# Alias for cleaner API usage
ApiResponse = SuccessResponse


class ErrorDetail(BaseSchema):
    """Error detail for a specific field."""

    field: str | None = None
    message: str


class ErrorResponse(BaseSchema):
    """
    Standard error response wrapper.

    `details` carries the machine-readable context of ledger errors, e.g.
    item_id/requested/available for a stock shortage or the invoice id and
    status for a locked invoice.
    """

    success: bool = False
    data: None = None
    message: str
    errors: list[ErrorDetail] = []
    details: dict[str, Any] | None = None


# --- Pagination ---


class PageParams(BaseSchema):
    """Page selection shared by the list filters."""

    page: int = Field(1, ge=1)
    limit: int = Field(50, ge=1, le=200)

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


class PaginatedResponse(BaseSchema, Generic[T]):
    """Paginated response wrapper."""

    items: list[T]
    total: int
    page: int
    limit: int
    pages: int

    @classmethod
    def create(cls, items: list[T], total: int, page: int, limit: int) -> "PaginatedResponse[T]":
        pages = (total + limit - 1) // limit if limit > 0 else 0
        return cls(items=items, total=total, page=page, limit=limit, pages=pages)
