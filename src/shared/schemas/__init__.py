from src.shared.schemas.base import (
    ApiResponse,
    BaseSchema,
    ErrorDetail,
    ErrorResponse,
    PageParams,
    PaginatedResponse,
)

__all__ = [
    "ApiResponse",
    "BaseSchema",
    "ErrorDetail",
    "ErrorResponse",
    "PageParams",
    "PaginatedResponse",
]
