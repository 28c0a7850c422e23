import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from src.core.config import settings
from src.core.exceptions import AppException
from src.shared.schemas import ErrorResponse, ErrorDetail

logger = logging.getLogger(__name__)


async def app_exception_handler(request: Request, exc: AppException) -> JSONResponse:
    """Handle application exceptions."""
    field = exc.details.get("field")
    errors = [ErrorDetail(field=field, message=exc.message)]

    response = ErrorResponse(
        message=exc.message,
        errors=errors,
        details=exc.details or None,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(mode="json"),
    )


def _format_validation_errors(errors: list[dict]) -> list[ErrorDetail]:
    details: list[ErrorDetail] = []
    for error in errors:
        loc = error.get("loc", ())
        # Drop top-level "body" for cleaner field paths
        if loc and loc[0] == "body":
            loc = loc[1:]
        field = ".".join(str(part) for part in loc) if loc else None
        details.append(ErrorDetail(field=field, message=error.get("msg", "Invalid value")))
    return details


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Handle FastAPI validation errors."""
    response = ErrorResponse(
        message="Validation error",
        errors=_format_validation_errors(exc.errors()),
    )
    return JSONResponse(
        status_code=422,
        content=response.model_dump(mode="json"),
    )


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Handle generic HTTP exceptions."""
    errors = [ErrorDetail(field=None, message=str(exc.detail) if exc.detail else "HTTP error")]
    response = ErrorResponse(
        message=str(exc.detail) if exc.detail else "HTTP error",
        errors=errors,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content=response.model_dump(mode="json"),
    )


def friendly_integrity_error(exc: Exception) -> tuple[str, str | None, int]:
    """
    Convert DB constraint errors to a stable, user-facing message.

    Unique violations become 409, broken foreign keys 404, anything else 422.
    Raw driver text is only exposed when debug is enabled.
    """
    raw = str(getattr(exc, "orig", exc))
    lower = raw.lower()

    if "unique" in lower or "duplicate key" in lower:
        if "invoice_number" in lower:
            return ("Invoice number already exists", "invoice_number", 409)
        if "payment_number" in lower:
            return ("Payment number already exists", "payment_number", 409)
        return ("A record with the same unique values already exists", None, 409)

    if "foreign key" in lower:
        return ("Referenced record does not exist", None, 404)

    if "not null" in lower or "check constraint" in lower:
        if settings.debug:
            return (raw, None, 422)
        return ("Invalid data for this operation", None, 422)

    if settings.debug:
        return (raw, None, 422)

    return ("Database constraint violated", None, 422)


async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    message, field, status_code = friendly_integrity_error(exc)
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    response = ErrorResponse(
        message=message,
        errors=[ErrorDetail(field=field, message=message)],
    )
    return JSONResponse(status_code=status_code, content=response.model_dump(mode="json"))
