"""Exception handlers that render every error as one JSON envelope.

    {"error": {"code": "INSUFFICIENT_STOCK", "message": "...", "details": {...}}}

Domain errors carry their own status and code (see factoryledger.exceptions);
the handlers here only translate.  Database and unexpected errors are logged
in full and returned without internals.
"""

import logging
import traceback
from typing import Union

from fastapi import HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import ValidationError
from sqlalchemy.exc import IntegrityError, OperationalError
from starlette.exceptions import HTTPException as StarletteHTTPException

from factoryledger.exceptions import FactoryLedgerException

logger = logging.getLogger(__name__)


def create_error_response(
    status_code: int,
    message: str,
    error_code: str = "ERROR",
    details: Union[dict, list, None] = None,
) -> JSONResponse:
    content = {"error": {"code": error_code, "message": message}}
    if details:
        content["error"]["details"] = details
    return JSONResponse(status_code=status_code, content=content)


async def factoryledger_exception_handler(
    request: Request,
    exc: FactoryLedgerException,
) -> JSONResponse:
    logger.warning(
        f"Domain error: {exc.error_code} - {exc.message}",
        extra={
            "error_code": exc.error_code,
            "path": request.url.path,
            "method": request.method,
        },
    )
    return create_error_response(
        status_code=exc.status_code,
        message=exc.message,
        error_code=exc.error_code,
        details=exc.details,
    )


async def http_exception_handler(
    request: Request,
    exc: Union[HTTPException, StarletteHTTPException],
) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(
            f"HTTP {exc.status_code}: {exc.detail}",
            extra={"path": request.url.path, "method": request.method},
        )
    return create_error_response(
        status_code=exc.status_code,
        message=str(exc.detail),
        error_code=f"HTTP_{exc.status_code}",
    )


async def validation_exception_handler(
    request: Request,
    exc: Union[RequestValidationError, ValidationError],
) -> JSONResponse:
    """Request body / query validation failures, one entry per field."""
    errors = [
        {
            "field": " -> ".join(str(loc) for loc in error["loc"]),
            "message": error["msg"],
            "type": error["type"],
        }
        for error in exc.errors()
    ]
    logger.warning(
        f"Validation error on {request.url.path}",
        extra={"path": request.url.path, "method": request.method, "errors": errors},
    )
    return create_error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        message="Validation error",
        error_code="VALIDATION_ERROR",
        details={"errors": errors},
    )


# Named constraints from the models, matched against the driver message.
# Reaching one means a race slipped past the service checks.
CONSTRAINT_ERRORS = {
    "ck_stock_accounts_non_negative": (
        status.HTTP_409_CONFLICT, "STOCK_CONSTRAINT", "Stock would go negative",
    ),
    "ck_stock_lots_remaining_non_negative": (
        status.HTTP_409_CONFLICT, "LOT_CONSTRAINT", "Lot remaining would go negative",
    ),
    "ck_stock_lots_remaining_le_received": (
        status.HTTP_409_CONFLICT, "LOT_CONSTRAINT", "Lot remaining exceeds quantity received",
    ),
    "production_batches.human_id": (
        status.HTTP_409_CONFLICT, "DUPLICATE_BATCH_CODE", "Batch code is already in use",
    ),
    "ix_production_batches_human_id": (
        status.HTTP_409_CONFLICT, "DUPLICATE_BATCH_CODE", "Batch code is already in use",
    ),
    "uq_product_recipes_product_material": (
        status.HTTP_409_CONFLICT, "DUPLICATE_RECIPE_LINE", "Material already listed in this recipe",
    ),
}


def classify_integrity_error(exc: IntegrityError) -> tuple[int, str, str]:
    error_msg = str(exc.orig) if getattr(exc, "orig", None) else str(exc)
    for name, outcome in CONSTRAINT_ERRORS.items():
        if name in error_msg:
            return outcome

    lowered = error_msg.lower()
    if "unique" in lowered:
        return status.HTTP_422_UNPROCESSABLE_ENTITY, "DUPLICATE_RECORD", "A record with this value already exists"
    if "foreign key" in lowered:
        return status.HTTP_422_UNPROCESSABLE_ENTITY, "FOREIGN_KEY_VIOLATION", "Referenced record does not exist"
    return status.HTTP_422_UNPROCESSABLE_ENTITY, "INTEGRITY_ERROR", "Database constraint violation"


async def database_exception_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    status_code, error_code, message = classify_integrity_error(exc)
    logger.error(
        f"Database integrity error on {request.url.path}: {error_code}",
        extra={"path": request.url.path, "method": request.method, "orig": str(exc.orig)},
    )
    return create_error_response(
        status_code=status_code,
        message=message,
        error_code=error_code,
    )


async def operational_exception_handler(request: Request, exc: OperationalError) -> JSONResponse:
    logger.error(
        f"Database operational error on {request.url.path}: {exc}",
        extra={"path": request.url.path, "method": request.method},
    )
    return create_error_response(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        message="Database temporarily unavailable. Please try again.",
        error_code="DATABASE_UNAVAILABLE",
    )


async def general_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error(
        f"Unhandled exception on {request.url.path}: {exc}",
        extra={
            "path": request.url.path,
            "method": request.method,
            "traceback": traceback.format_exc(),
        },
        exc_info=True,
    )
    return create_error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        message="An unexpected error occurred. Please try again later.",
        error_code="INTERNAL_SERVER_ERROR",
    )


def register_exception_handlers(app):
    app.add_exception_handler(FactoryLedgerException, factoryledger_exception_handler)
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(StarletteHTTPException, http_exception_handler)
    app.add_exception_handler(RequestValidationError, validation_exception_handler)
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(IntegrityError, database_exception_handler)
    app.add_exception_handler(OperationalError, operational_exception_handler)
    app.add_exception_handler(Exception, general_exception_handler)
