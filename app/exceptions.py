from fastapi import Request
from fastapi.responses import JSONResponse

from services.exceptions import (
    ConflictError,
    FleetDomainError,
    NotFoundError,
    TransientStoreError,
    ValidationError,
)


def _error_body(error: str, exc: FleetDomainError) -> dict:
    return {
        "error": error,
        "error_type": exc.__class__.__name__,
        "message": exc.message,
        "field": exc.field,
    }


async def validation_exception_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=422, content=_error_body("validation_error", exc))


async def not_found_exception_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content=_error_body("not_found", exc))


async def conflict_exception_handler(request: Request, exc: ConflictError):
    return JSONResponse(status_code=409, content=_error_body("conflict", exc))


async def store_unavailable_exception_handler(request: Request, exc: TransientStoreError):
    return JSONResponse(
        status_code=503,
        content={
            "error": "store_unavailable",
            "error_type": exc.__class__.__name__,
            "message": "The data store is temporarily unavailable, please retry.",
            "field": None,
        },
    )


def register_exception_handlers(app):
    app.add_exception_handler(ValidationError, validation_exception_handler)
    app.add_exception_handler(NotFoundError, not_found_exception_handler)
    app.add_exception_handler(ConflictError, conflict_exception_handler)
    app.add_exception_handler(TransientStoreError, store_unavailable_exception_handler)
