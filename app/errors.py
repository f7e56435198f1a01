import logging

from fastapi import HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

logger = logging.getLogger(__name__)


class MBEEError(HTTPException):
    """Base class of every error raised by the engine.

    Subclasses fix the HTTP status and the machine-readable ``code``; ``ids``
    carries the resource ids the error is about (every missing id of a batch,
    every conflicting id of a create).
    """

    status_code = 500
    code = "error"

    def __init__(self, detail: str, ids: list[str] | None = None):
        super().__init__(status_code=self.status_code, detail=detail)
        self.ids = list(ids) if ids else []


class ValidationError(MBEEError):
    status_code = 400
    code = "validation_error"


class PermissionDeniedError(MBEEError):
    status_code = 403
    code = "permission_denied"


class NotFoundError(MBEEError):
    status_code = 404
    code = "not_found"


class ConflictError(MBEEError):
    status_code = 409
    code = "conflict"


class ArchivedError(ConflictError):
    code = "archived"


class StoreError(MBEEError):
    status_code = 500
    code = "store_error"


def _error_payload(code: str, message: str, details):
    return {"code": code, "message": message, "details": details}


def register_error_handlers(app) -> None:
    @app.exception_handler(MBEEError)
    async def mbee_exception_handler(request: Request, exc: MBEEError):
        if isinstance(exc, StoreError):
            logger.error(
                "Store failure on %s %s: %s",
                request.method,
                request.url.path,
                exc.detail,
            )
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(exc.code, exc.detail, exc.ids or None),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException):
        detail = exc.detail
        code = f"http_{exc.status_code}"
        message = "Request failed"
        details = None
        if isinstance(detail, dict):
            code = detail.get("code", code)
            message = detail.get("message", message)
            details = detail.get("details")
        elif isinstance(detail, str):
            message = detail
        else:
            details = detail
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_payload(code, message, details),
            headers=getattr(exc, "headers", None),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(
        request: Request, exc: RequestValidationError
    ):
        # exc.errors() ctx may contain raw Exception objects (not JSON-serialisable).
        errors = [
            {k: str(v) if k == "ctx" else v for k, v in err.items()}
            for err in exc.errors(include_url=False)
        ]
        return JSONResponse(
            status_code=422,
            content=_error_payload("validation_error", "Validation error", errors),
        )

    @app.exception_handler(IntegrityError)
    async def integrity_exception_handler(request: Request, exc: IntegrityError):
        logger.warning(
            "Integrity error on %s %s: %s", request.method, request.url.path, exc.orig
        )
        return JSONResponse(
            status_code=409,
            content=_error_payload(
                ConflictError.code, "The request conflicts with stored data.", None
            ),
        )

    @app.exception_handler(SQLAlchemyError)
    async def store_exception_handler(request: Request, exc: SQLAlchemyError):
        logger.exception("Store failure on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_payload(StoreError.code, "Store operation failed.", None),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception("Unhandled error on %s %s", request.method, request.url.path)
        return JSONResponse(
            status_code=500,
            content=_error_payload("internal_error", "Internal server error", None),
        )
