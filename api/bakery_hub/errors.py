# bakery_hub/errors.py
"""
Error taxonomy and the FastAPI handlers that turn it into the response envelope.

    ValidationError       400  rejected before any mutation
    NotFoundError         404  referenced record absent, no partial effect
    ConflictError         409  non-idempotent duplicate (e.g. sequence exhaustion)
    PersistenceError      500  storage write failed, operation not applied
    SecondaryEffectError  -    logged and reported as a warning, never raised to clients
"""
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException

logger = logging.getLogger(__name__)


class BakeryError(Exception):
    status_code: int = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(BakeryError):
    status_code = 400


class NotFoundError(BakeryError):
    status_code = 404


class ConflictError(BakeryError):
    status_code = 409


class PersistenceError(BakeryError):
    status_code = 500


class SecondaryEffectError(BakeryError):
    """A follow-up effect (ledger, client stats, broadcast) failed after the primary write."""

    def __init__(self, effect: str, cause: BaseException):
        super().__init__(f"{effect} failed: {cause}")
        self.effect = effect
        self.cause = cause


def _envelope(message: str, details: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"success": False, "error": message}
    if details:
        body["details"] = details
    return body


async def _bakery_error_handler(request: Request, exc: BakeryError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content=_envelope(exc.message, exc.details))


async def _http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_envelope(str(exc.detail)),
        headers=getattr(exc, "headers", None),
    )


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields: List[str] = []
    for err in exc.errors():
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path")]
        if loc:
            fields.append(".".join(loc))
    return JSONResponse(
        status_code=400,
        content=_envelope("Invalid request", {"fields": fields, "errors": [e.get("msg") for e in exc.errors()]}),
    )


async def _sqlalchemy_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error(f"{request.method} {request.url.path} database error: {exc}", exc_info=exc)
    err = PersistenceError("Database operation failed", details={"type": type(exc).__name__})
    return JSONResponse(status_code=err.status_code, content=_envelope(err.message, err.details))


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(BakeryError, _bakery_error_handler)
    app.add_exception_handler(StarletteHTTPException, _http_exception_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(SQLAlchemyError, _sqlalchemy_error_handler)
