from __future__ import annotations

import logging
from typing import Any

from fastapi import HTTPException, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError

from msp.services.errors import (
    SYSTEM_ERROR_MESSAGE,
    ConflictError,
    ErrorKind,
    NotFoundError,
    ServiceError,
    ValidationError,
)

logger = logging.getLogger(__name__)


def error_detail(exc: ServiceError) -> dict[str, Any]:
    detail: dict[str, Any] = {"kind": exc.kind.value, "message": exc.message}
    if isinstance(exc, ConflictError):
        detail["conflict"] = exc.conflict.value
    return detail


def handle_service_error(exc: Exception) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=error_detail(exc)) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=error_detail(exc)) from exc
    if isinstance(exc, ConflictError):
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=error_detail(exc)) from exc
    raise exc


async def database_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("unhandled database error on %s %s", request.method, request.url.path, exc_info=exc)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": {"kind": ErrorKind.SYSTEM.value, "message": SYSTEM_ERROR_MESSAGE}},
    )
