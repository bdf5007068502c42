from __future__ import annotations

import logging
import traceback
from typing import Any, Optional

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.requests import Request
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.status import HTTP_500_INTERNAL_SERVER_ERROR

from tagstash.common.schemas import ApiResponse
from tagstash.common.request_context import get_request_id


class ApiException(StarletteHTTPException):
    def __init__(
        self,
        status_code: int = 400,
        code: int = 40000,
        message: str = "Bad Request",
        details: Optional[Any] = None,
    ) -> None:
        super().__init__(status_code=status_code, detail=message)
        self.code = code
        self.message = message
        self.details = details

    def __str__(self) -> str:
        return self.message


class InvalidIdentifierError(ApiException):
    """Malformed entity identifier. Raised before any side effect."""

    def __init__(self, value: Any) -> None:
        super().__init__(status_code=400, code=40002, message=f"Invalid identifier: {value!r}")
        self.value = value


class DuplicateNameError(ApiException):
    def __init__(self, kind: str, name: str) -> None:
        super().__init__(
            status_code=400,
            code=40001,
            message=f"{kind} with name '{name}' already exists",
            details={"name": name},
        )
        self.kind = kind
        self.name = name


class ImageDecodeError(ApiException):
    def __init__(self, reason: str) -> None:
        super().__init__(status_code=400, code=40003, message=f"Invalid image input: {reason}")
        self.reason = reason


class NotFoundError(ApiException):
    def __init__(self, kind: str, id: Any) -> None:
        super().__init__(status_code=404, code=40400, message=f"{kind} with ID {id} not found")
        self.kind = kind
        self.id = id


class StoreError(ApiException):
    """Underlying transaction or I/O failure. May be transient; never retried here."""

    def __init__(self, message: str = "Storage operation failed") -> None:
        super().__init__(status_code=500, code=50002, message=message)


class OperationCancelledError(ApiException):
    def __init__(self, message: str = "Operation cancelled") -> None:
        super().__init__(status_code=499, code=49900, message=message)


def register_exception_handlers(app: FastAPI, *, debug: bool = False) -> None:
    logger = logging.getLogger(__name__)

    @app.exception_handler(ApiException)
    async def api_exception_handler(request: Request, exc: ApiException) -> JSONResponse:
        request_id = get_request_id() or getattr(request.state, "request_id", None)
        logger.warning(
            "api_exception request_id=%s method=%s path=%s status=%s code=%s message=%s",
            request_id,
            request.method,
            request.url.path,
            exc.status_code,
            exc.code,
            exc.message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ApiResponse.fail(code=exc.code, message=exc.message, data=exc.details).model_dump(),
        )

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        request_id = get_request_id() or getattr(request.state, "request_id", None)
        logger.warning(
            "validation_error request_id=%s method=%s path=%s errors=%s",
            request_id,
            request.method,
            request.url.path,
            exc.errors(),
        )
        return JSONResponse(
            status_code=422,
            content=ApiResponse.fail(code=42200, message="Validation Error", data=exc.errors()).model_dump(),
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
        message = str(exc.detail) if exc.detail is not None else "HTTP Error"
        request_id = get_request_id() or getattr(request.state, "request_id", None)
        logger.warning(
            "http_exception request_id=%s method=%s path=%s status=%s message=%s",
            request_id,
            request.method,
            request.url.path,
            exc.status_code,
            message,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content=ApiResponse.fail(code=exc.status_code, message=message).model_dump(),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        request_id = get_request_id() or getattr(request.state, "request_id", None)
        logger.exception(
            "unhandled_exception request_id=%s method=%s path=%s",
            request_id,
            request.method,
            request.url.path,
        )
        details: Any | None = None
        if debug:
            details = {
                "requestId": request_id,
                "type": exc.__class__.__name__,
                "message": str(exc),
                "traceback": "".join(traceback.format_exception(type(exc), exc, exc.__traceback__)),
            }
        return JSONResponse(
            status_code=HTTP_500_INTERNAL_SERVER_ERROR,
            content=ApiResponse.fail(code=50000, message="Internal Server Error", data=details).model_dump(),
        )
