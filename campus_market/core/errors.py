from __future__ import annotations

import logging

from fastapi import FastAPI, HTTPException, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Error rendered as ``{"error": {"code", "message", "details"}}`` with its HTTP status."""

    def __init__(self, *, status_code: int, code: str, message: str, details: object | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details

    def to_response(self) -> JSONResponse:
        return error_response(status_code=self.status_code, code=self.code, message=self.message, details=self.details)


def bad_request(code: str, message: str, details: object | None = None) -> APIError:
    return APIError(status_code=status.HTTP_400_BAD_REQUEST, code=code, message=message, details=details)


def unauthorized(code: str, message: str) -> APIError:
    return APIError(status_code=status.HTTP_401_UNAUTHORIZED, code=code, message=message)


def forbidden(message: str = "You are not allowed to perform this action", code: str = "forbidden") -> APIError:
    return APIError(status_code=status.HTTP_403_FORBIDDEN, code=code, message=message)


def not_found(code: str, message: str) -> APIError:
    return APIError(status_code=status.HTTP_404_NOT_FOUND, code=code, message=message)


def conflict(code: str, message: str) -> APIError:
    return APIError(status_code=status.HTTP_409_CONFLICT, code=code, message=message)


def success_response(data: object, status_code: int = status.HTTP_200_OK) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"data": data})


def error_response(*, status_code: int, code: str, message: str, details: object | None = None) -> JSONResponse:
    body: dict[str, object] = {"code": code, "message": message}
    if details is not None:
        body["details"] = details
    return JSONResponse(status_code=status_code, content={"error": body})


def _validation_details(exc: RequestValidationError) -> list[dict[str, object]]:
    return [{"loc": list(item["loc"]), "msg": item["msg"], "type": item["type"]} for item in exc.errors()]


async def _api_error(_: Request, exc: APIError) -> JSONResponse:
    return exc.to_response()


async def _validation_error(_: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        code="validation_error",
        message="Request validation failed",
        details=_validation_details(exc),
    )


async def _http_error(_: Request, exc: HTTPException) -> JSONResponse:
    if isinstance(exc.detail, str):
        return error_response(status_code=exc.status_code, code="http_error", message=exc.detail)
    return error_response(status_code=exc.status_code, code="http_error", message="Request failed", details=exc.detail)


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled error method=%s path=%s", request.method, request.url.path, exc_info=exc)
    return error_response(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        code="internal_error",
        message="Internal server error",
    )


def add_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(APIError, _api_error)
    app.add_exception_handler(RequestValidationError, _validation_error)
    app.add_exception_handler(HTTPException, _http_error)
    app.add_exception_handler(Exception, _unexpected_error)
