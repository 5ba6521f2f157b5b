"""Error responses.

Every error body has the same shape: ``{"ok": false, "error": <reason>, "code": <kind>}``.
"""
from typing import Optional, TypeVar

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException

from domain.errors import ConfigurationError, StoreUnavailable, TransientDependencyFailure
from domain.results import Err, FailureKind, Result

logger = structlog.get_logger()

T = TypeVar("T")

STATUS_CODES = {
    FailureKind.INVALID_INPUT: 400,
    FailureKind.UNAUTHORIZED: 401,
    FailureKind.FORBIDDEN: 403,
    FailureKind.NOT_FOUND: 404,
    FailureKind.TOKEN_EXPIRED: 400,
    FailureKind.TOKEN_INVALID: 400,
    FailureKind.INVALID_OR_USED_TOKEN: 400,
    FailureKind.WRONG_DAY: 409,
    FailureKind.PASS_NOT_SCHEDULED: 409,
    FailureKind.INVALID_TRANSITION: 409,
    FailureKind.TRANSIENT: 503,
}

_HTTP_CODES = {
    400: FailureKind.INVALID_INPUT.value,
    401: FailureKind.UNAUTHORIZED.value,
    403: FailureKind.FORBIDDEN.value,
    404: FailureKind.NOT_FOUND.value,
    409: FailureKind.INVALID_TRANSITION.value,
}


class ApiError(Exception):
    def __init__(self, status_code: int, message: str, code: str):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.code = code

    @classmethod
    def from_failure(cls, err: Err) -> "ApiError":
        return cls(STATUS_CODES[err.kind], err.message, err.kind.value)


def unwrap(result: Result[T]) -> T:
    """Value of an ``Ok``; an ``Err`` becomes the matching HTTP error."""
    if not result.ok:
        raise ApiError.from_failure(result)
    return result.value


def error_response(status_code: int, message: str, code: Optional[str] = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"ok": False, "error": message, "code": code or _HTTP_CODES.get(status_code, "error")},
    )


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(ApiError)
    async def api_error_handler(request: Request, exc: ApiError):
        return error_response(exc.status_code, exc.message, exc.code)

    @app.exception_handler(HTTPException)
    async def http_error_handler(request: Request, exc: HTTPException):
        return error_response(exc.status_code, str(exc.detail))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        errors = exc.errors()
        first = errors[0] if errors else {}
        field = ".".join(str(p) for p in first.get("loc", ())[1:])
        message = f"Invalid input: {field}" if field else "Invalid input"
        return error_response(400, message, FailureKind.INVALID_INPUT.value)

    @app.exception_handler(StoreUnavailable)
    async def store_unavailable_handler(request: Request, exc: StoreUnavailable):
        logger.error("store_unavailable", path=request.url.path, error=str(exc))
        return error_response(503, "Service temporarily unavailable, please retry", FailureKind.TRANSIENT.value)

    @app.exception_handler(TransientDependencyFailure)
    async def dependency_failure_handler(request: Request, exc: TransientDependencyFailure):
        logger.error("dependency_failure", path=request.url.path, error=str(exc))
        return error_response(503, "Upstream service unavailable, please retry", FailureKind.TRANSIENT.value)

    @app.exception_handler(ConfigurationError)
    async def configuration_error_handler(request: Request, exc: ConfigurationError):
        logger.error("configuration_error", path=request.url.path, error=str(exc))
        return error_response(500, "Server misconfigured", "configuration")
