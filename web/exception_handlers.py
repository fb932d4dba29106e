"""RFC 7807 Problem Details exception handlers for FastAPI."""

from typing import Any, Dict, Tuple, Type

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from starlette.exceptions import HTTPException

from otpgate.core.exceptions import (
    AuthenticationError,
    InvalidCodeError,
    OTPExpiredError,
    OTPGatewayError,
    SessionNotFoundError,
    SessionNotReadyError,
    TransportError,
)

_ERROR_TYPES = {
    400: "urn:otpgateway:error:bad-request",
    401: "urn:otpgateway:error:unauthorized",
    403: "urn:otpgateway:error:forbidden",
    404: "urn:otpgateway:error:not-found",
    409: "urn:otpgateway:error:conflict",
    422: "urn:otpgateway:error:validation",
    429: "urn:otpgateway:error:rate-limit",
    500: "urn:otpgateway:error:internal-server",
    502: "urn:otpgateway:error:bad-gateway",
    503: "urn:otpgateway:error:service-unavailable",
}

_ERROR_TITLES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    409: "Conflict",
    422: "Validation Error",
    429: "Too Many Requests",
    500: "Internal Server Error",
    502: "Bad Gateway",
    503: "Service Unavailable",
}

# Checked in order, first match wins
_DOMAIN_ERRORS: Tuple[Tuple[Type[OTPGatewayError], int, str], ...] = (
    (SessionNotReadyError, 400, "urn:otpgateway:error:session-not-ready"),
    (SessionNotFoundError, 404, "urn:otpgateway:error:session-not-found"),
    (OTPExpiredError, 400, "urn:otpgateway:error:otp-expired"),
    (InvalidCodeError, 400, "urn:otpgateway:error:otp-invalid"),
    (TransportError, 502, "urn:otpgateway:error:transport"),
    (AuthenticationError, 401, "urn:otpgateway:error:unauthorized"),
)


def _problem(
    request: Request, status_code: int, error_type: str, detail: str, **extra: Any
) -> Dict[str, Any]:
    content: Dict[str, Any] = {
        "type": error_type,
        "title": _ERROR_TITLES.get(status_code, "Error"),
        "status": status_code,
        "detail": detail,
        "instance": request.url.path,
    }
    content.update(extra)
    return content


async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Convert FastAPI HTTPException to RFC 7807 Problem Details format."""
    status_code = exc.status_code
    content = _problem(
        request,
        status_code,
        _ERROR_TYPES.get(status_code, f"urn:otpgateway:error:http-{status_code}"),
        exc.detail if isinstance(exc.detail, str) else str(exc.detail),
    )
    headers = getattr(exc, "headers", None) or {}

    return JSONResponse(
        status_code=status_code,
        content=content,
        headers=headers,
        media_type="application/problem+json",
    )


async def validation_exception_handler(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Convert Pydantic validation errors to RFC 7807 format."""
    errors = {}
    for error in exc.errors():
        field = ".".join(str(loc) for loc in error["loc"] if loc != "body")
        errors[field] = error["msg"]

    return JSONResponse(
        status_code=422,
        content=_problem(
            request, 422, _ERROR_TYPES[422], "Request validation failed", errors=errors
        ),
        media_type="application/problem+json",
    )


async def domain_exception_handler(request: Request, exc: OTPGatewayError) -> JSONResponse:
    """Convert domain errors to RFC 7807 format."""
    status_code, error_type = 500, _ERROR_TYPES[500]
    for error_class, code, urn in _DOMAIN_ERRORS:
        if isinstance(exc, error_class):
            status_code, error_type = code, urn
            break

    if status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.url.path}: {exc.message}")
        detail = exc.message if isinstance(exc, TransportError) else "Internal server error"
    else:
        detail = exc.message

    headers = {"WWW-Authenticate": "Bearer"} if status_code == 401 else None
    return JSONResponse(
        status_code=status_code,
        content=_problem(
            request,
            status_code,
            error_type,
            detail,
            details=exc.details if status_code < 500 else {},
        ),
        headers=headers,
        media_type="application/problem+json",
    )
