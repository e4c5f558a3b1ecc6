"""Exception handlers mapping the payments error taxonomy to HTTP responses.

Every error body has the shape ``{"error": {"code", "message", "details"}}``.
"""

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from protean.exceptions import ExpectedVersionError, ObjectNotFoundError, ValidationError
from protean.integrations.fastapi import register_exception_handlers
from starlette.exceptions import HTTPException as StarletteHTTPException

from payments.errors import CollaboratorUnavailable, PaymentRuleViolation

logger = structlog.get_logger(__name__)


def error_response(status_code: int, code: str, message: str, details: dict | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={"error": {"code": code, "message": message, "details": details}},
    )


def _first_message(messages: dict) -> str:
    for field, errors in (messages or {}).items():
        if errors:
            first = errors[0] if isinstance(errors, list) else errors
            return f"{field}: {first}" if field not in ("_entity", "status") else str(first)
    return "Validation failed"


async def _rule_violation_handler(request: Request, exc: PaymentRuleViolation) -> JSONResponse:
    return error_response(400, exc.code, exc.message, exc.messages)


async def _validation_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return error_response(400, "VALIDATION_ERROR", _first_message(exc.messages), exc.messages)


async def _request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = {".".join(str(part) for part in error["loc"]): [error["msg"]] for error in exc.errors()}
    return error_response(400, "VALIDATION_ERROR", "Request validation failed", details)


async def _not_found_handler(request: Request, exc: ObjectNotFoundError) -> JSONResponse:
    code = getattr(exc, "code", "NOT_FOUND")
    messages = exc.args[0] if exc.args and isinstance(exc.args[0], dict) else None
    return error_response(404, code, _first_message(messages) if messages else str(exc), messages)


_HTTP_CODES = {401: "UNAUTHORIZED", 403: "FORBIDDEN", 404: "NOT_FOUND", 405: "METHOD_NOT_ALLOWED"}


async def _http_error_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(exc.status_code, _HTTP_CODES.get(exc.status_code, "HTTP_ERROR"), str(exc.detail))


async def _conflict_handler(request: Request, exc: ExpectedVersionError) -> JSONResponse:
    logger.warning("Concurrent modification rejected", path=request.url.path, error=str(exc))
    return error_response(409, "CONFLICT", "The resource was modified concurrently, please retry")


async def _unavailable_handler(request: Request, exc: CollaboratorUnavailable) -> JSONResponse:
    logger.warning("Collaborator unavailable", service=exc.service, detail=exc.detail)
    return error_response(503, exc.code, str(exc))


async def _unhandled_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Unhandled exception", path=request.url.path, error=str(exc), exc_info=exc)
    return error_response(500, "INTERNAL_ERROR", "An unexpected error occurred")


def register_payment_exception_handlers(app: FastAPI) -> None:
    """Install Protean's stock handlers, then override them with payment-shaped bodies."""
    register_exception_handlers(app)
    app.add_exception_handler(PaymentRuleViolation, _rule_violation_handler)
    app.add_exception_handler(ValidationError, _validation_handler)
    app.add_exception_handler(RequestValidationError, _request_validation_handler)
    app.add_exception_handler(ObjectNotFoundError, _not_found_handler)
    app.add_exception_handler(StarletteHTTPException, _http_error_handler)
    app.add_exception_handler(ExpectedVersionError, _conflict_handler)
    app.add_exception_handler(CollaboratorUnavailable, _unavailable_handler)
    app.add_exception_handler(Exception, _unhandled_handler)
