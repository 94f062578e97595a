import logging

from fastapi.exceptions import RequestValidationError
from starlette.requests import Request
from starlette.responses import JSONResponse

from dynaprov.dependencies import get_settings
from dynaprov.services.errors import (
    ConfigurationError,
    DuplicateRequestError,
    DynaprovException,
    InternalError,
    RecordNotFoundError,
    ValidationError,
)

ERROR_STATUS = {
    ValidationError: 400,
    RecordNotFoundError: 404,
    DuplicateRequestError: 409,
    ConfigurationError: 500,
    InternalError: 500,
}

logger = logging.getLogger(__name__)


def cors_headers(allowed_origin: str) -> dict[str, str]:
    return {
        "Access-Control-Allow-Origin": allowed_origin,
        "Access-Control-Allow-Headers": "Content-Type",
        "Access-Control-Allow-Methods": "OPTIONS,POST",
    }


def install_cors_headers(app) -> None:
    """Resolve the allowed origin once; called from the app lifespan."""
    app.state.cors_headers = cors_headers(get_settings().allowed_origin)


def get_cors_headers(request: Request) -> dict[str, str]:
    headers = getattr(request.app.state, "cors_headers", None)
    if headers is None:
        install_cors_headers(request.app)
        headers = request.app.state.cors_headers
    return dict(headers)


def _error_response(request: Request, message: str, status: int) -> JSONResponse:
    return JSONResponse({"error": message}, status_code=status, headers=get_cors_headers(request))


def _exception_handler(request: Request, exc: DynaprovException):
    status = ERROR_STATUS.get(type(exc), 500)
    if status >= 500:
        request_id = getattr(exc, "request_id", None)
        logger.error(
            "Request failed path=%s status=%s request_id=%s: %s",
            request.url.path,
            status,
            request_id,
            exc,
            exc_info=exc,
        )
    else:
        logger.warning("Request failed path=%s status=%s error=%s", request.url.path, status, exc)
    return _error_response(request, str(exc), status)


def _describe_validation_errors(exc: RequestValidationError) -> str:
    problems = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error.get("loc", ()) if part != "body")
        problems.append(f"{location}: {error.get('msg')}" if location else str(error.get("msg")))
    return "invalid request body: " + "; ".join(problems) if problems else "invalid request body"


def _request_validation_handler(request: Request, exc: RequestValidationError):
    logger.warning("Malformed request body path=%s: %s", request.url.path, exc.errors())
    return _error_response(request, _describe_validation_errors(exc), 400)


def _unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled application error for path=%s: %s", request.url.path, exc)
    return _error_response(request, "internal error", 500)


def register_exception_handlers(app):
    app.exception_handler(DynaprovException)(_exception_handler)
    app.exception_handler(RequestValidationError)(_request_validation_handler)
    app.exception_handler(Exception)(_unhandled_exception_handler)
