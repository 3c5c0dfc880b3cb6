import logging

from fastapi import Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from automation.core.config import settings
from automation.core.exceptions import ConfigurationError, InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str, detail) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"message": message, "detail": detail})


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Request body, path, query or header failed schema validation.
    """
    detail = [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, "Validation error", detail)


async def not_found_exception_handler(request: Request, exc: NotFoundError):
    return error_response(status.HTTP_404_NOT_FOUND, "Not found", str(exc))


async def configuration_exception_handler(request: Request, exc: ConfigurationError):
    logger.info(f"Rejected configuration on {request.url.path}: {exc.problems}")
    return error_response(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc), exc.problems)


async def invalid_state_exception_handler(request: Request, exc: InvalidStateError):
    return error_response(status.HTTP_409_CONFLICT, "Invalid state", str(exc))


async def general_exception_handler(request: Request, exc: Exception):
    """
    Anything the domain handlers do not cover. The error detail is only
    exposed in development.
    """
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}", exc_info=True)
    detail = str(exc) if settings.ENVIRONMENT == "development" else "Internal server error"
    return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, "An unexpected error occurred", detail)
