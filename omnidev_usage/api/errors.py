"""
Exception handlers mapping usage errors to JSON responses.

Every error response has the shape ``{"success": false, "error": ...}``.
Unexpected failures are logged with their traceback and reported to the
caller with a generic message only.
"""

import logging

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from omnidev_usage.core.errors import UsageError

logger = logging.getLogger(__name__)


async def usage_error_handler(request: Request, exc: UsageError) -> JSONResponse:
    content = {"success": False, "error": str(exc)}
    if getattr(exc, "requires_confirmation", False):
        content["requiresConfirmation"] = True
    field = getattr(exc, "field", None)
    if field:
        content["field"] = field

    logger.warning(
        "%s %s rejected with %d: %s",
        request.method, request.url.path, exc.status_code, exc,
    )
    return JSONResponse(status_code=exc.status_code, content=content)


async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = ".".join(str(loc) for loc in first.get("loc", ()) if loc != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"success": False, "error": f"{field}: {message}" if field else message},
    )


async def generic_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(
        status_code=500,
        content={"success": False, "error": "Internal server error"},
    )


def setup_error_handlers(app) -> None:
    """Register the usage error handlers on a FastAPI app."""
    app.add_exception_handler(UsageError, usage_error_handler)
    app.add_exception_handler(RequestValidationError, validation_error_handler)
    app.add_exception_handler(Exception, generic_error_handler)
