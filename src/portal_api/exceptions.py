"""FastAPI exception handlers for converting PortalError to HTTP responses.

Domain actions return ActionError values; routes raise PortalError at the HTTP
boundary and the handler here renders the same ActionError JSON body with an
HTTP status chosen by error code:
- 400 Bad Request: Validation/business rule violations
- 401 Unauthorized: Sign-in required
- 403 Forbidden: Not an administrator
- 404 Not Found: Unknown or unavailable resource
- 409 Conflict: Payment already in the target state
- 502 Bad Gateway: Stripe failures
- 503 Service Unavailable: Record store failures

Usage:
    from portal_api.exceptions import register_exception_handlers
    register_exception_handlers(app)
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from starlette.status import (
    HTTP_400_BAD_REQUEST,
    HTTP_401_UNAUTHORIZED,
    HTTP_403_FORBIDDEN,
    HTTP_404_NOT_FOUND,
    HTTP_409_CONFLICT,
    HTTP_500_INTERNAL_SERVER_ERROR,
    HTTP_502_BAD_GATEWAY,
    HTTP_503_SERVICE_UNAVAILABLE,
)

from portal_shared.models.errors import ActionError, ErrorCode, PortalError

logger = logging.getLogger(__name__)

ERROR_CODE_TO_HTTP_STATUS: dict[ErrorCode, int] = {
    # Authentication / authorization
    ErrorCode.SIGN_IN_REQUIRED: HTTP_401_UNAUTHORIZED,
    ErrorCode.FORBIDDEN: HTTP_403_FORBIDDEN,
    # Not found
    ErrorCode.PROFILE_UNAVAILABLE: HTTP_404_NOT_FOUND,
    ErrorCode.NOT_AVAILABLE: HTTP_404_NOT_FOUND,
    ErrorCode.PAYMENT_NOT_FOUND: HTTP_404_NOT_FOUND,
    # State conflicts
    ErrorCode.ALREADY_REFUNDED: HTTP_409_CONFLICT,
    ErrorCode.PAYMENT_NOT_COMPLETED: HTTP_409_CONFLICT,
    ErrorCode.STORE_DUPLICATE: HTTP_409_CONFLICT,
    # Gateway failures
    ErrorCode.CHECKOUT_FAILED: HTTP_502_BAD_GATEWAY,
    ErrorCode.REFUND_FAILED: HTTP_502_BAD_GATEWAY,
    # Server-side
    ErrorCode.WEBHOOK_NOT_CONFIGURED: HTTP_500_INTERNAL_SERVER_ERROR,
    ErrorCode.STORE_UNAVAILABLE: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.STORE_CONNECTION: HTTP_503_SERVICE_UNAVAILABLE,
    ErrorCode.UNEXPECTED: HTTP_500_INTERNAL_SERVER_ERROR,
}


def get_http_status_for_error(code: ErrorCode) -> int:
    """Get HTTP status code for an ErrorCode, defaulting to 400."""
    return ERROR_CODE_TO_HTTP_STATUS.get(code, HTTP_400_BAD_REQUEST)


def action_error_response(error: ActionError) -> JSONResponse:
    """Render an ActionError with the status for its code."""
    return JSONResponse(
        status_code=get_http_status_for_error(error.error_code),
        content=error.model_dump(mode="json", exclude_none=True),
    )


async def portal_error_handler(request: Request, exc: PortalError) -> JSONResponse:
    """Handle PortalError exceptions and convert to JSON response."""
    return action_error_response(exc.to_action_error())


async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Return the generic error body for anything unhandled.

    Internal details are logged, never returned.
    """
    logger.exception("Unhandled exception on %s: %s", request.url.path, exc)
    return action_error_response(ActionError.from_code(ErrorCode.UNEXPECTED))


def register_exception_handlers(app: FastAPI) -> None:
    """Register all exception handlers with the FastAPI app."""
    app.add_exception_handler(PortalError, portal_error_handler)  # type: ignore[arg-type]
    app.add_exception_handler(Exception, generic_exception_handler)
