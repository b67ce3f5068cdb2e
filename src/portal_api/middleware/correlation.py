"""Correlation ID middleware.

The ID is taken from the X-Correlation-ID request header, then from the API
Gateway request ID when running behind Mangum, and generated otherwise. It is
bound for the duration of the request so every log line carries it, and echoed
on the response.
"""

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import Response

from portal_shared.utils.logging import clear_correlation_id, set_correlation_id

CORRELATION_ID_HEADER = "X-Correlation-ID"


def _gateway_request_id(request: Request) -> str | None:
    aws_event = request.scope.get("aws.event") or {}
    return (aws_event.get("requestContext") or {}).get("requestId")


class CorrelationIdMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        correlation_id = set_correlation_id(
            request.headers.get(CORRELATION_ID_HEADER) or _gateway_request_id(request)
        )
        try:
            response = await call_next(request)
        finally:
            clear_correlation_id()
        response.headers[CORRELATION_ID_HEADER] = correlation_id
        return response
