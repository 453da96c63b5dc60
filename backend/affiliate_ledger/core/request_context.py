"""
Middleware for request-scoped context: correlation id and client origin.
"""

import logging
from uuid import uuid4

from starlette.middleware.base import BaseHTTPMiddleware

from affiliate_ledger.core.config import settings

logger = logging.getLogger(__name__)


def extract_client_ip(request) -> str | None:
    header_name = settings.CLIENT_IP_HEADER
    if header_name:
        forwarded = request.headers.get(header_name)
        if forwarded:
            return forwarded.split(",")[0].strip() or None
    client = getattr(request, "client", None)
    return getattr(client, "host", None)


class RequestContextMiddleware(BaseHTTPMiddleware):
    """
    Attaches a request_id to request.state for correlation and adds it to responses.
    """

    async def dispatch(self, request, call_next):
        request_id = (
            getattr(request.state, "request_id", None)
            or request.headers.get("X-Request-ID")
            or request.headers.get("X-Request-Id")
            or str(uuid4())
        )
        request.state.request_id = request_id
        request.state.client_ip = extract_client_ip(request)
        request.state.user_agent = request.headers.get("User-Agent")

        logger.debug(
            "request.start",
            extra={
                "request_id": request_id,
                "path": request.url.path,
                "client_ip": request.state.client_ip,
            },
        )
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
