"""
RequestContext middleware.

Sets on request.state:
- request_id: UUID for tracing, echoed back as X-Request-ID
- ip_address: client IP (X-Forwarded-For only from trusted proxies)

Binds request_id into the structlog context for the duration of the request
and logs method, path, status and duration when it completes. The audit
logger reads request_id and ip_address from request.state.
"""

import time
import uuid

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from app.config import settings
from app.infrastructure.observability.logging import get_logger, log_request

logger = get_logger(__name__)


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        request.state.ip_address = self._extract_client_ip(request)

        structlog.contextvars.bind_contextvars(request_id=request_id)
        start_time = time.time()
        try:
            response = await call_next(request)
            log_request(
                method=request.method,
                path=request.url.path,
                status_code=response.status_code,
                duration_ms=round((time.time() - start_time) * 1000, 2),
                client_ip=request.state.ip_address,
            )
        finally:
            structlog.contextvars.unbind_contextvars("request_id")

        response.headers["X-Request-ID"] = request_id
        return response

    def _extract_client_ip(self, request: Request) -> str | None:
        """Trust X-Forwarded-For only when the direct peer is a configured proxy."""
        direct_ip = request.client.host if request.client else None

        if not settings.TRUST_X_FORWARDED_FOR or direct_ip not in settings.TRUSTED_PROXY_IPS:
            return direct_ip

        forwarded_for = request.headers.get("x-forwarded-for")
        if not forwarded_for:
            return direct_ip

        # "client, proxy1, proxy2"
        client_ip = forwarded_for.split(",")[0].strip()
        logger.debug("Using X-Forwarded-For from trusted proxy", proxy_ip=direct_ip, client_ip=client_ip)
        return client_ip
