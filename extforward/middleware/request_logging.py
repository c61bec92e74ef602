"""
Access logging middleware.
"""
import logging
import time
import uuid
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response
from typing import Callable

from extforward.core.ip_extraction import get_client_ip, get_peer_ip
from extforward.core.logging_config import request_id_context

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Middleware to log completed requests with client and peer addresses.

    Add it before ExtForwardMiddleware (so that it runs inside it) to log the
    forwarded client address; added after, it only sees the proxy.
    """

    def __init__(self, app, skip_paths: list[str] | None = None):
        """
        Initialize request logging middleware.

        Args:
            app: FastAPI application
            skip_paths: Paths that are not logged (e.g. health checks)
        """
        super().__init__(app)
        self.skip_paths = skip_paths or []

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """
        Process request and log details.

        Args:
            request: Incoming request
            call_next: Next middleware/endpoint in chain

        Returns:
            Response from the endpoint
        """
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        token = request_id_context.set(request_id)

        start_time = time.time()
        path = str(request.url.path)
        client_host = get_client_ip(request)
        peer_host = get_peer_ip(request)

        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            if path not in self.skip_paths:
                self._log_response(request, response, start_time, client_host, peer_host)
            return response
        finally:
            request_id_context.reset(token)

    def _log_response(
        self,
        request: Request,
        response: Response,
        start_time: float,
        client_host: str,
        peer_host: str,
    ) -> None:
        extra_fields = {
            "method": request.method,
            "path": str(request.url.path),
            "status_code": response.status_code,
            "duration_ms": round((time.time() - start_time) * 1000, 2),
            "client_host": client_host,
            "peer_host": peer_host,
            "scheme": request.url.scheme,
        }

        if response.status_code >= 500:
            logger.error("Server error response", extra=extra_fields)
        elif response.status_code >= 400:
            logger.warning("Client error response", extra=extra_fields)
        else:
            logger.info("Request completed", extra=extra_fields)
