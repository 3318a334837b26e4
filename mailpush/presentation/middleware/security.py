"""Request validation middleware"""
from collections.abc import Callable

from fastapi import Response
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse

from mailpush.shared.telemetry.logging import get_logger

logger = get_logger(__name__)


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Limit request body size.

    Every payload this service accepts is a few kilobytes, so the default
    limit is 1MB.
    """

    def __init__(self, app, max_request_size: int = 1024 * 1024) -> None:
        super().__init__(app)
        self.max_request_size = max_request_size

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Check Content-Length before processing."""
        content_length = request.headers.get("content-length")

        if content_length:
            try:
                size = int(content_length)
            except ValueError:
                logger.error("Invalid Content-Length header: %s", content_length)
                return JSONResponse(
                    status_code=400,
                    content={
                        "error": "INVALID_CONTENT_LENGTH",
                        "message": "Invalid Content-Length header",
                    },
                )

            if size > self.max_request_size:
                logger.warning(
                    "Request size %d exceeds limit %d from %s",
                    size,
                    self.max_request_size,
                    request.client.host if request.client else "unknown",
                )
                return JSONResponse(
                    status_code=413,
                    content={
                        "error": "PAYLOAD_TOO_LARGE",
                        "message": f"Request body too large. Maximum size: {self.max_request_size} bytes",
                        "details": {
                            "max_size_bytes": self.max_request_size,
                            "received_size_bytes": size,
                        },
                    },
                )

        return await call_next(request)
