"""Shared FastAPI middleware."""

from __future__ import annotations

from typing import Callable

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse

from lhamascred.core.config import get_settings


class MaxBodySizeMiddleware(BaseHTTPMiddleware):
    """
    Reject requests with bodies larger than MAX_REQUEST_BODY_BYTES.

    Spreadsheet uploads and provider callbacks are the only large bodies we
    expect; anything bigger is refused before it reaches a handler.
    """

    async def dispatch(self, request: Request, call_next: Callable[[Request], Response]) -> Response:
        settings = get_settings()
        limit = int(settings.MAX_REQUEST_BODY_BYTES)

        content_length = request.headers.get("content-length")
        if content_length:
            try:
                if int(content_length) > limit:
                    return JSONResponse(
                        {"status": "error", "message": "Payload too large."},
                        status_code=413,
                    )
            except ValueError:
                return JSONResponse(
                    {"status": "error", "message": "Invalid Content-Length header."},
                    status_code=400,
                )

        return await call_next(request)
