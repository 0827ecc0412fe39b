"""
MODULE OVERVIEW:
FastAPI middleware to track request timings.

WHAT IS HAPPENING HERE:
We add an `X-Process-Time-Ms` header so clients can see the server-side
overhead of each request. For the NDJSON stream this is the time until the
headers left, not the length of the turn: the body is still streaming when
the middleware returns. The middleware never touches the body itself.
"""

import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from loguru import logger

from chatstream.server.emitter import NDJSON_MEDIA_TYPE

class TimingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        process_time_ms = (time.perf_counter() - start_time) * 1000
        response.headers["X-Process-Time-Ms"] = f"{process_time_ms:.2f}"

        if response.headers.get("content-type", "").startswith(NDJSON_MEDIA_TYPE):
            logger.debug(f"{request.method} {request.url.path} stream opened in {process_time_ms:.2f}ms")
        else:
            logger.debug(f"{request.method} {request.url.path} completed in {process_time_ms:.2f}ms")

        return response
