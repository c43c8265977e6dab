import logging
import time
import uuid

from fastapi import FastAPI, Request
from starlette.responses import Response

logger = logging.getLogger(__name__)

ROBOTS_HEADER = "noindex, nofollow, noarchive"
REQUEST_ID_HEADER = "X-Request-Id"


def install_security_headers(app: FastAPI) -> None:
    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Robots-Tag"] = ROBOTS_HEADER
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers[REQUEST_ID_HEADER] = request_id
        logger.info(
            "request handled",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": response.status_code,
                "duration_ms": round((time.perf_counter() - started) * 1000, 1),
            },
        )
        return response
