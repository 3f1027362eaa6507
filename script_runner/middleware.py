import logging
import time

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

PROCESS_TIME_HEADER = "X-Process-Time-Ms"


class HTTPLogMiddleware(BaseHTTPMiddleware):
    """Debug request log plus a per-response wall-time header.

    Requests slower than ``slow_ms`` (script runs near their time budget,
    mostly) are logged at INFO even when DEBUG is off.
    """

    def __init__(self, app, logger_name: str = "script_runner.http", slow_ms: int = 1000):
        super().__init__(app)
        self._logger = logging.getLogger(logger_name)
        self._slow_ms = slow_ms

    async def dispatch(self, request: Request, call_next) -> Response:
        start = time.perf_counter()
        method, path = request.method, request.url.path
        self._logger.debug(
            "http.request start method=%s path=%s client=%s bytes=%s",
            method,
            path,
            request.client.host if request.client else "-",
            request.headers.get("content-length", "-"),
        )
        try:
            response = await call_next(request)
        except Exception as e:
            self._logger.warning(
                "http.request error method=%s path=%s dur_ms=%d err=%r",
                method, path, _elapsed_ms(start), e,
            )
            raise

        dur_ms = _elapsed_ms(start)
        response.headers[PROCESS_TIME_HEADER] = str(dur_ms)
        level = logging.INFO if dur_ms >= self._slow_ms else logging.DEBUG
        self._logger.log(
            level,
            "http.request end method=%s path=%s status=%s dur_ms=%d",
            method, path, response.status_code, dur_ms,
        )
        return response


def _elapsed_ms(start: float) -> int:
    return int((time.perf_counter() - start) * 1000)
