import logging
import os
import sys
import time
import uuid
from typing import Callable, Iterable, Optional

from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT = os.getenv("LOG_FORMAT", "%(asctime)s %(levelname)s [%(name)s] %(message)s")

REQUEST_ID_HEADER = "x-request-id"

# High-volume tracker beacons and probes are logged at DEBUG
DEFAULT_QUIET_PREFIXES = ("/health", "/analytics/", "/track")


def setup_logging(level_name: Optional[str] = None) -> int:
    """Install a stdout handler on the root logger (once) and apply the level to uvicorn's loggers too.

    Returns the numeric level in effect.
    """
    level = getattr(logging, (level_name or LOG_LEVEL).upper(), logging.INFO)
    root = logging.getLogger()
    if not root.handlers:
        stream = logging.StreamHandler(sys.stdout)
        stream.setFormatter(logging.Formatter(LOG_FORMAT))
        root.addHandler(stream)
    root.setLevel(level)

    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        logging.getLogger(name).setLevel(level)
    return level


class RequestContextLogMiddleware(BaseHTTPMiddleware):
    """Per-request access log keyed by a request id.

    The id is taken from X-Request-ID when the caller sends one, stored on
    request.state and echoed back on the response.
    """

    def __init__(self, app, quiet_prefixes: Iterable[str] = DEFAULT_QUIET_PREFIXES):
        super().__init__(app)
        self.quiet_prefixes = tuple(quiet_prefixes)
        self.logger = logging.getLogger("formpulse.http")

    async def dispatch(self, request: Request, call_next: Callable):
        rid = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex
        request.state.request_id = rid
        method, path = request.method, request.url.path
        level = logging.DEBUG if path.startswith(self.quiet_prefixes) else logging.INFO
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception:
            self.logger.exception("%s %s failed after %sms rid=%s", method, path, self._elapsed(started), rid)
            raise

        response.headers[REQUEST_ID_HEADER] = rid
        if response.status_code >= 500:
            level = logging.WARNING
        self.logger.log(level, "%s %s -> %s in %sms rid=%s", method, path, response.status_code, self._elapsed(started), rid)
        return response

    @staticmethod
    def _elapsed(started: float) -> int:
        return int((time.perf_counter() - started) * 1000)
