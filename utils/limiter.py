import logging

from fastapi import Request
from slowapi import Limiter

from utils.config import RATE_LIMIT_STORAGE_URI

logger = logging.getLogger("formpulse.limiter")


def forwarded_for_ip(request: Request) -> str:
    """Resolve client IP using X-Forwarded-For first, then fallback to socket IP."""
    xff = request.headers.get("x-forwarded-for")
    if xff:
        ip = xff.split(",")[0].strip()
        if ip:
            return ip
    return request.client.host if request.client else ""


def _create_limiter() -> Limiter:
    """Limiter backed by RATE_LIMIT_STORAGE_URI (memory:// or a redis:// URI)"""
    backend = RATE_LIMIT_STORAGE_URI.split("://", 1)[0]
    logger.info("rate limiting storage=%s", backend)
    return Limiter(key_func=forwarded_for_ip, storage_uri=RATE_LIMIT_STORAGE_URI)


# Global limiter instance to be shared across the app and routers
limiter = _create_limiter()
