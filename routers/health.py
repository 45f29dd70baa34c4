from fastapi import APIRouter, Depends

from db.database import get_kv
from db.kv import KVStore
from utils.config import SERVICE_NAME, SERVICE_VERSION, is_production
from utils.errors import UpstreamFailure

router = APIRouter(tags=["health"])

ENDPOINTS = {
    "forms": "/forms",
    "analytics": "/analytics",
    "conversion": ["/track", "/performance/{formId}", "/funnel/{formId}"],
    "abtest": ["/abtest", "/variant/{formId}/{sessionId}"],
    "journey": "/journey/{customerId}",
    "health": ["/health", "/health/kv"],
}


@router.get("/")
async def index():
    return {"name": SERVICE_NAME, "version": SERVICE_VERSION, "endpoints": ENDPOINTS}


@router.get("/health")
async def health():
    return {"status": "ok"}


@router.get("/health/kv")
async def health_kv(kv: KVStore = Depends(get_kv)):
    """Lightweight key-value store health check: PING against Redis."""
    try:
        await kv.ping()
        return {"status": "ok", "kv": True}
    except UpstreamFailure as e:
        # Do not leak internals in production; return a generic failure
        body = {"status": "fail", "kv": False}
        if not is_production():
            body["error"] = str(e.__cause__ or e)
        return body
