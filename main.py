import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException as StarletteHTTPException

from db.database import close_redis_client
from routers.analytics import router as analytics_router
from routers.conversion import router as conversion_router
from routers.deps import session_registry
from routers.forms import router as forms_router
from routers.health import router as health_router
from services.analytics_service import run_session_sweeper
from utils.config import CORS_ALLOWED_ORIGINS, SERVICE_NAME, SERVICE_VERSION, SESSION_SWEEP_INTERVAL_SECONDS, is_production
from utils.errors import FormpulseError, UpstreamFailure
from utils.limiter import limiter
from utils.logger import RequestContextLogMiddleware, setup_logging

setup_logging()
logger = logging.getLogger("formpulse")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the idle-session sweeper; on shutdown stop it and close Redis"""
    sweeper = asyncio.create_task(run_session_sweeper(session_registry, SESSION_SWEEP_INTERVAL_SECONDS))
    logger.info("%s %s started; session sweep every %ss", SERVICE_NAME, SERVICE_VERSION, SESSION_SWEEP_INTERVAL_SECONDS)
    yield
    sweeper.cancel()
    try:
        await sweeper
    except asyncio.CancelledError:
        pass
    await close_redis_client()


app = FastAPI(title="Formpulse API", version=SERVICE_VERSION, lifespan=lifespan)


# Generic wording for statuses whose detail is not shown in production
GENERIC_MESSAGES = {
    400: ("bad_request", "The request could not be processed."),
    404: ("not_found", "Resource not found."),
    405: ("method_not_allowed", "Method not allowed."),
    413: ("too_large", "Submission is too large."),
    415: ("unsupported_media_type", "Unsupported content type."),
    429: ("rate_limited", "Too many requests, slow down."),
    500: ("internal_error", "Something went wrong. Please try again."),
    503: ("unavailable", "Service temporarily unavailable."),
}


def error_body(status_code: int, message: str = None, code: str = None) -> dict:
    default_code, default_message = GENERIC_MESSAGES.get(status_code, GENERIC_MESSAGES[500])
    message = message or default_message
    return {"error": message, "code": code or default_code, "message": message}


@app.exception_handler(FormpulseError)
async def formpulse_error_handler(request: Request, exc: FormpulseError):
    if isinstance(exc, UpstreamFailure):
        # Storage failures surface as a generic 500
        logger.error("upstream failure on %s %s: %s", request.method, request.url.path, exc, exc_info=exc)
        return JSONResponse(status_code=exc.status_code, content=error_body(500, code=exc.code))
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Starlette's base class also covers routing 404/405 and FastAPI's HTTPException
@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    detail = None if is_production() else (str(exc.detail) if exc.detail else None)
    return JSONResponse(status_code=exc.status_code, content=error_body(exc.status_code, detail), headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    """Payload/query errors as 400 {error, code, message, field}"""
    problems = exc.errors()
    first = problems[0] if problems else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p not in ("body", "query", "path")) or None
    message = str(first.get("msg") or GENERIC_MESSAGES[400][1])
    if field:
        message = f"{field}: {message}"
    body = error_body(400, message, "validation_error")
    if field:
        body["field"] = field
    return JSONResponse(status_code=400, content=body)


@app.exception_handler(RateLimitExceeded)
async def rate_limited_handler(request: Request, exc: RateLimitExceeded):
    logger.info("rate limited %s %s: %s", request.method, request.url.path, exc.detail)
    return JSONResponse(status_code=429, content=error_body(429))


@app.exception_handler(Exception)
async def unexpected_error_handler(request: Request, exc: Exception):
    logger.exception("unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content=error_body(500))


app.state.limiter = limiter
app.add_middleware(SlowAPIMiddleware)

# Embedded forms and the tracker post from arbitrary sites
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ALLOWED_ORIGINS,
    allow_credentials="*" not in CORS_ALLOWED_ORIGINS,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.add_middleware(RequestContextLogMiddleware)

app.include_router(health_router)
app.include_router(forms_router)
app.include_router(analytics_router)
app.include_router(conversion_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000)
