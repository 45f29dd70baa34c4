"""
Environment-driven settings for the formpulse backend
"""
import os
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables (do not override shell env)
try:
    load_dotenv()
    backend_env = Path(__file__).resolve().parents[1] / ".env"
    if backend_env.exists():
        load_dotenv(dotenv_path=str(backend_env), override=False)
except Exception:
    pass


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    try:
        return int(raw) if raw else default
    except ValueError:
        return default


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    try:
        return float(raw) if raw else default
    except ValueError:
        return default


SERVICE_NAME = "formpulse"
SERVICE_VERSION = "0.1.0"

# Key-value store
REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")
KV_KEY_PREFIX = os.getenv("KV_KEY_PREFIX", "")

# HTTP
CORS_ALLOWED_ORIGINS = [o.strip() for o in (os.getenv("CORS_ALLOWED_ORIGINS") or "*").split(",") if o.strip()]
RATE_LIMIT_STORAGE_URI = os.getenv("RATE_LIMIT_STORAGE_URI", "memory://")
SUBMIT_RATE_LIMIT = os.getenv("SUBMIT_RATE_LIMIT", "30/minute")
TRACK_RATE_LIMIT = os.getenv("TRACK_RATE_LIMIT", "600/minute")

# Outbound webhooks
WEBHOOK_TIMEOUT_SECONDS = _float_env("WEBHOOK_TIMEOUT_SECONDS", 5.0)
WEBHOOK_SIGNING_SECRET = os.getenv("WEBHOOK_SIGNING_SECRET", "")

# Live analytics sessions
SESSION_IDLE_TIMEOUT_SECONDS = _int_env("SESSION_IDLE_TIMEOUT_SECONDS", 1800)
SESSION_SWEEP_INTERVAL_SECONDS = _int_env("SESSION_SWEEP_INTERVAL_SECONDS", 60)
SESSION_MAX_INTERACTIONS = _int_env("SESSION_MAX_INTERACTIONS", 500)

# Analytics report
ANALYTICS_MAX_RANGE_DAYS = _int_env("ANALYTICS_MAX_RANGE_DAYS", 366)

# Author-supplied regular expressions
PATTERN_MAX_LENGTH = _int_env("PATTERN_MAX_LENGTH", 500)
PATTERN_MAX_INPUT_LENGTH = _int_env("PATTERN_MAX_INPUT_LENGTH", 2000)
PATTERN_MATCH_TIMEOUT_SECONDS = _float_env("PATTERN_MATCH_TIMEOUT_SECONDS", 0.1)

# Retention (seconds)
DAY_SECONDS = 86400
SUBMISSION_TTL = DAY_SECONDS * 365
ANALYTICS_SESSION_TTL = DAY_SECONDS * 90
CONVERSION_EVENT_TTL = DAY_SECONDS * 30
CONVERSION_AGGREGATE_TTL = DAY_SECONDS * 90
REVENUE_TTL = DAY_SECONDS * 365
JOURNEY_TTL = DAY_SECONDS * 365
ABTEST_ASSIGNMENT_TTL = DAY_SECONDS * 30
ONE_PER_USER_TTL = DAY_SECONDS * 365

JOURNEY_MAX_TOUCHPOINTS = 100


def is_production() -> bool:
    return (os.getenv("ENV") or os.getenv("APP_ENV") or "").lower() == "production"
