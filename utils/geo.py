"""
Request metadata: client IP, country, device and referrer host.

Country comes from edge-proxy headers only (Cloudflare's CF-IPCountry or an
upstream X-Country-Code); no IP lookup service is called on the request path.
"""
import hashlib
from typing import Optional, Tuple
from urllib.parse import urlparse

from fastapi import Request

from models.base import SubmissionMetadata
from utils.limiter import forwarded_for_ip

UNKNOWN_COUNTRIES = {"", "XX", "T1"}


def client_ip(request: Request) -> str:
    """Resolve client IP: CF-Connecting-IP, then X-Forwarded-For, then the socket."""
    cf_ip = (request.headers.get("cf-connecting-ip") or "").strip()
    if cf_ip:
        return cf_ip
    return forwarded_for_ip(request)


def country_code(request: Request) -> Optional[str]:
    raw = request.headers.get("cf-ipcountry") or request.headers.get("x-country-code") or ""
    code = raw.strip().upper()
    if code in UNKNOWN_COUNTRIES:
        return None
    return code


def hash_ip(ip: str) -> str:
    return hashlib.sha256(ip.encode("utf-8")).hexdigest()[:32]


def parse_user_agent(user_agent: str) -> Tuple[str, str, str]:
    """Return (device_type, browser, os) guessed from a User-Agent string"""
    device_type = "desktop"
    browser = "Unknown"
    os_name = "Unknown"
    if not user_agent:
        return device_type, browser, os_name

    ua_lower = user_agent.lower()
    if "ipad" in ua_lower or "tablet" in ua_lower:
        device_type = "tablet"
    elif "mobile" in ua_lower or "android" in ua_lower or "iphone" in ua_lower:
        device_type = "mobile"

    if "edg" in ua_lower:
        browser = "Edge"
    elif "opr" in ua_lower or "opera" in ua_lower:
        browser = "Opera"
    elif "chrome" in ua_lower:
        browser = "Chrome"
    elif "firefox" in ua_lower:
        browser = "Firefox"
    elif "safari" in ua_lower:
        browser = "Safari"

    if "windows" in ua_lower:
        os_name = "Windows"
    elif "android" in ua_lower:
        os_name = "Android"
    elif "iphone" in ua_lower or "ipad" in ua_lower:
        os_name = "iOS"
    elif "mac" in ua_lower:
        os_name = "macOS"
    elif "linux" in ua_lower:
        os_name = "Linux"

    return device_type, browser, os_name


def referrer_host(referrer: Optional[str]) -> str:
    """Host part of a referrer URL, or 'direct' when there is none"""
    if not referrer:
        return "direct"
    host = urlparse(referrer).hostname if "://" in referrer else referrer.split("/")[0].split(":")[0]
    host = (host or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host or "direct"


def submission_metadata(request: Request) -> SubmissionMetadata:
    return SubmissionMetadata(
        ip=client_ip(request) or None,
        userAgent=request.headers.get("user-agent"),
        referrer=request.headers.get("referer"),
        country=country_code(request),
    )
