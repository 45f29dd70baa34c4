"""
Analytics ingestion router used by the embedded client tracker
"""
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import Response
from pydantic import ValidationError

from models.analytics import (
    DeviceInfo,
    DropOffRequest,
    FieldInteraction,
    GeoInfo,
    InteractionRequest,
    SessionRef,
    StartSessionRequest,
)
from routers.deps import get_abtest_manager, get_collector
from services.abtest_service import ABTestManager
from services.analytics_service import FormAnalyticsCollector
from services.embed_service import render_tracker_js
from utils.config import TRACK_RATE_LIMIT
from utils.errors import FieldValidationError
from utils.geo import country_code, parse_user_agent
from utils.limiter import limiter

router = APIRouter(prefix="/analytics", tags=["analytics"])
logger = logging.getLogger("formpulse.analytics")


@router.post("/session")
@limiter.limit(TRACK_RATE_LIMIT)
async def start_session(
    payload: StartSessionRequest,
    request: Request,
    collector: FormAnalyticsCollector = Depends(get_collector),
    abtests: ABTestManager = Depends(get_abtest_manager),
):
    """Open a live session; assigns an A/B variant when the client did not send one"""
    variant = payload.variant
    if not variant:
        assignment = await abtests.get_variant(payload.formId, payload.sessionId)
        variant = assignment.variantId if assignment else None

    device = payload.device
    if "device" not in payload.model_fields_set:
        device_type, browser, os_name = parse_user_agent(request.headers.get("user-agent") or "")
        device = DeviceInfo(type=device_type, browser=browser, os=os_name)
    geo = payload.geo or GeoInfo(country=country_code(request))

    await collector.start_session(
        payload.formId,
        payload.sessionId,
        device=device,
        geo=geo,
        referrer=payload.referrer or request.headers.get("referer"),
        utm_params=payload.utmParams,
        variant=variant,
    )
    return {"success": True, "sessionId": payload.sessionId, "variant": variant}


@router.post("/started")
@limiter.limit(TRACK_RATE_LIMIT)
async def mark_started(payload: SessionRef, request: Request, collector: FormAnalyticsCollector = Depends(get_collector)):
    tracked = await collector.mark_started(payload.sessionId)
    return {"success": True, "tracked": tracked}


@router.post("/interaction")
@limiter.limit(TRACK_RATE_LIMIT)
async def track_interaction(
    payload: InteractionRequest,
    request: Request,
    collector: FormAnalyticsCollector = Depends(get_collector),
):
    interaction = FieldInteraction.model_validate(payload.model_dump(exclude={"sessionId"}))
    tracked = await collector.track_interaction(payload.sessionId, interaction)
    return {"success": True, "tracked": tracked}


@router.post("/completed")
@limiter.limit(TRACK_RATE_LIMIT)
async def mark_completed(payload: SessionRef, request: Request, collector: FormAnalyticsCollector = Depends(get_collector)):
    tracked = await collector.mark_completed(payload.sessionId)
    return {"success": True, "tracked": tracked}


@router.post("/submitted")
@limiter.limit(TRACK_RATE_LIMIT)
async def mark_submitted(
    payload: SessionRef,
    request: Request,
    collector: FormAnalyticsCollector = Depends(get_collector),
    abtests: ABTestManager = Depends(get_abtest_manager),
):
    """Count the submission and credit the session's A/B variant with a conversion"""
    session = await collector.mark_submitted(payload.sessionId)
    converted = False
    if session is not None and session.variant:
        converted = await abtests.record_conversion_for_form(session.formId, session.variant)
    return {"success": True, "tracked": session is not None, "variantConverted": converted}


@router.post("/dropoff")
@limiter.limit(TRACK_RATE_LIMIT)
async def track_drop_off(request: Request, collector: FormAnalyticsCollector = Depends(get_collector)):
    """Abandonment beacon; navigator.sendBeacon posts JSON as text/plain, so the body is parsed here"""
    body = await request.body()
    try:
        payload = DropOffRequest.model_validate_json(body)
    except ValidationError as e:
        logger.info("malformed drop-off beacon: %s", e.errors()[:1])
        raise FieldValidationError("Invalid drop-off payload", field="sessionId")
    tracked = await collector.track_drop_off(payload.sessionId, payload.lastFieldId)
    return {"success": True, "tracked": tracked}


@router.get("/tracker/{form_id}.js", name="tracker_script")
async def tracker_script(form_id: str, request: Request):
    """Client tracker script for an embedded form"""
    api_url = str(request.base_url).rstrip("/")
    return Response(
        content=render_tracker_js(form_id, api_url),
        media_type="application/javascript",
        headers={"Cache-Control": "public, max-age=300"},
    )
