"""
Conversion tracking, A/B testing and customer journey router
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from models.abtest import ConversionRequest, CreateTestRequest, EndTestRequest
from models.conversion import ConversionEvent, TouchpointRequest
from routers.deps import get_abtest_manager, get_conversion_tracker, get_journey_tracker
from services.abtest_service import ABTestManager
from services.conversion_service import ConversionTracker
from services.journey_service import CustomerJourneyTracker
from utils.config import TRACK_RATE_LIMIT
from utils.limiter import limiter

router = APIRouter(tags=["conversion"])


# Conversion events
@router.post("/track")
@limiter.limit(TRACK_RATE_LIMIT)
async def track_event(event: ConversionEvent, request: Request, tracker: ConversionTracker = Depends(get_conversion_tracker)):
    await tracker.track_event(event)
    return {"success": True}


@router.get("/performance/{form_id}")
async def form_performance(
    form_id: str,
    days: int = Query(30, ge=1, le=365),
    tracker: ConversionTracker = Depends(get_conversion_tracker),
):
    perf = await tracker.get_performance(form_id, days)
    return perf.model_dump()


@router.get("/funnel/{form_id}")
async def conversion_funnel(
    form_id: str,
    days: int = Query(30, ge=1, le=365),
    tracker: ConversionTracker = Depends(get_conversion_tracker),
):
    funnel = await tracker.get_funnel(form_id, days)
    return funnel.model_dump()


# A/B testing
@router.post("/abtest", status_code=201)
async def create_test(payload: CreateTestRequest, abtests: ABTestManager = Depends(get_abtest_manager)):
    test = await abtests.create_test(payload)
    return {"testId": test.id, "test": test.model_dump(exclude_none=True)}


@router.get("/abtest/{test_id}")
async def test_results(test_id: str, abtests: ABTestManager = Depends(get_abtest_manager)):
    """Per-variant results; confidenceEstimate is a sample-size heuristic, not a p-value"""
    results = await abtests.get_results(test_id)
    return results.model_dump(exclude_none=True)


@router.post("/abtest/{test_id}/end")
async def end_test(test_id: str, payload: Optional[EndTestRequest] = None, abtests: ABTestManager = Depends(get_abtest_manager)):
    winner = payload.winningVariant if payload else None
    test = await abtests.end_test(test_id, winner)
    return test.model_dump(exclude_none=True)


@router.post("/abtest/{test_id}/stop")
async def stop_test(test_id: str, abtests: ABTestManager = Depends(get_abtest_manager)):
    test = await abtests.stop_test(test_id)
    return test.model_dump(exclude_none=True)


@router.post("/abtest/{test_id}/pause")
async def pause_test(test_id: str, abtests: ABTestManager = Depends(get_abtest_manager)):
    test = await abtests.pause_test(test_id)
    return test.model_dump(exclude_none=True)


@router.post("/abtest/{test_id}/resume")
async def resume_test(test_id: str, abtests: ABTestManager = Depends(get_abtest_manager)):
    test = await abtests.resume_test(test_id)
    return test.model_dump(exclude_none=True)


@router.post("/abtest/{test_id}/conversion")
@limiter.limit(TRACK_RATE_LIMIT)
async def record_conversion(
    test_id: str,
    payload: ConversionRequest,
    request: Request,
    abtests: ABTestManager = Depends(get_abtest_manager),
):
    await abtests.record_conversion(test_id, payload.variantId, payload.revenue)
    return {"success": True}


@router.get("/variant/{form_id}/{session_id}")
async def get_variant(form_id: str, session_id: str, abtests: ABTestManager = Depends(get_abtest_manager)):
    """Stable variant for a session; 'control' when the form has no running test"""
    assignment = await abtests.get_variant(form_id, session_id)
    if assignment is None:
        return {"variantId": "control", "config": {}}
    return assignment.model_dump(exclude_none=True)


# Customer journey
@router.post("/journey/{customer_id}", status_code=201)
@limiter.limit(TRACK_RATE_LIMIT)
async def track_touchpoint(
    customer_id: str,
    payload: TouchpointRequest,
    request: Request,
    journeys: CustomerJourneyTracker = Depends(get_journey_tracker),
):
    touchpoint = await journeys.track_touchpoint(customer_id, payload)
    return touchpoint.model_dump(exclude_none=True)


@router.get("/journey/{customer_id}")
async def get_journey(customer_id: str, journeys: CustomerJourneyTracker = Depends(get_journey_tracker)):
    touchpoints = await journeys.get_journey(customer_id)
    return {"touchpoints": [t.model_dump(exclude_none=True) for t in touchpoints]}


@router.get("/journey/{customer_id}/value")
async def customer_value(customer_id: str, journeys: CustomerJourneyTracker = Depends(get_journey_tracker)):
    value = await journeys.calculate_value(customer_id)
    return value.model_dump()
