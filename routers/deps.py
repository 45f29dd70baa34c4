"""
Shared FastAPI dependencies for the routers
"""
from fastapi import Depends

from db.database import get_kv
from db.kv import KVStore
from services.abtest_service import ABTestManager
from services.analytics_service import FormAnalyticsCollector, SessionRegistry
from services.conversion_service import ConversionTracker
from services.journey_service import CustomerJourneyTracker

# Live analytics sessions are process-local; see run_session_sweeper in main.py
session_registry = SessionRegistry()


def get_session_registry() -> SessionRegistry:
    return session_registry


def get_collector(
    kv: KVStore = Depends(get_kv),
    registry: SessionRegistry = Depends(get_session_registry),
) -> FormAnalyticsCollector:
    return FormAnalyticsCollector(kv, registry)


def get_abtest_manager(kv: KVStore = Depends(get_kv)) -> ABTestManager:
    return ABTestManager(kv)


def get_conversion_tracker(kv: KVStore = Depends(get_kv)) -> ConversionTracker:
    return ConversionTracker(kv)


def get_journey_tracker(kv: KVStore = Depends(get_kv)) -> CustomerJourneyTracker:
    return CustomerJourneyTracker(kv)
