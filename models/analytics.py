"""
Analytics session, ingestion payload and report models
"""
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

InteractionType = Literal["focus", "blur", "input", "change", "error"]
DeviceType = Literal["mobile", "tablet", "desktop"]

DEVICE_TYPES = ("mobile", "tablet", "desktop")


class FieldInteraction(BaseModel):
    fieldId: str
    type: InteractionType
    timestamp: int
    value: Optional[str] = None
    errorMessage: Optional[str] = None


class DeviceInfo(BaseModel):
    type: DeviceType = "desktop"
    browser: str = ""
    os: str = ""
    screenWidth: int = 0
    screenHeight: int = 0


class GeoInfo(BaseModel):
    country: Optional[str] = None
    region: Optional[str] = None
    city: Optional[str] = None


class FormSession(BaseModel):
    sessionId: str
    formId: str
    variant: Optional[str] = None
    started: int
    completed: Optional[int] = None
    submitted: bool = False
    interactions: List[FieldInteraction] = Field(default_factory=list)
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    geo: GeoInfo = Field(default_factory=GeoInfo)
    referrer: Optional[str] = None
    utmParams: Optional[Dict[str, str]] = None


# Ingestion payloads sent by the client tracker
class StartSessionRequest(BaseModel):
    formId: str
    sessionId: str
    device: DeviceInfo = Field(default_factory=DeviceInfo)
    geo: Optional[GeoInfo] = None
    referrer: Optional[str] = None
    utmParams: Optional[Dict[str, str]] = None
    variant: Optional[str] = None


class SessionRef(BaseModel):
    sessionId: str


class InteractionRequest(FieldInteraction):
    sessionId: str


class DropOffRequest(BaseModel):
    sessionId: str
    lastFieldId: str = "unknown"


# Report
class ErrorCount(BaseModel):
    message: str
    count: int


class FieldAnalytics(BaseModel):
    fieldId: str
    label: str
    views: int
    focuses: int
    completions: int
    errors: int
    dropOffs: int
    avgTimeSpent: float
    errorRate: float
    completionRate: float
    mostCommonErrors: List[ErrorCount] = Field(default_factory=list)


class FunnelStep(BaseModel):
    step: str
    count: int
    dropOff: int
    rate: float


class DailyStats(BaseModel):
    date: str
    views: int
    submissions: int
    conversionRate: float


class Breakdown(BaseModel):
    count: int
    conversionRate: float


class VariantStats(BaseModel):
    variant: str
    variantId: str
    submissions: int
    completions: int
    conversionRate: float
    avgTime: float


class AnalyticsTotals(BaseModel):
    views: int
    starts: int
    completions: int
    submissions: int
    conversionRate: float
    abandonmentRate: float
    avgCompletionTime: float


class Period(BaseModel):
    start: int
    end: int


class FormAnalytics(BaseModel):
    formId: str
    formName: str
    period: Period
    totals: AnalyticsTotals
    funnel: List[FunnelStep]
    fields: List[FieldAnalytics]
    byDay: List[DailyStats]
    byDevice: Dict[str, Breakdown]
    byCountry: Dict[str, Breakdown]
    byReferrer: Dict[str, Breakdown]
    variants: Optional[List[VariantStats]] = None
