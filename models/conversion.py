"""
Conversion tracking and customer journey models
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

ConversionEventType = Literal["view", "start", "field_complete", "submit", "success", "error"]
TouchpointType = Literal["form_view", "form_submit", "email_open", "page_view", "purchase"]


class ConversionEvent(BaseModel):
    formId: str
    sessionId: str
    userId: Optional[str] = None
    eventType: ConversionEventType
    fieldName: Optional[str] = None
    timestamp: Optional[int] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class FormPerformance(BaseModel):
    formId: str
    days: int
    views: int
    starts: int
    submissions: int
    submitAttempts: int
    errors: int
    successRate: float
    revenueGenerated: float


class ConversionFunnelStep(BaseModel):
    name: str
    count: int
    conversionRate: float
    dropOffRate: float


class ConversionFunnel(BaseModel):
    formId: str
    steps: List[ConversionFunnelStep]
    period: Dict[str, int]


class TouchpointRequest(BaseModel):
    type: TouchpointType
    formId: Optional[str] = None
    value: Optional[float] = None
    metadata: Optional[Dict[str, Any]] = None


class Touchpoint(TouchpointRequest):
    timestamp: int


class CustomerValue(BaseModel):
    totalValue: float
    touchpoints: int
    firstTouch: int
    lastTouch: int
    formConversions: int
