"""
A/B test definitions, requests and result models
"""
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field

TestStatus = Literal["draft", "running", "paused", "completed", "stopped"]


class Variant(BaseModel):
    id: str
    name: str
    weight: float
    config: Dict[str, Any] = Field(default_factory=dict)
    views: int = 0
    conversions: int = 0
    revenue: float = 0.0


class ABTest(BaseModel):
    id: str
    formId: str
    name: str
    variants: List[Variant]
    startDate: int
    endDate: Optional[int] = None
    stoppedAt: Optional[int] = None
    status: TestStatus = "running"
    winningVariant: Optional[str] = None

    def find_variant(self, variant_id: str) -> Optional[Variant]:
        for v in self.variants:
            if v.id == variant_id:
                return v
        return None


class VariantSpec(BaseModel):
    id: Optional[str] = None
    name: str
    weight: Optional[float] = None
    config: Dict[str, Any] = Field(default_factory=dict)


class CreateTestRequest(BaseModel):
    formId: str
    name: str
    variants: List[VariantSpec] = Field(min_length=1)
    trafficSplit: Optional[List[float]] = None
    status: Literal["draft", "running"] = "running"


class EndTestRequest(BaseModel):
    winningVariant: Optional[str] = None


class ConversionRequest(BaseModel):
    variantId: str
    revenue: Optional[float] = None


class VariantAssignment(BaseModel):
    testId: Optional[str] = None
    variantId: str
    config: Dict[str, Any] = Field(default_factory=dict)


class VariantResult(BaseModel):
    id: str
    name: str
    views: int
    conversions: int
    conversionRate: float
    revenue: float
    isWinner: bool = False
    # Heuristic only (grows with sample size); not a significance test or p-value
    confidenceEstimate: float = 0.0


class ABTestResult(BaseModel):
    testId: str
    formId: str
    variants: List[VariantResult]
    startedAt: int
    status: TestStatus
    winningVariant: Optional[str] = None
