"""
A/B test manager.

Assignment contract: a session keeps the variant it was first given for as
long as its assignment record lives. New sessions are placed by weighted
rendezvous hashing over (testId, sessionId, variantId), so the outcome
depends on variant ids and weights but not on the order variants are listed
in. The persisted assignment makes weight edits safe for sessions already
bucketed.
"""
import hashlib
import logging
import math
import secrets
import string
from typing import List, Optional

from db import keys
from db.kv import KVStore
from models.abtest import (
    ABTest,
    ABTestResult,
    CreateTestRequest,
    Variant,
    VariantAssignment,
    VariantResult,
)
from services.forms_service import FormsService
from utils.config import ABTEST_ASSIGNMENT_TTL
from utils.dates import now_ms
from utils.errors import BusinessRuleViolation, FieldValidationError, NotFoundError

logger = logging.getLogger("formpulse.abtest")

MIN_VIEWS_FOR_WINNER = 100
MIN_CONVERSIONS_FOR_WINNER = 10
_ID_ALPHABET = string.ascii_lowercase + string.digits
_HASH_SPACE = float(2 ** 48)


def new_test_id(now: int) -> str:
    suffix = "".join(secrets.choice(_ID_ALPHABET) for _ in range(6))
    return f"test_{now}_{suffix}"


def _unit_hash(test_id: str, session_id: str, variant_id: str) -> float:
    """Uniform value in (0, 1) derived from the three ids"""
    digest = hashlib.sha256(f"{test_id}:{session_id}:{variant_id}".encode("utf-8")).digest()
    return (int.from_bytes(digest[:6], "big") + 0.5) / _HASH_SPACE


def pick_variant(test_id: str, session_id: str, variants: List[Variant]) -> Optional[Variant]:
    """Weighted rendezvous hashing: the variant with the highest -weight/ln(u) score wins"""
    best, best_score = None, -math.inf
    for variant in variants:
        if variant.weight <= 0:
            continue
        score = -variant.weight / math.log(_unit_hash(test_id, session_id, variant.id))
        if score > best_score:
            best, best_score = variant, score
    return best


def confidence_estimate(views: int) -> float:
    """Sample-size heuristic in [50, 95]; not a statistical significance measure"""
    return min(95.0, 50 + views / 10)


class ABTestManager:
    """Create, assign, record and evaluate A/B tests stored in the key-value store"""

    def __init__(self, kv: KVStore, clock=now_ms):
        self.kv = kv
        self.clock = clock

    async def _save(self, test: ABTest) -> None:
        await self.kv.put(keys.abtest(test.id), test.model_dump_json(exclude_none=True))

    async def get_test(self, test_id: str) -> ABTest:
        raw = await self.kv.get(keys.abtest(test_id))
        if not raw:
            raise NotFoundError("Test not found")
        return ABTest.model_validate_json(raw)

    async def get_test_for_form(self, form_id: str) -> Optional[ABTest]:
        test_id = await self.kv.get(keys.abtest_for_form(form_id))
        if not test_id:
            return None
        raw = await self.kv.get(keys.abtest(test_id))
        return ABTest.model_validate_json(raw) if raw else None

    async def create_test(self, request: CreateTestRequest) -> ABTest:
        """Store a new test and route the form's future assignments to it"""
        await FormsService.get_form(self.kv, request.formId)

        count = len(request.variants)
        if request.trafficSplit is not None and len(request.trafficSplit) != count:
            raise FieldValidationError("trafficSplit must have one entry per variant", field="trafficSplit")

        variants = []
        seen = set()
        for i, item in enumerate(request.variants):
            variant_id = item.id or f"variant_{i + 1}"
            if variant_id in seen:
                raise FieldValidationError(f"Duplicate variant id: {variant_id}", field="variants")
            seen.add(variant_id)

            if request.trafficSplit is not None:
                weight = request.trafficSplit[i]
            elif item.weight is not None:
                weight = item.weight
            else:
                weight = 100 / count
            if weight < 0:
                raise FieldValidationError("Variant weights cannot be negative", field="variants")
            variants.append(Variant(id=variant_id, name=item.name, weight=weight, config=item.config))

        if sum(v.weight for v in variants) <= 0:
            raise FieldValidationError("Variant weights must sum to a positive total", field="variants")

        now = self.clock()
        test = ABTest(
            id=new_test_id(now),
            formId=request.formId,
            name=request.name,
            variants=variants,
            startDate=now,
            status=request.status,
        )
        await self._save(test)
        await self.kv.put(keys.abtest_for_form(request.formId), test.id)
        logger.info("abtest created id=%s form=%s variants=%s", test.id, test.formId, len(variants))
        return test

    async def get_variant(self, form_id: str, session_id: str) -> Optional[VariantAssignment]:
        """Stable variant for a session, or None when the form has no running test"""
        test = await self.get_test_for_form(form_id)
        if test is None or test.status != "running":
            return None

        assignment_key = keys.abtest_assignment(test.id, session_id)
        existing = await self.kv.get(assignment_key)
        if existing:
            variant = test.find_variant(existing)
            if variant is not None:
                return VariantAssignment(testId=test.id, variantId=variant.id, config=variant.config)

        variant = pick_variant(test.id, session_id, test.variants)
        if variant is None:
            return None
        await self.kv.put(assignment_key, variant.id, ttl_seconds=ABTEST_ASSIGNMENT_TTL)
        await self.record_view(test.id, variant.id)
        return VariantAssignment(testId=test.id, variantId=variant.id, config=variant.config)

    async def record_view(self, test_id: str, variant_id: str) -> None:
        test = await self.get_test(test_id)
        variant = test.find_variant(variant_id)
        if variant is None:
            raise NotFoundError("Variant not found")
        variant.views += 1
        await self._save(test)

    async def record_conversion(self, test_id: str, variant_id: str, revenue: Optional[float] = None) -> ABTest:
        test = await self.get_test(test_id)
        variant = test.find_variant(variant_id)
        if variant is None:
            raise NotFoundError("Variant not found")
        variant.conversions += 1
        if revenue:
            variant.revenue += revenue
        await self._save(test)
        return test

    async def record_conversion_for_form(self, form_id: str, variant_id: str, revenue: Optional[float] = None) -> bool:
        """Conversion for the form's current test; False when there is nothing to credit"""
        test = await self.get_test_for_form(form_id)
        if test is None or test.status not in ("running", "paused") or test.find_variant(variant_id) is None:
            return False
        await self.record_conversion(test.id, variant_id, revenue)
        return True

    async def get_results(self, test_id: str) -> ABTestResult:
        test = await self.get_test(test_id)
        results = [
            VariantResult(
                id=v.id,
                name=v.name,
                views=v.views,
                conversions=v.conversions,
                conversionRate=(v.conversions / v.views) * 100 if v.views > 0 else 0.0,
                revenue=v.revenue,
            )
            for v in test.variants
        ]

        eligible = [
            r for r in results
            if r.views >= MIN_VIEWS_FOR_WINNER and r.conversions >= MIN_CONVERSIONS_FOR_WINNER
        ]
        if eligible:
            # max() keeps the first of equal rates, i.e. definition order breaks ties
            winner = max(eligible, key=lambda r: r.conversionRate)
            winner.isWinner = True
            winner.confidenceEstimate = confidence_estimate(winner.views)

        return ABTestResult(
            testId=test.id,
            formId=test.formId,
            variants=results,
            startedAt=test.startDate,
            status=test.status,
            winningVariant=test.winningVariant,
        )

    async def end_test(self, test_id: str, winning_variant: Optional[str] = None) -> ABTest:
        test = await self.get_test(test_id)
        test.status = "completed"
        test.endDate = self.clock()
        test.winningVariant = winning_variant
        await self._save(test)
        logger.info("abtest completed id=%s winner=%s", test_id, winning_variant)
        return test

    async def stop_test(self, test_id: str) -> ABTest:
        test = await self.get_test(test_id)
        test.status = "stopped"
        test.stoppedAt = self.clock()
        await self._save(test)
        logger.info("abtest stopped id=%s", test_id)
        return test

    async def pause_test(self, test_id: str) -> ABTest:
        test = await self.get_test(test_id)
        if test.status != "running":
            raise BusinessRuleViolation(f"Cannot pause a test that is {test.status}")
        test.status = "paused"
        await self._save(test)
        return test

    async def resume_test(self, test_id: str) -> ABTest:
        test = await self.get_test(test_id)
        if test.status not in ("paused", "draft"):
            raise BusinessRuleViolation(f"Cannot resume a test that is {test.status}")
        test.status = "running"
        await self._save(test)
        return test
