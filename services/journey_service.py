"""
Customer journey: a bounded, oldest-first touchpoint history per customer
"""
import logging
from typing import List

from pydantic import ValidationError

from db import keys
from db.kv import KVStore
from models.conversion import CustomerValue, Touchpoint, TouchpointRequest
from utils.config import JOURNEY_MAX_TOUCHPOINTS, JOURNEY_TTL
from utils.dates import now_ms

logger = logging.getLogger("formpulse.journey")


class CustomerJourneyTracker:
    def __init__(self, kv: KVStore, clock=now_ms, max_touchpoints: int = JOURNEY_MAX_TOUCHPOINTS):
        self.kv = kv
        self.clock = clock
        self.max_touchpoints = max_touchpoints

    async def _load(self, customer_id: str) -> List[dict]:
        data = await self.kv.get_json(keys.journey(customer_id))
        return data if isinstance(data, list) else []

    async def track_touchpoint(self, customer_id: str, touchpoint: TouchpointRequest) -> Touchpoint:
        """Append a touchpoint, keeping only the most recent max_touchpoints"""
        entry = Touchpoint(**touchpoint.model_dump(), timestamp=self.clock())
        journey = await self._load(customer_id)
        journey.append(entry.model_dump(exclude_none=True))
        trimmed = journey[-self.max_touchpoints:]
        await self.kv.put_json(keys.journey(customer_id), trimmed, ttl_seconds=JOURNEY_TTL)
        return entry

    async def get_journey(self, customer_id: str) -> List[Touchpoint]:
        touchpoints = []
        for item in await self._load(customer_id):
            try:
                touchpoints.append(Touchpoint.model_validate(item))
            except ValidationError as e:
                logger.warning("skipping malformed touchpoint customer=%s: %s", customer_id, e)
        return touchpoints

    async def calculate_value(self, customer_id: str) -> CustomerValue:
        journey = await self.get_journey(customer_id)
        return CustomerValue(
            totalValue=sum(t.value for t in journey if t.value),
            touchpoints=len(journey),
            firstTouch=journey[0].timestamp if journey else 0,
            lastTouch=journey[-1].timestamp if journey else 0,
            formConversions=sum(1 for t in journey if t.type == "form_submit"),
        )
