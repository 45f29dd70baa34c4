"""
Conversion tracking: raw event log plus daily rollups.

These tallies are kept independently of the analytics collector's counters
and count different triggers (a "start" here is whatever the caller reports),
so the two reports are not expected to agree.
"""
import logging
from typing import Any, Dict, Optional

from db import keys
from db.kv import KVStore
from models.conversion import ConversionEvent, ConversionFunnel, ConversionFunnelStep, FormPerformance
from utils.config import CONVERSION_AGGREGATE_TTL, CONVERSION_EVENT_TTL, DAY_SECONDS, REVENUE_TTL
from utils.dates import date_key, now_ms, trailing_date_keys

logger = logging.getLogger("formpulse.conversion")

# event type -> aggregate field
AGGREGATE_FIELDS = {
    "view": "views",
    "start": "starts",
    "submit": "submits",
    "success": "successes",
    "error": "errors",
}


def _empty_aggregate() -> Dict[str, int]:
    return {field: 0 for field in AGGREGATE_FIELDS.values()}


def _percent(part: float, whole: float) -> float:
    return (part / whole) * 100 if whole > 0 else 0.0


def _revenue_of(event: ConversionEvent) -> Optional[float]:
    raw = event.metadata.get("revenue") if event.metadata else None
    if isinstance(raw, bool):
        return None
    try:
        amount = float(raw)
    except (TypeError, ValueError):
        return None
    return amount if amount else None


class ConversionTracker:
    def __init__(self, kv: KVStore, clock=now_ms):
        self.kv = kv
        self.clock = clock

    async def track_event(self, event: ConversionEvent) -> ConversionEvent:
        """Store the raw event and roll it into today's aggregate"""
        if event.timestamp is None:
            event = event.model_copy(update={"timestamp": self.clock()})
        await self.kv.put(
            keys.conversion_event(event.formId, event.sessionId, event.eventType, event.timestamp),
            event.model_dump_json(exclude_none=True),
            ttl_seconds=CONVERSION_EVENT_TTL,
        )
        await self._update_aggregate(event)

        if event.eventType == "success":
            revenue = _revenue_of(event)
            if revenue:
                await self._track_revenue(event.formId, revenue)
        return event

    async def track_view(self, form_id: str, session_id: str, metadata: Optional[Dict[str, Any]] = None):
        return await self.track_event(ConversionEvent(formId=form_id, sessionId=session_id, eventType="view", metadata=metadata or {}))

    async def track_start(self, form_id: str, session_id: str):
        return await self.track_event(ConversionEvent(formId=form_id, sessionId=session_id, eventType="start"))

    async def track_field_complete(self, form_id: str, session_id: str, field_name: str):
        return await self.track_event(
            ConversionEvent(formId=form_id, sessionId=session_id, eventType="field_complete", fieldName=field_name)
        )

    async def track_submit(self, form_id: str, session_id: str, user_id: Optional[str] = None):
        return await self.track_event(ConversionEvent(formId=form_id, sessionId=session_id, userId=user_id, eventType="submit"))

    async def track_success(self, form_id: str, session_id: str, revenue: Optional[float] = None):
        metadata = {"revenue": revenue} if revenue else {}
        return await self.track_event(ConversionEvent(formId=form_id, sessionId=session_id, eventType="success", metadata=metadata))

    async def _update_aggregate(self, event: ConversionEvent) -> None:
        field = AGGREGATE_FIELDS.get(event.eventType)
        if field is None:
            # field_complete is kept in the raw log only
            return
        key = keys.conversion_aggregate(event.formId, date_key(self.clock()))
        data = await self.kv.get_json(key)
        if not isinstance(data, dict):
            data = _empty_aggregate()
        data[field] = int(data.get(field, 0)) + 1
        await self.kv.put_json(key, data, ttl_seconds=CONVERSION_AGGREGATE_TTL)

    async def _track_revenue(self, form_id: str, amount: float) -> None:
        key = keys.revenue(form_id, date_key(self.clock()))
        current = await self.kv.get_json(key)
        if not isinstance(current, dict):
            current = {"total": 0, "count": 0}
        current["total"] = current.get("total", 0) + amount
        current["count"] = current.get("count", 0) + 1
        await self.kv.put_json(key, current, ttl_seconds=REVENUE_TTL)

    async def get_performance(self, form_id: str, days: int = 30) -> FormPerformance:
        """Totals over the last `days` daily aggregates, today included"""
        totals = _empty_aggregate()
        revenue = 0.0
        for day in trailing_date_keys(self.clock(), days):
            agg = await self.kv.get_json(keys.conversion_aggregate(form_id, day))
            if isinstance(agg, dict):
                for field in totals:
                    totals[field] += int(agg.get(field, 0) or 0)
            rev = await self.kv.get_json(keys.revenue(form_id, day))
            if isinstance(rev, dict):
                revenue += float(rev.get("total", 0) or 0)

        return FormPerformance(
            formId=form_id,
            days=days,
            views=totals["views"],
            starts=totals["starts"],
            submissions=totals["successes"],
            submitAttempts=totals["submits"],
            errors=totals["errors"],
            successRate=_percent(totals["successes"], totals["submits"]),
            revenueGenerated=revenue,
        )

    async def get_funnel(self, form_id: str, days: int = 30) -> ConversionFunnel:
        """View -> Start -> Submit, each rate relative to the step before it (percent)"""
        perf = await self.get_performance(form_id, days)
        now = self.clock()
        steps = [
            ConversionFunnelStep(name="View", count=perf.views, conversionRate=100.0, dropOffRate=0.0),
            ConversionFunnelStep(
                name="Start",
                count=perf.starts,
                conversionRate=_percent(perf.starts, perf.views),
                dropOffRate=_percent(perf.views - perf.starts, perf.views),
            ),
            ConversionFunnelStep(
                name="Submit",
                count=perf.submissions,
                conversionRate=_percent(perf.submissions, perf.starts),
                dropOffRate=_percent(perf.starts - perf.submissions, perf.starts),
            ),
        ]
        return ConversionFunnel(
            formId=form_id,
            steps=steps,
            period={"start": now - days * DAY_SECONDS * 1000, "end": now},
        )
