"""
Form analytics collector.

Live sessions are held in a process-local SessionRegistry between the
tracker's start and submit/drop-off calls; everything else is counters and
running averages in the key-value store under the analytics: namespace.

Session state machine:

    started -> (interacting)* -> [completed] -> submitted | dropped

Time samples (field dwell time, completion time) are stored in milliseconds
and reported in seconds.
"""
import asyncio
import logging
from typing import Callable, Dict, Iterable, List, Optional

from db import keys
from db.kv import KVStore
from models.abtest import ABTest
from models.analytics import (
    DEVICE_TYPES,
    AnalyticsTotals,
    Breakdown,
    DailyStats,
    DeviceInfo,
    ErrorCount,
    FieldAnalytics,
    FieldInteraction,
    FormAnalytics,
    FormSession,
    FunnelStep,
    GeoInfo,
    Period,
    VariantStats,
)
from models.base import FormField
from utils.config import ANALYTICS_SESSION_TTL, SESSION_IDLE_TIMEOUT_SECONDS, SESSION_MAX_INTERACTIONS
from utils.dates import date_key, iter_date_keys, now_ms
from utils.geo import referrer_host

logger = logging.getLogger("formpulse.analytics")

TOP_ERRORS = 5
SUBMISSIONS_SUFFIX = "submissions"


def _ratio(part: float, whole: float) -> float:
    return part / whole if whole > 0 else 0.0


class SessionRegistry:
    """In-memory live sessions keyed by sessionId, with idle eviction"""

    def __init__(self, idle_timeout_seconds: int = SESSION_IDLE_TIMEOUT_SECONDS, clock: Callable[[], int] = now_ms):
        self.idle_timeout_ms = idle_timeout_seconds * 1000
        self.clock = clock
        self._sessions: Dict[str, FormSession] = {}
        self._last_seen: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: str) -> bool:
        return session_id in self._sessions

    def add(self, session: FormSession) -> None:
        self._sessions[session.sessionId] = session
        self._last_seen[session.sessionId] = self.clock()

    def get(self, session_id: str) -> Optional[FormSession]:
        """Look up a live session and mark it active"""
        session = self._sessions.get(session_id)
        if session is not None:
            self._last_seen[session_id] = self.clock()
        return session

    def pop(self, session_id: str) -> Optional[FormSession]:
        self._last_seen.pop(session_id, None)
        return self._sessions.pop(session_id, None)

    def clear(self) -> None:
        self._sessions.clear()
        self._last_seen.clear()

    def sweep(self, now: Optional[int] = None) -> List[str]:
        """Evict sessions idle past the timeout; returns the evicted ids"""
        cutoff = (now if now is not None else self.clock()) - self.idle_timeout_ms
        expired = [sid for sid, seen in self._last_seen.items() if seen < cutoff]
        for sid in expired:
            self.pop(sid)
        if expired:
            logger.info("swept %s idle analytics sessions (%s live)", len(expired), len(self._sessions))
        return expired


async def run_session_sweeper(registry: SessionRegistry, interval_seconds: float) -> None:
    """Background loop evicting idle sessions until cancelled"""
    while True:
        await asyncio.sleep(interval_seconds)
        try:
            registry.sweep()
        except Exception as e:
            logger.error("session sweep failed: %s", e)


class FormAnalyticsCollector:
    """Session lifecycle tracking and the per-form analytics report"""

    def __init__(
        self,
        kv: KVStore,
        registry: SessionRegistry,
        clock: Callable[[], int] = now_ms,
        max_interactions: int = SESSION_MAX_INTERACTIONS,
    ):
        self.kv = kv
        self.registry = registry
        self.clock = clock
        self.max_interactions = max_interactions

    # Counter helpers, all scoped to the analytics: namespace
    async def _incr(self, key: str) -> None:
        await self.kv.increment(keys.analytics(key))

    async def _incr_daily(self, key_fn, form_id: str, now: int) -> None:
        await self._incr(key_fn(form_id, date_key(now)))
        await self._incr(key_fn(form_id, keys.TOTAL))

    async def _counter(self, key: str) -> int:
        return await self.kv.get_counter(keys.analytics(key))

    async def _average(self, key: str) -> float:
        return await self.kv.get_average(keys.analytics(key))

    async def _add_sample(self, key: str, value: float) -> None:
        await self.kv.add_to_average(keys.analytics(key), value)

    # Lifecycle
    async def start_session(
        self,
        form_id: str,
        session_id: str,
        device: Optional[DeviceInfo] = None,
        geo: Optional[GeoInfo] = None,
        referrer: Optional[str] = None,
        utm_params: Optional[Dict[str, str]] = None,
        variant: Optional[str] = None,
    ) -> FormSession:
        now = self.clock()
        session = FormSession(
            sessionId=session_id,
            formId=form_id,
            variant=variant,
            started=now,
            device=device or DeviceInfo(),
            geo=geo or GeoInfo(),
            referrer=referrer,
            utmParams=utm_params,
        )
        self.registry.add(session)

        await self._incr_daily(keys.views, form_id, now)
        await self._incr(keys.device(form_id, session.device.type))
        if session.geo.country:
            await self._incr(keys.country(form_id, session.geo.country))
        await self._incr(keys.referrer(form_id, referrer_host(referrer)))
        return session

    async def track_interaction(self, session_id: str, interaction: FieldInteraction) -> bool:
        session = self.registry.get(session_id)
        if session is None:
            return False

        # Look up the matching focus before appending this event
        prior_focus = None
        if interaction.type == "blur":
            for past in reversed(session.interactions):
                if past.fieldId == interaction.fieldId and past.type == "focus":
                    prior_focus = past
                    break
        session.interactions.append(interaction)
        if len(session.interactions) > self.max_interactions:
            # Oldest events go first
            del session.interactions[: len(session.interactions) - self.max_interactions]

        form_id = session.formId
        if interaction.type == "focus":
            await self._incr(keys.field_metric(form_id, interaction.fieldId, "focuses"))
        elif interaction.type == "blur":
            if prior_focus is not None:
                elapsed = max(0, interaction.timestamp - prior_focus.timestamp)
                await self._add_sample(keys.field_metric(form_id, interaction.fieldId, "avgTime"), elapsed)
        elif interaction.type == "error":
            await self._incr(keys.field_metric(form_id, interaction.fieldId, "errors"))
            if interaction.errorMessage:
                await self._record_error(form_id, interaction.fieldId, interaction.errorMessage)
        return True

    async def mark_started(self, session_id: str) -> bool:
        """First field focused"""
        session = self.registry.get(session_id)
        if session is None:
            return False
        await self._incr_daily(keys.starts, session.formId, self.clock())
        return True

    async def mark_completed(self, session_id: str) -> bool:
        session = self.registry.get(session_id)
        if session is None:
            return False

        now = self.clock()
        session.completed = now
        elapsed = max(0, now - session.started)
        form_id = session.formId

        await self._incr_daily(keys.completions, form_id, now)
        await self._add_sample(keys.avg_completion_time(form_id), elapsed)
        if session.variant:
            await self._incr(keys.variant_metric(form_id, session.variant, "completions"))
            await self._add_sample(keys.variant_metric(form_id, session.variant, "avgTime"), elapsed)
        return True

    async def mark_submitted(self, session_id: str) -> Optional[FormSession]:
        """Count the submission, persist the session and release it from memory"""
        session = self.registry.get(session_id)
        if session is None:
            return None

        session.submitted = True
        form_id = session.formId
        await self._incr_daily(keys.submissions, form_id, self.clock())
        await self._incr(f"{keys.device(form_id, session.device.type)}:{SUBMISSIONS_SUFFIX}")
        if session.geo.country:
            await self._incr(f"{keys.country(form_id, session.geo.country)}:{SUBMISSIONS_SUFFIX}")
        await self._incr(f"{keys.referrer(form_id, referrer_host(session.referrer))}:{SUBMISSIONS_SUFFIX}")
        if session.variant:
            await self._incr(keys.variant_metric(form_id, session.variant, "submissions"))

        await self.kv.put(
            keys.analytics(keys.stored_session(form_id, session_id)),
            session.model_dump_json(exclude_none=True),
            ttl_seconds=ANALYTICS_SESSION_TTL,
        )
        self.registry.pop(session_id)
        return session

    async def track_drop_off(self, session_id: str, last_field_id: str) -> bool:
        session = self.registry.get(session_id)
        if session is None:
            return False
        await self._incr(keys.dropoff(session.formId, last_field_id))
        await self._incr(keys.abandoned(session.formId, date_key(self.clock())))
        self.registry.pop(session_id)
        return True

    async def _record_error(self, form_id: str, field_id: str, message: str) -> None:
        key = keys.analytics(keys.field_errors(form_id, field_id))
        table = await self.kv.get_json(key)
        if not isinstance(table, dict):
            table = {}
        table[message] = int(table.get(message, 0)) + 1
        await self.kv.put_json(key, table)

    async def _top_errors(self, form_id: str, field_id: str) -> List[ErrorCount]:
        table = await self.kv.get_json(keys.analytics(keys.field_errors(form_id, field_id)))
        if not isinstance(table, dict):
            return []
        ranked = sorted(table.items(), key=lambda item: (-int(item[1]), item[0]))
        return [ErrorCount(message=m, count=int(c)) for m, c in ranked[:TOP_ERRORS]]

    # Report
    async def get_analytics(
        self,
        form_id: str,
        start_date: int,
        end_date: int,
        form_name: str,
        fields: Iterable[FormField],
    ) -> FormAnalytics:
        views = await self._counter(keys.views(form_id, keys.TOTAL))
        starts = await self._counter(keys.starts(form_id, keys.TOTAL))
        completions = await self._counter(keys.completions(form_id, keys.TOTAL))
        submissions = await self._counter(keys.submissions(form_id, keys.TOTAL))
        avg_time_ms = await self._average(keys.avg_completion_time(form_id))

        totals = AnalyticsTotals(
            views=views,
            starts=starts,
            completions=completions,
            submissions=submissions,
            conversionRate=_ratio(submissions, views),
            abandonmentRate=1 - submissions / starts if starts > 0 else 0.0,
            avgCompletionTime=avg_time_ms / 1000,
        )

        return FormAnalytics(
            formId=form_id,
            formName=form_name,
            period=Period(start=start_date, end=end_date),
            totals=totals,
            funnel=self.build_funnel(views, starts, completions, submissions),
            fields=[await self._field_analytics(form_id, f, views) for f in fields],
            byDay=await self._daily_stats(form_id, start_date, end_date),
            byDevice=await self._device_breakdown(form_id),
            byCountry=await self._listed_breakdown(keys.country(form_id, "")),
            byReferrer=await self._listed_breakdown(keys.referrer(form_id, "")),
            variants=await self._variant_stats(form_id) or None,
        )

    @staticmethod
    def build_funnel(views: int, starts: int, completions: int, submissions: int) -> List[FunnelStep]:
        """View -> Start -> Complete -> Submit; dropOff is the gap to the next step"""
        counts = [("View", views), ("Start", starts), ("Complete", completions), ("Submit", submissions)]
        steps = []
        for i, (name, count) in enumerate(counts):
            next_count = counts[i + 1][1] if i + 1 < len(counts) else count
            steps.append(FunnelStep(step=name, count=count, dropOff=count - next_count, rate=_ratio(count, views)))
        return steps

    async def _field_analytics(self, form_id: str, field: FormField, views: int) -> FieldAnalytics:
        focuses = await self._counter(keys.field_metric(form_id, field.id, "focuses"))
        errors = await self._counter(keys.field_metric(form_id, field.id, "errors"))
        drop_offs = await self._counter(keys.dropoff(form_id, field.id))
        avg_ms = await self._average(keys.field_metric(form_id, field.id, "avgTime"))
        completed = max(0, focuses - drop_offs)
        return FieldAnalytics(
            fieldId=field.id,
            label=field.label,
            views=views,
            focuses=focuses,
            completions=completed,
            errors=errors,
            dropOffs=drop_offs,
            avgTimeSpent=avg_ms / 1000,
            errorRate=_ratio(errors, focuses),
            completionRate=_ratio(focuses - drop_offs, focuses),
            mostCommonErrors=await self._top_errors(form_id, field.id),
        )

    async def _daily_stats(self, form_id: str, start_date: int, end_date: int) -> List[DailyStats]:
        days = []
        for day in iter_date_keys(start_date, end_date):
            views = await self._counter(keys.views(form_id, day))
            submissions = await self._counter(keys.submissions(form_id, day))
            days.append(DailyStats(date=day, views=views, submissions=submissions, conversionRate=_ratio(submissions, views)))
        return days

    async def _device_breakdown(self, form_id: str) -> Dict[str, Breakdown]:
        result = {}
        for device_type in DEVICE_TYPES:
            count = await self._counter(keys.device(form_id, device_type))
            converted = await self._counter(f"{keys.device(form_id, device_type)}:{SUBMISSIONS_SUFFIX}")
            result[device_type] = Breakdown(count=count, conversionRate=_ratio(converted, count))
        return result

    async def _listed_breakdown(self, prefix: str) -> Dict[str, Breakdown]:
        """Breakdown over every `{prefix}{name}` counter and its `:submissions` companion"""
        counts: Dict[str, int] = {}
        converted: Dict[str, int] = {}
        full_prefix = keys.analytics(prefix)
        for name in await self.kv.list(full_prefix):
            rest = name[len(full_prefix):]
            value = await self.kv.get_counter(name)
            if rest.endswith(f":{SUBMISSIONS_SUFFIX}"):
                converted[rest[: -len(SUBMISSIONS_SUFFIX) - 1]] = value
            elif rest:
                counts[rest] = value
        return {
            label: Breakdown(count=count, conversionRate=_ratio(converted.get(label, 0), count))
            for label, count in sorted(counts.items(), key=lambda item: (-item[1], item[0]))
        }

    async def _variant_stats(self, form_id: str) -> List[VariantStats]:
        test_id = await self.kv.get(keys.abtest_for_form(form_id))
        if not test_id:
            return []
        raw = await self.kv.get(keys.abtest(test_id))
        if not raw:
            return []
        test = ABTest.model_validate_json(raw)

        stats = []
        for variant in test.variants:
            submissions = await self._counter(keys.variant_metric(form_id, variant.id, "submissions"))
            completions = await self._counter(keys.variant_metric(form_id, variant.id, "completions"))
            avg_ms = await self._average(keys.variant_metric(form_id, variant.id, "avgTime"))
            stats.append(VariantStats(
                variant=variant.name,
                variantId=variant.id,
                submissions=submissions,
                completions=completions,
                conversionRate=_ratio(submissions, completions),
                avgTime=avg_ms / 1000,
            ))
        return stats
