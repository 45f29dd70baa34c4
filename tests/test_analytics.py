import pytest

from models.analytics import DeviceInfo, FieldInteraction, GeoInfo
from models.base import FormField
from services.analytics_service import FormAnalyticsCollector, SessionRegistry

from conftest import FIXED_NOW

DAY_MS = 86400 * 1000


@pytest.fixture
def collector(kv, clock):
    return FormAnalyticsCollector(kv, SessionRegistry(idle_timeout_seconds=60, clock=clock), clock=clock)


def focus(field_id, ts):
    return FieldInteraction(fieldId=field_id, type="focus", timestamp=ts)


def blur(field_id, ts):
    return FieldInteraction(fieldId=field_id, type="blur", timestamp=ts)


async def test_start_session_counts_views_device_country(collector, kv):
    await collector.start_session("f1", "s1", device=DeviceInfo(type="mobile"), geo=GeoInfo(country="KE"))
    assert await kv.get_counter("analytics:views:f1:2024-05-01") == 1
    assert await kv.get_counter("analytics:views:f1:total") == 1
    assert await kv.get_counter("analytics:device:f1:mobile") == 1
    assert await kv.get_counter("analytics:country:f1:KE") == 1
    assert "s1" in collector.registry


async def test_focus_then_blur_records_one_dwell_sample(collector, kv):
    await collector.start_session("f1", "s1")
    await collector.track_interaction("s1", focus("email", 1000))
    await collector.track_interaction("s1", blur("email", 3500))

    assert await kv.get_counter("analytics:field:f1:email:focuses") == 1
    assert await kv.get_json("analytics:field:f1:email:avgTime") == {"sum": 2500, "count": 1}


async def test_blur_pairs_with_most_recent_focus(collector, kv):
    await collector.start_session("f1", "s1")
    await collector.track_interaction("s1", focus("email", 1000))
    await collector.track_interaction("s1", focus("email", 2000))
    await collector.track_interaction("s1", blur("email", 3500))

    assert await kv.get_counter("analytics:field:f1:email:focuses") == 2
    assert await kv.get_json("analytics:field:f1:email:avgTime") == {"sum": 1500, "count": 1}


async def test_blur_without_focus_adds_no_sample(collector, kv):
    await collector.start_session("f1", "s1")
    await collector.track_interaction("s1", focus("name", 1000))
    await collector.track_interaction("s1", blur("email", 2000))
    assert await kv.get_json("analytics:field:f1:email:avgTime") is None


async def test_unknown_session_is_ignored(collector, kv):
    assert await collector.track_interaction("ghost", focus("email", 1)) is False
    assert await collector.mark_started("ghost") is False
    assert await collector.mark_submitted("ghost") is None
    assert await kv.list("analytics:") == []


async def test_session_keeps_only_newest_interactions(kv, clock):
    collector = FormAnalyticsCollector(kv, SessionRegistry(idle_timeout_seconds=60, clock=clock), clock=clock, max_interactions=3)
    await collector.start_session("f1", "s1")
    for ts in range(1, 6):
        await collector.track_interaction("s1", focus(f"q{ts}", ts))

    kept = collector.registry.get("s1").interactions
    assert [i.fieldId for i in kept] == ["q3", "q4", "q5"]
    assert await kv.get_counter("analytics:field:f1:q1:focuses") == 1


async def test_error_messages_report_top_five(collector):
    await collector.start_session("f1", "s1")
    for i in range(7):
        for _ in range(i + 1):
            await collector.track_interaction(
                "s1", FieldInteraction(fieldId="email", type="error", timestamp=1, errorMessage=f"err{i}")
            )

    report = await collector.get_analytics("f1", FIXED_NOW, FIXED_NOW, "Form", [FormField(id="email", type="email", label="Email")])
    field = report.fields[0]
    assert field.errors == 28
    assert [e.message for e in field.mostCommonErrors] == ["err6", "err5", "err4", "err3", "err2"]
    assert field.mostCommonErrors[0].count == 7


async def test_completed_and_submitted_lifecycle(collector, kv, redis_client, clock):
    await collector.start_session("f1", "s1", device=DeviceInfo(type="tablet"), variant="v1", referrer="https://www.example.org/page")
    await collector.mark_started("s1")
    clock.advance(90_000)
    await collector.mark_completed("s1")
    session = await collector.mark_submitted("s1")

    assert session.submitted is True
    assert "s1" not in collector.registry
    assert await kv.get_counter("analytics:starts:f1:total") == 1
    assert await kv.get_counter("analytics:completions:f1:total") == 1
    assert await kv.get_counter("analytics:submissions:f1:2024-05-01") == 1
    assert await kv.get_counter("analytics:variant:f1:v1:completions") == 1
    assert await kv.get_counter("analytics:variant:f1:v1:submissions") == 1
    assert await kv.get_counter("analytics:device:f1:tablet:submissions") == 1
    assert await kv.get_counter("analytics:referrer:f1:example.org:submissions") == 1
    assert await kv.get_json("analytics:avgTime:f1") == {"sum": 90_000, "count": 1}

    stored = await kv.get_json("analytics:session:f1:s1")
    assert stored["submitted"] is True
    assert stored["completed"] == FIXED_NOW + 90_000
    ttl = await redis_client.ttl("analytics:session:f1:s1")
    assert 0 < ttl <= 90 * 86400

    report = await collector.get_analytics("f1", FIXED_NOW, FIXED_NOW, "Form", [])
    assert report.totals.avgCompletionTime == 90.0
    assert report.byDevice["tablet"].conversionRate == 1.0
    assert report.byReferrer["example.org"].count == 1


async def test_drop_off_counts_and_discards_session(collector, kv):
    await collector.start_session("f1", "s1")
    assert await collector.track_drop_off("s1", "phone") is True
    assert "s1" not in collector.registry
    assert await kv.get_counter("analytics:dropoff:f1:phone") == 1
    assert await kv.get_counter("analytics:abandoned:f1:2024-05-01") == 1
    assert await kv.get("analytics:session:f1:s1") is None


async def test_funnel_drop_off_invariant():
    steps = FormAnalyticsCollector.build_funnel(10, 6, 4, 3)
    assert [s.step for s in steps] == ["View", "Start", "Complete", "Submit"]
    for current, following in zip(steps, steps[1:]):
        assert current.count - following.count == current.dropOff
    assert steps[-1].dropOff == 0
    assert steps[0].rate == 1.0
    assert steps[3].rate == pytest.approx(0.3)

    empty = FormAnalyticsCollector.build_funnel(0, 0, 0, 0)
    assert all(s.rate == 0 for s in empty)


async def test_report_totals_fields_and_daily_series(collector, clock):
    for i in range(4):
        await collector.start_session("f1", f"s{i}", geo=GeoInfo(country="US" if i < 3 else "FR"))
    await collector.mark_started("s0")
    await collector.mark_started("s1")
    await collector.track_interaction("s0", focus("email", 1))
    await collector.track_interaction("s1", focus("email", 1))
    await collector.track_drop_off("s1", "email")
    await collector.mark_submitted("s0")

    fields = [FormField(id="email", type="email", label="Email")]
    report = await collector.get_analytics("f1", FIXED_NOW - 2 * DAY_MS, FIXED_NOW, "Signup", fields)

    assert report.formName == "Signup"
    assert report.totals.views == 4
    assert report.totals.starts == 2
    assert report.totals.submissions == 1
    assert report.totals.conversionRate == 0.25
    assert report.totals.abandonmentRate == 0.5

    field = report.fields[0]
    assert (field.focuses, field.dropOffs, field.completions) == (2, 1, 1)
    assert field.completionRate == 0.5
    assert field.views == 4

    assert [d.date for d in report.byDay] == ["2024-04-29", "2024-04-30", "2024-05-01"]
    assert report.byDay[-1].views == 4
    assert report.byDay[0].views == 0

    assert set(report.byDevice) == {"mobile", "tablet", "desktop"}
    assert report.byCountry["US"].count == 3
    assert report.byCountry["US"].conversionRate == pytest.approx(1 / 3)
    assert report.byCountry["FR"].count == 1
    assert report.variants is None


async def test_completions_floor_at_zero(collector):
    await collector.start_session("f1", "s1")
    await collector.track_drop_off("s1", "email")
    report = await collector.get_analytics("f1", FIXED_NOW, FIXED_NOW, "Form", [FormField(id="email", type="email", label="Email")])
    assert report.fields[0].completions == 0
    assert report.fields[0].completionRate == 0


def test_registry_sweeps_idle_sessions(clock):
    from models.analytics import FormSession

    registry = SessionRegistry(idle_timeout_seconds=60, clock=clock)
    registry.add(FormSession(sessionId="old", formId="f1", started=clock()))
    clock.advance(30_000)
    registry.add(FormSession(sessionId="fresh", formId="f1", started=clock()))
    clock.advance(45_000)

    assert registry.sweep() == ["old"]
    assert "old" not in registry
    assert "fresh" in registry
    assert len(registry) == 1


async def test_tracker_ingestion_over_http(client, kv):
    form = (await client.post("/forms", json={"name": "T", "fields": [{"id": "email", "type": "email", "label": "Email"}]})).json()
    form_id = form["id"]

    resp = await client.post("/analytics/session", json={"formId": form_id, "sessionId": "abc"}, headers={"cf-ipcountry": "NL"})
    assert resp.json() == {"success": True, "sessionId": "abc", "variant": None}
    await client.post("/analytics/started", json={"sessionId": "abc"})
    await client.post("/analytics/interaction", json={"sessionId": "abc", "fieldId": "email", "type": "focus", "timestamp": 100})
    await client.post("/analytics/interaction", json={"sessionId": "abc", "fieldId": "email", "type": "blur", "timestamp": 2100})
    await client.post("/analytics/completed", json={"sessionId": "abc"})
    resp = await client.post("/analytics/submitted", json={"sessionId": "abc"})
    assert resp.json()["tracked"] is True

    report = (await client.get(f"/forms/{form_id}/analytics")).json()
    assert report["totals"]["views"] == 1
    assert report["totals"]["submissions"] == 1
    assert report["fields"][0]["avgTimeSpent"] == 2.0
    assert report["byCountry"]["NL"]["count"] == 1
    assert len(report["byDay"]) == 31


async def test_drop_off_beacon_accepts_text_body(client, kv):
    await client.post("/analytics/session", json={"formId": "f9", "sessionId": "b1"})
    resp = await client.post(
        "/analytics/dropoff",
        content='{"sessionId": "b1", "lastFieldId": "phone"}',
        headers={"content-type": "text/plain;charset=UTF-8"},
    )
    assert resp.json() == {"success": True, "tracked": True}
    assert await kv.get_counter("analytics:dropoff:f9:phone") == 1

    bad = await client.post("/analytics/dropoff", content="not json")
    assert bad.status_code == 400


async def test_tracker_script_is_served(client):
    resp = await client.get("/analytics/tracker/f1.js")
    assert resp.status_code == 200
    assert resp.headers["content-type"].startswith("application/javascript")
    assert 'var formId = "f1";' in resp.text
    assert 'var apiUrl = "http://testserver";' in resp.text
