import pytest

from db import keys
from models.abtest import CreateTestRequest, Variant, VariantSpec
from models.base import FormCreate
from services.abtest_service import ABTestManager, confidence_estimate, pick_variant
from services.forms_service import FormsService
from utils.errors import BusinessRuleViolation, FieldValidationError, NotFoundError

from conftest import FIXED_NOW


@pytest.fixture
async def form(kv):
    return await FormsService.create_form(kv, FormCreate(name="Pricing"), now=FIXED_NOW)


@pytest.fixture
def manager(kv, clock):
    return ABTestManager(kv, clock=clock)


def two_way(form_id, **extra):
    return CreateTestRequest(
        formId=form_id,
        name="Button copy",
        variants=[VariantSpec(id="a", name="Control"), VariantSpec(id="b", name="Bold", config={"color": "red"})],
        **extra,
    )


async def test_create_test_defaults(manager, form, kv):
    test = await manager.create_test(CreateTestRequest(
        formId=form.id, name="t", variants=[VariantSpec(name="A"), VariantSpec(name="B"), VariantSpec(name="C")],
    ))
    assert [v.id for v in test.variants] == ["variant_1", "variant_2", "variant_3"]
    assert all(v.weight == pytest.approx(100 / 3) for v in test.variants)
    assert test.status == "running"
    assert test.startDate == FIXED_NOW
    assert test.id.startswith(f"test_{FIXED_NOW}_")
    assert await kv.get(keys.abtest_for_form(form.id)) == test.id


async def test_create_test_uses_traffic_split(manager, form):
    test = await manager.create_test(two_way(form.id, trafficSplit=[90, 10]))
    assert [v.weight for v in test.variants] == [90, 10]


@pytest.mark.parametrize("extra, message", [
    ({"trafficSplit": [100]}, "trafficSplit"),
    ({"trafficSplit": [0, 0]}, "positive"),
    ({"trafficSplit": [-1, 50]}, "negative"),
])
async def test_create_test_rejects_bad_weights(manager, form, extra, message):
    with pytest.raises(FieldValidationError) as exc:
        await manager.create_test(two_way(form.id, **extra))
    assert message in exc.value.message


async def test_create_test_rejects_duplicate_ids(manager, form):
    request = CreateTestRequest(formId=form.id, name="t", variants=[VariantSpec(id="x", name="1"), VariantSpec(id="x", name="2")])
    with pytest.raises(FieldValidationError):
        await manager.create_test(request)


async def test_create_test_requires_form(manager):
    with pytest.raises(NotFoundError):
        await manager.create_test(two_way("missing"))


async def test_assignment_is_sticky_and_counts_one_view(manager, form, kv):
    test = await manager.create_test(two_way(form.id))
    first = await manager.get_variant(form.id, "sess-1")
    for _ in range(3):
        again = await manager.get_variant(form.id, "sess-1")
        assert again.variantId == first.variantId
    assert again.testId == test.id

    stored = await manager.get_test(test.id)
    assert sum(v.views for v in stored.variants) == 1
    assert await kv.get(keys.abtest_assignment(test.id, "sess-1")) == first.variantId


async def test_assignment_is_deterministic_without_stored_record(manager, form, kv):
    test = await manager.create_test(two_way(form.id))
    first = await manager.get_variant(form.id, "sess-7")
    await kv.delete(keys.abtest_assignment(test.id, "sess-7"))
    second = await manager.get_variant(form.id, "sess-7")
    assert second.variantId == first.variantId


def test_pick_variant_ignores_listing_order():
    a = Variant(id="a", name="A", weight=30)
    b = Variant(id="b", name="B", weight=70)
    for i in range(200):
        sid = f"s{i}"
        assert pick_variant("t1", sid, [a, b]).id == pick_variant("t1", sid, [b, a]).id


def test_pick_variant_follows_weights():
    variants = [Variant(id="a", name="A", weight=50), Variant(id="b", name="B", weight=50)]
    picks = [pick_variant("t1", f"session-{i}", variants).id for i in range(2000)]
    share = picks.count("a") / len(picks)
    assert 0.4 <= share <= 0.6


def test_pick_variant_skips_zero_weight():
    variants = [Variant(id="a", name="A", weight=0), Variant(id="b", name="B", weight=1)]
    assert {pick_variant("t1", f"s{i}", variants).id for i in range(100)} == {"b"}
    assert pick_variant("t1", "s", [Variant(id="a", name="A", weight=0)]) is None


def test_confidence_estimate_is_capped():
    assert confidence_estimate(0) == 50
    assert confidence_estimate(200) == 70
    assert confidence_estimate(10_000) == 95


async def test_winner_requires_minimum_sample(manager, form):
    test = await manager.create_test(CreateTestRequest(
        formId=form.id,
        name="t",
        variants=[VariantSpec(id="a", name="A"), VariantSpec(id="b", name="B"), VariantSpec(id="c", name="C")],
    ))
    stored = await manager.get_test(test.id)
    for variant, (views, conversions) in zip(stored.variants, [(200, 20), (200, 30), (50, 25)]):
        variant.views = views
        variant.conversions = conversions
    await manager._save(stored)

    results = await manager.get_results(test.id)
    by_id = {v.id: v for v in results.variants}
    assert by_id["b"].isWinner is True
    assert by_id["b"].confidenceEstimate == 70
    assert by_id["b"].conversionRate == 15.0
    assert by_id["c"].isWinner is False
    assert by_id["a"].isWinner is False


async def test_no_winner_below_threshold(manager, form):
    test = await manager.create_test(two_way(form.id))
    await manager.record_conversion(test.id, "a")
    results = await manager.get_results(test.id)
    assert not any(v.isWinner for v in results.variants)


async def test_record_conversion_tracks_revenue(manager, form):
    test = await manager.create_test(two_way(form.id))
    await manager.record_conversion(test.id, "b", revenue=12.5)
    await manager.record_conversion(test.id, "b")
    variant = (await manager.get_test(test.id)).find_variant("b")
    assert variant.conversions == 2
    assert variant.revenue == 12.5

    with pytest.raises(NotFoundError):
        await manager.record_conversion(test.id, "zzz")


async def test_lifecycle_transitions(manager, form, clock):
    test = await manager.create_test(two_way(form.id))

    paused = await manager.pause_test(test.id)
    assert paused.status == "paused"
    assert await manager.get_variant(form.id, "s1") is None
    assert await manager.record_conversion_for_form(form.id, "a") is True
    with pytest.raises(BusinessRuleViolation):
        await manager.pause_test(test.id)

    assert (await manager.resume_test(test.id)).status == "running"

    clock.advance(5000)
    ended = await manager.end_test(test.id, "b")
    assert ended.status == "completed"
    assert ended.endDate == FIXED_NOW + 5000
    assert ended.winningVariant == "b"
    assert await manager.record_conversion_for_form(form.id, "a") is False
    with pytest.raises(BusinessRuleViolation):
        await manager.resume_test(test.id)


async def test_stop_and_draft(manager, form):
    draft = await manager.create_test(two_way(form.id, status="draft"))
    assert await manager.get_variant(form.id, "s1") is None
    assert (await manager.resume_test(draft.id)).status == "running"

    stopped = await manager.stop_test(draft.id)
    assert stopped.status == "stopped"
    assert stopped.stoppedAt == FIXED_NOW


async def test_unknown_test(manager):
    with pytest.raises(NotFoundError):
        await manager.get_results("nope")


# HTTP
async def test_abtest_routes(client):
    form = (await client.post("/forms", json={"name": "Landing"})).json()

    missing = await client.post("/abtest", json={"formId": "nope", "name": "t", "variants": [{"name": "A"}]})
    assert missing.status_code == 404

    created = await client.post("/abtest", json={
        "formId": form["id"],
        "name": "Headline",
        "variants": [{"id": "a", "name": "A"}, {"id": "b", "name": "B", "config": {"headline": "Hi"}}],
    })
    assert created.status_code == 201
    test_id = created.json()["testId"]

    assignment = (await client.get(f"/variant/{form['id']}/visitor-1")).json()
    assert assignment["testId"] == test_id
    assert assignment["variantId"] in ("a", "b")

    resp = await client.post(f"/abtest/{test_id}/conversion", json={"variantId": assignment["variantId"], "revenue": 5})
    assert resp.json() == {"success": True}

    results = (await client.get(f"/abtest/{test_id}")).json()
    converted = [v for v in results["variants"] if v["id"] == assignment["variantId"]][0]
    assert converted["views"] == 1
    assert converted["conversions"] == 1
    assert converted["conversionRate"] == 100.0

    assert (await client.post(f"/abtest/{test_id}/pause")).json()["status"] == "paused"
    assert (await client.post(f"/abtest/{test_id}/pause")).status_code == 400
    assert (await client.post(f"/abtest/{test_id}/resume")).json()["status"] == "running"

    ended = (await client.post(f"/abtest/{test_id}/end", json={"winningVariant": "a"})).json()
    assert ended["status"] == "completed"
    assert ended["winningVariant"] == "a"

    fallback = (await client.get(f"/variant/{form['id']}/visitor-2")).json()
    assert fallback == {"variantId": "control", "config": {}}


async def test_end_without_body(client):
    form = (await client.post("/forms", json={"name": "Landing"})).json()
    test_id = (await client.post("/abtest", json={"formId": form["id"], "name": "t", "variants": [{"name": "A"}]})).json()["testId"]
    ended = (await client.post(f"/abtest/{test_id}/end")).json()
    assert ended["status"] == "completed"
    assert "winningVariant" not in ended


async def test_tracker_session_gets_variant_and_converts(client):
    form = (await client.post("/forms", json={"name": "Landing"})).json()
    test_id = (await client.post("/abtest", json={
        "formId": form["id"], "name": "t", "variants": [{"id": "only", "name": "Only"}],
    })).json()["testId"]

    session = (await client.post("/analytics/session", json={"formId": form["id"], "sessionId": "v1"})).json()
    assert session["variant"] == "only"
    await client.post("/analytics/completed", json={"sessionId": "v1"})
    submitted = (await client.post("/analytics/submitted", json={"sessionId": "v1"})).json()
    assert submitted["variantConverted"] is True

    results = (await client.get(f"/abtest/{test_id}")).json()
    assert results["variants"][0]["conversions"] == 1

    report = (await client.get(f"/forms/{form['id']}/analytics")).json()
    assert report["variants"][0]["variantId"] == "only"
    assert report["variants"][0]["submissions"] == 1
    assert report["variants"][0]["conversionRate"] == 1.0
