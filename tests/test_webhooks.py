import json

import httpx

from models.base import Form, FormSettings, Submission
from services.webhook_service import WebhookService, sign_payload

from conftest import FIXED_NOW

HOOK = "https://hooks.example.com/formpulse"


def make_form(webhook_url=HOOK):
    return Form(
        id="f1",
        name="Contact",
        settings=FormSettings(webhookUrl=webhook_url),
        createdAt=FIXED_NOW,
        updatedAt=FIXED_NOW,
    )


def make_submission():
    return Submission(id="s1", formId="f1", data={"email": "a@b.com"}, createdAt=FIXED_NOW)


async def test_delivers_json_payload():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200)

    service = WebhookService(timeout=1, signing_secret="", transport=httpx.MockTransport(handler))
    assert await service.send_submission(make_form(), make_submission()) is True

    request = seen[0]
    assert request.method == "POST"
    assert str(request.url) == HOOK
    body = json.loads(request.content)
    assert body["form"] == "Contact"
    assert body["submission"]["data"] == {"email": "a@b.com"}
    assert "x-formpulse-signature" not in request.headers


async def test_signs_body_when_secret_set():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(204)

    service = WebhookService(timeout=1, signing_secret="s3cret", transport=httpx.MockTransport(handler))
    assert await service.deliver(HOOK, {"hello": "world"}) is True
    request = seen[0]
    assert request.headers["x-formpulse-signature"] == sign_payload(request.content, "s3cret")


async def test_non_2xx_is_reported_not_raised():
    service = WebhookService(timeout=1, signing_secret="", transport=httpx.MockTransport(lambda r: httpx.Response(500)))
    assert await service.deliver(HOOK, {}) is False


async def test_connection_errors_are_reported_not_raised():
    def refuse(request):
        raise httpx.ConnectError("refused", request=request)

    def slow(request):
        raise httpx.ReadTimeout("timed out", request=request)

    for handler in (refuse, slow):
        service = WebhookService(timeout=1, signing_secret="", transport=httpx.MockTransport(handler))
        assert await service.deliver(HOOK, {}) is False


async def test_no_webhook_configured():
    def handler(request):
        raise AssertionError("should not be called")

    service = WebhookService(timeout=1, signing_secret="", transport=httpx.MockTransport(handler))
    assert await service.send_submission(make_form(webhook_url=None), make_submission()) is False


def test_signature_is_hex_hmac_sha256():
    signature = sign_payload(b"{}", "key")
    assert len(signature) == 64
    assert signature == sign_payload(b"{}", "key")
    assert signature != sign_payload(b"{}", "other")
