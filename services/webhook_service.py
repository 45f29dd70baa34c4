"""
Outbound submission webhooks.

Delivery is best-effort notification: every failure is logged and reported
as False, never raised, so it cannot fail or roll back a submission.
"""
import hashlib
import hmac
import json
import logging
import time
from typing import Any, Dict, Optional

import httpx

from models.base import Form, Submission
from utils.config import SERVICE_NAME, WEBHOOK_SIGNING_SECRET, WEBHOOK_TIMEOUT_SECONDS

logger = logging.getLogger("formpulse.webhooks")


def sign_payload(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


class WebhookService:
    """Service for webhook delivery"""

    def __init__(
        self,
        timeout: float = WEBHOOK_TIMEOUT_SECONDS,
        signing_secret: str = WEBHOOK_SIGNING_SECRET,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.timeout = timeout
        self.signing_secret = signing_secret
        self.transport = transport

    @staticmethod
    def build_payload(form: Form, submission: Submission) -> Dict[str, Any]:
        return {"form": form.name, "submission": submission.model_dump(exclude_none=True)}

    async def deliver(self, url: str, payload: Dict[str, Any]) -> bool:
        """POST payload as JSON to url; True on a 2xx answer"""
        body = json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json", "User-Agent": f"{SERVICE_NAME}-webhooks"}
        if self.signing_secret:
            headers["X-Formpulse-Signature"] = sign_payload(body, self.signing_secret)

        start = time.time()
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, content=body, headers=headers)
            elapsed_ms = int((time.time() - start) * 1000)
            if 200 <= response.status_code < 300:
                logger.info("webhook delivered url=%s status=%s time_ms=%s", url, response.status_code, elapsed_ms)
                return True
            logger.warning("webhook rejected url=%s status=%s time_ms=%s", url, response.status_code, elapsed_ms)
            return False
        except httpx.TimeoutException:
            logger.warning("webhook timed out url=%s timeout=%ss", url, self.timeout)
            return False
        except Exception as e:
            logger.warning("webhook error url=%s: %s: %s", url, type(e).__name__, e)
            return False

    async def send_submission(self, form: Form, submission: Submission) -> bool:
        url = form.settings.webhookUrl
        if not url:
            return False
        return await self.deliver(url, self.build_payload(form, submission))


# Singleton instance
webhook_service = WebhookService()
