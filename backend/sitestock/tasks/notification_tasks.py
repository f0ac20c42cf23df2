"""SiteStock — Notification delivery Celery tasks.

Committed notification events are POSTed to NOTIFICATION_SINK_URL. When
NOTIFICATION_SINK_SECRET is set the body is signed (HMAC-SHA256).
"""
import hashlib
import hmac
import json
import logging

import httpx

from sitestock.config import get_settings
from sitestock.worker import celery_app

logger = logging.getLogger(__name__)


def sign_payload(secret: str, body: str) -> str:
    return hmac.new(secret.encode("utf-8"), body.encode("utf-8"), hashlib.sha256).hexdigest()


@celery_app.task(bind=True, max_retries=3)
def deliver_notification(self, event: dict) -> None:
    """
    Deliver one notification event with exponential backoff.
    Retries 3 times on transport errors or non-2xx responses, then gives up.
    """
    try:
        post_notification(event)
    except (httpx.RequestError, httpx.HTTPStatusError) as exc:
        # 2^retry_count * 5 seconds (5s, 10s, 20s)
        delay = (2 ** self.request.retries) * 5
        logger.warning("Notification %s failed, retrying in %ss: %s", event.get("event_type"), delay, exc)
        raise self.retry(exc=exc, countdown=delay)


def post_notification(event: dict) -> int:
    settings = get_settings()
    if not settings.NOTIFICATION_SINK_URL:
        logger.info("No notification sink configured; dropping %s", event.get("event_type"))
        return 0

    body = json.dumps(event, separators=(",", ":"))
    headers = {
        "Content-Type": "application/json",
        "X-SiteStock-Event": str(event.get("event_type", "")),
        "X-SiteStock-Tenant": str(event.get("tenant_id", "")),
    }
    if settings.NOTIFICATION_SINK_SECRET:
        headers["X-SiteStock-Signature"] = sign_payload(settings.NOTIFICATION_SINK_SECRET, body)

    with httpx.Client(timeout=10.0) as client:
        response = client.post(settings.NOTIFICATION_SINK_URL, content=body, headers=headers)
        response.raise_for_status()
    logger.info("Notification %s delivered (%s)", event.get("event_type"), response.status_code)
    return response.status_code
