"""SiteStock — Notification events and sinks.

Events are queued on the DB session by the services and handed to the sink only
after commit (see db.transaction). Delivery is fire-and-forget: a failing sink
is logged and never reaches the caller.
"""
import logging
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field
from sqlalchemy.ext.asyncio import AsyncSession

from sitestock.config import get_settings
from sitestock.db.transaction import pending_events

logger = logging.getLogger(__name__)

CATEGORY_STOCK = "STOCK"

# Event types
EVENT_STOCK_CRITICAL = "stock_critical"
EVENT_STOCK_DEPLETED = "stock_depleted"
EVENT_STOCK_REQUESTED = "stock_requested"
EVENT_STOCK_REQUEST_APPROVED = "stock_request_approved"
EVENT_STOCK_REQUEST_REJECTED = "stock_request_rejected"
EVENT_STOCK_REQUEST_PARTIAL_DELIVERY = "stock_request_partial_delivery"
EVENT_STOCK_REQUEST_DELIVERED = "stock_request_delivered"
EVENT_PURCHASE_REQUESTED = "purchase_requested"
EVENT_PURCHASE_ORDERED = "purchase_ordered"
EVENT_PURCHASE_COMPLETED = "purchase_completed"


class NotificationEvent(BaseModel):
    tenant_id: UUID
    project_id: UUID | None = None
    category: str = CATEGORY_STOCK
    event_type: str
    title: str
    body: str
    priority: str = "normal"
    actor_user_id: UUID | None = None
    target_user_ids: list[UUID] = Field(default_factory=list)
    permission_codes: list[str] = Field(default_factory=list)
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationSink:
    """Where committed events go. Implementations must not block on delivery."""

    def emit(self, event: NotificationEvent) -> None:
        raise NotImplementedError


class LoggingNotificationSink(NotificationSink):
    """Used when no external sink is configured."""

    def emit(self, event: NotificationEvent) -> None:
        logger.info("[NOTIFY] %s (%s): %s", event.event_type, event.priority, event.title)


class CeleryNotificationSink(NotificationSink):
    """Enqueue HTTP delivery on the Celery worker."""

    def emit(self, event: NotificationEvent) -> None:
        from sitestock.tasks.notification_tasks import deliver_notification

        deliver_notification.delay(event.model_dump(mode="json"))


_sink: NotificationSink | None = None


def get_notification_sink() -> NotificationSink:
    global _sink
    if _sink is None:
        if get_settings().NOTIFICATION_SINK_URL:
            _sink = CeleryNotificationSink()
        else:
            _sink = LoggingNotificationSink()
    return _sink


def set_notification_sink(sink: NotificationSink | None) -> None:
    """Swap the process-wide sink (None restores the configured default)."""
    global _sink
    _sink = sink


def notify(db: AsyncSession, event: NotificationEvent) -> None:
    """Queue an event; it is emitted only if the surrounding transaction commits."""
    pending_events(db).append(event)


def dispatch(events: list[NotificationEvent]) -> None:
    if not get_settings().NOTIFICATIONS_ENABLED:
        return
    sink = get_notification_sink()
    for event in events:
        try:
            sink.emit(event)
        except Exception as exc:
            logger.warning("Notification %s dropped: %s", event.event_type, exc, exc_info=True)
