"""
Notifier bridge: hands engine events to whatever delivers them.

The engine only emits events. Delivery (email, chat, push) lives outside this
service, so every sink here is best effort: a failing sink is logged and
counted, and never undoes the state change that produced the event.

Sinks:
- InboxNotifier: writes an organizer-visible ``InboxItem`` row
- WebhookNotifier: POSTs the event as JSON (``NOTIFIER_WEBHOOK_URL``)
"""
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, Optional

import httpx
from opentelemetry import trace
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from convene.config import get_notifier_webhook_url, get_public_base_url
from convene.metrics import notifier_failures_total
from convene.repositories.inbox_repository import InboxRepository

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

REQUEST_CONFIRMED = "scheduling_request_confirmed"
SLOT_FILLED = "scheduling_slot_filled"
REPROPOSED = "scheduling_reproposed"
INVITES_SENT = "scheduling_invites_sent"
RESPONSE_RECEIVED = "scheduling_response_received"


@dataclass
class SchedulingEvent:
    type: str
    user_id: str
    title: str
    action_target_id: str
    message: Optional[str] = None
    priority: str = "normal"
    action_type: str = "open_thread"
    payload: Dict[str, Any] = field(default_factory=dict)

    @property
    def action_url(self) -> str:
        return f"{get_public_base_url()}/api/one-to-many/{self.action_target_id}"

    def to_dict(self) -> dict:
        data = asdict(self)
        data["action_url"] = self.action_url
        return data


class NotifierBridge:
    """Interface every sink implements."""

    sink_name = "base"

    def notify(self, event: SchedulingEvent) -> None:
        raise NotImplementedError


class InboxNotifier(NotifierBridge):
    sink_name = "inbox"

    def __init__(self, db: Session):
        self.db = db

    def notify(self, event: SchedulingEvent) -> None:
        with tracer.start_as_current_span("notifier.inbox") as span:
            span.set_attribute("event.type", event.type)
            span.set_attribute("thread.id", event.action_target_id)

            try:
                InboxRepository.create(
                    self.db,
                    user_id=event.user_id,
                    type=event.type,
                    title=event.title,
                    message=event.message,
                    action_type=event.action_type,
                    action_target_id=event.action_target_id,
                    action_url=event.action_url,
                    priority=event.priority,
                    payload=event.payload,
                )
                self.db.commit()
            except SQLAlchemyError:
                self.db.rollback()
                notifier_failures_total.labels(sink=self.sink_name).inc()
                logger.exception(
                    "Failed to write inbox item type=%s thread=%s",
                    event.type,
                    event.action_target_id,
                )


class WebhookNotifier(NotifierBridge):
    sink_name = "webhook"

    def __init__(self, url: str, timeout: float = 10.0, client: Optional[httpx.Client] = None):
        self.url = url
        self.timeout = timeout
        self.client = client

    def notify(self, event: SchedulingEvent) -> None:
        with tracer.start_as_current_span("notifier.webhook") as span:
            span.set_attribute("event.type", event.type)

            try:
                if self.client is not None:
                    response = self.client.post(self.url, json=event.to_dict())
                else:
                    with httpx.Client(timeout=self.timeout) as client:
                        response = client.post(self.url, json=event.to_dict())
                response.raise_for_status()
            except httpx.HTTPError as exc:
                notifier_failures_total.labels(sink=self.sink_name).inc()
                logger.warning("Webhook delivery failed for %s: %s", event.type, exc)
                return

        logger.info("Webhook event %s delivered: status %s", event.type, response.status_code)


class CompositeNotifier(NotifierBridge):
    sink_name = "composite"

    def __init__(self, *sinks: NotifierBridge):
        self.sinks = list(sinks)

    def notify(self, event: SchedulingEvent) -> None:
        for sink in self.sinks:
            sink.notify(event)


def build_notifier(db: Session) -> NotifierBridge:
    sinks = [InboxNotifier(db)]
    webhook_url = get_notifier_webhook_url()
    if webhook_url:
        sinks.append(WebhookNotifier(webhook_url))
    return CompositeNotifier(*sinks)
