import logging
from dataclasses import dataclass, field

from django.conf import settings
from django.db import transaction
from django.utils.module_loading import import_string

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderEvent:
    name: str
    order_id: str
    order_number: str
    status: str
    actor_id: int | None
    recipient_ids: tuple
    payload: dict = field(default_factory=dict)


class LoggingNotifier:
    def send(self, event):
        logger.info(
            "order event %s on %s for recipients %s",
            event.name,
            event.order_number,
            list(event.recipient_ids),
        )


class InMemoryNotifier:
    """Keeps delivered events in ``outbox``, like Django's locmem mail backend."""

    outbox = []

    def send(self, event):
        type(self).outbox.append(event)


def get_notifier():
    return import_string(settings.ORDERS_NOTIFIER)()


def notify(order, *, actor, name, payload=None):
    """Queue an event for the parties other than ``actor``; sent after commit."""
    actor_id = getattr(actor, "pk", None)
    recipients = tuple(pk for pk in (order.customer_id, order.tailor_id) if pk != actor_id)
    event = OrderEvent(
        name=name,
        order_id=str(order.id),
        order_number=order.order_number,
        status=order.status,
        actor_id=actor_id,
        recipient_ids=recipients,
        payload=payload or {},
    )
    transaction.on_commit(lambda: _deliver(event))
    return event


def _deliver(event):
    try:
        get_notifier().send(event)
    except Exception:
        logger.exception("Notification delivery failed for %s on %s", event.name, event.order_number)
