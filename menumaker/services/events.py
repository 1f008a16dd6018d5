"""
Order Event Dispatcher

Hands committed order events to background workers. Dispatch happens
after the database commit and can never change the outcome of the
request: a broker outage is logged, not raised.

Events:
    - order.created: ledger export + lifecycle event
    - order.confirmed: customer confirmation (delivered by subscribers)
    - order.status_changed: every other transition
"""

import logging
from abc import ABC, abstractmethod
from functools import lru_cache

from menumaker.domain import Order, OrderStatus
from menumaker.services.excel_manager import ledger_row
from menumaker.services.state_machine import OrderStateMachine

logger = logging.getLogger(__name__)


class BaseOrderEventDispatcher(ABC):
    """Receives order events once they are durable."""

    @abstractmethod
    def order_created(self, order: Order) -> None:
        pass

    @abstractmethod
    def order_status_changed(self, order: Order, previous: OrderStatus) -> None:
        pass


def status_event_name(status: OrderStatus) -> str:
    if OrderStateMachine.emits_confirmation(status):
        return "order.confirmed"
    return "order.status_changed"


class CeleryOrderEventDispatcher(BaseOrderEventDispatcher):
    """Queues Celery tasks for each event."""

    def order_created(self, order: Order) -> None:
        from menumaker.tasks import export_order_to_excel, publish_order_event

        try:
            export_order_to_excel.delay(ledger_row(order))
            publish_order_event.delay("order.created", order.to_dict())
        except Exception as e:
            logger.error(f"Could not queue order.created for order {order.id}: {e}")

    def order_status_changed(self, order: Order, previous: OrderStatus) -> None:
        from menumaker.tasks import publish_order_event

        event = status_event_name(order.status)
        try:
            publish_order_event.delay(
                event,
                {
                    "order_id": order.id,
                    "business_id": order.business_id,
                    "from": previous.value,
                    "to": order.status.value,
                    "customer_phone": order.customer_phone,
                    "customer_email": order.customer_email,
                },
            )
        except Exception as e:
            logger.error(f"Could not queue {event} for order {order.id}: {e}")


@lru_cache()
def get_event_dispatcher() -> BaseOrderEventDispatcher:
    """Get the configured event dispatcher."""
    return CeleryOrderEventDispatcher()
