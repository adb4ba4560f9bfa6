import logging
from typing import Any, Dict
from uuid import UUID

from tortoise.transactions import in_transaction

from foodorder.models.processed_event import ProcessedEvent

log = logging.getLogger("notification_consumer")

MESSAGES = {
    "order_placed": "New order {order_number} is waiting for confirmation.",
    "order_confirmed": "Your order {order_number} was confirmed by the restaurant.",
    "order_rejected": "Your order {order_number} was rejected. A refund is on its way.",
    "order_cancelled": "Order {order_number} was cancelled by the customer.",
    "order_preparing": "Your order {order_number} is being prepared.",
    "order_ready": "Your order {order_number} is ready for pickup.",
    "order_out_for_delivery": "Your order {order_number} is out for delivery.",
    "order_delivered": "Your order {order_number} was delivered. Enjoy!",
}


def render_message(payload: Dict[str, Any]) -> str:
    template = MESSAGES.get(payload.get("notification_type"), "Update on order {order_number}.")
    return template.format(order_number=payload.get("order_number", ""))


async def handle_notification(event_payload: Dict[str, Any], event_id: UUID) -> bool:
    """
    Consumer logic for 'notification.<type>.v1'. Delivers a push message to
    the recipient once per event; returns False for a redelivered event.
    """
    event_id_str = str(event_id)

    # Idempotency Check
    if await ProcessedEvent.filter(event_id=event_id_str).exists():
        log.info(f"Idempotency: Event {event_id_str} already processed.")
        return False

    async with in_transaction() as conn:
        # Mock push delivery; a real push provider plugs in here
        log.info(
            f"PUSH to {event_payload.get('audience')} {event_payload.get('recipient_id')}: "
            f"{render_message(event_payload)}"
        )
        await ProcessedEvent.create(event_id=event_id_str, using_db=conn)
    return True
