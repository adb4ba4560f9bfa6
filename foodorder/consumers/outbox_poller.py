import asyncio
import logging

from foodorder.consumers.notification_consumer import handle_notification
from foodorder.core.config import BATCH_SIZE, MAX_ATTEMPTS, POLLING_INTERVAL
from foodorder.core.db import init_db
from foodorder.events.types import NOTIFICATION_PREFIX
from foodorder.models.outbox import OutboxEvent

log = logging.getLogger("outbox_poller")


async def dispatch_event(event: OutboxEvent):
    """
    Routes an OutboxEvent to the correct handler. This stands in for a
    message broker (like Kafka/RabbitMQ) dispatcher.
    """
    event_type = event.event_type
    payload = event.payload

    log.info(f"Poller DISPATCHING: {event_type} (ID: {event.id.hex[:8]}...)")

    if event_type.startswith(NOTIFICATION_PREFIX):
        await handle_notification(payload, event.id)

    elif event_type.startswith(("order.", "payment.")):
        # Downstream consumers (analytics, delivery assignment) subscribe here
        log.info(f"EVENT {event_type}: aggregate {event.aggregate_type} {event.aggregate_id} {payload}")

    else:
        log.warning(f"No handler found for event type: {event_type}")


async def poll_outbox_for_new_events() -> int:
    """
    Queries the Outbox table for unpublished events and attempts to dispatch them.
    Returns the number of events published in this pass.
    """
    # Select events that haven't been published and haven't exceeded max attempts
    events = await OutboxEvent.filter(published=False, attempts__lt=MAX_ATTEMPTS).limit(BATCH_SIZE).order_by('created_at')

    published = 0
    for event in events:
        try:
            await dispatch_event(event)

            event.published = True
            await event.save(update_fields=['published'])
            published += 1

        except Exception:
            event.attempts += 1
            await event.save(update_fields=['attempts'])
            log.exception(f"Dispatch of event {event.id} failed (attempt {event.attempts}/{MAX_ATTEMPTS}).")
    return published


async def start_outbox_poller():
    """Main loop for the poller service."""
    await init_db()
    log.info("--- Outbox Poller Service Started ---")

    while True:
        try:
            await poll_outbox_for_new_events()
        except Exception as e:
            log.error(f"Poller encountered a critical DB error: {e}.")

        await asyncio.sleep(POLLING_INTERVAL)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    try:
        asyncio.run(start_outbox_poller())
    except KeyboardInterrupt:
        log.info("Poller service stopped.")
