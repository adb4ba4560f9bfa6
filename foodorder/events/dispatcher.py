"""
Event/notification dispatch seam. Services receive an EventDispatcher at
construction; the default implementation writes to the outbox table and the
outbox poller delivers from there.
"""
from typing import Any, Dict, Optional, Protocol
from uuid import UUID

from tortoise.backends.base.client import BaseDBAsyncClient

from foodorder.events.types import notification_event
from foodorder.models.order import Order, OrderStatus
from foodorder.models.outbox import OutboxEvent


class EventDispatcher(Protocol):
    async def emit(
        self,
        event_type: str,
        aggregate_id: Optional[UUID],
        payload: Dict[str, Any],
        aggregate_type: str = "order",
        conn: Optional[BaseDBAsyncClient] = None,
    ) -> None: ...

    async def notify(
        self,
        order: Order,
        notification_type: str,
        audience: str,
        conn: Optional[BaseDBAsyncClient] = None,
    ) -> None: ...


async def create_outbox_event(
    aggregate_type: str,
    aggregate_id: Optional[UUID],
    event_type: str,
    payload: Dict[str, Any],
    conn: Optional[BaseDBAsyncClient] = None
) -> OutboxEvent:
    """
    Creates a new Outbox event record using the provided database connection (transaction).

    Passing 'conn' makes the event part of the caller's transaction.
    """
    return await OutboxEvent.create(
        aggregate_type=aggregate_type,
        aggregate_id=aggregate_id,
        event_type=event_type,
        payload=payload,
        published=False,
        attempts=0,
        using_db=conn
    )


def order_payload(order: Order, **extra: Any) -> Dict[str, Any]:
    """Common JSON-safe snapshot of an order for event payloads."""
    payload = {
        "order_id": str(order.id),
        "order_number": order.order_number,
        "customer_id": str(order.customer_id),
        "restaurant_id": str(order.restaurant_id),
        "status": OrderStatus(order.status).value,
        "total_price": order.total_price,
    }
    payload.update(extra)
    return payload


class OutboxDispatcher:
    async def emit(
        self,
        event_type: str,
        aggregate_id: Optional[UUID],
        payload: Dict[str, Any],
        aggregate_type: str = "order",
        conn: Optional[BaseDBAsyncClient] = None,
    ) -> None:
        await create_outbox_event(
            aggregate_type=aggregate_type,
            aggregate_id=aggregate_id,
            event_type=event_type,
            payload=payload,
            conn=conn,
        )

    async def notify(
        self,
        order: Order,
        notification_type: str,
        audience: str,
        conn: Optional[BaseDBAsyncClient] = None,
    ) -> None:
        recipient_id = order.restaurant_id if audience == "restaurant" else order.customer_id
        await create_outbox_event(
            aggregate_type="notification",
            aggregate_id=order.id,
            event_type=notification_event(notification_type),
            payload=order_payload(
                order,
                notification_type=notification_type,
                audience=audience,
                recipient_id=str(recipient_id),
            ),
            conn=conn,
        )
