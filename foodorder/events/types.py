# Order lifecycle
ORDER_CREATED = "order.created.v1"
ORDER_PAYMENT_VERIFIED = "order.payment_verified.v1"
ORDER_CONFIRMED = "order.confirmed.v1"
ORDER_REJECTED = "order.rejected.v1"
ORDER_CANCELLED = "order.cancelled.v1"
ORDER_PREPARING = "order.preparing.v1"
ORDER_READY_FOR_PICKUP = "order.ready_for_pickup.v1"
ORDER_OUT_FOR_DELIVERY = "order.out_for_delivery.v1"
ORDER_DELIVERED = "order.delivered.v1"
ORDER_REFUNDED = "order.refunded.v1"

# Money movement
PAYMENT_COMPLETED = "payment.completed.v1"
PAYMENT_FAILED = "payment.failed.v1"
PAYMENT_REFUNDED = "payment.refunded.v1"
PAYMENT_REFUND_INITIATED = "payment.refund_initiated.v1"

# Notifications are routed by this prefix
NOTIFICATION_PREFIX = "notification."


def notification_event(notification_type: str) -> str:
    return f"{NOTIFICATION_PREFIX}{notification_type}.v1"
