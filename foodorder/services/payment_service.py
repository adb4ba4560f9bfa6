"""
Payment reconciliation: gateway webhooks, manual verification and refunds.

Every handler re-reads the order inside a transaction and writes the payment
status with a compare-and-swap, so duplicated or reordered deliveries of the
same gateway event are harmless.
"""
import logging
from typing import Any, Dict, Optional, Tuple
from uuid import UUID

from tortoise import timezone
from tortoise.backends.base.client import BaseDBAsyncClient
from tortoise.expressions import Q
from tortoise.transactions import in_transaction

from foodorder.core.config import REFUND_TOLERANCE
from foodorder.core.errors import (
    AccessDenied,
    InvalidSignature,
    OrderNotFound,
    PaymentAmountMismatch,
    PaymentNotCompleted,
    RefundFailed,
    ValidationError,
)
from foodorder.core.principal import Principal, RestaurantPrincipal, UserPrincipal
from foodorder.events import types as events
from foodorder.events.dispatcher import EventDispatcher, order_payload
from foodorder.models.order import Order, OrderStatus, PaymentStatus, UpdatedBy
from foodorder.services.gateway import PaymentGateway
from foodorder.services.order_status import refund_closed_order

log = logging.getLogger(__name__)

# Payment states a capture may complete from
CAPTURABLE_STATUSES = (PaymentStatus.PENDING, PaymentStatus.PROCESSING, PaymentStatus.FAILED)

# A late "failed" event must never downgrade these
SETTLED_STATUSES = (
    PaymentStatus.COMPLETED,
    PaymentStatus.REFUND_INITIATED,
    PaymentStatus.PARTIALLY_REFUNDED,
    PaymentStatus.REFUNDED,
)

# Orders already closed by the restaurant or customer keep their status on refund
CLOSED_STATUSES = (OrderStatus.REJECTED, OrderStatus.CANCELLED, OrderStatus.REFUNDED)

CAPTURED = "payment.captured"
FAILED = "payment.failed"
REFUND_PROCESSED = "refund.processed"


class PaymentService:
    def __init__(
        self,
        gateway: PaymentGateway,
        dispatcher: EventDispatcher,
        refund_tolerance: int = REFUND_TOLERANCE,
    ):
        self.gateway = gateway
        self.dispatcher = dispatcher
        self.refund_tolerance = refund_tolerance

    @staticmethod
    def validate_payment_amount(expected: int, received: Any) -> bool:
        """Both sides are minor units; anything but an exact match needs a human."""
        try:
            return int(received) == int(expected)
        except (TypeError, ValueError):
            return False

    def is_full_refund(self, total_price: int, refunded: int) -> bool:
        return refunded >= total_price - self.refund_tolerance

    @staticmethod
    async def _find_order(
        conn: BaseDBAsyncClient,
        payment_id: Optional[str] = None,
        provider_order_id: Optional[str] = None,
    ) -> Optional[Order]:
        conditions = []
        if payment_id:
            conditions += [Q(payment_id=payment_id), Q(gateway_payment_id=payment_id)]
        if provider_order_id:
            conditions.append(Q(transaction_id=provider_order_id))
        if not conditions:
            return None
        return await Order.filter(Q(*conditions, join_type="OR")).using_db(conn).select_for_update().first()

    @staticmethod
    def _ensure_owner(order: Order, principal: Principal) -> None:
        owner_id = order.customer_id if isinstance(principal, UserPrincipal) else order.restaurant_id
        if str(owner_id) != str(principal.id):
            raise AccessDenied()

    # ----------- Webhooks -----------

    async def process_webhook(self, raw_body: bytes, signature: Optional[str]) -> Optional[str]:
        """
        Verifies the gateway signature, then routes the event. Handler failures
        are logged and swallowed: the gateway redelivers and the handlers are
        idempotent.
        """
        result = self.gateway.process_webhook(raw_body, signature)
        if not result.success:
            log.warning(f"Webhook verification failed: {result.error}")
            raise InvalidSignature("Webhook verification failed", gateway_error=result.error)

        envelope = result.data
        event = envelope.get("event")
        payload = envelope.get("payload") or {}
        try:
            if event == CAPTURED:
                await self.handle_payment_captured(payload["payment"]["entity"])
            elif event == FAILED:
                await self.handle_payment_failed(payload["payment"]["entity"])
            elif event == REFUND_PROCESSED:
                await self.handle_refund_processed(payload["refund"]["entity"])
            else:
                log.info(f"Ignoring webhook event {event}.")
        except Exception:
            log.exception(f"Error handling webhook event {event}")
        return event

    async def handle_payment_captured(self, payment: Dict[str, Any]) -> bool:
        payment_id = payment.get("id")
        async with in_transaction() as conn:
            order = await self._find_order(conn, payment_id=payment_id, provider_order_id=payment.get("order_id"))
            if not order:
                log.error(f"Order not found for captured payment {payment_id}.")
                return False

            if order.payment_status == PaymentStatus.COMPLETED:
                log.info(f"Payment already processed for order {order.id}.")
                return False

            if not self.validate_payment_amount(order.total_price, payment.get("amount")):
                mismatch = PaymentAmountMismatch(
                    order_id=str(order.id),
                    expected=order.total_price,
                    received=payment.get("amount"),
                    payment_id=payment_id,
                )
                log.critical(f"{mismatch.code}: {mismatch.message} {mismatch.details} Manual reconciliation required.")
                return False

            completed = await self._complete_payment(
                order,
                conn,
                gateway_payment_id=payment_id,
                performed_by=UpdatedBy.SYSTEM.value,
                note="Payment completed successfully",
                details={
                    "captured_at": timezone.now().isoformat(),
                    "method": payment.get("method"),
                    "bank": payment.get("bank"),
                    "wallet": payment.get("wallet"),
                },
                audit_action="payment_captured",
                audit_details={
                    "payment_id": payment_id,
                    "amount": payment.get("amount"),
                    "method": payment.get("method"),
                },
            )

        if completed:
            await self._refund_if_closed(order, UpdatedBy.SYSTEM.value)
        return completed

    async def handle_payment_failed(self, payment: Dict[str, Any]) -> bool:
        payment_id = payment.get("id")
        async with in_transaction() as conn:
            order = await self._find_order(conn, payment_id=payment_id, provider_order_id=payment.get("order_id"))
            if not order:
                log.error(f"Order not found for failed payment {payment_id}.")
                return False

            details = dict(order.payment_details or {})
            if order.payment_status in SETTLED_STATUSES:
                log.info(f"Ignoring failure of payment {payment_id}: order {order.id} is already {PaymentStatus(order.payment_status).value}.")
                return False
            if order.payment_status == PaymentStatus.FAILED and details.get("failed_payment_id") == payment_id:
                log.info(f"Failure of payment {payment_id} already recorded for order {order.id}.")
                return False

            details.update({
                "failed_at": timezone.now().isoformat(),
                "failed_payment_id": payment_id,
                "error_code": payment.get("error_code"),
                "error_description": payment.get("error_description"),
            })
            updated = await order.set_payment_status(
                PaymentStatus.FAILED,
                expected=CAPTURABLE_STATUSES,
                using_db=conn,
                payment_details=details,
            )
            if not updated:
                return False

            await order.add_audit_log(
                "payment_failed",
                UpdatedBy.SYSTEM.value,
                {
                    "payment_id": payment_id,
                    "error_code": payment.get("error_code"),
                    "error_description": payment.get("error_description"),
                },
                using_db=conn,
            )
            await self.dispatcher.emit(
                events.PAYMENT_FAILED,
                order.id,
                {
                    "payment_id": payment_id,
                    "order_id": str(order.id),
                    "error_code": payment.get("error_code"),
                    "error_description": payment.get("error_description"),
                },
                aggregate_type="payment",
                conn=conn,
            )

        log.info(f"Payment failed for order {order.id}.")
        return True

    async def handle_refund_processed(self, refund: Dict[str, Any]) -> bool:
        refund_id = refund.get("id")
        payment_id = refund.get("payment_id")
        amount = int(refund.get("amount") or 0)

        async with in_transaction() as conn:
            order = await self._find_order(conn, payment_id=payment_id)
            if not order:
                log.error(f"Order not found for refund {refund_id}.")
                return False

            details = dict(order.payment_details or {})
            processed = list(details.get("processed_refund_ids", []))
            if refund_id in processed:
                log.info(f"Refund {refund_id} already processed for order {order.id}.")
                return False

            refunded_total = int(details.get("refunded_total", 0)) + amount
            full = self.is_full_refund(order.total_price, refunded_total)
            new_status = PaymentStatus.REFUNDED if full else PaymentStatus.PARTIALLY_REFUNDED

            details.update({
                "refund_id": refund_id,
                "refund_amount": amount,
                "refunded_total": refunded_total,
                "refunded_at": timezone.now().isoformat(),
                "processed_refund_ids": processed + [refund_id],
            })
            await order.set_payment_status(new_status, using_db=conn, payment_details=details)

            order_refunded = full and order.status not in CLOSED_STATUSES
            if order_refunded:
                await order.transition_to(
                    OrderStatus.REFUNDED,
                    updated_by=UpdatedBy.SYSTEM,
                    note="Payment refunded",
                    using_db=conn,
                )

            await order.add_audit_log(
                "refund_processed",
                UpdatedBy.SYSTEM.value,
                {"refund_id": refund_id, "amount": amount, "payment_id": payment_id},
                using_db=conn,
            )
            await self.dispatcher.emit(
                events.PAYMENT_REFUNDED,
                order.id,
                {
                    "refund_id": refund_id,
                    "payment_id": payment_id,
                    "order_id": str(order.id),
                    "amount": amount,
                    "payment_status": new_status.value,
                },
                aggregate_type="payment",
                conn=conn,
            )
            if order_refunded:
                await self.dispatcher.emit(events.ORDER_REFUNDED, order.id, order_payload(order), conn=conn)

        log.info(f"Refund {refund_id} processed for order {order.id} ({new_status.value}).")
        return True

    # ----------- Customer / restaurant calls -----------

    async def verify_payment(self, order_id: UUID, payment_id: str, signature: str, principal: UserPrincipal) -> Order:
        """
        Manual counterpart of the captured webhook, gated on the checkout
        signature instead of webhook delivery. Safe to call more than once.
        """
        order = await Order.get_or_none(id=order_id)
        if not order:
            raise OrderNotFound()
        self._ensure_owner(order, principal)

        if not self.gateway.verify_payment_signature(order.transaction_id, payment_id, signature):
            raise InvalidSignature()

        if order.payment_status == PaymentStatus.COMPLETED:
            return order

        completed = False
        async with in_transaction() as conn:
            order = await Order.filter(id=order_id).using_db(conn).select_for_update().first()
            if order.payment_status != PaymentStatus.COMPLETED:
                completed = await self._complete_payment(
                    order,
                    conn,
                    gateway_payment_id=payment_id,
                    performed_by="manual_verification",
                    note="Payment verified manually",
                    details={"verified_at": timezone.now().isoformat(), "verification_method": "manual"},
                    audit_action="payment_verified",
                    audit_details={"payment_id": payment_id, "verification_method": "manual"},
                )

        if completed:
            await self._refund_if_closed(order, "manual_verification")
        return order

    async def initiate_refund(
        self,
        order_id: UUID,
        principal: RestaurantPrincipal,
        amount: Optional[int] = None,
        reason: str = "Refund requested",
    ) -> Tuple[Order, Dict[str, Any]]:
        """Asks the gateway for a refund; clearing is reported later by webhook."""
        order = await Order.get_or_none(id=order_id)
        if not order:
            raise OrderNotFound()
        self._ensure_owner(order, principal)

        if order.payment_status != PaymentStatus.COMPLETED:
            raise PaymentNotCompleted()

        refund_amount = amount or order.total_price
        if refund_amount <= 0 or refund_amount > order.total_price:
            raise ValidationError(f"Refund amount must be between 1 and {order.total_price}")

        payment_ref = order.gateway_payment_id or order.payment_id
        result = await self.gateway.initiate_refund(payment_ref, refund_amount, reason)
        if not result.success:
            raise RefundFailed(gateway_error=result.error)
        refund = result.data.get("refund") or {}

        async with in_transaction() as conn:
            details = dict(order.payment_details or {})
            details.update({"refund_id": refund.get("id"), "refund_requested_amount": refund_amount})
            updated = await order.set_payment_status(
                PaymentStatus.REFUND_INITIATED,
                expected=[PaymentStatus.COMPLETED],
                using_db=conn,
                payment_details=details,
            )
            if not updated:
                log.warning(f"Payment status of order {order.id} changed while refunding; refund {refund.get('id')} still issued.")
            await order.add_audit_log(
                "refund_initiated",
                str(principal.id),
                {"refund_id": refund.get("id"), "amount": refund_amount, "reason": reason},
                using_db=conn,
            )
            await self.dispatcher.emit(
                events.PAYMENT_REFUND_INITIATED,
                order.id,
                {
                    "refund_id": refund.get("id"),
                    "payment_id": payment_ref,
                    "order_id": str(order.id),
                    "amount": refund_amount,
                    "reason": reason,
                },
                aggregate_type="payment",
                conn=conn,
            )

        log.info(f"Refund {refund.get('id')} of {refund_amount} initiated for order {order.id}.")
        return order, refund

    async def get_payment_status(self, order_id: UUID, principal: Principal) -> Order:
        order = await Order.get_or_none(id=order_id)
        if not order:
            raise OrderNotFound()
        self._ensure_owner(order, principal)
        return order

    # ----------- Shared capture path -----------

    async def _refund_if_closed(self, order: Order, performed_by: str) -> None:
        if order.status not in CLOSED_STATUSES:
            return
        reason = f"Payment captured after order was {OrderStatus(order.status).value}"
        await refund_closed_order(order, self.gateway, self.dispatcher, reason, performed_by)

    async def _complete_payment(
        self,
        order: Order,
        conn: BaseDBAsyncClient,
        gateway_payment_id: str,
        performed_by: str,
        note: str,
        details: Dict[str, Any],
        audit_action: str,
        audit_details: Dict[str, Any],
    ) -> bool:
        payment_details = dict(order.payment_details or {})
        payment_details.update(details)
        payment_details["gateway_payment_id"] = gateway_payment_id

        updated = await order.set_payment_status(
            PaymentStatus.COMPLETED,
            expected=CAPTURABLE_STATUSES,
            using_db=conn,
            gateway_payment_id=gateway_payment_id,
            payment_details=payment_details,
        )
        if not updated:
            log.info(f"Payment for order {order.id} was completed concurrently; nothing to do.")
            return False

        verified = order.status == OrderStatus.PENDING
        if verified:
            await order.transition_to(
                OrderStatus.PAYMENT_VERIFIED,
                updated_by=UpdatedBy.SYSTEM,
                note=note,
                performed_by=performed_by,
                using_db=conn,
            )
        elif order.status in CLOSED_STATUSES:
            log.warning(
                f"Payment captured for closed order {order.id} ({OrderStatus(order.status).value}); "
                f"refunding after commit."
            )
            await order.add_audit_log(
                "payment_captured_after_close",
                performed_by,
                {"payment_id": gateway_payment_id, "amount": order.total_price, "order_status": OrderStatus(order.status).value},
                using_db=conn,
            )
        else:
            log.warning(
                f"Payment captured for order {order.id} in status {OrderStatus(order.status).value}; "
                f"order status left unchanged."
            )

        await order.add_audit_log(audit_action, performed_by, audit_details, using_db=conn)
        await self.dispatcher.emit(
            events.PAYMENT_COMPLETED,
            order.id,
            {
                "payment_id": gateway_payment_id,
                "order_id": str(order.id),
                "amount": order.total_price,
                "method": details.get("method"),
            },
            aggregate_type="payment",
            conn=conn,
        )
        if verified:
            await self.dispatcher.emit(
                events.ORDER_PAYMENT_VERIFIED,
                order.id,
                order_payload(order, payment_id=gateway_payment_id),
                conn=conn,
            )
            await self.dispatcher.notify(order, "order_placed", "restaurant", conn=conn)

        log.info(f"Payment completed for order {order.id}.")
        return True
