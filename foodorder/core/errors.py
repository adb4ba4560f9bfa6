"""
Domain error taxonomy. Every error carries a stable machine-readable `code`
and the HTTP status the API layer maps it to.
"""
from typing import Any, Dict, Optional


class OrderingError(Exception):
    code = "ORDERING_ERROR"
    status_code = 400
    default_message = "Request could not be processed."

    def __init__(self, message: Optional[str] = None, **details: Any):
        self.message = message or self.default_message
        self.details: Dict[str, Any] = details
        super().__init__(self.message)


# ----------- Validation -----------

class ValidationError(OrderingError):
    code = "VALIDATION_ERROR"
    default_message = "Invalid input data."


# ----------- Not Found -----------

class NotFoundError(OrderingError):
    code = "NOT_FOUND"
    status_code = 404
    default_message = "Resource not found."


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"
    default_message = "Order not found."


class FoodItemNotFound(NotFoundError):
    code = "FOOD_ITEM_NOT_FOUND"
    default_message = "Food item not found."


class CustomerNotFound(NotFoundError):
    code = "USER_NOT_FOUND"
    status_code = 400
    default_message = "User not found."


# ----------- Conflicts (illegal state / business rules) -----------

class ConflictError(OrderingError):
    code = "CONFLICT"
    default_message = "Request conflicts with the current state."


class RestaurantUnavailable(ConflictError):
    code = "RESTAURANT_UNAVAILABLE"
    default_message = "Restaurant not available."


class ItemUnavailable(ConflictError):
    code = "ITEM_UNAVAILABLE"
    default_message = "Food item not available."


class MixedRestaurantItems(ConflictError):
    code = "MIXED_RESTAURANT_ITEMS"
    default_message = "All items must be from the same restaurant."


class InsufficientStock(ConflictError):
    code = "INSUFFICIENT_STOCK"
    default_message = "Insufficient stock."


class MinimumOrderNotMet(ConflictError):
    code = "MINIMUM_ORDER_NOT_MET"
    default_message = "Minimum order amount not met."


class InvalidStatusTransition(ConflictError):
    code = "INVALID_STATUS_TRANSITION"

    def __init__(self, current: str, requested: str):
        super().__init__(
            f"Invalid status transition from {current} to {requested}",
            current_status=current,
            requested_status=requested,
        )


class InvalidOrderStatus(ConflictError):
    code = "INVALID_ORDER_STATUS"
    default_message = "Order is not in a state that allows this operation."


class PaymentNotCompleted(ConflictError):
    code = "PAYMENT_NOT_COMPLETED"
    default_message = "Payment not completed, cannot refund."


# ----------- External services -----------

class ExternalServiceError(OrderingError):
    code = "EXTERNAL_SERVICE_ERROR"
    status_code = 500
    default_message = "External service call failed."


class PaymentIntentFailed(ExternalServiceError):
    code = "PAYMENT_INTENT_FAILED"
    default_message = "Failed to create payment intent."


class RefundFailed(ExternalServiceError):
    code = "REFUND_FAILED"
    default_message = "Failed to initiate refund."


# ----------- Integrity (manual reconciliation, never surfaced) -----------

class PaymentIntegrityError(OrderingError):
    code = "PAYMENT_INTEGRITY_ERROR"
    status_code = 500


class PaymentAmountMismatch(PaymentIntegrityError):
    code = "PAYMENT_AMOUNT_MISMATCH"
    default_message = "Captured amount does not match order total."


# ----------- Access -----------

class AuthenticationError(OrderingError):
    code = "AUTHENTICATION_FAILED"
    status_code = 401
    default_message = "Could not validate credentials."


class AccessDenied(OrderingError):
    code = "ACCESS_DENIED"
    status_code = 403
    default_message = "Access denied."


class InvalidSignature(OrderingError):
    code = "INVALID_SIGNATURE"
    default_message = "Invalid payment signature."


class IdempotencyKeyReused(ConflictError):
    code = "IDEMPOTENCY_KEY_REUSED"
    default_message = "Idempotency key already used for another customer's order."
