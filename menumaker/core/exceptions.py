"""
Ordering Error Taxonomy

Every failure the engine can surface to a caller is an OrderingError
carrying an HTTP status and a machine-readable code. The API layer renders
them into the standard error envelope:

    {"success": false, "error": {"code": ..., "message": ..., "details": ...}}

Classes:
    - structural: OrderValidationError, InvalidDeliveryInput
    - business rule: CouponRejected, OrderLimitReached, DishesUnavailable,
      MinimumOrderNotMet
    - lookup: OrderNotFound, DishNotFound, BusinessNotFound
    - state machine: InvalidTransition
    - internal: InvariantViolation, StoreUnavailableError
"""

from typing import Any, Optional


class OrderingError(Exception):
    """Base class for errors rendered into the API error envelope."""

    status_code: int = 400
    code: str = "ORDERING_ERROR"

    def __init__(self, message: str, details: Optional[Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        """Convert to the `error` member of the response envelope."""
        error = {"code": self.code, "message": self.message}
        if self.details is not None:
            error["details"] = self.details
        return error


# =============================================================================
# STRUCTURAL
# =============================================================================

class OrderValidationError(OrderingError):
    """Malformed cart payload. `details` is a list of per-field problems."""

    status_code = 400
    code = "VALIDATION_ERROR"

    def __init__(self, details: list[dict[str, Any]], message: str = "Validation failed"):
        super().__init__(message, details)


class InvalidDeliveryInput(OrderingError):
    status_code = 400
    code = "INVALID_DELIVERY_INPUT"


# =============================================================================
# BUSINESS RULES
# =============================================================================

class CouponRejected(OrderingError):
    """
    A coupon could not be applied.

    Attributes:
        reason: One of the CouponRejectionReason values
    """

    status_code = 400

    def __init__(self, reason: str, message: str, details: Optional[dict] = None):
        reason = getattr(reason, "value", reason)
        super().__init__(message, {"reason": reason, **(details or {})})
        self.reason = reason
        self.code = f"COUPON_{reason.upper()}"


class OrderLimitReached(OrderingError):
    status_code = 403
    code = "ORDER_LIMIT_REACHED"

    def __init__(self, current: int, limit: int):
        super().__init__(
            f"You have reached your order limit ({current}/{limit}). "
            f"Please upgrade your subscription to continue.",
            {"current": current, "limit": limit, "upgrade_required": True},
        )
        self.current = current
        self.limit = limit


class DishesUnavailable(OrderingError):
    status_code = 400
    code = "DISHES_UNAVAILABLE"

    def __init__(self, dishes: list[dict[str, str]]):
        names = ", ".join(d["name"] for d in dishes)
        super().__init__(
            f"The following dishes are currently unavailable: {names}",
            {"unavailable_dishes": dishes},
        )


class MinimumOrderNotMet(OrderingError):
    status_code = 400
    code = "MINIMUM_ORDER_NOT_MET"

    def __init__(self, min_amount: int, current_amount: int, currency: str):
        super().__init__(
            f"Minimum order amount is {currency} {min_amount / 100:.2f}",
            {"min_amount": min_amount, "current_amount": current_amount},
        )


# =============================================================================
# LOOKUPS
# =============================================================================

class NotFoundError(OrderingError):
    status_code = 404
    code = "NOT_FOUND"


class OrderNotFound(NotFoundError):
    code = "ORDER_NOT_FOUND"

    def __init__(self, order_id: str):
        super().__init__(f"Order {order_id} not found")


class DishNotFound(NotFoundError):
    code = "DISH_NOT_FOUND"

    def __init__(self, dish_ids: list[str]):
        super().__init__("One or more dishes not found", {"dish_ids": dish_ids})


class BusinessNotFound(NotFoundError):
    code = "BUSINESS_NOT_FOUND"

    def __init__(self, business_id: str):
        super().__init__(f"Business {business_id} has no ordering settings")


# =============================================================================
# STATE MACHINE
# =============================================================================

class InvalidTransition(OrderingError):
    status_code = 409
    code = "INVALID_TRANSITION"

    def __init__(self, from_status: str, to_status: str):
        from_status = getattr(from_status, "value", from_status)
        to_status = getattr(to_status, "value", to_status)
        super().__init__(
            f"Cannot move order from '{from_status}' to '{to_status}'",
            {"from": from_status, "to": to_status},
        )
        self.from_status = from_status
        self.to_status = to_status


# =============================================================================
# INTERNAL
# =============================================================================

class InvariantViolation(OrderingError):
    """A computed order broke a pricing invariant. Never shown as a success."""

    status_code = 500
    code = "INTERNAL_ERROR"


class StoreUnavailableError(OrderingError):
    status_code = 503
    code = "SERVICE_UNAVAILABLE"


def format_validation_errors(errors: list[dict[str, Any]]) -> list[dict[str, Any]]:
    """
    Flatten pydantic error dicts into the per-field detail list.

    Args:
        errors: Output of `ValidationError.errors()`

    Returns:
        List of {"field": "items.1.quantity", "message": "..."} entries
    """
    details = []
    for error in errors:
        loc = [str(part) for part in error.get("loc", ()) if part != "body"]
        message = error.get("msg", "Invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        details.append({"field": ".".join(loc) or "__root__", "message": message})
    return details
