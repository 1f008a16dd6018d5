"""
Delivery Fee Calculator

Computes the delivery fee of an order from the business's delivery
settings. Pure: no I/O, no clock, no shared state.

Models:
    - free: always 0
    - flat: configured flat fee
    - distance: base fee + per-km fee * distance, rounded to a whole cent

Both charging models waive the fee once the order subtotal reaches the
configured free-delivery threshold.
"""

import logging
import math
from decimal import Decimal, InvalidOperation, ROUND_CEILING, ROUND_FLOOR, ROUND_HALF_UP
from typing import Optional

from menumaker.core.exceptions import InvalidDeliveryInput
from menumaker.domain import DeliveryModel, DeliverySettings, RoundingPolicy

logger = logging.getLogger(__name__)

# Longest delivery run any business is priced for
MAX_DISTANCE_KM = 1000.0

_ROUNDING_MODES = {
    RoundingPolicy.ROUND: ROUND_HALF_UP,
    RoundingPolicy.CEIL: ROUND_CEILING,
    RoundingPolicy.FLOOR: ROUND_FLOOR,
}


def _qualifies_for_free_delivery(settings: DeliverySettings, order_subtotal_cents: int) -> bool:
    threshold = settings.min_order_free_delivery_cents
    return threshold is not None and order_subtotal_cents >= threshold


def _distance_fee(settings: DeliverySettings, distance_km: float) -> int:
    # str() keeps the decimal the caller typed (2.3 stays 2.3, not 2.29999...)
    raw = Decimal(settings.base_fee_cents) + Decimal(settings.per_km_fee_cents) * Decimal(str(distance_km))
    try:
        rounded = raw.quantize(Decimal(1), rounding=_ROUNDING_MODES[settings.rounding])
    except InvalidOperation:
        raise InvalidDeliveryInput(
            "Delivery fee is out of range for this distance",
            {"field": "distance_km"},
        )
    return int(rounded)


def compute_fee(
    settings: DeliverySettings,
    order_subtotal_cents: int,
    distance_km: Optional[float] = None,
) -> int:
    """
    Compute the delivery fee for an order.

    Args:
        settings: Delivery settings of the business
        order_subtotal_cents: Sum of the order's line totals
        distance_km: Delivery distance, required by the distance model

    Returns:
        int: Fee in cents, never negative

    Raises:
        InvalidDeliveryInput: Distance model without a usable distance,
            or one beyond MAX_DISTANCE_KM
    """
    if settings.model == DeliveryModel.FREE:
        return 0

    if settings.model == DeliveryModel.FLAT:
        fee = settings.flat_fee_cents
    elif settings.model == DeliveryModel.DISTANCE:
        if distance_km is None:
            raise InvalidDeliveryInput(
                "Delivery distance is required for distance-based delivery",
                {"field": "distance_km"},
            )
        if distance_km < 0 or not math.isfinite(distance_km):
            raise InvalidDeliveryInput(
                "Delivery distance must be a non-negative number",
                {"field": "distance_km"},
            )
        if distance_km > MAX_DISTANCE_KM:
            raise InvalidDeliveryInput(
                f"Delivery distance exceeds {MAX_DISTANCE_KM:g} km",
                {"field": "distance_km", "max": MAX_DISTANCE_KM},
            )
        fee = _distance_fee(settings, distance_km)
    else:
        raise InvalidDeliveryInput(f"Unsupported delivery model: {settings.model}")

    if _qualifies_for_free_delivery(settings, order_subtotal_cents):
        logger.debug(
            f"Free delivery applied (subtotal {order_subtotal_cents} >= "
            f"{settings.min_order_free_delivery_cents})"
        )
        return 0

    return max(fee, 0)


class DeliveryFeeCalculator:
    """
    Object wrapper around `compute_fee` for callers that inject the
    calculator as a collaborator.

    Example:
        >>> calculator = DeliveryFeeCalculator()
        >>> calculator.compute_fee(DeliverySettings(flat_fee_cents=5000), 40000)
        5000
    """

    def compute_fee(
        self,
        settings: DeliverySettings,
        order_subtotal_cents: int,
        distance_km: Optional[float] = None,
    ) -> int:
        return compute_fee(settings, order_subtotal_cents, distance_km)
