"""
Subscription Quota Guard

Decides whether a business may create one more order in the current
billing period.

Tiers:
    - free: FREE_TIER_ORDER_LIMIT orders (default 20)
    - starter: STARTER_TIER_ORDER_LIMIT orders (default 100)
    - pro: unlimited

The decision is advisory: the order pipeline turns a denial into a hard
OrderLimitReached, and the store enforces the same limit again at commit.
When usage cannot be read the guard fails open (configurable) so a quota
outage does not halt order intake.
"""

import logging
from typing import Optional

from menumaker.core.config import get_settings
from menumaker.domain import QuotaDecision, SubscriptionTier, SubscriptionUsage

logger = logging.getLogger(__name__)


def default_usage(business_id: str, order_count: int = 0) -> SubscriptionUsage:
    """Usage of a business that has no subscription record yet (free tier)."""
    settings = get_settings()
    return SubscriptionUsage(
        business_id=business_id,
        order_count=order_count,
        tier=SubscriptionTier.FREE,
        order_limit=settings.tier_order_limit(SubscriptionTier.FREE),
    )


class SubscriptionQuotaGuard:
    """
    Allow/deny decisions for order creation.

    Attributes:
        fail_open: Allow the order when usage could not be read

    Example:
        >>> guard = SubscriptionQuotaGuard()
        >>> decision = guard.check_quota("biz-1", usage)
        >>> decision.allowed
        True
    """

    def __init__(self, fail_open: Optional[bool] = None):
        if fail_open is None:
            fail_open = get_settings().quota_fail_open
        self.fail_open = fail_open

    def check_quota(self, business_id: str, usage: Optional[SubscriptionUsage]) -> QuotaDecision:
        """
        Evaluate the quota of a business.

        Args:
            business_id: Business creating the order
            usage: Current usage, None if it could not be read

        Returns:
            QuotaDecision: allowed, current count, limit, unlimited flag
        """
        if usage is None:
            logger.warning(
                f"Subscription usage unavailable for business {business_id}; "
                f"failing {'open' if self.fail_open else 'closed'}"
            )
            return QuotaDecision(
                allowed=self.fail_open,
                current=0,
                limit=None,
                is_unlimited=False,
            )

        if usage.is_unlimited:
            return QuotaDecision(
                allowed=True,
                current=usage.order_count,
                limit=None,
                is_unlimited=True,
            )

        return QuotaDecision(
            allowed=usage.order_count < usage.order_limit,
            current=usage.order_count,
            limit=usage.order_limit,
            is_unlimited=False,
        )
