"""
                MenuMaker Orders

Order creation & pricing engine for the MenuMaker restaurant
ordering platform: delivery fees, coupons, subscription quotas
and the order status lifecycle.

Version: 1.0.0
License: MIT
"""

__version__ = "1.0.0"
