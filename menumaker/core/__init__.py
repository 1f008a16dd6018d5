"""
Core module initialization.
Exports configuration, logging utilities and the error taxonomy.
"""

from menumaker.core.config import get_settings, Settings, EnvironmentMode, setup_logging
from menumaker.core.exceptions import OrderingError

__all__ = ["get_settings", "Settings", "EnvironmentMode", "setup_logging", "OrderingError"]
