# src/common/__init__.py
"""
Общее для всех слоёв: логгер, часы, таксономия ошибок, тексты.
"""

from src.common.clock import add_months, utc_now
from src.common.constants import ErrorCode, TypeMsg
from src.common.exceptions import MarketplaceError
from src.common.localization import get_text
from src.common.logger import log_debug, log_error, log_info, log_warning

__all__ = [
    "add_months",
    "utc_now",
    "ErrorCode",
    "TypeMsg",
    "MarketplaceError",
    "get_text",
    "log_debug",
    "log_error",
    "log_info",
    "log_warning",
]
