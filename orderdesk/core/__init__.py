"""
Core module initialization.
Exports configuration, logging and error utilities.
"""

from orderdesk.core.config import get_settings, Settings, EnvironmentMode, setup_logging
from orderdesk.core.exceptions import (
    AppException,
    ConflictError,
    ForbiddenError,
    NotFoundError,
    PaymentError,
    SubscriptionLimitError,
    UnauthorizedError,
    ValidationError,
)

__all__ = [
    "get_settings",
    "Settings",
    "EnvironmentMode",
    "setup_logging",
    "AppException",
    "ConflictError",
    "ForbiddenError",
    "NotFoundError",
    "PaymentError",
    "SubscriptionLimitError",
    "UnauthorizedError",
    "ValidationError",
]
