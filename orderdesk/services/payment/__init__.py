"""
Payment Adapter Factory

Usage:
    from orderdesk.services.payment import get_payment_service

    payment_service = get_payment_service()
    result = await payment_service.create_payment_intent(42.90)

Environment Switching:
    - ENV_MODE=development → MockPaymentService (no API calls)
    - ENV_MODE=staging / production → StripePaymentService
"""

import logging
from functools import lru_cache

from orderdesk.core.config import get_settings
from orderdesk.services.payment.base import (
    BasePaymentService,
    PaymentResult,
    RefundResult,
)
from orderdesk.services.payment.mock import MockPaymentService
from orderdesk.services.payment.stripe import StripePaymentService

logger = logging.getLogger(__name__)


@lru_cache()
def get_payment_service() -> BasePaymentService:
    """Return the cached payment adapter for the configured ENV_MODE."""
    settings = get_settings()

    if settings.is_development:
        logger.info("Payment Service: Using MockPaymentService (development mode)")
        return MockPaymentService(
            failure_rate=0.0,
            min_latency=0.05,
            max_latency=0.2,
            currency=settings.stripe_currency,
        )

    logger.info(f"Payment Service: Using StripePaymentService ({settings.env_mode.value} mode)")
    return StripePaymentService()


def reset_payment_service() -> None:
    """Clear the cached adapter; the next call builds a new one."""
    get_payment_service.cache_clear()
    logger.debug("Payment service cache cleared")


__all__ = [
    "get_payment_service",
    "reset_payment_service",
    "BasePaymentService",
    "PaymentResult",
    "RefundResult",
    "MockPaymentService",
    "StripePaymentService",
]
