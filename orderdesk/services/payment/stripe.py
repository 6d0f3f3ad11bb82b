"""
Stripe Payment Adapter

Used when ENV_MODE=staging or ENV_MODE=production.

Requirements:
    - STRIPE_SECRET_KEY must be set
    - STRIPE_WEBHOOK_SECRET for webhook verification

Author: OrderDesk Team
Version: 1.0.0
"""

import json
import logging
from datetime import datetime
from typing import Optional

import stripe

from orderdesk.core.config import get_settings
from orderdesk.services.payment.base import (
    BasePaymentService,
    PaymentResult,
    RefundResult,
)

logger = logging.getLogger(__name__)


def _to_cents(amount: float) -> int:
    return int(round(amount * 100))


def _from_cents(cents: int) -> float:
    return cents / 100.0


def _elapsed_ms(start: datetime) -> float:
    return (datetime.now() - start).total_seconds() * 1000


class StripePaymentService(BasePaymentService):
    """
    Stripe implementation of the payment adapter.

    Raises:
        ValueError: If STRIPE_SECRET_KEY is not configured
    """

    def __init__(self):
        settings = get_settings()

        if not settings.stripe_secret_key:
            raise ValueError(
                "STRIPE_SECRET_KEY is required outside development mode. "
                "Set it in your .env file or environment variables."
            )

        stripe.api_key = settings.stripe_secret_key
        self._webhook_secret = settings.stripe_webhook_secret
        self._currency = settings.stripe_currency

        logger.info("StripePaymentService initialized")

    @property
    def provider_name(self) -> str:
        return "stripe"

    def _failure(self, error: stripe.StripeError, start: datetime) -> PaymentResult:
        if isinstance(error, stripe.CardError):
            logger.warning(f"Stripe: Card declined - {error.code}: {error.user_message}")
            return PaymentResult(
                success=False,
                error_message=error.user_message,
                error_code=error.code,
                response_time_ms=_elapsed_ms(start),
            )
        if isinstance(error, stripe.AuthenticationError):
            logger.critical(f"Stripe: Authentication failed - {error}")
            return PaymentResult(
                success=False,
                error_message="Payment service configuration error",
                error_code="authentication_error",
            )
        if isinstance(error, stripe.APIConnectionError):
            logger.error(f"Stripe: Connection error - {error}")
            return PaymentResult(
                success=False,
                error_message="Payment service temporarily unavailable",
                error_code="connection_error",
                response_time_ms=_elapsed_ms(start),
            )

        logger.error(f"Stripe: Error - {error}")
        return PaymentResult(
            success=False,
            error_message="Payment processing error",
            error_code="stripe_error",
            response_time_ms=_elapsed_ms(start),
        )

    async def create_payment_intent(
        self,
        amount: float,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        start = datetime.now()
        try:
            intent = await stripe.PaymentIntent.create_async(
                amount=_to_cents(amount),
                currency=currency or self._currency,
                metadata=metadata or {},
                automatic_payment_methods={"enabled": True},
            )
        except stripe.StripeError as e:
            return self._failure(e, start)

        logger.info(f"Stripe: PaymentIntent created - {intent.id}")
        return PaymentResult(
            success=True,
            payment_intent_id=intent.id,
            amount=_from_cents(intent.amount),
            currency=intent.currency,
            client_secret=intent.client_secret,
            response_time_ms=_elapsed_ms(start),
            metadata={"status": intent.status},
        )

    async def process_payment(
        self,
        amount: float,
        currency: Optional[str] = None,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        start = datetime.now()
        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        try:
            intent = await stripe.PaymentIntent.create_async(
                amount=_to_cents(amount),
                currency=currency or self._currency,
                description=description or "OrderDesk subscription",
                receipt_email=customer_email,
                metadata=metadata or {},
            )
        except stripe.StripeError as e:
            return self._failure(e, start)

        logger.info(f"Stripe: Charge created - {intent.id} - status={intent.status}")
        return PaymentResult(
            success=True,
            payment_intent_id=intent.id,
            amount=_from_cents(intent.amount),
            currency=intent.currency,
            client_secret=intent.client_secret,
            response_time_ms=_elapsed_ms(start),
            metadata={"status": intent.status},
        )

    async def refund_payment(
        self,
        payment_intent_id: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        params = {"payment_intent": payment_intent_id}
        if amount is not None:
            params["amount"] = _to_cents(amount)
        if reason:
            params["reason"] = reason

        try:
            refund = await stripe.Refund.create_async(**params)
        except stripe.StripeError as e:
            logger.error(f"Stripe: Refund failed - {e}")
            return RefundResult(success=False, error_message=str(e))

        logger.info(f"Stripe: Refund processed - {refund.id} - status={refund.status}")
        return RefundResult(
            success=True,
            refund_id=refund.id,
            amount=_from_cents(refund.amount),
            status=refund.status,
        )

    async def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[dict]:
        if not self._webhook_secret:
            logger.error("Stripe: STRIPE_WEBHOOK_SECRET not configured, rejecting webhook")
            return None
        if not signature:
            logger.warning("Stripe: Webhook without signature header")
            return None

        try:
            event = stripe.Webhook.construct_event(payload, signature, self._webhook_secret)
        except stripe.SignatureVerificationError as e:
            logger.warning(f"Stripe: Webhook signature invalid - {e}")
            return None
        except ValueError as e:
            logger.warning(f"Stripe: Webhook payload invalid - {e}")
            return None

        logger.debug(f"Stripe: Webhook verified - {event.type}")
        return json.loads(payload)

    async def health_check(self) -> bool:
        try:
            await stripe.Account.retrieve_async()
            return True
        except stripe.StripeError as e:
            logger.error(f"Stripe: Health check failed - {e}")
            return False
