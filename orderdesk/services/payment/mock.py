"""
Mock Payment Adapter

Simulates a Stripe-like provider without network calls. Used when
ENV_MODE=development and in the test-suite (with failure_rate=0 and no
latency).

Behavior:
    - Configurable simulated latency
    - Random declines at ``failure_rate``
    - Stripe-like identifiers (pi_mock_..., re_mock_...)
    - Webhooks are accepted unsigned

Author: OrderDesk Team
Version: 1.0.0
"""

import asyncio
import json
import logging
import random
import uuid
from typing import Optional

from orderdesk.services.payment.base import (
    BasePaymentService,
    PaymentResult,
    RefundResult,
)

logger = logging.getLogger(__name__)


class MockPaymentService(BasePaymentService):
    """
    In-memory payment adapter.

    Attributes:
        failure_rate: Probability of a simulated decline (0.0-1.0)
        min_latency: Minimum simulated response time in seconds
        max_latency: Maximum simulated response time in seconds
    """

    DECLINE_REASONS = [
        ("card_declined", "Your card was declined."),
        ("insufficient_funds", "Your card has insufficient funds."),
        ("expired_card", "Your card has expired."),
        ("processing_error", "An error occurred while processing your card."),
    ]

    def __init__(
        self,
        failure_rate: float = 0.10,
        min_latency: float = 0.2,
        max_latency: float = 0.8,
        currency: str = "brl",
    ):
        self.failure_rate = failure_rate
        self.min_latency = min_latency
        self.max_latency = max_latency
        self.currency = currency
        # Intents created by this adapter, consulted by refunds
        self.intents: dict[str, float] = {}

        logger.info(
            f"MockPaymentService initialized "
            f"(failure_rate={failure_rate:.0%}, "
            f"latency={min_latency}-{max_latency}s)"
        )

    @property
    def provider_name(self) -> str:
        return "mock"

    async def _simulate_latency(self) -> float:
        if self.max_latency <= 0:
            return 0.0
        latency = random.uniform(self.min_latency, self.max_latency)
        await asyncio.sleep(latency)
        return latency * 1000

    def _should_fail(self) -> bool:
        return random.random() < self.failure_rate

    def _declined(self, amount: float, latency_ms: float) -> PaymentResult:
        error_code, error_message = random.choice(self.DECLINE_REASONS)
        logger.debug(f"Mock: Payment declined - {error_code}")
        return PaymentResult(
            success=False,
            amount=amount,
            currency=self.currency,
            error_message=error_message,
            error_code=error_code,
            response_time_ms=latency_ms,
        )

    def _new_intent(self, amount: float) -> str:
        intent_id = f"pi_mock_{uuid.uuid4().hex[:24]}"
        self.intents[intent_id] = amount
        return intent_id

    async def create_payment_intent(
        self,
        amount: float,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        latency_ms = await self._simulate_latency()
        if self._should_fail():
            return self._declined(amount, latency_ms)

        intent_id = self._new_intent(amount)
        logger.info(f"Mock: Created payment intent {intent_id} - R$ {amount:.2f}")

        return PaymentResult(
            success=True,
            payment_intent_id=intent_id,
            amount=amount,
            currency=currency or self.currency,
            client_secret=f"{intent_id}_secret_mock",
            response_time_ms=latency_ms,
            metadata=metadata or {},
        )

    async def process_payment(
        self,
        amount: float,
        currency: Optional[str] = None,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        if amount <= 0:
            return PaymentResult(
                success=False,
                error_message="Amount must be greater than 0",
                error_code="invalid_amount",
            )

        latency_ms = await self._simulate_latency()
        if self._should_fail():
            return self._declined(amount, latency_ms)

        intent_id = self._new_intent(amount)
        logger.info(f"Mock: Charge successful - {intent_id} - {description or ''}")

        return PaymentResult(
            success=True,
            payment_intent_id=intent_id,
            amount=amount,
            currency=currency or self.currency,
            response_time_ms=latency_ms,
            metadata={"customer_email": customer_email, "mock": True, **(metadata or {})},
        )

    async def refund_payment(
        self,
        payment_intent_id: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        await self._simulate_latency()

        if not payment_intent_id.startswith("pi_"):
            return RefundResult(success=False, error_message="Invalid payment intent ID")

        refund_id = f"re_mock_{uuid.uuid4().hex[:24]}"
        logger.info(f"Mock: Refund processed - {refund_id} for {payment_intent_id}")

        return RefundResult(
            success=True,
            refund_id=refund_id,
            amount=amount if amount is not None else self.intents.get(payment_intent_id),
            status="succeeded",
        )

    async def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[dict]:
        try:
            return json.loads(payload)
        except json.JSONDecodeError:
            logger.warning("Mock: Invalid webhook payload")
            return None

    async def health_check(self) -> bool:
        return True
