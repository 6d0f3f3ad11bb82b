"""
Payment Adapter Interface

Every payment provider used by OrderDesk (the mock used in development and
Stripe in staging/production) implements this contract. Checkout uses
``create_payment_intent`` for online orders, billing uses ``process_payment``
for plan charges, cancellations use ``refund_payment`` and the public webhook
route uses ``verify_webhook``.

Author: OrderDesk Team
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class PaymentResult:
    """
    Outcome of a charge or payment intent.

    Attributes:
        success: Whether the provider accepted the request
        payment_intent_id: Provider identifier of the intent (pi_...)
        amount: Amount in major currency units
        currency: ISO currency code
        client_secret: Secret the storefront uses to confirm the intent
        error_message: Human readable failure description
        error_code: Machine readable failure code
        response_time_ms: Provider round-trip time
        metadata: Extra data attached to the intent
    """
    success: bool
    payment_intent_id: Optional[str] = None
    amount: Optional[float] = None
    currency: str = "brl"
    client_secret: Optional[str] = None
    error_message: Optional[str] = None
    error_code: Optional[str] = None
    response_time_ms: float = 0.0
    metadata: Optional[dict] = None

    def to_dict(self) -> dict:
        """Convert to dictionary for JSON serialization."""
        return {
            "success": self.success,
            "payment_intent_id": self.payment_intent_id,
            "amount": self.amount,
            "currency": self.currency,
            "client_secret": self.client_secret,
            "error_message": self.error_message,
            "error_code": self.error_code,
            "response_time_ms": self.response_time_ms,
        }


@dataclass
class RefundResult:
    """Outcome of a refund request."""
    success: bool
    refund_id: Optional[str] = None
    amount: Optional[float] = None
    status: str = "pending"
    error_message: Optional[str] = None


class BasePaymentService(ABC):
    """Abstract base class for payment adapters."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Short provider name ("mock", "stripe")."""

    @abstractmethod
    async def create_payment_intent(
        self,
        amount: float,
        currency: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """
        Create a payment intent the customer confirms client-side.

        Args:
            amount: Order total in major units (e.g. 42.90)
            currency: Currency code, defaults to the configured one
            metadata: order_id / company_id for webhook matching
        """

    @abstractmethod
    async def process_payment(
        self,
        amount: float,
        currency: Optional[str] = None,
        customer_email: Optional[str] = None,
        description: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> PaymentResult:
        """Charge an amount immediately (subscription plans)."""

    @abstractmethod
    async def refund_payment(
        self,
        payment_intent_id: str,
        amount: Optional[float] = None,
        reason: Optional[str] = None,
    ) -> RefundResult:
        """Refund a previous payment; ``amount=None`` refunds in full."""

    @abstractmethod
    async def verify_webhook(self, payload: bytes, signature: Optional[str]) -> Optional[dict]:
        """
        Verify and parse a provider webhook.

        Returns:
            The event dict when valid, None otherwise
        """

    @abstractmethod
    async def health_check(self) -> bool:
        """True when the provider is reachable."""
