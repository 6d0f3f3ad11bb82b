"""
Notification Adapter Interface

SMS and email delivery for customer status updates and driver assignments.
Failures are returned as results and never raised, so an unreachable
provider cannot break an order transition.

Author: OrderDesk Team
Version: 1.0.0
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional


@dataclass
class NotificationResult:
    """Result from sending a notification."""
    success: bool
    message_id: Optional[str] = None
    error_message: Optional[str] = None
    provider: str = "unknown"


class BaseNotificationService(ABC):
    """Abstract base class for notification adapters."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Return the provider name."""

    @abstractmethod
    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        """Send an SMS message."""

    @abstractmethod
    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send an email."""

    async def send_order_status(
        self,
        company_name: str,
        order_ref: str,
        customer_phone: Optional[str],
        customer_email: Optional[str],
        status_message: str,
    ) -> NotificationResult:
        """
        Tell the customer about a status change.

        SMS is preferred; email is used when there is no phone or the SMS fails.
        """
        text = f"{company_name} - pedido #{order_ref}: {status_message}"

        result = NotificationResult(success=False, error_message="No contact", provider=self.provider_name)
        if customer_phone:
            result = await self.send_sms(customer_phone, text)
        if not result.success and customer_email:
            result = await self.send_email(
                to_email=customer_email,
                subject=f"{company_name} - pedido #{order_ref}",
                body_html=f"<p>{status_message}</p>",
                body_text=text,
            )
        return result

    async def send_driver_assignment(
        self,
        driver_phone: Optional[str],
        company_name: str,
        order_ref: str,
        queued: bool,
    ) -> NotificationResult:
        """Tell a driver a delivery was assigned (or queued) to them."""
        if not driver_phone:
            return NotificationResult(success=False, error_message="Driver has no phone", provider=self.provider_name)

        if queued:
            text = f"{company_name}: pedido #{order_ref} adicionado a sua fila de entregas."
        else:
            text = f"{company_name}: nova entrega atribuida - pedido #{order_ref}."
        return await self.send_sms(driver_phone, text)

    @abstractmethod
    async def health_check(self) -> bool:
        """Check service connectivity."""
