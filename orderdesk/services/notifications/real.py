"""
Real Notification Adapter

Production implementation using:
- Twilio for SMS
- SendGrid for Email

Author: OrderDesk Team
Version: 1.0.0
"""

import asyncio
import logging
from typing import Optional

from python_http_client.exceptions import HTTPError
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail
from twilio.base.exceptions import TwilioException
from twilio.rest import Client as TwilioClient

from orderdesk.core.config import get_settings
from orderdesk.services.notifications.base import (
    BaseNotificationService,
    NotificationResult,
)

logger = logging.getLogger(__name__)


class RealNotificationService(BaseNotificationService):
    """Production notification adapter using Twilio and SendGrid."""

    def __init__(self):
        settings = get_settings()

        if settings.twilio_account_sid and settings.twilio_auth_token:
            self.twilio_client = TwilioClient(settings.twilio_account_sid, settings.twilio_auth_token)
            self.twilio_from_number = settings.twilio_phone_number
        else:
            self.twilio_client = None
            logger.warning("Twilio credentials not configured")

        if settings.sendgrid_api_key:
            self.sendgrid_client = SendGridAPIClient(settings.sendgrid_api_key)
            self.sendgrid_from_email = settings.sendgrid_from_email
        else:
            self.sendgrid_client = None
            logger.warning("SendGrid credentials not configured")

        logger.info("RealNotificationService initialized")

    @property
    def provider_name(self) -> str:
        return "real"

    async def send_sms(self, to_phone: str, message: str) -> NotificationResult:
        """Send SMS via Twilio."""
        if not self.twilio_client:
            return NotificationResult(success=False, error_message="Twilio not configured", provider="twilio")

        if not to_phone.startswith("+"):
            to_phone = f"+{get_settings().default_phone_country_code}{''.join(c for c in to_phone if c.isdigit())}"

        try:
            result = await asyncio.to_thread(
                self.twilio_client.messages.create,
                body=message,
                from_=self.twilio_from_number,
                to=to_phone,
            )
        except TwilioException as e:
            logger.error(f"Twilio error: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="twilio")

        logger.info(f"SMS sent to {to_phone}: {result.sid}")
        return NotificationResult(success=True, message_id=result.sid, provider="twilio")

    async def send_email(
        self,
        to_email: str,
        subject: str,
        body_html: str,
        body_text: Optional[str] = None,
    ) -> NotificationResult:
        """Send email via SendGrid."""
        if not self.sendgrid_client:
            return NotificationResult(success=False, error_message="SendGrid not configured", provider="sendgrid")

        message = Mail(
            from_email=self.sendgrid_from_email,
            to_emails=to_email,
            subject=subject,
            html_content=body_html,
            plain_text_content=body_text,
        )

        try:
            response = await asyncio.to_thread(self.sendgrid_client.send, message)
        except HTTPError as e:
            logger.error(f"SendGrid error: {e}")
            return NotificationResult(success=False, error_message=str(e), provider="sendgrid")

        logger.info(f"Email sent to {to_email}: {response.status_code}")
        return NotificationResult(
            success=response.status_code in (200, 201, 202),
            message_id=response.headers.get("X-Message-Id"),
            provider="sendgrid",
        )

    async def health_check(self) -> bool:
        return self.twilio_client is not None or self.sendgrid_client is not None
