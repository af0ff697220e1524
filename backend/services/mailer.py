# services/mailer.py
# ============================================================================
# STONE MODEL STOREFRONT: EMAIL SENDERS
# ============================================================================
# Transactional email capability. The logging sender is the MVP default:
# the download link lands in the structured log instead of an inbox.
# ============================================================================

import asyncio
from abc import ABC, abstractmethod
from typing import Optional

import structlog
from sendgrid import SendGridAPIClient
from sendgrid.helpers.mail import Mail


class IEmailSender(ABC):
    """Email capability"""

    @abstractmethod
    async def send_email(self, to: str, subject: str, body: str) -> Optional[str]:
        """Send a plain-text email. Returns a provider message id when known."""
        pass


class LoggingEmailSender(IEmailSender):
    """Writes outgoing mail to the log (development / MVP)"""

    def __init__(self):
        self._logger = structlog.get_logger().bind(component="email", backend="log")

    async def send_email(self, to: str, subject: str, body: str) -> Optional[str]:
        self._logger.info("email_logged", to=to, subject=subject, body=body)
        return None


class SendGridEmailSender(IEmailSender):
    """SendGrid v3 mail send"""

    def __init__(self, api_key: str, from_email: str, client: Optional[SendGridAPIClient] = None):
        self._client = client or SendGridAPIClient(api_key)
        self._from_email = from_email
        self._logger = structlog.get_logger().bind(component="email", backend="sendgrid")

    def _send(self, to: str, subject: str, body: str) -> Optional[str]:
        message = Mail(
            from_email=self._from_email,
            to_emails=to,
            subject=subject,
            plain_text_content=body,
        )
        response = self._client.send(message)
        return response.headers.get("X-Message-Id")

    async def send_email(self, to: str, subject: str, body: str) -> Optional[str]:
        message_id = await asyncio.to_thread(self._send, to, subject, body)
        self._logger.info("email_sent", to=to, subject=subject, message_id=message_id)
        return message_id
