"""
Email delivery channels.

Senders never raise for delivery problems; they return
``(success, error_message)`` so a caller can count the failure and move on.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from ..core.config import Settings, get_settings


logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
SERVICE_UNAVAILABLE = "Email service unavailable: RESEND_API_KEY is not configured"


class EmailDeliveryError(Exception):
    """Raised when the email provider rejects a message."""


class EmailSender(ABC):
    """Abstract base for email delivery."""

    @abstractmethod
    async def send(
        self,
        to: str,
        subject: str,
        html: str,
    ) -> tuple[bool, str | None]:
        """
        Send one email.

        Returns:
            (success, error_message)
        """
        pass


class ResendEmailSender(EmailSender):
    """Delivers email through the Resend REST API."""

    def __init__(
        self,
        api_key: str | None,
        from_address: str,
        timeout: float = 30.0,
        client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._from_address = from_address
        self._timeout = timeout
        self._client = client

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ResendEmailSender":
        settings = settings or get_settings()
        return cls(
            api_key=settings.resend_api_key,
            from_address=settings.resend_from,
            timeout=settings.http_timeout_seconds,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self._api_key)

    async def send(
        self,
        to: str,
        subject: str,
        html: str,
    ) -> tuple[bool, str | None]:
        if not self.is_configured:
            logger.warning(f"Skipping email to {to}: {SERVICE_UNAVAILABLE}")
            return False, SERVICE_UNAVAILABLE

        try:
            message_id = await self._post(to, subject, html)
        except (httpx.HTTPError, EmailDeliveryError, ValueError) as e:
            error_msg = f"Failed to send email: {str(e)}"
            logger.error(f"{error_msg} (to={to})")
            return False, error_msg

        logger.info(f"[EMAIL] To: {to}, Subject: {subject}, Id: {message_id}")
        return True, None

    async def _post(self, to: str, subject: str, html: str) -> str | None:
        payload = {
            "from": self._from_address,
            "to": [to],
            "subject": subject,
            "html": html,
        }
        headers = {"Authorization": f"Bearer {self._api_key}"}

        if self._client is not None:
            response = await self._client.post(
                RESEND_API_URL, json=payload, headers=headers, timeout=self._timeout
            )
        else:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(RESEND_API_URL, json=payload, headers=headers)

        if response.status_code >= 300:
            raise EmailDeliveryError(f"Resend API error: {response.status_code} - {response.text[:200]}")

        data = response.json()
        return data.get("id") if isinstance(data, dict) else None
