"""Email delivery providers"""

import logging
import uuid
from typing import Optional, Protocol
import httpx

from mfi_gateway.config import Settings
from mfi_gateway.domain.exceptions import DeliveryError
from mfi_gateway.domain.models import DeliveryResult


class EmailProvider(Protocol):
    async def send_email(
        self, to: str, subject: str, body: str, reference: Optional[str] = None
    ) -> DeliveryResult:
        ...


class SendGridEmailProvider:
    """SendGrid v3 mail send API"""

    url = "https://api.sendgrid.com/v3/mail/send"

    def __init__(self, api_key: str, sender: str, timeout: float, http_client: Optional[httpx.AsyncClient] = None):
        if not api_key:
            raise DeliveryError("email", "SendGrid API key not configured")
        self.api_key = api_key
        self.sender = sender
        self.timeout = timeout
        self.http_client = http_client

    async def send_email(self, to: str, subject: str, body: str, reference: Optional[str] = None) -> DeliveryResult:
        payload = {
            "personalizations": [{"to": [{"email": to}], "subject": subject}],
            "from": {"email": self.sender},
            "content": [{"type": "text/plain", "value": body}],
        }
        if reference:
            payload["custom_args"] = {"reference": reference}
        headers = {"Authorization": f"Bearer {self.api_key}"}

        try:
            if self.http_client is not None:
                response = await self.http_client.post(self.url, json=payload, headers=headers, timeout=self.timeout)
            else:
                async with httpx.AsyncClient(timeout=self.timeout) as client:
                    response = await client.post(self.url, json=payload, headers=headers)
        except httpx.HTTPError as e:
            return DeliveryResult(success=False, error=f"Network error: {e}")

        if response.is_success:
            return DeliveryResult(success=True, message_id=response.headers.get("X-Message-Id"))
        return DeliveryResult(success=False, error=f"HTTP {response.status_code}")


class LocalEmailProvider:
    """Logs emails instead of sending them (development and testing)"""

    async def send_email(self, to: str, subject: str, body: str, reference: Optional[str] = None) -> DeliveryResult:
        logging.info("Local email", extra={"to": to, "subject": subject, "reference": reference})
        return DeliveryResult(success=True, message_id=f"local_email_{uuid.uuid4().hex}")


def build_email_provider(settings: Settings) -> EmailProvider:
    provider = settings.email_provider
    if provider == "sendgrid":
        return SendGridEmailProvider(settings.email_api_key, settings.email_from, settings.http_timeout_seconds)
    if provider == "local":
        return LocalEmailProvider()
    raise ValueError(f"Invalid email provider configuration: {provider!r}")
