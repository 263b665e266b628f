"""SMS delivery providers"""

import logging
import uuid
from typing import Optional, Protocol
import httpx

from mfi_gateway.config import Settings
from mfi_gateway.domain.exceptions import DeliveryError
from mfi_gateway.domain.models import DeliveryResult


class SMSProvider(Protocol):
    async def send_sms(self, to: str, message: str, reference: Optional[str] = None) -> DeliveryResult:
        ...


class _HttpProvider:
    def __init__(self, timeout: float, http_client: Optional[httpx.AsyncClient] = None):
        self.timeout = timeout
        self.http_client = http_client

    async def _post(self, url: str, **kwargs) -> httpx.Response:
        if self.http_client is not None:
            return await self.http_client.post(url, timeout=self.timeout, **kwargs)
        async with httpx.AsyncClient(timeout=self.timeout) as client:
            return await client.post(url, **kwargs)


class AfricasTalkingSMSProvider(_HttpProvider):
    """Africa's Talking bulk messaging API"""

    url = "https://api.africastalking.com/version1/messaging"

    def __init__(self, api_key: str, username: str, sender_id: str, timeout: float, http_client=None):
        super().__init__(timeout, http_client)
        if not api_key or not username:
            raise DeliveryError("sms", "Africa's Talking API credentials not configured")
        self.api_key = api_key
        self.username = username
        self.sender_id = sender_id

    async def send_sms(self, to: str, message: str, reference: Optional[str] = None) -> DeliveryResult:
        try:
            response = await self._post(
                self.url,
                headers={"ApiKey": self.api_key, "Accept": "application/json"},
                data={"username": self.username, "to": to, "message": message, "from": self.sender_id},
            )
            data = response.json()
        except httpx.HTTPError as e:
            return DeliveryResult(success=False, error=f"Network error: {e}")
        except ValueError:
            return DeliveryResult(success=False, error=f"Invalid response from Africa's Talking ({response.status_code})")

        recipients = (data.get("SMSMessageData") or {}).get("Recipients") or []
        if not recipients:
            return DeliveryResult(success=False, error="Invalid response from Africa's Talking")

        recipient = recipients[0]
        if recipient.get("status") == "Success":
            return DeliveryResult(success=True, message_id=recipient.get("messageId"))
        return DeliveryResult(success=False, message_id=recipient.get("messageId"), error=recipient.get("status"))


class TwilioSMSProvider(_HttpProvider):
    """Twilio programmable messaging API"""

    def __init__(self, account_sid: str, auth_token: str, sender: str, timeout: float, http_client=None):
        super().__init__(timeout, http_client)
        if not account_sid or not auth_token:
            raise DeliveryError("sms", "Twilio API credentials not configured")
        self.account_sid = account_sid
        self.auth_token = auth_token
        self.sender = sender

    async def send_sms(self, to: str, message: str, reference: Optional[str] = None) -> DeliveryResult:
        try:
            response = await self._post(
                f"https://api.twilio.com/2010-04-01/Accounts/{self.account_sid}/Messages.json",
                auth=(self.account_sid, self.auth_token),
                data={"To": to, "From": self.sender, "Body": message},
            )
            data = response.json()
        except httpx.HTTPError as e:
            return DeliveryResult(success=False, error=f"Network error: {e}")
        except ValueError:
            return DeliveryResult(success=False, error=f"Invalid response from Twilio ({response.status_code})")

        if response.is_success and not data.get("error_code"):
            return DeliveryResult(success=True, message_id=data.get("sid"))
        return DeliveryResult(success=False, error=data.get("error_message") or f"HTTP {response.status_code}")


class LocalSMSProvider:
    """Logs messages instead of sending them (development and testing)"""

    async def send_sms(self, to: str, message: str, reference: Optional[str] = None) -> DeliveryResult:
        logging.info("Local SMS", extra={"to": to, "sms_body": message, "reference": reference})
        return DeliveryResult(success=True, message_id=f"local_sms_{uuid.uuid4().hex}")


def build_sms_provider(settings: Settings) -> SMSProvider:
    provider = settings.sms_provider
    if provider == "africas_talking":
        return AfricasTalkingSMSProvider(
            settings.sms_api_key, settings.sms_username, settings.sms_sender_id, settings.http_timeout_seconds
        )
    if provider == "twilio":
        return TwilioSMSProvider(
            settings.sms_username, settings.sms_api_key, settings.sms_sender_id, settings.http_timeout_seconds
        )
    if provider == "local":
        return LocalSMSProvider()
    raise ValueError(f"Invalid SMS provider configuration: {provider!r}")
