"""Test doubles for notification delivery providers"""

from typing import List, Optional

from mfi_gateway.domain.models import DeliveryResult


class RecordingSMSProvider:
    """SMS provider that keeps every message and can be told to fail"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[dict] = []

    async def send_sms(self, to: str, message: str, reference: Optional[str] = None) -> DeliveryResult:
        self.sent.append({"to": to, "message": message, "reference": reference})
        if self.fail:
            return DeliveryResult(success=False, error="sms provider unavailable")
        return DeliveryResult(success=True, message_id=f"sms_{len(self.sent)}")


class RecordingEmailProvider:
    """Email provider that keeps every message and can be told to fail"""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.sent: List[dict] = []

    async def send_email(
        self, to: str, subject: str, body: str, reference: Optional[str] = None
    ) -> DeliveryResult:
        self.sent.append({"to": to, "subject": subject, "body": body, "reference": reference})
        if self.fail:
            return DeliveryResult(success=False, error="email provider unavailable")
        return DeliveryResult(success=True, message_id=f"email_{len(self.sent)}")
