"""Notification composition - decides who to contact, how, and with what message"""

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import FrozenSet, Iterable, List, Optional

from mfi_gateway.domain.models import (
    Channel,
    ClientContact,
    Installment,
    NotificationEvent,
    NotificationKind,
)
from mfi_gateway.utils.date_utils import days_between, format_due_date

FRIENDLY = "friendly"
ENCOURAGING = "encouraging"
FIRM = "firm"
URGENT = "urgent"

_REMINDER_TEMPLATES = {
    FRIENDLY: {
        "low": "Hi {name}! Just a friendly reminder that your payment of {amount} is due on {due_date}. "
        "Thank you for your consistent payments!",
        "medium": "Hello {name}, your payment of {amount} is due in {days} ({due_date}). "
        "We appreciate your timely payments!",
        "high": "Hi {name}, your payment of {amount} is due today ({due_date}). "
        "Please ensure payment to maintain your excellent record.",
    },
    ENCOURAGING: {
        "low": "Hi {name}! Your payment of {amount} is due on {due_date}. "
        "We're here to help if you need any assistance.",
        "medium": "Hello {name}, payment of {amount} due in {days} ({due_date}). "
        "Contact us if you need support.",
        "high": "Hi {name}, payment of {amount} due today ({due_date}). "
        "Please reach out if you need help making this payment.",
    },
    FIRM: {
        "low": "Hi {name}, your payment of {amount} is due on {due_date}. "
        "Please ensure timely payment to avoid any issues.",
        "medium": "Hello {name}, payment of {amount} due in {days} ({due_date}). "
        "Please contact us immediately if you have concerns.",
        "high": "Hi {name}, URGENT: Payment of {amount} due today ({due_date}). "
        "Please contact us now to discuss your payment.",
    },
}

_ESCALATION_TEMPLATE = (
    "URGENT: {name}, your payment of {amount} is {days} overdue (was due {due_date}). "
    "Please contact us immediately to discuss your payment plan or this will be "
    "escalated to our collection team."
)

_TONE_RISK = {FRIENDLY: "low", ENCOURAGING: "medium", FIRM: "high"}


def select_tone(on_time_rate: Optional[float]) -> str:
    """
    Pick message tone from the client's historical on-time payment rate.

    - rate >= 80%: friendly
    - 50% <= rate < 80%: encouraging
    - rate < 50%: firm
    - no history: friendly
    """
    if on_time_rate is None or on_time_rate >= 80:
        return FRIENDLY
    if on_time_rate >= 50:
        return ENCOURAGING
    return FIRM


def reminder_urgency(days_until_due: int) -> str:
    if days_until_due > 3:
        return "low"
    if days_until_due > 0:
        return "medium"
    return "high"


def format_amount(amount: Decimal, currency: str) -> str:
    """
    Exact amount with thousands separators.

    Whole amounts drop the decimals ('TZS 150,000'); anything else keeps two
    ('TZS 150,000.50').
    """
    amount = Decimal(amount)
    if amount == amount.to_integral_value():
        return f"{currency} {amount:,.0f}"
    return f"{currency} {amount:,.2f}"


def _plural_days(days: int) -> str:
    return "1 day" if days == 1 else f"{days} days"


@dataclass(frozen=True)
class ComposerSettings:
    """Inputs the composer needs from global notification settings"""

    reminder_days: FrozenSet[int] = frozenset({7, 3, 1, 0})
    escalation_threshold_days: int = 3
    sms_enabled: bool = True
    email_enabled: bool = True
    currency: str = "TZS"

    @classmethod
    def from_settings(cls, settings) -> "ComposerSettings":
        return cls(
            reminder_days=frozenset(settings.reminder_days),
            escalation_threshold_days=settings.escalation_days,
            sms_enabled=settings.sms_enabled,
            email_enabled=settings.email_enabled,
            currency=settings.currency,
        )


class NotificationComposer:
    """
    Builds reminder and escalation notifications for due or overdue installments.

    Pure and deterministic: the output depends only on the installment, the
    client, `today` and the settings the composer was built with.
    """

    def __init__(self, settings: ComposerSettings):
        self.settings = settings

    def compose(
        self,
        installment: Installment,
        client: ClientContact,
        today: date,
    ) -> Optional[NotificationEvent]:
        channel = self.select_channel(client)
        if channel is None:
            return None

        days_until_due = days_between(today, installment.due_date)
        if days_until_due >= 0:
            if days_until_due not in self.settings.reminder_days:
                return None
            return self._reminder(installment, client, channel, days_until_due, today)

        days_overdue = -days_until_due
        if days_overdue < self.settings.escalation_threshold_days:
            return None
        return self._escalation(installment, client, channel, days_overdue, today)

    def select_channel(self, client: ClientContact) -> Optional[Channel]:
        """Enabled channels for which the client has a usable contact"""
        usable: List[Channel] = []
        if self.settings.sms_enabled and _usable(client.phone_number):
            usable.append(Channel.SMS)
        if self.settings.email_enabled and _usable(client.email_address):
            usable.append(Channel.EMAIL)

        if len(usable) == 2:
            return Channel.BOTH
        return usable[0] if usable else None

    def _reminder(
        self,
        installment: Installment,
        client: ClientContact,
        channel: Channel,
        days_until_due: int,
        today: date,
    ) -> NotificationEvent:
        tone = select_tone(client.on_time_rate)
        template = _REMINDER_TEMPLATES[tone][reminder_urgency(days_until_due)]
        message = template.format(
            name=client.first_name,
            amount=format_amount(installment.amount, installment.currency or self.settings.currency),
            due_date=format_due_date(installment.due_date),
            days=_plural_days(days_until_due),
        )
        return self._event(
            installment,
            client,
            channel,
            kind=NotificationKind.REMINDER,
            message=message,
            subject=f"Payment Reminder - {client.full_name}",
            tone=tone,
            risk_level=client.risk_level or _TONE_RISK[tone],
            today=today,
        )

    def _escalation(
        self,
        installment: Installment,
        client: ClientContact,
        channel: Channel,
        days_overdue: int,
        today: date,
    ) -> NotificationEvent:
        message = _ESCALATION_TEMPLATE.format(
            name=client.first_name,
            amount=format_amount(installment.amount, installment.currency or self.settings.currency),
            due_date=format_due_date(installment.due_date),
            days=_plural_days(days_overdue),
        )
        return self._event(
            installment,
            client,
            channel,
            kind=NotificationKind.ESCALATION,
            message=message,
            subject=f"Payment Overdue - {client.full_name}",
            tone=URGENT,
            risk_level="high",
            today=today,
        )

    @staticmethod
    def _event(installment, client, channel, *, kind, message, subject, tone, risk_level, today):
        covered = channel.expand()
        return NotificationEvent(
            client_id=client.client_id,
            loan_id=installment.loan_id,
            installment_id=installment.id,
            kind=kind,
            channel=channel,
            message=message,
            subject=subject,
            risk_level=risk_level,
            tone=tone,
            scheduled_for=today,
            recipient_phone=client.phone_number if Channel.SMS in covered else None,
            recipient_email=client.email_address if Channel.EMAIL in covered else None,
        )


def _usable(contact: Optional[str]) -> bool:
    return bool(contact and contact.strip())


def reminder_window(reminder_days: Iterable[int]) -> int:
    """Furthest-ahead reminder offset, used to bound the upcoming-installment query"""
    return max(reminder_days, default=0)
