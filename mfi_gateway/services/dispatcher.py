"""Notification delivery over SMS and email"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Callable, List, Tuple

from mfi_gateway.domain.models import (
    Channel,
    DeliveryResult,
    NotificationEvent,
    NotificationKind,
    NotificationStatus,
)
from mfi_gateway.infrastructure.clients.mailer import EmailProvider
from mfi_gateway.infrastructure.clients.sms import SMSProvider
from mfi_gateway.infrastructure.database.repositories import NotificationRepository
from mfi_gateway.infrastructure.observability.logging import log_notification_outcome
from mfi_gateway.infrastructure.observability.metrics import record_notification
from mfi_gateway.utils.date_utils import utcnow


class NotificationDispatcher:
    """
    Delivers composed notifications and records their outcome.

    The event is stored as pending before any provider is called, so a crash
    mid-send still leaves an auditable row (picked up later by the pending
    recovery sweep). Provider errors never escape: they become a failed
    status plus an error message. A failure to write the pending row does
    escape, since nothing can be delivered without it.
    """

    def __init__(
        self,
        repository: NotificationRepository,
        sms_provider: SMSProvider,
        email_provider: EmailProvider,
        auto_escalation: bool = False,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.repository = repository
        self.sms_provider = sms_provider
        self.email_provider = email_provider
        self.auto_escalation = auto_escalation
        self.clock = clock

    async def dispatch(self, event: NotificationEvent) -> NotificationEvent:
        """
        Record and deliver one notification.

        Raises:
            Exception: Whatever the repository raised when the pending row could
                not be written. Nothing is sent in that case, and the sweep
                reports a failed run so the scheduler retries it.
        """
        try:
            stored, created = self.repository.create_pending(event)
        except Exception as e:
            logging.error(
                f"Could not record notification: {e}",
                extra={"installment_id": event.installment_id, "kind": event.kind.value},
            )
            raise

        if not created:
            logging.info(
                "Notification already recorded for this installment today",
                extra={"notification_id": stored.id, "installment_id": stored.installment_id},
            )
            return stored

        return await self._deliver(stored)

    async def redeliver(self, event: NotificationEvent) -> NotificationEvent:
        """Retry delivery of a stored notification still marked pending"""
        return await self._deliver(event)

    async def _deliver(self, event: NotificationEvent) -> NotificationEvent:
        channels = event.channel.expand()
        results = await asyncio.gather(*(self._send(event, channel) for channel in channels))

        sent: List[Tuple[Channel, DeliveryResult]] = []
        failed: List[Tuple[Channel, DeliveryResult]] = []
        for channel, result in zip(channels, results):
            (sent if result.success else failed).append((channel, result))

        if sent:
            status = NotificationStatus.SENT
        elif event.kind is NotificationKind.ESCALATION and self.auto_escalation:
            status = NotificationStatus.ESCALATED_TO_HUMAN
        else:
            status = NotificationStatus.FAILED

        message_ids = [result.message_id for _, result in sent if result.message_id]
        outcome = replace(
            event,
            status=status,
            sent_at=self.clock() if sent else None,
            delivery_reference=",".join(message_ids) or None,
            error_message="; ".join(f"{channel.value}: {result.error}" for channel, result in failed) or None,
        )

        try:
            outcome = self.repository.mark_outcome(
                event.id,
                outcome.status,
                outcome.sent_at,
                outcome.delivery_reference,
                outcome.error_message,
            )
        except Exception as e:
            logging.error(f"Could not record notification outcome: {e}", extra={"notification_id": event.id})

        record_notification(outcome.kind.value, outcome.channel.value, outcome.status.value)
        log_notification_outcome(
            outcome.id,
            outcome.installment_id,
            outcome.kind.value,
            outcome.channel.value,
            outcome.status.value,
            outcome.error_message,
        )
        return outcome

    async def _send(self, event: NotificationEvent, channel: Channel) -> DeliveryResult:
        try:
            if channel is Channel.SMS:
                if not event.recipient_phone:
                    return DeliveryResult(success=False, error="no phone number on file")
                return await self.sms_provider.send_sms(event.recipient_phone, event.message, reference=event.id)

            if not event.recipient_email:
                return DeliveryResult(success=False, error="no email address on file")
            return await self.email_provider.send_email(
                event.recipient_email, event.subject, event.message, reference=event.id
            )
        except Exception as e:
            logging.warning(
                f"{channel.value} delivery failed: {e}",
                extra={"notification_id": event.id, "channel": channel.value},
            )
            return DeliveryResult(success=False, error=str(e))
