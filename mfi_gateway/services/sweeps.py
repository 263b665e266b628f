"""Periodic notification sweeps run by the task scheduler"""

import asyncio
import logging
from datetime import date, datetime, timedelta
from typing import Callable, List, Protocol

from mfi_gateway.config import Settings
from mfi_gateway.domain.exceptions import SweepError
from mfi_gateway.domain.models import DueInstallment, NotificationStatus, ScheduledTask, SweepResult
from mfi_gateway.domain.notifications import NotificationComposer, reminder_window
from mfi_gateway.infrastructure.database.repositories import NotificationRepository
from mfi_gateway.services.dispatcher import NotificationDispatcher
from mfi_gateway.utils.date_utils import utcnow

REMINDER_CHECK = "reminder_check"
ESCALATION_CHECK = "escalation_check"
PENDING_RECOVERY = "pending_recovery"


class InstallmentSource(Protocol):
    def upcoming(self, start: date, end: date) -> List[DueInstallment]:
        ...

    def overdue(self, as_of: date) -> List[DueInstallment]:
        ...


class NotificationSweeps:
    """
    Reads due and overdue installments, composes and dispatches notifications.

    A failure to read the loan book propagates. Failures on individual
    installments are collected and raised together as SweepError once the
    remaining installments have been processed, so the scheduler records
    the run as failed without starving everyone after the bad row.
    """

    def __init__(
        self,
        source: InstallmentSource,
        composer: NotificationComposer,
        dispatcher: NotificationDispatcher,
        repository: NotificationRepository,
        enabled: bool = True,
        pending_recovery_minutes: int = 30,
        concurrency: int = 10,
        today: Callable[[], date] = date.today,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.source = source
        self.composer = composer
        self.dispatcher = dispatcher
        self.repository = repository
        self.enabled = enabled
        self.pending_recovery_minutes = pending_recovery_minutes
        self.concurrency = concurrency
        self.today = today
        self.clock = clock

    async def run_reminders(self) -> SweepResult:
        if not self.enabled:
            logging.info("Notifications disabled, skipping reminder sweep")
            return SweepResult()

        today = self.today()
        window = reminder_window(self.composer.settings.reminder_days)
        due = self.source.upcoming(today, today + timedelta(days=window))
        return await self._process(REMINDER_CHECK, due, today)

    async def run_escalations(self) -> SweepResult:
        if not self.enabled:
            logging.info("Notifications disabled, skipping escalation sweep")
            return SweepResult()

        today = self.today()
        overdue = self.source.overdue(today)
        return await self._process(ESCALATION_CHECK, overdue, today)

    async def run_pending_recovery(self) -> SweepResult:
        """Redeliver notifications left pending by an interrupted dispatch"""
        if not self.enabled:
            return SweepResult()

        cutoff = self.clock() - timedelta(minutes=self.pending_recovery_minutes)
        stale = self.repository.stale_pending(cutoff)
        result = SweepResult(examined=len(stale))
        for event in stale:
            outcome = await self.dispatcher.redeliver(event)
            self._count(result, outcome.status)

        if stale:
            logging.info(
                "Pending notifications redelivered",
                extra={"sweep": PENDING_RECOVERY, "examined": result.examined, "sent": result.notifications_sent},
            )
        return result

    async def _process(self, sweep: str, items: List[DueInstallment], today: date) -> SweepResult:
        result = SweepResult(examined=len(items))
        semaphore = asyncio.Semaphore(self.concurrency)

        async def handle(item: DueInstallment) -> None:
            async with semaphore:
                try:
                    event = self.composer.compose(item.installment, item.client, today)
                    if event is None:
                        result.skipped += 1
                        return
                    outcome = await self.dispatcher.dispatch(event)
                except Exception as e:
                    result.failed += 1
                    result.errors.append(f"installment {item.installment.id}: {e}")
                    return
                self._count(result, outcome.status)

        await asyncio.gather(*(handle(item) for item in items))

        logging.info(
            "Sweep finished",
            extra={
                "sweep": sweep,
                "examined": result.examined,
                "sent": result.notifications_sent,
                "escalated": result.escalated,
                "skipped": result.skipped,
                "failed": result.failed,
            },
        )
        if result.errors:
            raise SweepError(result.errors)
        return result

    @staticmethod
    def _count(result: SweepResult, status: NotificationStatus) -> None:
        if status is NotificationStatus.SENT:
            result.notifications_sent += 1
        elif status is NotificationStatus.ESCALATED_TO_HUMAN:
            result.escalated += 1
        elif status is NotificationStatus.FAILED:
            result.failed += 1
        else:
            result.skipped += 1


def register_default_tasks(scheduler, sweeps: NotificationSweeps, settings: Settings) -> None:
    """Register the reminder, escalation and pending recovery sweeps"""
    defaults = [
        (REMINDER_CHECK, "Payment Reminder Check", settings.reminder_check_interval_minutes, sweeps.run_reminders),
        (ESCALATION_CHECK, "Overdue Escalation Check", settings.escalation_check_interval_minutes, sweeps.run_escalations),
        (PENDING_RECOVERY, "Pending Notification Recovery", settings.pending_recovery_interval_minutes, sweeps.run_pending_recovery),
    ]
    for task_id, name, interval, job in defaults:
        scheduler.add_task(
            ScheduledTask(
                id=task_id,
                name=name,
                interval_minutes=interval,
                max_retries=settings.scheduler_max_retries,
            ),
            job,
        )
