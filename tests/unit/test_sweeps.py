"""Unit tests for reminder, escalation and pending recovery sweeps"""

from datetime import date, timedelta

import pytest

from mfi_gateway.config import Settings
from mfi_gateway.domain.exceptions import SweepError
from mfi_gateway.domain.models import Channel, NotificationEvent, NotificationKind, NotificationStatus
from mfi_gateway.domain.notifications import ComposerSettings, NotificationComposer
from mfi_gateway.infrastructure.database.models import NotificationHistory
from mfi_gateway.infrastructure.database.repositories import NotificationRepository
from mfi_gateway.services.dispatcher import NotificationDispatcher
from mfi_gateway.services.scheduler import TaskScheduler
from mfi_gateway.services.sweeps import NotificationSweeps, register_default_tasks
from mfi_gateway.utils.date_utils import utcnow
from tests.fakes import RecordingEmailProvider, RecordingSMSProvider

TODAY = date(2026, 3, 10)


@pytest.fixture
def sms():
    return RecordingSMSProvider()


@pytest.fixture
def email():
    return RecordingEmailProvider()


@pytest.fixture
def composer():
    return NotificationComposer(ComposerSettings())


@pytest.fixture
def sweeps(installment_repository, notification_repository, composer, sms, email):
    dispatcher = NotificationDispatcher(notification_repository, sms, email)
    return NotificationSweeps(
        installment_repository,
        composer,
        dispatcher,
        notification_repository,
        concurrency=2,
        today=lambda: TODAY,
    )


async def test_reminders_on_configured_days_only(sweeps, seed_installment, sms, email):
    seed_installment(TODAY + timedelta(days=3), full_name="Amina Juma")
    seed_installment(TODAY, full_name="Baraka Mushi", phone="255713000000", email=None)
    seed_installment(TODAY + timedelta(days=5), full_name="Neema Said")
    seed_installment(TODAY + timedelta(days=10), full_name="Outside Window")

    result = await sweeps.run_reminders()

    assert result.examined == 3
    assert result.notifications_sent == 2
    assert result.skipped == 1
    assert result.errors == []
    assert sorted(m["to"] for m in sms.sent) == ["255712345678", "255713000000"]
    assert [m["to"] for m in email.sent] == ["amina@example.com"]


async def test_second_run_same_day_sends_nothing_new(sweeps, seed_installment, sms):
    seed_installment(TODAY + timedelta(days=1))

    await sweeps.run_reminders()
    await sweeps.run_reminders()

    assert len(sms.sent) == 1


async def test_escalations_for_overdue_installments(
    installment_repository, notification_repository, composer, seed_installment
):
    sweeps = NotificationSweeps(
        installment_repository,
        composer,
        NotificationDispatcher(
            notification_repository,
            RecordingSMSProvider(fail=True),
            RecordingEmailProvider(fail=True),
            auto_escalation=True,
        ),
        notification_repository,
        today=lambda: TODAY,
    )
    seed_installment(TODAY - timedelta(days=5), full_name="Late Payer", on_time_rate=30.0)
    seed_installment(TODAY - timedelta(days=1), full_name="Grace Period")

    result = await sweeps.run_escalations()

    assert result.examined == 2
    assert result.escalated == 1
    assert result.skipped == 1

    [stored] = notification_repository.history()
    assert stored.kind == NotificationKind.ESCALATION
    assert stored.status == NotificationStatus.ESCALATED_TO_HUMAN


async def test_item_failures_are_collected(
    installment_repository, notification_repository, sms, email, seed_installment
):
    class BrokenForOne(NotificationComposer):
        def compose(self, installment, client, today):
            if client.full_name == "Broken Record":
                raise KeyError("tone")
            return super().compose(installment, client, today)

    sweeps = NotificationSweeps(
        installment_repository,
        BrokenForOne(ComposerSettings()),
        NotificationDispatcher(notification_repository, sms, email),
        notification_repository,
        today=lambda: TODAY,
    )
    broken = seed_installment(TODAY, full_name="Broken Record")
    seed_installment(TODAY, full_name="Amina Juma")

    with pytest.raises(SweepError) as exc_info:
        await sweeps.run_reminders()

    assert len(exc_info.value.errors) == 1
    assert broken.id in exc_info.value.errors[0]
    # The healthy installment was still processed
    assert len(sms.sent) == 1


async def test_loan_book_read_failure_propagates(notification_repository, composer, sms, email):
    class UnavailableSource:
        def upcoming(self, start, end):
            raise ConnectionError("loan book unavailable")

        def overdue(self, as_of):
            raise ConnectionError("loan book unavailable")

    sweeps = NotificationSweeps(
        UnavailableSource(),
        composer,
        NotificationDispatcher(notification_repository, sms, email),
        notification_repository,
        today=lambda: TODAY,
    )

    with pytest.raises(ConnectionError):
        await sweeps.run_reminders()
    with pytest.raises(ConnectionError):
        await sweeps.run_escalations()


async def test_disabled_notifications_skip_sweeps(
    installment_repository, notification_repository, composer, sms, email, seed_installment
):
    sweeps = NotificationSweeps(
        installment_repository,
        composer,
        NotificationDispatcher(notification_repository, sms, email),
        notification_repository,
        enabled=False,
        today=lambda: TODAY,
    )
    seed_installment(TODAY)

    result = await sweeps.run_reminders()

    assert result.examined == 0
    assert sms.sent == []


async def test_pending_recovery_redelivers_stale_events(sweeps, notification_repository, session_factory, sms):
    stored, _ = notification_repository.create_pending(
        NotificationEvent(
            client_id="client-1",
            loan_id="loan-1",
            installment_id="inst-1",
            kind=NotificationKind.REMINDER,
            channel=Channel.SMS,
            message="Hi Amina, your payment is due today.",
            subject="Payment Reminder - Amina Juma",
            risk_level="low",
            tone="friendly",
            scheduled_for=TODAY,
            recipient_phone="255712345678",
        )
    )
    notification_repository.create_pending(
        NotificationEvent(
            client_id="client-2",
            loan_id="loan-2",
            installment_id="inst-2",
            kind=NotificationKind.REMINDER,
            channel=Channel.SMS,
            message="Fresh pending event",
            subject="Payment Reminder - Baraka Mushi",
            risk_level="low",
            tone="friendly",
            scheduled_for=TODAY,
            recipient_phone="255713000000",
        )
    )
    with session_factory() as db:
        db.query(NotificationHistory).filter(NotificationHistory.id == stored.id).update(
            {"created_at": utcnow() - timedelta(hours=1)}
        )
        db.commit()

    result = await sweeps.run_pending_recovery()

    assert result.examined == 1
    assert result.notifications_sent == 1
    assert [m["to"] for m in sms.sent] == ["255712345678"]


def test_register_default_tasks(sweeps):
    scheduler = TaskScheduler()

    register_default_tasks(scheduler, sweeps, Settings())

    tasks = {t.id: t for t in scheduler.get_status()["tasks"]}
    assert set(tasks) == {"reminder_check", "escalation_check", "pending_recovery"}
    assert tasks["reminder_check"].interval_minutes == 60
    assert tasks["escalation_check"].interval_minutes == 120
    assert tasks["pending_recovery"].interval_minutes == 30
    assert all(t.max_retries == 3 for t in tasks.values())


async def test_notification_store_outage_fails_the_run_until_disabled(
    installment_repository, notification_repository, composer, sms, email, seed_installment
):
    class UnavailableNotificationStore(NotificationRepository):
        def create_pending(self, event):
            raise ConnectionError("database unavailable")

    sweeps = NotificationSweeps(
        installment_repository,
        composer,
        NotificationDispatcher(UnavailableNotificationStore(notification_repository.session_factory), sms, email),
        notification_repository,
        today=lambda: TODAY,
    )
    seed_installment(TODAY + timedelta(days=3))

    with pytest.raises(SweepError) as exc_info:
        await sweeps.run_reminders()
    assert "database unavailable" in exc_info.value.errors[0]

    scheduler = TaskScheduler()
    register_default_tasks(scheduler, sweeps, Settings(scheduler_max_retries=3))
    results = [await scheduler.trigger_task("reminder_check") for _ in range(3)]

    task = scheduler.get_task("reminder_check")
    assert results == [False, False, False]
    assert task.retry_count == 3
    assert task.enabled is False
    assert sms.sent == []
