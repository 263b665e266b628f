"""Data access layer for gateway transactions, webhook events, notifications and the loan book"""

import logging
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import and_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from mfi_gateway.domain.exceptions import TransactionNotFoundError
from mfi_gateway.domain.lifecycle import advance_status
from mfi_gateway.domain.models import (
    Channel,
    ClientContact,
    DueInstallment,
    Installment,
    NotificationEvent,
    NotificationKind,
    NotificationStatus,
    Transaction,
    TransactionKind,
    TransactionStatus,
)
from mfi_gateway.infrastructure.database.models import (
    Client,
    ClientPaymentPattern,
    GatewayTransaction,
    GatewayWebhookEvent,
    Loan,
    NotificationHistory,
    RepaymentSchedule,
)
from mfi_gateway.utils.date_utils import utcnow


def _to_transaction(row: GatewayTransaction, previous_status: Optional[TransactionStatus] = None) -> Transaction:
    return Transaction(
        reference=row.reference,
        kind=TransactionKind(row.kind),
        amount=Decimal(row.amount),
        currency=row.currency,
        status=TransactionStatus(row.status),
        transaction_id=row.transaction_id,
        counterparty_phone=row.counterparty_phone,
        counterparty_name=row.counterparty_name,
        created_at=row.created_at,
        updated_at=row.updated_at,
        last_event_payload=row.last_event_payload,
        response_data=row.response_data,
        last_error=row.last_error,
        previous_status=previous_status,
    )


class TransactionLedger:
    """
    Idempotent record of every gateway transaction, keyed by caller reference.

    Writes to one row are serialized with a row lock (SELECT ... FOR UPDATE)
    held for the duration of a single database transaction, so the
    synchronous gateway response and an asynchronous webhook can never
    interleave and downgrade a terminal status.
    """

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def upsert_by_reference(self, tx: Transaction) -> Transaction:
        """Insert the transaction, or merge it into the existing row with the same reference"""
        for attempt in range(2):
            with self.session_factory() as db:
                row = (
                    db.query(GatewayTransaction)
                    .filter(GatewayTransaction.reference == tx.reference)
                    .with_for_update()
                    .first()
                )
                previous = None
                if row is None:
                    row = GatewayTransaction(
                        reference=tx.reference,
                        transaction_id=tx.transaction_id,
                        kind=tx.kind.value,
                        amount=tx.amount,
                        currency=tx.currency,
                        counterparty_phone=tx.counterparty_phone,
                        counterparty_name=tx.counterparty_name,
                        status=tx.status.value,
                        response_data=tx.response_data,
                        last_error=tx.last_error,
                    )
                    db.add(row)
                else:
                    previous = TransactionStatus(row.status)
                    self._merge(row, tx, previous)

                try:
                    db.flush()
                except IntegrityError:
                    # Lost an insert race on the same reference; retry as an update
                    db.rollback()
                    if attempt:
                        raise
                    continue

                result = _to_transaction(row, previous_status=previous)
                db.commit()
                return result

        raise RuntimeError("unreachable")

    def apply_event(
        self,
        transaction_id: str,
        new_status: TransactionStatus,
        payload: Dict[str, Any],
        reference: Optional[str] = None,
    ) -> Transaction:
        """
        Apply a webhook-reported status to the matching transaction.

        Lookup is by gateway transaction id, falling back to `reference`.
        On a terminal row the payload is still stored for audit but the status
        is left unchanged.

        Raises:
            TransactionNotFoundError: If neither key matches a ledger row
        """
        with self.session_factory() as db:
            row = self._locked(db, transaction_id=transaction_id)
            if row is None and reference:
                row = self._locked(db, reference=reference)
            if row is None:
                raise TransactionNotFoundError(
                    f"No transaction for id={transaction_id!r} reference={reference!r}"
                )

            if row.transaction_id is None:
                row.transaction_id = transaction_id

            previous = TransactionStatus(row.status)
            resolved = advance_status(previous, new_status)
            if resolved is not new_status:
                logging.info(
                    "Reported status not applied",
                    extra={
                        "reference": row.reference,
                        "previous_status": previous.value,
                        "reported_status": new_status.value,
                        "resolved_status": resolved.value,
                    },
                )
            row.status = resolved.value
            row.last_event_payload = payload
            row.updated_at = utcnow()
            db.flush()

            result = _to_transaction(row, previous_status=previous)
            db.commit()
            return result

    def record_error(self, reference: str, message: str) -> Transaction:
        """Attach the last gateway error to a transaction without touching its status"""
        with self.session_factory() as db:
            row = self._locked(db, reference=reference)
            if row is None:
                raise TransactionNotFoundError(f"No transaction for reference={reference!r}")
            row.last_error = message
            row.updated_at = utcnow()
            db.flush()
            result = _to_transaction(row)
            db.commit()
            return result

    def find(self, reference: Optional[str] = None, transaction_id: Optional[str] = None) -> Optional[Transaction]:
        with self.session_factory() as db:
            query = db.query(GatewayTransaction)
            if transaction_id is not None:
                row = query.filter(GatewayTransaction.transaction_id == transaction_id).first()
                if row is not None or reference is None:
                    return _to_transaction(row) if row else None
            row = query.filter(GatewayTransaction.reference == reference).first()
            return _to_transaction(row) if row else None

    def get(self, reference: Optional[str] = None, transaction_id: Optional[str] = None) -> Transaction:
        """
        Fetch a transaction by reference or gateway transaction id.

        Raises:
            TransactionNotFoundError: If no row matches
        """
        if reference is None and transaction_id is None:
            raise ValueError("reference or transaction_id is required")
        tx = self.find(reference=reference, transaction_id=transaction_id)
        if tx is None:
            raise TransactionNotFoundError(
                f"No transaction for id={transaction_id!r} reference={reference!r}"
            )
        return tx

    def recent(
        self,
        status: Optional[TransactionStatus] = None,
        kind: Optional[TransactionKind] = None,
        limit: int = 50,
    ) -> List[Transaction]:
        """Recent ledger rows, newest first"""
        with self.session_factory() as db:
            query = db.query(GatewayTransaction)
            if status is not None:
                query = query.filter(GatewayTransaction.status == status.value)
            if kind is not None:
                query = query.filter(GatewayTransaction.kind == kind.value)
            rows = query.order_by(GatewayTransaction.created_at.desc()).limit(limit).all()
            return [_to_transaction(row) for row in rows]

    @staticmethod
    def _locked(db: Session, reference: Optional[str] = None, transaction_id: Optional[str] = None):
        query = db.query(GatewayTransaction)
        if transaction_id is not None:
            query = query.filter(GatewayTransaction.transaction_id == transaction_id)
        else:
            query = query.filter(GatewayTransaction.reference == reference)
        return query.with_for_update().first()

    @staticmethod
    def _merge(row: GatewayTransaction, tx: Transaction, previous: TransactionStatus) -> None:
        if tx.transaction_id and row.transaction_id is None:
            row.transaction_id = tx.transaction_id
        elif tx.transaction_id and tx.transaction_id != row.transaction_id:
            logging.warning(
                "Gateway reported a different transaction id for an existing reference",
                extra={
                    "reference": row.reference,
                    "stored_transaction_id": row.transaction_id,
                    "reported_transaction_id": tx.transaction_id,
                },
            )
        row.status = advance_status(previous, tx.status).value
        row.counterparty_phone = row.counterparty_phone or tx.counterparty_phone
        row.counterparty_name = row.counterparty_name or tx.counterparty_name
        if tx.response_data is not None:
            row.response_data = tx.response_data
        row.last_error = tx.last_error
        row.updated_at = utcnow()


class WebhookEventRepository:
    """Log of inbound webhook events, deduplicated by raw body hash"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def record(
        self,
        dedup_key: str,
        event_type: str,
        transaction_id: str,
        reference: Optional[str],
        status: Optional[str],
        event_data: Dict[str, Any],
    ) -> bool:
        """
        Store the event unless an identical payload was seen before.

        Returns:
            True if an identical payload was already fully processed
        """
        with self.session_factory() as db:
            db.add(
                GatewayWebhookEvent(
                    dedup_key=dedup_key,
                    event_type=event_type,
                    transaction_id=transaction_id,
                    reference=reference,
                    status=status,
                    event_data=event_data,
                )
            )
            try:
                db.commit()
                return False
            except IntegrityError:
                db.rollback()

            existing = (
                db.query(GatewayWebhookEvent)
                .filter(GatewayWebhookEvent.dedup_key == dedup_key)
                .first()
            )
            return bool(existing and existing.processed)

    def mark_processed(self, dedup_key: str) -> None:
        with self.session_factory() as db:
            db.query(GatewayWebhookEvent).filter(GatewayWebhookEvent.dedup_key == dedup_key).update(
                {"processed": True, "processed_at": utcnow()}
            )
            db.commit()


def _to_notification(row: NotificationHistory) -> NotificationEvent:
    return NotificationEvent(
        id=row.id,
        client_id=row.client_id,
        loan_id=row.loan_id,
        installment_id=row.installment_id,
        kind=NotificationKind(row.kind),
        channel=Channel(row.channel),
        message=row.message,
        subject=row.subject,
        risk_level=row.risk_level,
        tone=row.tone,
        scheduled_for=row.scheduled_for,
        recipient_phone=row.recipient_phone,
        recipient_email=row.recipient_email,
        status=NotificationStatus(row.status),
        sent_at=row.sent_at,
        delivery_reference=row.delivery_reference,
        error_message=row.error_message,
        created_at=row.created_at,
    )


class NotificationRepository:
    """Notification history written by the dispatcher and read by back-office screens"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def create_pending(self, event: NotificationEvent) -> Tuple[NotificationEvent, bool]:
        """
        Persist a new pending notification.

        Returns:
            (stored event, created). created is False when a notification for
            the same installment, kind and day already exists; the existing
            row is returned untouched.
        """
        with self.session_factory() as db:
            row = NotificationHistory(
                client_id=event.client_id,
                loan_id=event.loan_id,
                installment_id=event.installment_id,
                kind=event.kind.value,
                channel=event.channel.value,
                message=event.message,
                subject=event.subject,
                risk_level=event.risk_level,
                tone=event.tone,
                recipient_phone=event.recipient_phone,
                recipient_email=event.recipient_email,
                status=NotificationStatus.PENDING.value,
                scheduled_for=event.scheduled_for,
            )
            db.add(row)
            try:
                db.flush()
            except IntegrityError:
                db.rollback()
                existing = (
                    db.query(NotificationHistory)
                    .filter(
                        NotificationHistory.installment_id == event.installment_id,
                        NotificationHistory.kind == event.kind.value,
                        NotificationHistory.scheduled_for == event.scheduled_for,
                    )
                    .one()
                )
                return _to_notification(existing), False

            stored = _to_notification(row)
            db.commit()
            return stored, True

    def mark_outcome(
        self,
        notification_id: str,
        status: NotificationStatus,
        sent_at: Optional[datetime],
        delivery_reference: Optional[str],
        error_message: Optional[str],
    ) -> NotificationEvent:
        with self.session_factory() as db:
            row = db.query(NotificationHistory).filter(NotificationHistory.id == notification_id).one()
            row.status = status.value
            row.sent_at = sent_at
            row.delivery_reference = delivery_reference
            row.error_message = error_message
            db.flush()
            stored = _to_notification(row)
            db.commit()
            return stored

    def stale_pending(self, older_than: datetime, limit: int = 100) -> List[NotificationEvent]:
        """Pending notifications created before `older_than` (left behind by a crash)"""
        with self.session_factory() as db:
            rows = (
                db.query(NotificationHistory)
                .filter(
                    NotificationHistory.status == NotificationStatus.PENDING.value,
                    NotificationHistory.created_at < older_than,
                )
                .order_by(NotificationHistory.created_at)
                .limit(limit)
                .all()
            )
            return [_to_notification(row) for row in rows]

    def history(
        self,
        client_id: Optional[str] = None,
        loan_id: Optional[str] = None,
        status: Optional[NotificationStatus] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = 100,
    ) -> List[NotificationEvent]:
        """Notification history, newest first"""
        with self.session_factory() as db:
            query = db.query(NotificationHistory)
            if client_id:
                query = query.filter(NotificationHistory.client_id == client_id)
            if loan_id:
                query = query.filter(NotificationHistory.loan_id == loan_id)
            if status is not None:
                query = query.filter(NotificationHistory.status == status.value)
            if date_from is not None:
                query = query.filter(NotificationHistory.scheduled_for >= date_from)
            if date_to is not None:
                query = query.filter(NotificationHistory.scheduled_for <= date_to)
            rows = query.order_by(NotificationHistory.created_at.desc()).limit(limit).all()
            return [_to_notification(row) for row in rows]


class InstallmentRepository:
    """Reads unpaid installments of active loans joined with client contact and payment behaviour"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    def upcoming(self, start: date, end: date) -> List[DueInstallment]:
        """Unpaid installments due between start and end (inclusive)"""
        return self._query(
            RepaymentSchedule.due_date >= start,
            RepaymentSchedule.due_date <= end,
        )

    def overdue(self, as_of: date) -> List[DueInstallment]:
        """Unpaid installments due before as_of"""
        return self._query(RepaymentSchedule.due_date < as_of)

    def _query(self, *criteria) -> List[DueInstallment]:
        with self.session_factory() as db:
            rows = (
                db.query(RepaymentSchedule, Loan, Client, ClientPaymentPattern)
                .join(Loan, RepaymentSchedule.loan_id == Loan.id)
                .join(Client, Loan.client_id == Client.id)
                .outerjoin(
                    ClientPaymentPattern,
                    and_(
                        ClientPaymentPattern.loan_id == Loan.id,
                        ClientPaymentPattern.client_id == Client.id,
                    ),
                )
                .filter(
                    RepaymentSchedule.is_paid.is_(False),
                    Loan.status == "active",
                    *criteria,
                )
                .order_by(RepaymentSchedule.due_date, RepaymentSchedule.id)
                .all()
            )

            return [
                DueInstallment(
                    installment=Installment(
                        id=schedule.id,
                        loan_id=loan.id,
                        due_date=schedule.due_date,
                        amount=Decimal(schedule.total_payment),
                        currency=loan.currency,
                        payment_number=schedule.payment_number,
                    ),
                    client=ClientContact(
                        client_id=client.id,
                        full_name=client.full_name,
                        phone_number=client.phone_number,
                        email_address=client.email_address,
                        on_time_rate=pattern.on_time_rate if pattern else None,
                        risk_level=pattern.risk_level if pattern else None,
                    ),
                )
                for schedule, loan, client, pattern in rows
            ]
